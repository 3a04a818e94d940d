"""Catalog, currency, sink and aggregation services used by job handlers."""
