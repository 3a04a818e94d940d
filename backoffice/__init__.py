"""Asynchronous job engine for distribution and royalty ingestion."""

__version__ = "0.1.0"
