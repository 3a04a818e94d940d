"""Platform adapter contracts, registry and report acquisition."""
