"""Vault position sync and valuation backend."""

__version__ = "0.1.0"
