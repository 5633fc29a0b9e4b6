"""Tenant chat widget response pipeline."""

__version__ = "1.0.0"
