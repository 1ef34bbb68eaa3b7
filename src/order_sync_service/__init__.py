"""Marketplace order synchronization core."""

__version__ = "1.0.0"
