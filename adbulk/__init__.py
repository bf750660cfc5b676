"""Bulk campaign and target uploads."""

__version__ = "1.0.0"
