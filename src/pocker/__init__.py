"""Pocker: a reconciled view of containers running across many Docker hosts."""

__version__ = "0.1.0"
