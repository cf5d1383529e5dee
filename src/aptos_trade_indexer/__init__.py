"""Materializes an on-chain event stream into relational trade, message and pool state."""

__version__ = "0.1.0"
