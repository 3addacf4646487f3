"""tradesync: local-first trade order management with remote sync."""

__version__ = "0.1.0"
