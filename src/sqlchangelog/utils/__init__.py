"""Shared helpers: logging setup and SQL escaping."""
