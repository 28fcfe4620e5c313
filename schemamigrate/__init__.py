"""Schema migration drivers for SQLite, Snowflake and an in-memory stub, with shared helpers."""

__version__ = "0.1.0"