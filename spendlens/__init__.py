"""Bank statement ingestion and spending insights."""

__version__ = "0.1.0"
