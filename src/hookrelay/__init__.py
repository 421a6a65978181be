"""hookrelay: signed webhook ingestion, audit and retry."""

__version__ = "1.0.0"
