"""discpipe - automated optical disc ingestion."""

__version__ = "0.1.0"
