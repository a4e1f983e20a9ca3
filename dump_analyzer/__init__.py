"""Thread-dump ingestion and call-tree analysis for Java server diagnostics."""

__version__ = "0.1.0"
