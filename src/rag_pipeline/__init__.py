"""PDF ingestion and retrieval pipeline for document-grounded chat."""

__version__ = "0.1.0"
