"""Pipeline data models."""

from rag_pipeline.models.chunk import TextChunk
from rag_pipeline.models.context import NO_RELEVANT_CONTEXT, RetrievedContext
from rag_pipeline.models.document import DocumentMetadata, ExtractedDocument, Page
from rag_pipeline.models.ingestion import IngestionMessage, IngestionStage, IngestionSummary
from rag_pipeline.models.vector import Match, VectorMetadata, VectorRecord

__all__ = [
    # Extraction
    "DocumentMetadata",
    "ExtractedDocument",
    "Page",
    # Chunking
    "TextChunk",
    # Vectors
    "Match",
    "VectorMetadata",
    "VectorRecord",
    # Retrieval
    "NO_RELEVANT_CONTEXT",
    "RetrievedContext",
    # Ingestion
    "IngestionMessage",
    "IngestionStage",
    "IngestionSummary",
]
