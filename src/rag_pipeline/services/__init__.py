"""Services package."""

from rag_pipeline.services.chunking_service import ChunkingService
from rag_pipeline.services.context_service import ContextAssembler
from rag_pipeline.services.embedding_service import EmbeddingService
from rag_pipeline.services.fingerprint import fingerprint, point_id
from rag_pipeline.services.ingestion_service import IngestionOrchestrator
from rag_pipeline.services.parser_service import TextExtractor
from rag_pipeline.services.qdrant_service import VectorStoreGateway, namespace_for
from rag_pipeline.services.storage_service import StorageService

__all__ = [
    "ChunkingService",
    "ContextAssembler",
    "EmbeddingService",
    "IngestionOrchestrator",
    "StorageService",
    "TextExtractor",
    "VectorStoreGateway",
    "fingerprint",
    "namespace_for",
    "point_id",
]
