"""Ingestion orchestration: download, extract, chunk, embed and upsert one document."""

from typing import List, Optional, Set, Tuple

from rag_pipeline.config import Settings, get_settings
from rag_pipeline.models.chunk import TextChunk
from rag_pipeline.models.document import ExtractedDocument
from rag_pipeline.models.ingestion import IngestionStage, IngestionSummary
from rag_pipeline.models.vector import VectorMetadata, VectorRecord
from rag_pipeline.services.chunking_service import ChunkingService
from rag_pipeline.services.embedding_service import EmbeddingService
from rag_pipeline.services.fingerprint import fingerprint
from rag_pipeline.services.parser_service import TextExtractor
from rag_pipeline.services.qdrant_service import VectorStoreGateway, namespace_for
from rag_pipeline.services.storage_service import StorageService
from rag_pipeline.utils.errors import (
    ChunkingError,
    EmbeddingError,
    EmptyInputError,
    NoVectorsProducedError,
    PipelineException,
)
from rag_pipeline.utils.logging import get_logger, run_context

logger = get_logger("ingestion_service")


class IngestionOrchestrator:
    """
    Run the ingestion pipeline for uploaded documents.

    Stages run strictly in sequence:
    1. Download the document to a private temporary file
    2. Extract pages
    3. Chunk every page (pages without text are skipped)
    4. Fingerprint and embed every chunk (chunks that fail to embed are skipped)
    5. Reset the document's namespace, then upsert all vectors in batches
    6. Remove the temporary file, on every exit path

    Orchestrators hold no per-run state, so one instance can serve
    concurrent runs for different documents.
    """

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        extractor: Optional[TextExtractor] = None,
        chunker: Optional[ChunkingService] = None,
        embedder: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStoreGateway] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.storage = storage or StorageService(settings.storage)
        self.extractor = extractor or TextExtractor(settings=settings.extraction)
        self.chunker = chunker or ChunkingService(settings=settings.chunking)
        self.embedder = embedder or EmbeddingService(settings.embedding)
        self.vector_store = vector_store or VectorStoreGateway(settings.qdrant)

    @staticmethod
    def _enter(stage: IngestionStage, document_key: str) -> IngestionStage:
        logger.info(f"Ingestion stage: {stage.value} ({document_key})")
        return stage

    def _chunk(self, document: ExtractedDocument) -> List[TextChunk]:
        chunks: List[TextChunk] = []
        pages_with_chunks = 0
        for page in document.pages:
            page_chunks = self.chunker.chunk_page(page)
            if not page_chunks:
                logger.warning(f"Page {page.page_number} produced no chunks, skipping")
                continue
            pages_with_chunks += 1
            chunks.extend(page_chunks)

        if not chunks:
            raise ChunkingError(
                "No page produced any chunks",
                code="CHUNKING_PRODUCED_NOTHING",
                details={"page_count": len(document.pages)},
            )
        total_tokens = sum(c.token_count for c in chunks)
        logger.info(
            f"Document chunked: pages={pages_with_chunks}/{len(document.pages)}, "
            f"chunks={len(chunks)}, total_tokens={total_tokens}"
        )
        return chunks

    async def _embed(self, document_key: str, chunks: List[TextChunk]) -> Tuple[List[VectorRecord], int]:
        """Embed unique chunks; returns the records and the number of chunks that failed."""
        records: List[VectorRecord] = []
        seen: Set[str] = set()
        failed = 0
        for chunk in chunks:
            chunk_fp = fingerprint(chunk.text)
            if chunk_fp in seen:
                logger.debug(
                    f"Duplicate chunk skipped: page={chunk.page_number}, index={chunk.chunk_index}"
                )
                continue
            seen.add(chunk_fp)

            try:
                values = await self.embedder.embed(chunk.text)
            except (EmbeddingError, EmptyInputError) as e:
                failed += 1
                logger.warning(
                    f"Embedding failed for chunk page={chunk.page_number} "
                    f"index={chunk.chunk_index}, skipping: {e.message}"
                )
                continue

            records.append(
                VectorRecord(
                    id=chunk_fp,
                    values=values,
                    metadata=VectorMetadata(
                        text=chunk.truncated_text,
                        page_number=chunk.page_number,
                        source_key=chunk.source_key or document_key,
                    ),
                )
            )

        logger.info(f"Embedding complete: vectors={len(records)}, failed={failed}")
        return records, failed

    async def ingest(self, document_key: str) -> IngestionSummary:
        """
        Ingest one document into its namespace.

        Args:
            document_key: Object storage key of the uploaded document

        Returns:
            IngestionSummary of the run

        Raises:
            PipelineException: Subclass naming the failed stage's error; unexpected
                errors are wrapped with code ``INGESTION_ERROR``
        """
        with run_context(document_key):
            stage = self._enter(IngestionStage.DOWNLOADING, document_key)
            try:
                async with self.storage.temporary_download(document_key) as path:
                    stage = self._enter(IngestionStage.EXTRACTING, document_key)
                    document = await self.extractor.extract(path, document_key)
                    if document.is_placeholder:
                        logger.warning(f"Ingesting placeholder text for unreadable document: {document_key}")

                    stage = self._enter(IngestionStage.CHUNKING, document_key)
                    chunks = self._chunk(document)

                    stage = self._enter(IngestionStage.EMBEDDING, document_key)
                    records, failed = await self._embed(document_key, chunks)
                    if not records:
                        raise NoVectorsProducedError(document_key, chunks_created=len(chunks))

                    stage = self._enter(IngestionStage.UPSERTING, document_key)
                    namespace = namespace_for(document_key)
                    await self.vector_store.reset_namespace(namespace)
                    written = await self.vector_store.upsert_batch(namespace, records)

                    stage = self._enter(IngestionStage.CLEANUP, document_key)
            except PipelineException as e:
                e.details.setdefault("stage", stage.value)
                self._enter(IngestionStage.FAILED, document_key)
                logger.error(
                    f"Ingestion failed at stage {stage.value}: {e.message} ({e.code})",
                    exc_info=True,
                )
                raise
            except Exception as e:
                self._enter(IngestionStage.FAILED, document_key)
                logger.error(f"Unexpected ingestion error at stage {stage.value}: {e}", exc_info=True)
                raise PipelineException(
                    f"Failed to ingest document: {document_key}",
                    code="INGESTION_ERROR",
                    details={"stage": stage.value, "error": str(e)},
                ) from e

            pages_processed = len({c.page_number for c in chunks})
            summary = IngestionSummary(
                document_key=document_key,
                pages_processed=pages_processed,
                chunks_created=len(chunks),
                vectors_uploaded=written,
                chunks_failed=failed,
                namespace=namespace,
            )
            self._enter(IngestionStage.DONE, document_key)
            logger.info(
                f"Ingestion complete: pages={summary.pages_processed}, chunks={summary.chunks_created}, "
                f"vectors={summary.vectors_uploaded}, failed={summary.chunks_failed}"
            )
            return summary
