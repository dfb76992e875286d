"""Context assembly for retrieval-augmented answers."""

from typing import List, Optional

from rag_pipeline.config import RetrievalSettings, get_settings
from rag_pipeline.models.context import NO_RELEVANT_CONTEXT, RetrievedContext
from rag_pipeline.models.vector import Match
from rag_pipeline.services.embedding_service import EmbeddingService
from rag_pipeline.services.qdrant_service import VectorStoreGateway, namespace_for
from rag_pipeline.utils.errors import EmbeddingError, EmptyInputError, UpstreamError, VectorStoreError
from rag_pipeline.utils.logging import get_logger, run_context

logger = get_logger("context_service")


class ContextAssembler:
    """
    Build the document context for one question.

    Steps: embed the question, fetch the top matches from the document's
    namespace, keep those scoring at least ``score_threshold``, drop repeated
    passages, order by score and join them under a character cap.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: VectorStoreGateway,
        settings: Optional[RetrievalSettings] = None,
    ):
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self._settings = settings or get_settings().retrieval

    def select(self, matches: List[Match]) -> List[Match]:
        """Threshold, dedup by text (first occurrence wins), stable sort by score."""
        kept = [m for m in matches if m.score >= self._settings.score_threshold]

        seen = set()
        unique: List[Match] = []
        for match in kept:
            if match.metadata.text in seen:
                continue
            seen.add(match.metadata.text)
            unique.append(match)

        return sorted(unique, key=lambda m: m.score, reverse=True)

    def join(self, matches: List[Match]) -> RetrievedContext:
        """Join passages and cap the result length."""
        if not matches:
            return RetrievedContext(text=NO_RELEVANT_CONTEXT)
        text = self._settings.separator.join(m.metadata.text for m in matches)
        cap = self._settings.max_context_chars
        truncated = len(text) > cap
        return RetrievedContext(text=text[:cap], matches=matches, truncated=truncated)

    async def retrieve(self, query: str, document_key: str) -> RetrievedContext:
        """
        Retrieve context for ``query`` from ``document_key``'s vectors.

        Raises:
            EmptyInputError: If the query is empty
            UpstreamError: If embedding or the vector query fails
        """
        with run_context(document_key):
            try:
                vector = await self.embedding_service.embed(query)
            except EmptyInputError:
                raise
            except EmbeddingError as e:
                raise UpstreamError(
                    f"Could not embed query: {e.message}", stage="embedding", details=dict(e.details)
                ) from e

            namespace = namespace_for(document_key)
            extra = {"source_key": document_key} if self._settings.filter_by_source_key else None
            try:
                matches = await self.vector_store.query(
                    namespace, vector, top_k=self._settings.top_k, filter=extra
                )
            except VectorStoreError as e:
                raise UpstreamError(
                    f"Vector query failed: {e.message}", stage="query", details=dict(e.details)
                ) from e

            selected = self.select(matches)
            context = self.join(selected)
            context.candidates = len(matches)
            logger.info(
                f"Context retrieved: candidates={len(matches)}, used={len(selected)}, "
                f"chars={len(context.text)}, truncated={context.truncated}"
            )
            return context

    async def get_context(self, query: str, document_key: str) -> str:
        """Context text for ``query``; ``NO_RELEVANT_CONTEXT`` when nothing scores high enough."""
        context = await self.retrieve(query, document_key)
        return context.text
