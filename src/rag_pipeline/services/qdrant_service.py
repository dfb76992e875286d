"""Qdrant gateway: namespaced vector storage and similarity search."""

from __future__ import annotations

import asyncio
import hashlib
from typing import Any, Dict, List, Optional, Set

from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from rag_pipeline.config import QdrantSettings, get_settings
from rag_pipeline.models.vector import Match, VectorMetadata, VectorRecord
from rag_pipeline.services.fingerprint import point_id
from rag_pipeline.utils.errors import QueryError, UpsertError, VectorStoreError
from rag_pipeline.utils.logging import get_logger
from rag_pipeline.utils.text import to_ascii

logger = get_logger("qdrant_service")

NAMESPACE_FIELD = "namespace"
_INDEXED_FIELDS = (NAMESPACE_FIELD, "source_key")


def _is_not_found(error: Exception) -> bool:
    # REST transport only; the gateway never enables grpc
    return isinstance(error, UnexpectedResponse) and error.status_code == 404


def namespace_for(document_key: str) -> str:
    """
    Namespace of a document.

    ASCII keys are used as they are. Keys with non-ASCII characters are
    sanitised and suffixed with a digest of the raw key, so two keys that
    sanitise alike still get separate namespaces.
    """
    ascii_key = to_ascii(document_key)
    if ascii_key == document_key:
        return document_key
    digest = hashlib.sha256(document_key.encode("utf-8")).hexdigest()[:12]
    return f"{ascii_key}-{digest}"


class VectorStoreGateway:
    """
    Store and query chunk vectors in Qdrant.

    Strategy:
    - One collection holds every document; each point carries a ``namespace``
      payload field (keyword-indexed) and every operation filters on it
    - Point ids are derived from (namespace, fingerprint), so re-upserting the
      same chunk into the same namespace overwrites it
    - The collection is created on first upsert with the vector size of the
      records being written
    - The sync client runs in worker threads; it is created once per gateway,
      guarded so concurrent first callers share one instance
    """

    def __init__(self, settings: Optional[QdrantSettings] = None, client: Optional[QdrantClient] = None):
        self._settings = settings or get_settings().qdrant
        self._client = client
        self._client_lock = asyncio.Lock()
        self._ensured: Set[str] = set()

    @property
    def collection_name(self) -> str:
        return self._settings.collection_name

    async def _get_client(self) -> QdrantClient:
        if self._client is not None:
            return self._client
        async with self._client_lock:
            if self._client is None:
                self._client = QdrantClient(
                    url=self._settings.url,
                    api_key=self._settings.api_key,
                    timeout=self._settings.timeout,
                )
                logger.info(f"Created Qdrant client: url={self._settings.url}")
        return self._client

    @staticmethod
    def _namespace_filter(namespace: str, extra: Optional[Dict[str, Any]] = None) -> Filter:
        conditions = [FieldCondition(key=NAMESPACE_FIELD, match=MatchValue(value=namespace))]
        for key, value in (extra or {}).items():
            conditions.append(FieldCondition(key=key, match=MatchValue(value=value)))
        return Filter(must=conditions)

    async def ensure_collection(self, vector_size: int) -> None:
        """Ensure the collection exists with the right vector size and payload indexes."""
        collection_name = self.collection_name
        if collection_name in self._ensured:
            return
        client = await self._get_client()

        def _ensure() -> None:
            try:
                info = client.get_collection(collection_name)
                current_size = None
                try:
                    current_size = info.config.params.vectors.size  # type: ignore[attr-defined]
                except AttributeError:
                    current_size = None
                if current_size is not None and int(current_size) != int(vector_size):
                    raise VectorStoreError(
                        "Qdrant collection vector size mismatch",
                        code="DIMENSION_MISMATCH",
                        details={
                            "collection": collection_name,
                            "expected": vector_size,
                            "actual": int(current_size),
                        },
                    )
                return
            except VectorStoreError:
                raise
            except Exception as e:
                if not _is_not_found(e):
                    raise
            client.create_collection(
                collection_name=collection_name,
                vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
            )
            for field in _INDEXED_FIELDS:
                client.create_payload_index(
                    collection_name=collection_name,
                    field_name=field,
                    field_schema=PayloadSchemaType.KEYWORD,
                )

        try:
            await asyncio.to_thread(_ensure)
        except VectorStoreError:
            raise
        except Exception as e:
            raise VectorStoreError(
                "Failed to ensure Qdrant collection",
                details={"collection": collection_name, "error": str(e)},
            ) from e
        self._ensured.add(collection_name)
        logger.info(f"Qdrant collection ensured: {collection_name} (vector_size={vector_size})")

    async def reset_namespace(self, namespace: str) -> None:
        """
        Delete every point of a namespace.

        A missing collection means the namespace holds nothing and counts as
        success. Other failures raise ``VectorStoreError``.
        """
        client = await self._get_client()
        selector = FilterSelector(filter=self._namespace_filter(namespace))
        try:
            await asyncio.to_thread(
                client.delete,
                collection_name=self.collection_name,
                points_selector=selector,
                wait=True,
            )
        except Exception as e:
            if _is_not_found(e):
                logger.info(f"Namespace reset skipped, collection does not exist yet: {namespace}")
                return
            raise VectorStoreError(
                f"Failed to reset namespace: {namespace}",
                code="RESET_ERROR",
                details={"namespace": namespace, "error": str(e)},
            ) from e
        logger.info(f"Namespace reset: {namespace}")

    def _to_point(self, namespace: str, record: VectorRecord) -> PointStruct:
        payload: Dict[str, Any] = {
            NAMESPACE_FIELD: namespace,
            "fingerprint": record.id,
            "text": record.metadata.text,
            "page_number": record.metadata.page_number,
            "source_key": record.metadata.source_key,
        }
        return PointStruct(id=point_id(namespace, record.id), vector=record.values, payload=payload)

    async def upsert_batch(self, namespace: str, records: List[VectorRecord]) -> int:
        """
        Upsert records in order, in batches of at most ``upsert_batch_size``.

        Batches are sent one after another; a failing batch raises
        ``UpsertError`` and earlier batches are not rolled back.

        Returns:
            Number of records written
        """
        if not records:
            return 0

        await self.ensure_collection(len(records[0].values))
        client = await self._get_client()
        batch_size = self._settings.upsert_batch_size

        written = 0
        for offset in range(0, len(records), batch_size):
            batch = records[offset : offset + batch_size]
            points = [self._to_point(namespace, r) for r in batch]
            try:
                await asyncio.to_thread(
                    client.upsert,
                    collection_name=self.collection_name,
                    points=points,
                    wait=True,
                )
            except Exception as e:
                logger.error(
                    f"Qdrant upsert failed: namespace={namespace}, offset={offset}, "
                    f"size={len(batch)}, written={written}: {e}"
                )
                raise UpsertError(
                    namespace=namespace,
                    batch_offset=offset,
                    batch_size=len(batch),
                    records_written=written,
                    cause=str(e),
                ) from e
            written += len(batch)
            logger.debug(f"Upserted batch: namespace={namespace}, offset={offset}, size={len(batch)}")

        logger.info(f"Qdrant upsert complete: namespace={namespace}, points={written}")
        return written

    async def query(
        self,
        namespace: str,
        vector: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Match]:
        """
        Return up to ``top_k`` matches from a namespace, highest score first.

        An absent collection or an empty namespace gives an empty list.

        Raises:
            QueryError: On upstream failure
        """
        client = await self._get_client()
        query_filter = self._namespace_filter(namespace, filter)
        try:
            response = await asyncio.to_thread(
                client.query_points,
                collection_name=self.collection_name,
                query=vector,
                query_filter=query_filter,
                limit=top_k,
                with_payload=True,
            )
        except Exception as e:
            if _is_not_found(e):
                return []
            raise QueryError(namespace, cause=str(e)) from e

        matches = []
        for point in response.points:
            payload = point.payload or {}
            matches.append(
                Match(
                    score=float(point.score),
                    metadata=VectorMetadata(
                        text=payload.get("text", ""),
                        page_number=payload.get("page_number", 1),
                        source_key=payload.get("source_key", ""),
                    ),
                )
            )
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def count(self, namespace: str) -> int:
        """Exact number of points stored in a namespace."""
        client = await self._get_client()
        try:
            result = await asyncio.to_thread(
                client.count,
                collection_name=self.collection_name,
                count_filter=self._namespace_filter(namespace),
                exact=True,
            )
        except Exception as e:
            if _is_not_found(e):
                return 0
            raise VectorStoreError(
                f"Failed to count namespace: {namespace}",
                details={"namespace": namespace, "error": str(e)},
            ) from e
        return int(result.count)

    async def health_check(self) -> bool:
        """Report whether Qdrant answers a collection listing."""
        try:
            client = await self._get_client()
            await asyncio.to_thread(client.get_collections)
            return True
        except Exception as e:
            logger.warning(f"Qdrant health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None
            self._ensured.clear()
