"""Custom exception classes for the ingestion and retrieval pipeline."""

from typing import Any, Dict, Optional

UNREADABLE = "unreadable"
TOO_LARGE = "too_large"
SERVICE_UNAVAILABLE = "service_unavailable"
INVALID_REQUEST = "invalid_request"


class PipelineException(Exception):
    """Base exception for all pipeline errors."""

    reason_category: str = SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON reporting."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "reason": self.reason_category,
                "details": self.details,
            }
        }


class DownloadError(PipelineException):
    """Source document could not be fetched from object storage."""

    def __init__(
        self,
        message: str = "Document download failed",
        document_key: Optional[str] = None,
        not_found: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if document_key:
            error_details["document_key"] = document_key
        error_details["not_found"] = not_found
        self.not_found = not_found
        super().__init__(
            message=message,
            status_code=404 if not_found else 502,
            code="DOCUMENT_NOT_FOUND" if not_found else "DOWNLOAD_ERROR",
            details=error_details,
        )


class ExtractionError(PipelineException):
    """Every extraction strategy failed for a document.

    ``reason`` tells apart an empty/unreadable file from a corrupted or
    encrypted one: ``empty``, ``unreadable``, ``corrupted``, ``encrypted``
    or ``timeout``.
    """

    reason_category = UNREADABLE

    def __init__(
        self,
        message: str = "Text extraction failed",
        reason: str = "unreadable",
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        error_details["reason"] = reason
        self.reason = reason
        super().__init__(
            message=message,
            status_code=422,
            code="EXTRACTION_ERROR",
            details=error_details,
        )


class DocumentTooLargeError(PipelineException):
    """Document exceeds the accepted size."""

    reason_category = TOO_LARGE

    def __init__(self, size_bytes: int, limit_bytes: int):
        super().__init__(
            message=f"Document is {size_bytes} bytes, limit is {limit_bytes} bytes",
            status_code=413,
            code="DOCUMENT_TOO_LARGE",
            details={"size_bytes": size_bytes, "limit_bytes": limit_bytes},
        )


class ChunkingError(PipelineException):
    """Exception raised for text chunking errors."""

    reason_category = UNREADABLE

    def __init__(
        self,
        message: str = "Text chunking failed",
        code: str = "CHUNKING_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=422,
            code=code,
            details=details,
        )


class EmptyInputError(PipelineException):
    """Text to embed is empty after trimming."""

    reason_category = INVALID_REQUEST

    def __init__(self, message: str = "Cannot create embeddings for empty text"):
        super().__init__(message=message, status_code=400, code="EMPTY_INPUT")


class EmbeddingError(PipelineException):
    """Exception raised for embedding generation errors."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        model: Optional[str] = None,
        code: str = "EMBEDDING_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if model:
            error_details["model"] = model
        super().__init__(
            message=message,
            status_code=502,
            code=code,
            details=error_details,
        )


class EmbeddingServiceError(EmbeddingError):
    """Embedding service answered with a non-2xx status or was unreachable."""

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        upstream_message: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.upstream_status = upstream_status
        self.upstream_message = upstream_message
        super().__init__(
            message=message,
            model=model,
            code="EMBEDDING_SERVICE_ERROR",
            details={"upstream_status": upstream_status, "upstream_message": upstream_message},
        )

    @property
    def is_transient(self) -> bool:
        """Rate limits, server errors and connection failures are worth retrying."""
        return self.upstream_status is None or self.upstream_status == 429 or self.upstream_status >= 500


class MalformedResponseError(EmbeddingError):
    """Embedding response lacks the expected vector."""

    def __init__(
        self,
        message: str = "Invalid response format from embeddings API",
        model: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, model=model, code="MALFORMED_RESPONSE", details=details)


class NoVectorsProducedError(PipelineException):
    """No chunk of a document could be embedded."""

    reason_category = UNREADABLE

    def __init__(self, document_key: str, chunks_created: int):
        super().__init__(
            message=f"No vectors could be created from document: {document_key}",
            status_code=422,
            code="NO_VECTORS_PRODUCED",
            details={"document_key": document_key, "chunks_created": chunks_created},
        )


class VectorStoreError(PipelineException):
    """Exception raised for vector index operation errors."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        code: str = "VECTOR_STORE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=502,
            code=code,
            details=details,
        )


class UpsertError(VectorStoreError):
    """A batch upsert failed; earlier batches stay written."""

    def __init__(
        self,
        namespace: str,
        batch_offset: int,
        batch_size: int,
        records_written: int,
        cause: Optional[str] = None,
    ):
        self.namespace = namespace
        self.batch_offset = batch_offset
        self.batch_size = batch_size
        self.records_written = records_written
        super().__init__(
            message=(
                f"Upsert failed for batch at offset {batch_offset} "
                f"({batch_size} records); {records_written} records already written"
            ),
            code="UPSERT_ERROR",
            details={
                "namespace": namespace,
                "batch_offset": batch_offset,
                "batch_size": batch_size,
                "records_written": records_written,
                "error": cause,
            },
        )


class QueryError(VectorStoreError):
    """Similarity query failed upstream."""

    def __init__(self, namespace: str, cause: Optional[str] = None):
        super().__init__(
            message=f"Vector query failed for namespace: {namespace}",
            code="QUERY_ERROR",
            details={"namespace": namespace, "error": cause},
        )


class UpstreamError(PipelineException):
    """Context retrieval could not reach the embedding service or vector index."""

    def __init__(self, message: str, stage: str, details: Optional[Dict[str, Any]] = None):
        error_details = details or {}
        error_details["stage"] = stage
        self.stage = stage
        super().__init__(
            message=message,
            status_code=502,
            code="UPSTREAM_ERROR",
            details=error_details,
        )
