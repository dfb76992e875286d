"""Ingestion run models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class IngestionStage(str, Enum):
    """Stages of one ingestion run, in execution order."""

    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    UPSERTING = "upserting"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


class IngestionSummary(BaseModel):
    """Result of a successful ingestion run."""

    document_key: str = Field(..., description="Storage key of the ingested document")
    pages_processed: int = Field(..., ge=0)
    chunks_created: int = Field(..., ge=0)
    vectors_uploaded: int = Field(..., ge=0)
    chunks_failed: int = Field(0, ge=0, description="Chunks dropped because embedding failed")
    namespace: Optional[str] = Field(None, description="Vector index namespace written to")


class IngestionMessage(BaseModel):
    """Queue message requesting ingestion of one uploaded document."""

    document_key: str = Field(..., min_length=1, description="Object storage key of the uploaded PDF")
    requested_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Message creation timestamp",
    )
