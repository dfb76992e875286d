"""Vector index record and match models."""

from typing import List

from pydantic import BaseModel, Field


class VectorMetadata(BaseModel):
    """Payload stored alongside every vector."""

    text: str = Field(..., description="Stored (byte-capped) chunk text")
    page_number: int = Field(..., ge=1, description="Page the chunk came from")
    source_key: str = Field(..., description="Storage key of the source document")


class VectorRecord(BaseModel):
    """One embedded chunk ready for upsert."""

    id: str = Field(..., description="Chunk fingerprint")
    values: List[float] = Field(..., description="Embedding vector")
    metadata: VectorMetadata


class Match(BaseModel):
    """A similarity query hit."""

    score: float = Field(..., description="Similarity score (cosine, higher is closer)")
    metadata: VectorMetadata
