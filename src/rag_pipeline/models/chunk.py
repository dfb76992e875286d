"""Chunk models for document ingestion."""

from typing import Optional

from pydantic import BaseModel, Field


class TextChunk(BaseModel):
    """A bounded slice of one page's text."""

    text: str = Field(..., description="Chunk text content (untruncated)")
    page_number: int = Field(..., ge=1, description="Page the chunk was cut from")
    chunk_index: int = Field(..., ge=0, description="0-based index of this chunk within its page")
    total_chunks: int = Field(..., ge=1, description="Number of chunks produced for the page")
    truncated_text: str = Field(..., description="Byte-capped copy of the text used for storage")
    start_offset: int = Field(..., ge=0, description="Offset of the chunk in the normalised page text")
    token_count: int = Field(0, ge=0, description="Token count of the chunk text")
    source_key: Optional[str] = Field(None, description="Storage key of the source document")
