"""Document models for extracted content."""

from typing import List, Optional

from pydantic import BaseModel, Field


class DocumentMetadata(BaseModel):
    """Best-effort metadata extracted from a document."""

    page_count: Optional[int] = Field(None, description="Number of pages reported by the source")
    word_count: Optional[int] = Field(None, description="Approximate word count")
    character_count: Optional[int] = Field(None, description="Character count of extracted text")
    title: Optional[str] = Field(None, description="Document title")
    author: Optional[str] = Field(None, description="Document author")
    created_at: Optional[str] = Field(None, description="Document creation date")
    modified_at: Optional[str] = Field(None, description="Document modification date")
    encoding: Optional[str] = Field(None, description="Text encoding (plain-text sources)")
    encrypted: bool = Field(False, description="Source was encrypted and opened with an empty password")


class Page(BaseModel):
    """One page worth of extracted text."""

    page_number: int = Field(..., ge=1, description="1-based page number")
    text: str = Field(..., description="Extracted page text")
    source_key: str = Field(..., description="Storage key of the source document")
    page_count: int = Field(..., ge=0, description="Total pages in the source document")


class ExtractedDocument(BaseModel):
    """Output of the text extractor: ordered pages plus metadata."""

    pages: List[Page] = Field(..., description="Pages in document order")
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    strategy: str = Field(..., description="Name of the extraction strategy that succeeded")
    is_placeholder: bool = Field(
        False, description="True when no strategy could read the document and a placeholder was emitted"
    )

    @property
    def text_length(self) -> int:
        return sum(len(p.text) for p in self.pages)
