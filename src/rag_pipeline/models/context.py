"""Retrieval result model."""

from typing import List

from pydantic import BaseModel, Field

from rag_pipeline.models.vector import Match

NO_RELEVANT_CONTEXT = ""


class RetrievedContext(BaseModel):
    """Context assembled for one question."""

    text: str = Field(NO_RELEVANT_CONTEXT, description="Joined passages, capped in length")
    matches: List[Match] = Field(default_factory=list, description="Matches that made it into the text")
    candidates: int = Field(0, ge=0, description="Matches returned by the index before filtering")
    truncated: bool = Field(False, description="True when the joined text hit the length cap")

    @property
    def has_context(self) -> bool:
        return bool(self.matches)
