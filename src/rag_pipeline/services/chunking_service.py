"""Text chunking service for RAG ingestion."""

import re
from typing import List, Optional, Tuple

from rag_pipeline.config import ChunkingSettings, get_settings
from rag_pipeline.models.chunk import TextChunk
from rag_pipeline.models.document import Page
from rag_pipeline.utils.errors import ChunkingError
from rag_pipeline.utils.logging import get_logger
from rag_pipeline.utils.text import normalize_whitespace, truncate_utf8

logger = get_logger("chunking_service")

# Sentence terminator followed by whitespace; the cut goes after the punctuation
_SENTENCE_END = re.compile(r"[.!?](?=\s)")


class ChunkingService:
    """
    Split page text into overlapping, bounded-size character windows.

    The window advances by ``chunk_size - overlap`` characters. When the
    window would end inside a word, the cut is pulled back to the last
    sentence terminator, or failing that the last space, found in the final
    ``1 - boundary_ratio`` of the window. Consecutive chunks share
    ``overlap`` characters, so dropping the first ``overlap``
    characters of every chunk but the first and concatenating gives back the
    normalised page text.
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
        boundary_ratio: Optional[float] = None,
        max_metadata_bytes: Optional[int] = None,
        encoding_name: Optional[str] = "default",
        settings: Optional[ChunkingSettings] = None,
    ):
        """
        Args:
            chunk_size: Window size in characters (defaults to settings)
            overlap: Characters shared by consecutive chunks (defaults to settings)
            boundary_ratio: Earliest fraction of the window where a boundary cut is allowed
            max_metadata_bytes: UTF-8 budget of ``TextChunk.truncated_text``
            encoding_name: tiktoken encoding for token counts; None disables counting
            settings: Chunking settings to read defaults from
        """
        cfg = settings or get_settings().chunking
        self.chunk_size = chunk_size or cfg.chunk_size
        self.overlap = overlap if overlap is not None else cfg.chunk_overlap
        self.boundary_ratio = boundary_ratio or cfg.boundary_ratio
        self.max_metadata_bytes = max_metadata_bytes or cfg.max_metadata_bytes
        self._encoding_name = cfg.tokenizer_encoding if encoding_name == "default" else encoding_name
        self._encoding = None

        if self.chunk_size <= 0:
            raise ChunkingError("chunk_size must be > 0", details={"chunk_size": self.chunk_size})
        if self.overlap < 0:
            raise ChunkingError("overlap must be >= 0", details={"overlap": self.overlap})
        if self.overlap >= self.chunk_size:
            raise ChunkingError(
                "overlap must be less than chunk_size",
                details={"overlap": self.overlap, "chunk_size": self.chunk_size},
            )

    def _count_tokens(self, text: str) -> int:
        if not self._encoding_name:
            return 0
        if self._encoding is None:
            import tiktoken

            self._encoding = tiktoken.get_encoding(self._encoding_name)
        return len(self._encoding.encode(text))

    def _find_cut(self, text: str, start: int, end: int) -> int:
        """Pick where a non-final window ending at ``end`` should stop."""
        if text[end].isspace() or text[end - 1].isspace():
            return end

        earliest = start + max(int(self.chunk_size * self.boundary_ratio), 1)
        if earliest >= end:
            return end
        region = text[earliest:end]

        last_sentence = None
        for match in _SENTENCE_END.finditer(region):
            last_sentence = match
        if last_sentence is not None:
            return earliest + last_sentence.end()

        space = region.rfind(" ")
        if space >= 0:
            return earliest + space
        return end

    def split_text(self, text: str) -> List[Tuple[int, int]]:
        """
        Compute chunk spans over already-normalised ``text``.

        Returns:
            List of ``(start, end)`` offsets, in order
        """
        n = len(text)
        if n == 0:
            return []

        spans: List[Tuple[int, int]] = []
        start = 0
        while start < n:
            end = min(start + self.chunk_size, n)
            if end == n:
                spans.append((start, end))
                break

            cut = self._find_cut(text, start, end)
            spans.append((start, cut))
            # strictly increasing start keeps the loop finite
            start = max(cut - self.overlap, start + 1)

        return spans

    def chunk_page(self, page: Page) -> List[TextChunk]:
        """
        Chunk one page.

        Args:
            page: Extracted page

        Returns:
            Chunks in page order; empty when the page has no text
        """
        normalized = normalize_whitespace(page.text)
        if not normalized:
            return []

        spans = self.split_text(normalized)
        chunks: List[TextChunk] = []
        for index, (start, end) in enumerate(spans):
            chunk_text = normalized[start:end]
            if not chunk_text.strip():
                continue
            chunks.append(
                TextChunk(
                    text=chunk_text,
                    page_number=page.page_number,
                    chunk_index=index,
                    total_chunks=len(spans),
                    truncated_text=truncate_utf8(chunk_text, self.max_metadata_bytes),
                    start_offset=start,
                    token_count=self._count_tokens(chunk_text),
                    source_key=page.source_key,
                )
            )

        # spans made only of whitespace were skipped; renumber
        for index, chunk in enumerate(chunks):
            chunk.chunk_index = index
            chunk.total_chunks = len(chunks)

        logger.debug(
            f"Chunked page {page.page_number}: chars={len(normalized)}, chunks={len(chunks)}, "
            f"chunk_size={self.chunk_size}, overlap={self.overlap}"
        )
        return chunks
