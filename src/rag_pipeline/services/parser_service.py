"""Text extraction: runs the strategy chain over a local document file."""

import asyncio
from pathlib import Path
from typing import List, Optional, Sequence

from rag_pipeline.config import ExtractionSettings, get_settings
from rag_pipeline.models.document import ExtractedDocument
from rag_pipeline.services.extraction_strategies import (
    ExtractionStrategy,
    PdfPlumberStrategy,
    PlaceholderStrategy,
    PlainTextStrategy,
    PyPDF2Strategy,
)
from rag_pipeline.utils.errors import DocumentTooLargeError, ExtractionError
from rag_pipeline.utils.logging import get_logger

logger = get_logger("parser_service")

# Failure reasons in order of how much they tell the caller
_REASON_PRIORITY = ("encrypted", "corrupted", "timeout", "empty", "unreadable")


def default_strategies(settings: ExtractionSettings) -> List[ExtractionStrategy]:
    """Strategy chain: structured parsers, then plain text, then (optionally) a placeholder."""
    strategies: List[ExtractionStrategy] = [
        PyPDF2Strategy(),
        PdfPlumberStrategy(),
        PlainTextStrategy(chars_per_page=settings.chars_per_page),
    ]
    if settings.placeholder_enabled:
        strategies.append(PlaceholderStrategy())
    return strategies


class TextExtractor:
    """
    Extract ordered page text from a downloaded document.

    Strategies are tried in priority order; the first one that returns pages
    wins. Each attempt runs in a worker thread. ``timeout_seconds`` bounds
    the whole chain: every attempt gets what is left of it, and strategies
    not yet tried once it is spent are skipped. ``ExtractionError`` is raised only once every
    strategy has failed, carrying the most specific failure reason seen.
    """

    def __init__(
        self,
        strategies: Optional[Sequence[ExtractionStrategy]] = None,
        settings: Optional[ExtractionSettings] = None,
    ):
        self._settings = settings or get_settings().extraction
        self.strategies = list(strategies) if strategies is not None else default_strategies(self._settings)
        if not self.strategies:
            raise ValueError("At least one extraction strategy is required")

    def check_size(self, size_bytes: int) -> None:
        """Reject empty and oversized documents before parsing."""
        if size_bytes == 0:
            raise ExtractionError("Document is empty (0 bytes)", reason="empty")
        if size_bytes > self._settings.max_file_size_bytes:
            raise DocumentTooLargeError(size_bytes, self._settings.max_file_size_bytes)

    async def extract(self, path: Path, source_key: str) -> ExtractedDocument:
        """
        Extract pages from a local file.

        Args:
            path: Local copy of the document
            source_key: Storage key recorded on every page

        Returns:
            ExtractedDocument with at least one page

        Raises:
            ExtractionError: If the file is empty or every strategy failed
            DocumentTooLargeError: If the file exceeds the configured size
        """
        self.check_size(path.stat().st_size)

        # One time budget covers the whole chain
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.timeout_seconds
        attempted: List[ExtractionStrategy] = []
        failures: List[ExtractionError] = []
        for strategy in self.strategies:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(
                    f"Extraction time budget of {self._settings.timeout_seconds}s spent, "
                    f"skipping remaining strategies: {source_key}"
                )
                break
            attempted.append(strategy)
            try:
                document = await asyncio.wait_for(
                    asyncio.to_thread(strategy.extract, path, source_key),
                    timeout=remaining,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Extraction strategy '{strategy.name}' timed out after "
                    f"{remaining:.1f}s: {source_key}"
                )
                failures.append(
                    ExtractionError(f"{strategy.name} timed out", reason="timeout")
                )
                # the attempt was given all remaining time
                break
            except ExtractionError as e:
                logger.warning(f"Extraction strategy '{strategy.name}' failed: {e.message}")
                failures.append(e)
                continue
            except Exception as e:
                logger.warning(
                    f"Extraction strategy '{strategy.name}' raised {type(e).__name__}: {e}"
                )
                failures.append(ExtractionError(str(e), reason="corrupted"))
                continue

            if not document.pages:
                failures.append(ExtractionError(f"{strategy.name} produced no pages"))
                continue

            log = logger.warning if document.is_placeholder else logger.info
            log(
                f"Extracted document with '{strategy.name}': {source_key}, "
                f"pages={len(document.pages)}, chars={document.text_length}"
            )
            return document

        reason = _pick_reason(failures)
        raise ExtractionError(
            f"PDF processing failed: no extraction strategy succeeded "
            f"({len(attempted)} of {len(self.strategies)} tried)",
            reason=reason,
            details={
                "attempts": [
                    {"strategy": s.name, "reason": f.reason, "message": f.message}
                    for s, f in zip(attempted, failures)
                ]
            },
        )


def _pick_reason(failures: List[ExtractionError]) -> str:
    reasons = {f.reason for f in failures}
    for reason in _REASON_PRIORITY:
        if reason in reasons:
            return reason
    return "unreadable"
