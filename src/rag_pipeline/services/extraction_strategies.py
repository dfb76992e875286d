"""Extraction strategies tried in order by the text extractor.

Each strategy either returns an ``ExtractedDocument`` with at least one page
or raises ``ExtractionError``; any other exception is treated as a corrupted
document by the extractor. Strategies are synchronous and run in a worker
thread.
"""

import math
import re
from pathlib import Path
from typing import List, Optional, Protocol

from rag_pipeline.models.document import DocumentMetadata, ExtractedDocument, Page
from rag_pipeline.utils.errors import ExtractionError
from rag_pipeline.utils.logging import get_logger

logger = get_logger("extraction")

_WORD = re.compile(r"\b\w+\b")

PLACEHOLDER_TEXT = (
    "This document could not be processed. It may be scanned, encrypted or corrupted, "
    "so no text is available for it."
)


class ExtractionStrategy(Protocol):
    """A way of turning a local document file into pages."""

    name: str

    def extract(self, path: Path, source_key: str) -> ExtractedDocument: ...


def _word_count(text: str) -> int:
    return len(_WORD.findall(text))


def _build_document(
    texts: List[str],
    source_key: str,
    strategy: str,
    metadata: Optional[DocumentMetadata] = None,
) -> ExtractedDocument:
    """Wrap per-page texts, failing when none of them has content."""
    if not any(t.strip() for t in texts):
        raise ExtractionError(
            "No text could be extracted. The file may be image-based or empty.",
            reason="unreadable",
            details={"strategy": strategy, "page_count": len(texts)},
        )

    page_count = len(texts)
    pages = [
        Page(page_number=i, text=t, source_key=source_key, page_count=page_count)
        for i, t in enumerate(texts, start=1)
    ]
    full_text = " ".join(texts)
    meta = metadata or DocumentMetadata()
    meta.page_count = meta.page_count or page_count
    meta.word_count = _word_count(full_text)
    meta.character_count = len(full_text)
    return ExtractedDocument(pages=pages, metadata=meta, strategy=strategy)


class PyPDF2Strategy:
    """Structured per-page extraction with PyPDF2."""

    name = "pypdf2"

    def extract(self, path: Path, source_key: str) -> ExtractedDocument:
        import PyPDF2

        try:
            reader = PyPDF2.PdfReader(str(path))
        except PyPDF2.errors.PdfReadError as e:
            raise ExtractionError(
                f"PDF file is corrupted or invalid: {e}", reason="corrupted"
            ) from e

        encrypted = bool(reader.is_encrypted)
        if encrypted:
            try:
                decrypted = reader.decrypt("")
            except Exception as e:
                raise ExtractionError(f"PDF is encrypted: {e}", reason="encrypted") from e
            if decrypted == PyPDF2.PasswordType.NOT_DECRYPTED:
                raise ExtractionError("PDF is encrypted with a password", reason="encrypted")

        texts: List[str] = []
        for page_num, page in enumerate(reader.pages, start=1):
            try:
                texts.append(page.extract_text() or "")
            except Exception as page_error:
                logger.warning(f"Failed to extract text from page {page_num} of {source_key}: {page_error}")
                texts.append("")

        info = reader.metadata or {}
        metadata = DocumentMetadata(
            page_count=len(reader.pages),
            title=_as_str(info.get("/Title")),
            author=_as_str(info.get("/Author")),
            created_at=_as_str(info.get("/CreationDate")),
            modified_at=_as_str(info.get("/ModDate")),
            encrypted=encrypted,
        )
        return _build_document(texts, source_key, self.name, metadata)


class PdfPlumberStrategy:
    """Layout-aware per-page extraction with pdfplumber (pdfminer engine)."""

    name = "pdfplumber"

    def extract(self, path: Path, source_key: str) -> ExtractedDocument:
        import pdfplumber

        try:
            with pdfplumber.open(str(path)) as pdf:
                texts = []
                for page_num, page in enumerate(pdf.pages, start=1):
                    try:
                        texts.append(page.extract_text() or "")
                    except Exception as page_error:
                        logger.warning(
                            f"pdfplumber failed on page {page_num} of {source_key}: {page_error}"
                        )
                        texts.append("")
                info = pdf.metadata or {}
        except ExtractionError:
            raise
        except Exception as e:
            message = str(e).lower()
            reason = "encrypted" if ("password" in message or "encrypt" in message) else "corrupted"
            raise ExtractionError(f"pdfplumber could not open document: {e}", reason=reason) from e

        metadata = DocumentMetadata(
            page_count=len(texts),
            title=_as_str(info.get("Title")),
            author=_as_str(info.get("Author")),
            created_at=_as_str(info.get("CreationDate")),
            modified_at=_as_str(info.get("ModDate")),
        )
        return _build_document(texts, source_key, self.name, metadata)


class PlainTextStrategy:
    """
    Heuristic extraction for sources that are really plain text.

    Plain text has no page boundaries (unless it carries form feeds), so
    pages are approximated by splitting the text into ``chars_per_page``
    sized parts, each cut moved forward to the next space.
    """

    name = "plain_text"

    # utf-8 first, latin-1 last since it accepts any byte sequence
    encodings = ("utf-8", "cp1252", "latin-1")

    def __init__(self, chars_per_page: int = 3000, min_printable_ratio: float = 0.95):
        self.chars_per_page = chars_per_page
        self.min_printable_ratio = min_printable_ratio

    def extract(self, path: Path, source_key: str) -> ExtractedDocument:
        data = path.read_bytes()
        if data.lstrip().startswith(b"%PDF"):
            raise ExtractionError("Binary PDF content is not plain text", reason="unreadable")

        text = None
        used_encoding = None
        for encoding in self.encodings:
            try:
                text = data.decode(encoding)
                used_encoding = encoding
                break
            except UnicodeDecodeError:
                continue
        if text is None:
            raise ExtractionError("Failed to decode text. Unsupported encoding.", reason="unreadable")

        if text.startswith("\ufeff"):
            text = text[1:]
        if not text.strip():
            raise ExtractionError("Document contains no text", reason="empty")

        printable = sum(1 for ch in text if ch.isprintable() or ch.isspace())
        if printable / len(text) < self.min_printable_ratio:
            raise ExtractionError("Content does not look like text", reason="unreadable")

        if "\f" in text:
            texts = text.split("\f")
        else:
            texts = self.paginate(text)

        metadata = DocumentMetadata(encoding=used_encoding)
        return _build_document(texts, source_key, self.name, metadata)

    def paginate(self, text: str) -> List[str]:
        """Split ``text`` proportionally over an estimated page count (at least one page)."""
        page_count = max(1, math.ceil(len(text) / self.chars_per_page))
        if page_count == 1:
            return [text]

        target = len(text) / page_count
        pages: List[str] = []
        start = 0
        for i in range(1, page_count):
            cut = max(int(round(i * target)), start)
            space = text.find(" ", cut)
            if space != -1 and space - cut < self.chars_per_page // 10:
                cut = space
            pages.append(text[start:cut])
            start = cut
        pages.append(text[start:])
        return [p for p in pages if p] or [text]


class PlaceholderStrategy:
    """Last resort: report the document as unprocessable instead of failing."""

    name = "placeholder"

    def extract(self, path: Path, source_key: str) -> ExtractedDocument:
        page = Page(page_number=1, text=PLACEHOLDER_TEXT, source_key=source_key, page_count=1)
        return ExtractedDocument(
            pages=[page],
            metadata=DocumentMetadata(page_count=1, character_count=len(PLACEHOLDER_TEXT)),
            strategy=self.name,
            is_placeholder=True,
        )


def _as_str(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
