"""Pytest configuration and fixtures for rag-pipeline tests."""

import hashlib
import math
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional

import httpx
import openai
import pytest
from qdrant_client.http.exceptions import UnexpectedResponse

from rag_pipeline.config import (
    ChunkingSettings,
    EmbeddingSettings,
    ExtractionSettings,
    QdrantSettings,
    RetrievalSettings,
    Settings,
    StorageSettings,
    reset_settings,
)
from rag_pipeline.services.storage_service import StorageService
from rag_pipeline.utils.errors import DownloadError

EMBEDDING_DIMENSION = 4


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Drop cached settings and environment overrides between tests."""
    for name in ("ENVIRONMENT", "LOG_LEVEL", "DEBUG", "OPENAI_API_KEY", "EMBEDDING_PROVIDER"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def mock_settings(tmp_path):
    """Settings wired for in-memory fakes (no network, no tokenizer download)."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        storage=StorageSettings(
            connection_string="UseDevelopmentStorage=true",
            download_dir=str(tmp_path / "downloads"),
        ),
        embedding=EmbeddingSettings(
            openai_api_key="test-key",
            embedding_dimension=EMBEDDING_DIMENSION,
            embedding_max_retries=1,
        ),
        qdrant=QdrantSettings(url="http://qdrant.test:6333"),
        chunking=ChunkingSettings(),
        extraction=ExtractionSettings(timeout_seconds=10),
        retrieval=RetrievalSettings(),
    )


def fake_vector(text: str) -> List[float]:
    """Deterministic unit vector derived from the text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    raw = [b / 255 + 0.1 for b in digest[:EMBEDDING_DIMENSION]]
    norm = math.sqrt(sum(v * v for v in raw))
    return [v / norm for v in raw]


def make_status_error(status: int, message: str = "upstream error") -> openai.APIStatusError:
    """Build the openai exception raised for a non-2xx answer."""
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    response = httpx.Response(status, request=request)
    cls = openai.RateLimitError if status == 429 else openai.APIStatusError
    return cls(message, response=response, body=None)


def make_connection_error() -> openai.APIConnectionError:
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    return openai.APIConnectionError(request=request)


def _pdf_string(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    return f"({escaped})"


def _wrap_words(text: str, width: int) -> List[str]:
    lines, current = [], ""
    for word in text.split():
        if current and len(current) + 1 + len(word) > width:
            lines.append(current)
            current = word
        else:
            current = f"{current} {word}" if current else word
    if current:
        lines.append(current)
    return lines


def make_text_pdf(page_texts: List[str], title: str = "", author: str = "", line_width: int = 90) -> bytes:
    """
    Build a small PDF with one Helvetica text content stream per page.

    Page text is wrapped at word boundaries into lines of at most
    ``line_width`` characters. Title and author go into the Info dictionary.
    """
    page_count = len(page_texts)
    kids = " ".join(f"{5 + 2 * i} 0 R" for i in range(page_count))
    objects = [
        "<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>",
        "<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>",
        f"<< /Title {_pdf_string(title)} /Author {_pdf_string(author)} >>",
    ]
    for i, text in enumerate(page_texts):
        shows = " T* ".join(f"{_pdf_string(line)} Tj" for line in _wrap_words(text, line_width))
        stream = f"BT /F1 9 Tf 11 TL 36 756 Td {shows} ET"
        objects.append(
            "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {6 + 2 * i} 0 R >>"
        )
        objects.append(f"<< /Length {len(stream)} >>\nstream\n{stream}\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n{body}\nendobj\n".encode("latin-1")
    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode("latin-1")
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode("latin-1")
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R /Info 4 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode("latin-1")
    return bytes(out)


def not_found(collection_name: str) -> UnexpectedResponse:
    return UnexpectedResponse(
        status_code=404,
        reason_phrase="Not Found",
        content=f'{{"status":{{"error":"Collection `{collection_name}` doesn\'t exist!"}}}}'.encode(),
        headers=httpx.Headers(),
    )


class FakeEmbeddings:
    def __init__(self, owner: "FakeEmbeddingClient"):
        self._owner = owner

    async def create(self, model: str, input: str):
        self._owner.calls.append(input)
        if self._owner.fail_when is not None:
            error = self._owner.fail_when(input)
            if error is not None:
                raise error
        if self._owner.response is not None:
            return self._owner.response
        return SimpleNamespace(data=[SimpleNamespace(embedding=fake_vector(input), index=0)])


class FakeEmbeddingClient:
    """Stand-in for AsyncOpenAI exposing ``embeddings.create``."""

    def __init__(
        self,
        fail_when: Optional[Callable[[str], Optional[Exception]]] = None,
        response=None,
    ):
        self.calls: List[str] = []
        self.fail_when = fail_when
        self.response = response
        self.embeddings = FakeEmbeddings(self)
        self.closed = False

    async def close(self):
        self.closed = True


def _matches(payload: Dict, query_filter) -> bool:
    if query_filter is None:
        return True
    return all(payload.get(c.key) == c.match.value for c in query_filter.must or [])


class FakeQdrantClient:
    """In-memory stand-in for the sync QdrantClient calls the gateway makes."""

    def __init__(self):
        self.collections: Dict[str, Dict] = {}
        self.payload_indexes: List[str] = []
        self.upsert_sizes: List[int] = []
        self.delete_calls = 0
        self.fail_upsert_call: Optional[int] = None
        self.fail_delete: Optional[Exception] = None
        self.fail_query: Optional[Exception] = None

    def _collection(self, name: str) -> Dict:
        if name not in self.collections:
            raise not_found(name)
        return self.collections[name]

    def get_collection(self, collection_name):
        col = self._collection(collection_name)
        return SimpleNamespace(
            config=SimpleNamespace(params=SimpleNamespace(vectors=SimpleNamespace(size=col["size"])))
        )

    def get_collections(self):
        return SimpleNamespace(collections=[SimpleNamespace(name=n) for n in self.collections])

    def create_collection(self, collection_name, vectors_config):
        self.collections[collection_name] = {"size": vectors_config.size, "points": {}}

    def create_payload_index(self, collection_name, field_name, field_schema):
        self.payload_indexes.append(field_name)

    def upsert(self, collection_name, points, wait=True):
        col = self._collection(collection_name)
        self.upsert_sizes.append(len(points))
        if self.fail_upsert_call is not None and len(self.upsert_sizes) == self.fail_upsert_call:
            raise RuntimeError("upsert rejected")
        for point in points:
            col["points"][point.id] = point

    def delete(self, collection_name, points_selector, wait=True):
        self.delete_calls += 1
        if self.fail_delete is not None:
            raise self.fail_delete
        col = self._collection(collection_name)
        flt = points_selector.filter
        for pid in [pid for pid, p in col["points"].items() if _matches(p.payload, flt)]:
            del col["points"][pid]

    def query_points(self, collection_name, query, query_filter=None, limit=10, with_payload=True):
        if self.fail_query is not None:
            raise self.fail_query
        col = self._collection(collection_name)
        hits = []
        for point in col["points"].values():
            if not _matches(point.payload, query_filter):
                continue
            score = sum(a * b for a, b in zip(query, point.vector))
            hits.append(SimpleNamespace(id=point.id, score=score, payload=point.payload))
        hits.sort(key=lambda h: h.score, reverse=True)
        return SimpleNamespace(points=hits[:limit])

    def count(self, collection_name, count_filter=None, exact=True):
        col = self._collection(collection_name)
        return SimpleNamespace(count=sum(1 for p in col["points"].values() if _matches(p.payload, count_filter)))

    def close(self):
        pass


class FakeStorage(StorageService):
    """StorageService reading blobs from a dict."""

    def __init__(self, blobs: Dict[str, bytes], settings: StorageSettings):
        super().__init__(settings)
        self.blobs = blobs

    async def download_bytes(self, document_key: str) -> bytes:
        if document_key not in self.blobs:
            raise DownloadError(
                f"Document not found in storage: {document_key}",
                document_key=document_key,
                not_found=True,
            )
        return self.blobs[document_key]


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def qdrant_client():
    return FakeQdrantClient()
