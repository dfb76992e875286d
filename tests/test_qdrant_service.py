import asyncio
from unittest.mock import patch

import pytest

from conftest import FakeQdrantClient, fake_vector
from rag_pipeline.config import QdrantSettings
from rag_pipeline.models.vector import VectorMetadata, VectorRecord
from rag_pipeline.services.fingerprint import fingerprint
from rag_pipeline.services.qdrant_service import VectorStoreGateway, namespace_for
from rag_pipeline.utils.errors import QueryError, UpsertError, VectorStoreError


def make_records(count, source_key="doc.pdf", prefix="chunk"):
    records = []
    for i in range(count):
        text = f"{prefix} {i}"
        records.append(
            VectorRecord(
                id=fingerprint(text),
                values=fake_vector(text),
                metadata=VectorMetadata(text=text, page_number=1, source_key=source_key),
            )
        )
    return records


@pytest.fixture
def gateway(qdrant_client):
    return VectorStoreGateway(QdrantSettings(), client=qdrant_client)


@pytest.mark.asyncio
async def test_upsert_250_records_in_three_ordered_batches(gateway, qdrant_client):
    written = await gateway.upsert_batch("doc.pdf", make_records(250))

    assert written == 250
    assert qdrant_client.upsert_sizes == [100, 100, 50]
    assert await gateway.count("doc.pdf") == 250


@pytest.mark.asyncio
async def test_upsert_creates_collection_with_payload_indexes(gateway, qdrant_client):
    await gateway.upsert_batch("doc.pdf", make_records(3))

    assert qdrant_client.collections["pdf-chunks"]["size"] == 4
    assert set(qdrant_client.payload_indexes) == {"namespace", "source_key"}


@pytest.mark.asyncio
async def test_upsert_nothing_makes_no_calls(gateway, qdrant_client):
    assert await gateway.upsert_batch("doc.pdf", []) == 0
    assert qdrant_client.upsert_sizes == []


@pytest.mark.asyncio
async def test_failed_batch_reports_offset_and_keeps_earlier_batches(gateway, qdrant_client):
    qdrant_client.fail_upsert_call = 2

    with pytest.raises(UpsertError) as exc_info:
        await gateway.upsert_batch("doc.pdf", make_records(250))

    error = exc_info.value
    assert error.batch_offset == 100
    assert error.batch_size == 100
    assert error.records_written == 100
    assert qdrant_client.upsert_sizes == [100, 100]
    assert await gateway.count("doc.pdf") == 100


@pytest.mark.asyncio
async def test_reset_missing_collection_is_success(gateway, qdrant_client):
    await gateway.reset_namespace("never-ingested.pdf")
    assert qdrant_client.delete_calls == 1


@pytest.mark.asyncio
async def test_reset_clears_only_its_namespace(gateway):
    await gateway.upsert_batch("a.pdf", make_records(5, source_key="a.pdf"))
    await gateway.upsert_batch("b.pdf", make_records(7, source_key="b.pdf"))

    await gateway.reset_namespace("a.pdf")

    assert await gateway.count("a.pdf") == 0
    assert await gateway.count("b.pdf") == 7


@pytest.mark.asyncio
async def test_reset_failure_other_than_not_found_raises(gateway, qdrant_client):
    qdrant_client.fail_delete = RuntimeError("connection refused")
    with pytest.raises(VectorStoreError):
        await gateway.reset_namespace("doc.pdf")


@pytest.mark.asyncio
async def test_reset_error_mentioning_not_found_still_raises(gateway, qdrant_client):
    qdrant_client.fail_delete = RuntimeError("proxy: upstream route not found (404)")
    with pytest.raises(VectorStoreError):
        await gateway.reset_namespace("doc.pdf")


@pytest.mark.asyncio
async def test_same_chunk_twice_keeps_one_point(gateway):
    records = make_records(10)
    await gateway.upsert_batch("doc.pdf", records)
    await gateway.upsert_batch("doc.pdf", records)
    assert await gateway.count("doc.pdf") == 10


@pytest.mark.asyncio
async def test_query_returns_top_k_sorted_within_namespace(gateway):
    await gateway.upsert_batch("a.pdf", make_records(20, source_key="a.pdf"))
    await gateway.upsert_batch("b.pdf", make_records(20, source_key="b.pdf", prefix="other"))

    matches = await gateway.query("a.pdf", fake_vector("chunk 3"), top_k=5)

    assert len(matches) == 5
    scores = [m.score for m in matches]
    assert scores == sorted(scores, reverse=True)
    assert matches[0].metadata.text == "chunk 3"
    assert all(m.metadata.source_key == "a.pdf" for m in matches)


@pytest.mark.asyncio
async def test_query_applies_metadata_filter(gateway):
    await gateway.upsert_batch("doc.pdf", make_records(5, source_key="doc.pdf"))
    matches = await gateway.query("doc.pdf", fake_vector("chunk 1"), top_k=5, filter={"source_key": "elsewhere.pdf"})
    assert matches == []


@pytest.mark.asyncio
async def test_query_without_collection_or_vectors_is_empty(gateway):
    assert await gateway.query("doc.pdf", fake_vector("q"), top_k=5) == []
    await gateway.upsert_batch("other.pdf", make_records(2, source_key="other.pdf"))
    assert await gateway.query("doc.pdf", fake_vector("q"), top_k=5) == []


@pytest.mark.asyncio
async def test_query_failure_raises_query_error(gateway, qdrant_client):
    qdrant_client.fail_query = RuntimeError("timeout")
    with pytest.raises(QueryError):
        await gateway.query("doc.pdf", fake_vector("q"), top_k=5)


@pytest.mark.asyncio
async def test_query_error_mentioning_404_is_not_an_empty_result(gateway, qdrant_client):
    qdrant_client.fail_query = RuntimeError("gateway returned 404 for /collections")
    with pytest.raises(QueryError):
        await gateway.query("doc.pdf", fake_vector("q"), top_k=5)


@pytest.mark.asyncio
async def test_health_check(gateway, qdrant_client):
    assert await gateway.health_check() is True
    with patch.object(qdrant_client, "get_collections", side_effect=RuntimeError("down")):
        assert await gateway.health_check() is False


@pytest.mark.asyncio
async def test_client_is_created_once_for_concurrent_callers():
    created = []

    def factory(**kwargs):
        created.append(kwargs)
        return FakeQdrantClient()

    gateway = VectorStoreGateway(QdrantSettings(url="http://qdrant.test:6333"))
    with patch("rag_pipeline.services.qdrant_service.QdrantClient", side_effect=factory):
        clients = await asyncio.gather(*(gateway._get_client() for _ in range(10)))

    assert len(created) == 1
    assert all(c is clients[0] for c in clients)
    assert created[0]["url"] == "http://qdrant.test:6333"


def test_ascii_key_is_its_own_namespace():
    assert namespace_for("uploads/report.pdf") == "uploads/report.pdf"


def test_non_ascii_key_gets_ascii_namespace_with_digest():
    namespace = namespace_for("uploads/naïve café.pdf")

    assert namespace.isascii()
    assert namespace.startswith("uploads/na_ve caf_.pdf-")
    assert len(namespace) == len("uploads/na_ve caf_.pdf-") + 12
    assert namespace_for("uploads/naïve café.pdf") == namespace


def test_keys_that_sanitise_alike_get_separate_namespaces():
    assert namespace_for("docs/résumé.pdf") != namespace_for("docs/rèsumè.pdf")
    assert namespace_for("docs/résumé.pdf") != namespace_for("docs/r_sum_.pdf")


@pytest.mark.asyncio
async def test_reset_of_one_document_keeps_lookalike_document(gateway):
    first, second = namespace_for("docs/résumé.pdf"), namespace_for("docs/rèsumè.pdf")
    await gateway.upsert_batch(first, make_records(3, source_key="docs/résumé.pdf"))
    await gateway.upsert_batch(second, make_records(3, source_key="docs/rèsumè.pdf"))

    await gateway.reset_namespace(second)

    assert await gateway.count(first) == 3
    assert await gateway.count(second) == 0
