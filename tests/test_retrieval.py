"""Similarity search: thresholds, scoping and hybrid (BM25) fusion"""

import pytest

from core.domain import DocumentChunk
from services.retrieval import SimilaritySearch

DOCS = {
    "doc-a": "running ai on premise keeps sensitive data inside your own network",
    "doc-b": "cloud billing dashboards show monthly invoices and usage",
    "doc-c": "quarterly invoices are exported as csv for the finance team",
}


@pytest.fixture
async def search(vector_store, embedder):
    for doc_id, text in DOCS.items():
        chunk = DocumentChunk(
            id=f"{doc_id}_0", content=text, document_id=doc_id,
            metadata={"knowledge_base_id": "kb", "document_id": doc_id, "chunk_index": 0},
        )
        chunk.embedding = (await embedder.generate_embeddings([text]))[0]
        await vector_store.add_chunks("kb", [chunk])
    return SimilaritySearch(vector_store, embedder)


async def test_identical_text_scores_one(search):
    results = await search.search(["kb"], DOCS["doc-b"], threshold=0.99)
    assert [r.chunk.document_id for r in results] == ["doc-b"]
    assert results[0].score == pytest.approx(1.0, abs=1e-4)


async def test_threshold_filters_weak_matches(search):
    assert await search.search(["kb"], "completely unrelated words here", threshold=0.8) == []


async def test_results_are_ordered_and_limited(search):
    results = await search.search(["kb"], "invoices", threshold=0.0, top_k=2)
    assert len(results) == 2
    assert results[0].score >= results[1].score
    assert {r.chunk.document_id for r in results} == {"doc-b", "doc-c"}


async def test_document_filter_restricts_results(search):
    results = await search.search(["kb"], "invoices", threshold=0.0, document_ids=["doc-c"])
    assert {r.chunk.document_id for r in results} == {"doc-c"}


async def test_unknown_collection_returns_nothing(search):
    assert await search.search(["other-kb"], "invoices", threshold=0.0) == []
    assert await search.search([], "invoices", threshold=0.0) == []


async def test_hybrid_adds_keyword_hits_below_dense_threshold(search):
    query = "invoices"

    dense_only = await search.search(["kb"], query, threshold=0.9)
    hybrid = await search.search(["kb"], query, threshold=0.9, hybrid=True)

    assert dense_only == []
    assert {r.chunk.document_id for r in hybrid} == {"doc-b", "doc-c"}
    for result in hybrid:
        assert 0.0 < result.keyword_score <= 1.0
        assert result.score >= (1 - search.beta) * result.keyword_score


async def test_hybrid_fused_score_orders_results(search):
    results = await search.search(["kb"], "running ai on premise", threshold=0.0, hybrid=True)
    assert results[0].chunk.document_id == "doc-a"
    assert results == sorted(results, key=lambda r: r.score, reverse=True)
