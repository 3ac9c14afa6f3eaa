"""Vector store implementations (FAISS default, ChromaDB alternative)"""

import uuid

import chromadb
import pytest

from core.domain import DocumentChunk
from infrastructure.faiss_store import FAISSVectorStore
from infrastructure.vector_stores import ChromaDBVectorStore


def _chunk(doc_id: str, i: int, text: str, embedding) -> DocumentChunk:
    return DocumentChunk(
        id=f"{doc_id}_{i}",
        content=text,
        document_id=doc_id,
        metadata={"knowledge_base_id": "kb", "document_id": doc_id, "file_name": f"{doc_id}.txt",
                  "chunk_index": i},
        embedding=embedding,
    )


@pytest.fixture(params=["faiss", "chromadb"])
def store(request, tmp_path):
    if request.param == "faiss":
        return FAISSVectorStore(str(tmp_path))
    return ChromaDBVectorStore(chromadb.EphemeralClient(), prefix=f"t{uuid.uuid4().hex[:8]}_")


async def test_search_scores_are_cosine_similarities(store):
    await store.add_chunks("kb", [
        _chunk("doc-a", 0, "x axis", [1.0, 0.0, 0.0]),
        _chunk("doc-a", 1, "diagonal", [0.6, 0.8, 0.0]),
        _chunk("doc-b", 0, "z axis", [0.0, 0.0, 1.0]),
    ])

    results = await store.search("kb", [1.0, 0.0, 0.0], top_k=3)

    assert [r.chunk.id for r in results] == ["doc-a_0", "doc-a_1", "doc-b_0"]
    assert results[0].score == pytest.approx(1.0, abs=1e-4)
    assert results[1].score == pytest.approx(0.6, abs=1e-4)
    assert results[2].score == pytest.approx(0.0, abs=1e-4)


async def test_collections_are_isolated(store):
    await store.add_chunks("kb-one", [_chunk("doc-a", 0, "one", [1.0, 0.0])])
    await store.add_chunks("kb-two", [_chunk("doc-b", 0, "two", [1.0, 0.0])])

    results = await store.search("kb-one", [1.0, 0.0], top_k=5)

    assert [r.chunk.document_id for r in results] == ["doc-a"]
    assert await store.search("kb-missing", [1.0, 0.0]) == []


async def test_document_filter(store):
    await store.add_chunks("kb", [
        _chunk("doc-a", 0, "a", [1.0, 0.0]),
        _chunk("doc-b", 0, "b", [0.9, 0.1]),
    ])

    results = await store.search("kb", [1.0, 0.0], top_k=5, document_ids=["doc-b"])

    assert [r.chunk.id for r in results] == ["doc-b_0"]
    assert [c.id for c in await store.list_chunks("kb", ["doc-a"])] == ["doc-a_0"]


async def test_delete_by_document_keeps_other_documents(store):
    await store.add_chunks("kb", [
        _chunk("doc-a", 0, "a0", [1.0, 0.0]),
        _chunk("doc-a", 1, "a1", [0.8, 0.6]),
        _chunk("doc-b", 0, "b0", [0.0, 1.0]),
    ])

    assert await store.delete_by_document("kb", "doc-a")

    assert await store.count("kb") == 1
    results = await store.search("kb", [0.0, 1.0], top_k=5)
    assert [r.chunk.id for r in results] == ["doc-b_0"]
    assert results[0].score == pytest.approx(1.0, abs=1e-4)


async def test_delete_collection(store):
    await store.add_chunks("kb", [_chunk("doc-a", 0, "a", [1.0, 0.0])])

    assert await store.delete_collection("kb")

    assert await store.count("kb") == 0
    assert await store.search("kb", [1.0, 0.0]) == []


async def test_faiss_store_persists_between_instances(tmp_path):
    first = FAISSVectorStore(str(tmp_path))
    await first.add_chunks("kb", [_chunk("doc-a", 0, "persisted", [0.0, 1.0])])

    second = FAISSVectorStore(str(tmp_path))
    results = await second.search("kb", [0.0, 1.0], top_k=1)

    assert results[0].chunk.content == "persisted"
    assert results[0].chunk.metadata["file_name"] == "doc-a.txt"
