"""Pytest configuration and shared fixtures"""

import hashlib
import os
import tempfile
import time
from typing import Any, Dict, List

# Point storage at a scratch directory before the app reads its settings
_TMP = tempfile.mkdtemp(prefix="kbase-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/kbase.db"
os.environ["UPLOADS_DIR"] = os.path.join(_TMP, "uploads")
os.environ["VECTOR_DB_PATH"] = os.path.join(_TMP, "vector_db")
os.environ["LOG_FILE_PATH"] = os.path.join(_TMP, "kbase.log")
os.environ["LLM_ENABLED"] = "false"

import numpy as np
import pytest
from fastapi.testclient import TestClient

from core.interfaces import IEmbeddingService
from infrastructure.faiss_store import FAISSVectorStore
from utils.text import tokenize


class HashingEmbedder(IEmbeddingService):
    """Deterministic bag-of-words embedder: shared words → higher cosine."""

    def __init__(self, dim: int = 256):
        self.dim = dim

    def _embed(self, text: str) -> List[float]:
        vec = np.zeros(self.dim, dtype="float32")
        for token in tokenize(text):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dim
            vec[bucket] += 1.0
        norm = np.linalg.norm(vec)
        return (vec / norm if norm else vec).tolist()

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        return [self._embed(t) for t in texts]

    async def generate_query_embedding(self, query: str) -> List[float]:
        return self._embed(query)


class FakeLLM:
    """Returns scripted replies in order and records every call."""

    def __init__(self, replies: List[Dict[str, Any]]):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def chat(self, messages, tools=None):
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        if not self.replies:
            return {"status": "error", "error": "no scripted reply"}
        return {"status": "success", "message": self.replies.pop(0)}


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def vector_store(tmp_path) -> FAISSVectorStore:
    return FAISSVectorStore(str(tmp_path / "vectors"))


@pytest.fixture
def app_client(embedder, vector_store):
    from main import app
    from services.factory import get_embedding_service, get_vector_store

    app.dependency_overrides[get_embedding_service] = lambda: embedder
    app.dependency_overrides[get_vector_store] = lambda: vector_store
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


# ---------- Helpers ----------

def create_kb(client: TestClient, name: str = "docs", kb_type: str = "query",
              chunk_size: int = 400, chunk_overlap: int = 200) -> Dict[str, Any]:
    response = client.post("/knowledge-base/", json={
        "name": name,
        "type": kb_type,
        "paragraphs": {"chunkSize": chunk_size, "chunkOverlap": chunk_overlap},
    })
    assert response.status_code == 201, response.text
    return response.json()


def upload(client: TestClient, kb_id: str, file_name: str, content: bytes,
           content_type: str) -> Dict[str, Any]:
    links = client.get("/connectors/local/s3-upload-links",
                       params={"kb": kb_id, "fileName": file_name})
    assert links.status_code == 200, links.text
    response = client.put(links.json()[file_name], content=content,
                          headers={"Content-Type": content_type})
    assert response.status_code == 200, response.text
    return response.json()


def wait_for_job(client: TestClient, kb_id: str, job_id: str, timeout: float = 20.0) -> Dict[str, Any]:
    deadline = time.time() + timeout
    while time.time() < deadline:
        job = client.get(f"/knowledge-base/{kb_id}/jobs/{job_id}").json()
        if job["status"] in ("completed", "failed", "cancelled"):
            return job
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} did not finish")


def run_job(client: TestClient, kb_id: str, files: List[Dict[str, Any]]) -> Dict[str, Any]:
    job = client.post(f"/knowledge-base/{kb_id}/jobs").json()
    populated = client.put(f"/knowledge-base/{kb_id}/jobs/{job['id']}", json=files)
    assert populated.status_code == 200, populated.text
    triggered = client.post(f"/knowledge-base/{kb_id}/jobs/{job['id']}/trigger")
    assert triggered.status_code == 202, triggered.text
    return wait_for_job(client, kb_id, job["id"])


def ingest_text(client: TestClient, kb_id: str, file_name: str, text: str) -> Dict[str, Any]:
    """Upload a text file and index it; returns the finished job."""
    upload(client, kb_id, file_name, text.encode("utf-8"), "text/plain")
    return run_job(client, kb_id, [{"fileName": file_name, "connector": "local"}])
