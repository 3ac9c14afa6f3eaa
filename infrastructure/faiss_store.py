# infrastructure/faiss_store.py
import asyncio
import logging
import json
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
from pathlib import Path

import faiss
import numpy as np

from core.interfaces import IVectorStore
from core.domain import ChunkSearchResult, DocumentChunk
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)


@dataclass
class _Collection:
    """One FAISS index plus its stable row -> chunk_id mapping."""
    index: Optional[faiss.IndexFlatIP] = None
    metadata: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    row_ids: List[str] = field(default_factory=list)  # FAISS row → chunk_id (stable order)


class FAISSVectorStore(IVectorStore):
    """
    FAISS implementation with one inner-product index per collection.

    Embeddings are unit vectors, so inner product == cosine similarity and
    search scores can be compared directly against similarity thresholds.

    - Single asyncio.Lock() serializes mutations across collections
    - _row_ids list per collection keeps FAISS row → chunk_id mapping stable
    - Deletion rebuilds the index using the stable order
    - Each collection persists to <root>/<collection>/{faiss.index,faiss_metadata.json}
    """

    def __init__(self, index_path: str = settings.VECTOR_DB_PATH):
        self._root = Path(index_path)
        self._root.mkdir(parents=True, exist_ok=True)
        self._collections: Dict[str, _Collection] = {}
        self._lock = asyncio.Lock()  # Protects all mutations

    # ---------- persistence ----------

    def _paths(self, name: str):
        folder = self._root / name
        return folder / "faiss.index", folder / "faiss_metadata.json"

    def _load(self, name: str) -> _Collection:
        """Loads index, metadata, and row order from disk (or an empty collection)"""
        if name in self._collections:
            return self._collections[name]

        col = _Collection()
        index_path, metadata_path = self._paths(name)
        if index_path.exists():
            try:
                col.index = faiss.read_index(str(index_path))
                logger.info(f"[FAISS] Loaded index for '{name}'")
            except Exception as e:
                logger.warning(f"[FAISS] Failed to load index for '{name}': {e}. Starting fresh.")
                col.index = None

        if col.index is not None and metadata_path.exists():
            try:
                with open(metadata_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                col.metadata = data.get("metadata", {})
                col.row_ids = data.get("row_ids", [])
            except Exception as e:
                logger.warning(f"[FAISS] Failed to load metadata for '{name}': {e}. Starting fresh.")
                col = _Collection()

        self._collections[name] = col
        return col

    async def _save_locked(self, name: str, col: _Collection) -> None:
        """
        Saves index and metadata to disk (must be called under self._lock).
        Persists both chunk metadata and row order for stable reconstruction.
        """
        index_path, metadata_path = self._paths(name)
        index_path.parent.mkdir(parents=True, exist_ok=True)

        if col.index is not None:
            await asyncio.to_thread(faiss.write_index, col.index, str(index_path))

        data = {"metadata": col.metadata, "row_ids": col.row_ids}
        with open(metadata_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False)

    # ---------- IVectorStore ----------

    async def add_chunks(self, collection: str, chunks: List[DocumentChunk]) -> bool:
        """Add chunks with thread-safe mutations"""
        if not chunks:
            return True

        embeddings = np.array([c.embedding for c in chunks], dtype='float32')
        metas = [
            {
                "chunk_id": c.id,
                "content": c.content,
                "document_id": c.document_id,
                "metadata": c.metadata or {}
            }
            for c in chunks
        ]

        try:
            async with self._lock:
                col = self._load(collection)
                if col.index is None:
                    col.index = faiss.IndexFlatIP(embeddings.shape[1])
                    logger.info(f"[FAISS] Initialized index '{collection}' with dimension {embeddings.shape[1]}")

                await asyncio.to_thread(col.index.add, embeddings) # type: ignore

                for meta in metas:
                    col.row_ids.append(meta["chunk_id"])
                    col.metadata[meta["chunk_id"]] = meta

                await self._save_locked(collection, col)
            return True
        except Exception as e:
            logger.error(f"[FAISS] Failed to add chunks to '{collection}': {e}")
            return False

    async def search(
        self,
        collection: str,
        query_embedding: List[float],
        top_k: int = 5,
        document_ids: Optional[List[str]] = None
    ) -> List[ChunkSearchResult]:
        """Return up to top_k chunks ordered by cosine similarity."""
        async with self._lock:
            col = self._load(collection)
            if col.index is None or col.index.ntotal == 0:
                return []

            allowed = set(document_ids) if document_ids else None
            # With a document filter, scan the whole collection and filter afterwards
            k = col.index.ntotal if allowed else min(top_k, col.index.ntotal)
            query_vector = np.array([query_embedding], dtype='float32')
            scores, indices = await asyncio.to_thread(col.index.search, query_vector, k) # type: ignore

            results: List[ChunkSearchResult] = []
            for pos, row in enumerate(indices[0]):
                # Skip invalid indices
                if row == -1 or row >= len(col.row_ids):
                    continue
                meta = col.metadata.get(col.row_ids[row])
                if not meta:
                    continue
                if allowed is not None and meta["document_id"] not in allowed:
                    continue

                chunk = DocumentChunk(
                    id=meta["chunk_id"],
                    content=meta["content"],
                    document_id=meta["document_id"],
                    metadata=meta["metadata"]
                )
                similarity = max(-1.0, min(1.0, float(scores[0][pos])))
                results.append(ChunkSearchResult(chunk=chunk, score=similarity))
                if len(results) >= top_k:
                    break

            return results

    async def list_chunks(
        self, collection: str, document_ids: Optional[List[str]] = None
    ) -> List[DocumentChunk]:
        async with self._lock:
            col = self._load(collection)
            allowed = set(document_ids) if document_ids else None
            chunks = []
            for chunk_id in col.row_ids:
                meta = col.metadata.get(chunk_id)
                if not meta or (allowed is not None and meta["document_id"] not in allowed):
                    continue
                chunks.append(DocumentChunk(
                    id=chunk_id,
                    content=meta["content"],
                    document_id=meta["document_id"],
                    metadata=meta["metadata"]
                ))
            return chunks

    async def delete_by_document(self, collection: str, document_id: str) -> bool:
        """
        Delete all chunks for a document and rebuild index with stable ordering.
        Uses row_ids to ensure correct vector reconstruction.
        """
        try:
            async with self._lock:
                col = self._load(collection)
                if col.index is None or not col.metadata:
                    return True

                keep_ids: List[str] = []
                keep_vecs: List[np.ndarray] = []
                keep_meta: Dict[str, Dict[str, Any]] = {}

                for row, chunk_id in enumerate(col.row_ids):
                    meta = col.metadata.get(chunk_id)
                    if not meta or meta.get('document_id') == document_id:
                        continue
                    keep_ids.append(chunk_id)
                    keep_meta[chunk_id] = meta
                    keep_vecs.append(col.index.reconstruct(row)) # type: ignore

                removed = len(col.row_ids) - len(keep_ids)
                if removed == 0:
                    return True

                new_index = faiss.IndexFlatIP(col.index.d)
                if keep_vecs:
                    embeddings = np.vstack(keep_vecs).astype('float32', copy=False)
                    await asyncio.to_thread(new_index.add, embeddings) # type: ignore

                col.index = new_index
                col.row_ids = keep_ids
                col.metadata = keep_meta
                await self._save_locked(collection, col)

                logger.info(f"[FAISS] Deleted {removed} chunks of document {document_id} "
                            f"from '{collection}'. Remaining: {len(keep_ids)}")
                return True

        except Exception as e:
            logger.error(f"[FAISS] Deletion failed: {e}")
            return False

    async def delete_collection(self, collection: str) -> bool:
        """Drop index, metadata and files of a collection"""
        try:
            async with self._lock:
                self._collections.pop(collection, None)
                for path in self._paths(collection):
                    if path.exists():
                        await asyncio.to_thread(path.unlink)
                folder = self._root / collection
                if folder.exists() and not any(folder.iterdir()):
                    folder.rmdir()
            return True
        except Exception as e:
            logger.error(f"[FAISS] Dropping '{collection}' failed: {e}")
            return False

    async def count(self, collection: str) -> int:
        """Get number of chunks in a collection"""
        async with self._lock:
            return len(self._load(collection).row_ids)
