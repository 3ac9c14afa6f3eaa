# services/retrieval.py
"""Similarity search shared by queries (answer corpus) and guardrails (denylist corpus)"""

import logging
from typing import Dict, List, Optional

from rank_bm25 import BM25Okapi  # For Hybrid Search

from config import settings
from core.domain import ChunkSearchResult
from core.interfaces import IEmbeddingService, IVectorStore
from utils.text import tokenize

logger = logging.getLogger(settings.LOGGER_NAME)


class SimilaritySearch:
    """
    Dense cosine search over one or more knowledge base collections.

    With hybrid=True, BM25 keyword hits are merged with the dense hits and
    everything is ordered by a fused score:
        beta * cosine + (1 - beta) * bm25 / max(bm25)
    """

    def __init__(self, vector_store: IVectorStore, embedding_service: IEmbeddingService,
                 beta: float = settings.HYBRID_BETA,
                 candidate_k: int = settings.SEARCH_CANDIDATE_K):
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.beta = beta
        self.candidate_k = candidate_k

    async def embed(self, query: str) -> List[float]:
        return await self.embedding_service.generate_query_embedding(query)

    async def search(
        self,
        kb_ids: List[str],
        query: str,
        threshold: float = settings.SEARCH_SCORE_THRESHOLD,
        top_k: int = settings.TOP_K,
        document_ids: Optional[List[str]] = None,
        hybrid: bool = False,
        query_embedding: Optional[List[float]] = None,
    ) -> List[ChunkSearchResult]:
        if not kb_ids or top_k <= 0:
            return []

        if query_embedding is None:
            query_embedding = await self.embed(query)

        results: List[ChunkSearchResult] = []
        for kb_id in kb_ids:
            candidates = await self.vector_store.search(
                kb_id, query_embedding, top_k=max(self.candidate_k, top_k), document_ids=document_ids
            )
            if hybrid:
                results.extend(await self._hybrid(kb_id, query, candidates, threshold, document_ids))
            else:
                results.extend(r for r in candidates if r.score >= threshold)

        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug(f"Search over {len(kb_ids)} knowledge bases returned {len(results)} hits")
        return results[:top_k]

    async def _hybrid(
        self,
        kb_id: str,
        query: str,
        candidates: List[ChunkSearchResult],
        threshold: float,
        document_ids: Optional[List[str]],
    ) -> List[ChunkSearchResult]:
        dense: Dict[str, ChunkSearchResult] = {r.chunk.id: r for r in candidates}

        chunks = await self.vector_store.list_chunks(kb_id, document_ids)
        query_tokens = tokenize(query)
        keyword: Dict[str, float] = {}
        if chunks and query_tokens:
            bm25 = BM25Okapi([tokenize(c.content) or [""] for c in chunks])
            scores = bm25.get_scores(query_tokens)
            top = max(scores) if len(scores) else 0.0
            if top > 0:
                # Negative BM25 scores (tiny corpora) count as no keyword match
                keyword = {c.id: float(s) / top for c, s in zip(chunks, scores) if s > 0}

        merged: List[ChunkSearchResult] = []
        by_id = {c.id: c for c in chunks}
        for chunk_id in set(dense) | set(keyword):
            hit = dense.get(chunk_id)
            dense_score = hit.score if hit else 0.0
            keyword_score = keyword.get(chunk_id, 0.0)
            if dense_score < threshold and keyword_score == 0.0:
                continue
            chunk = hit.chunk if hit else by_id[chunk_id]
            merged.append(ChunkSearchResult(
                chunk=chunk,
                score=self.beta * dense_score + (1 - self.beta) * keyword_score,
                keyword_score=keyword_score,
            ))
        return merged
