"""Embedding generation with L2 normalization for consistent similarity scoring"""
import asyncio
import logging
import numpy as np
from typing import List, Optional
from sentence_transformers import SentenceTransformer

from core.interfaces import IEmbeddingService
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)


def l2_normalize(arr: np.ndarray) -> np.ndarray:
    """
    L2 normalize vectors to unit length (||v|| = 1).

    For unit vectors cosine similarity equals the dot product, which is what
    the inner-product FAISS index and the similarity thresholds rely on.

    Args:
        arr: (N, D) array of N vectors with D dimensions

    Returns:
        (N, D) array of unit-normalized vectors
    """
    norms = np.linalg.norm(arr, axis=1, keepdims=True)
    norms[norms == 0] = 1e-12  # Avoid division by zero
    return arr / norms


class SentenceTransformerEmbedding(IEmbeddingService):
    """Sentence transformer producing unit vectors for cosine search."""

    _model: Optional[SentenceTransformer] = None  # Singleton cache

    def __init__(self, model_name: str = settings.EMBEDDING_MODEL_NAME, batch_size: int = settings.EMBEDDING_BATCH_SIZE):
        """Initializes the service, loading the heavy model only once."""

        if SentenceTransformerEmbedding._model is None:
            try:
                logger.info(f"Attempting to load model {model_name} from local cache...")
                SentenceTransformerEmbedding._model = SentenceTransformer(
                    model_name,
                    local_files_only=True
                )
                logger.info(f"Successfully loaded {model_name} from local cache.")

            except Exception as e:
                logger.warning(
                    f"Model {model_name} not found in cache. Attempting online download. "
                    f"This may take a few minutes. Error: {e}"
                )
                SentenceTransformerEmbedding._model = SentenceTransformer(model_name)
                logger.info(f"Successfully downloaded and loaded {model_name}.")

        self.model = SentenceTransformerEmbedding._model
        self.batch_size = batch_size

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Embed chunk texts in batches; order of the output matches the input."""
        if not texts:
            return []
        logger.debug(f"[INGEST] Embedding {len(texts)} chunks (batch_size={self.batch_size})")
        raw = await asyncio.to_thread(
            self.model.encode,
            texts,
            batch_size=self.batch_size,
            convert_to_tensor=False
        )
        return l2_normalize(np.array(raw, dtype="float32")).tolist()

    async def generate_query_embedding(self, query: str) -> List[float]:
        """Generate L2-normalized embedding for a query (same space as stored vectors)."""
        raw = await asyncio.to_thread(
            self.model.encode,
            query,
            convert_to_tensor=False
        )
        normalized = l2_normalize(
            np.array(raw, dtype="float32").reshape(1, -1)
        )
        return normalized[0].tolist()
