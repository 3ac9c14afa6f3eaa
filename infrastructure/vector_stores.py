"""ChromaDB implementation of the vector store"""
import asyncio
import logging
from typing import Dict, List, Optional

from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection

from core.interfaces import IVectorStore
from core.domain import ChunkSearchResult, DocumentChunk
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

class ChromaDBVectorStore(IVectorStore):
    """
    ChromaDB implementation of vector store.

    One Chroma collection per knowledge base, created with cosine space so
    that 1 - distance is the cosine similarity.
    """

    def __init__(self, client: ClientAPI, prefix: str = "kb_"):
        self._client = client
        self._prefix = prefix
        self._collections: Dict[str, Collection] = {}

    async def _ensure_collection(self, collection: str) -> Collection:
        """Lazy initialization of collection"""
        if collection not in self._collections:
            self._collections[collection] = await asyncio.to_thread(
                self._client.get_or_create_collection,
                name=f"{self._prefix}{collection}",
                metadata={"hnsw:space": "cosine"},
                embedding_function=None,
            )
        return self._collections[collection]

    @staticmethod
    def _where(document_ids: Optional[List[str]]):
        if not document_ids:
            return None
        if len(document_ids) == 1:
            return {"document_id": document_ids[0]}
        return {"document_id": {"$in": list(document_ids)}}

    async def add_chunks(self, collection: str, chunks: List[DocumentChunk]) -> bool:
        """Add chunks to ChromaDB"""
        try:
            if not chunks:
                return True
            col = await self._ensure_collection(collection)

            await asyncio.to_thread(
                col.add,
                documents=[chunk.content for chunk in chunks],
                metadatas=[{**chunk.metadata, "document_id": chunk.document_id} for chunk in chunks],
                ids=[chunk.id for chunk in chunks],
                embeddings=[chunk.embedding for chunk in chunks],
            )
            return True

        except Exception as e:
            logger.error(f"Failed to add chunks to ChromaDB: {e}")
            return False

    async def search(
        self,
        collection: str,
        query_embedding: List[float],
        top_k: int = 5,
        document_ids: Optional[List[str]] = None
    ) -> List[ChunkSearchResult]:
        """Search for similar chunks"""
        col = await self._ensure_collection(collection)
        total = await asyncio.to_thread(col.count)
        if total == 0:
            return []

        results = await asyncio.to_thread(
            col.query,
            query_embeddings=[query_embedding],
            n_results=min(top_k, total),
            where=self._where(document_ids),
            include=['metadatas', 'documents', 'distances']
        )

        search_results = []
        if results['ids'] and results['ids'][0]:
            for i in range(len(results['ids'][0])):
                metadata = dict(results['metadatas'][0][i])
                chunk = DocumentChunk(
                    id=results['ids'][0][i],
                    content=results['documents'][0][i],
                    document_id=metadata.get('document_id'),
                    metadata=metadata
                )
                search_results.append(ChunkSearchResult(
                    chunk=chunk,
                    score=1 - results['distances'][0][i]  # Convert cosine distance to similarity
                ))

        return search_results

    async def list_chunks(
        self, collection: str, document_ids: Optional[List[str]] = None
    ) -> List[DocumentChunk]:
        col = await self._ensure_collection(collection)
        results = await asyncio.to_thread(
            col.get, where=self._where(document_ids), include=['metadatas', 'documents']
        )
        return [
            DocumentChunk(
                id=chunk_id,
                content=results['documents'][i],
                document_id=results['metadatas'][i].get('document_id'),
                metadata=dict(results['metadatas'][i]),
            )
            for i, chunk_id in enumerate(results['ids'])
        ]

    async def delete_by_document(self, collection: str, document_id: str) -> bool:
        """Delete all chunks for a document"""
        try:
            col = await self._ensure_collection(collection)
            await asyncio.to_thread(col.delete, where={"document_id": document_id})
            return True
        except Exception as e:
            logger.error(f"Failed to delete document chunks: {e}")
            return False

    async def delete_collection(self, collection: str) -> bool:
        """Drop the collection of a knowledge base"""
        try:
            self._collections.pop(collection, None)
            await asyncio.to_thread(
                self._client.delete_collection,
                name=f"{self._prefix}{collection}"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to drop collection: {e}")
            return False

    async def count(self, collection: str) -> int:
        """Get chunk count"""
        col = await self._ensure_collection(collection)
        return await asyncio.to_thread(col.count)
