# core/interfaces.py
"""Core interfaces for the knowledge base service"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional

from core.domain import (
    Agent, ChunkSearchResult, Document, DocumentChunk, ExecutionLayer, FileStatus,
    Guardrail, IngestionJob, KnowledgeBase, KnowledgeBaseType, Template
)

# ============= Vector Store Interface =============
class IVectorStore(ABC):
    """
    Interface for vector storage operations.

    Every operation is scoped to a collection; one collection per knowledge base,
    so a chunk can only ever be found through the knowledge base that owns it.
    Scores returned by search() are cosine similarities.
    """

    @abstractmethod
    async def add_chunks(self, collection: str, chunks: List[DocumentChunk]) -> bool:
        """Add document chunks with embeddings"""
        pass

    @abstractmethod
    async def search(
        self,
        collection: str,
        query_embedding: List[float],
        top_k: int = 5,
        document_ids: Optional[List[str]] = None
    ) -> List[ChunkSearchResult]:
        """Search for similar chunks, optionally restricted to some documents"""
        pass

    @abstractmethod
    async def list_chunks(
        self, collection: str, document_ids: Optional[List[str]] = None
    ) -> List[DocumentChunk]:
        """Return stored chunks (without embeddings) for keyword search"""
        pass

    @abstractmethod
    async def delete_by_document(self, collection: str, document_id: str) -> bool:
        """Delete all chunks for a document"""
        pass

    @abstractmethod
    async def delete_collection(self, collection: str) -> bool:
        """Drop a whole collection"""
        pass

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Get number of chunks in a collection"""
        pass

# ============= Embedding Service Interface =============
class IEmbeddingService(ABC):
    """Interface for embedding generation (unit-length vectors)"""

    @abstractmethod
    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for text chunks"""
        pass

    @abstractmethod
    async def generate_query_embedding(self, query: str) -> List[float]:
        """Generate embedding for search query"""
        pass

# ============= Text Extraction Interface =============
class ITextExtractor(ABC):
    """Turns stored file bytes into plain text."""

    @abstractmethod
    async def extract(self, file_path: str, file_type: str) -> str:
        pass

# ============= File Storage Interface =============
class IFileStorage(ABC):
    """Interface for physical file storage operations"""

    @abstractmethod
    async def save(self, content: bytes, filename: str) -> str:
        """
        Write bytes under the storage root and return the absolute path.

        The filename is relative to the root (e.g. "<kb_id>/report.pdf") and must
        already be sanitized by the caller.
        """
        pass

    @abstractmethod
    async def get_path(self, filename: str) -> Optional[str]:
        """Get the full path to a stored file."""
        pass

    @abstractmethod
    async def delete_folder(self, folder: str) -> bool:
        """Delete a folder of stored files (e.g. everything of a knowledge base)."""
        pass

# ============= Repository Interfaces =============
class IKnowledgeBaseRepository(ABC):

    @abstractmethod
    async def create(
        self, name: str, kb_type: KnowledgeBaseType, chunk_size: int, chunk_overlap: int
    ) -> KnowledgeBase:
        pass

    @abstractmethod
    async def get_by_id(self, kb_id: str) -> Optional[KnowledgeBase]:
        pass

    @abstractmethod
    async def list_all(self, kb_type: Optional[KnowledgeBaseType] = None) -> List[KnowledgeBase]:
        pass

    @abstractmethod
    async def delete(self, kb_id: str) -> bool:
        pass


class IDocumentRepository(ABC):
    """
    Document metadata persistence (file names, hashes, storage paths, index status).

    Does NOT handle: physical files (see IFileStorage) or vectors (see IVectorStore).
    """

    @abstractmethod
    async def upsert_upload(
        self, kb_id: str, file_name: str, stored_filename: str,
        content_type: str, file_hash: str, size: int
    ) -> Document:
        """Create the record for (kb, file name) or reset it after a re-upload."""
        pass

    @abstractmethod
    async def get_by_id(self, document_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def get_by_name(self, kb_id: str, file_name: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def list_by_kb(self, kb_id: str) -> List[Document]:
        pass

    @abstractmethod
    async def update_status(
        self, document_id: str, status: FileStatus, *,
        chunk_count: int = 0, error: Optional[str] = None,
        last_modified: Optional[str] = None, connector: Optional[str] = None
    ) -> bool:
        pass


class IJobRepository(ABC):

    @abstractmethod
    async def create(self, kb_id: str) -> IngestionJob:
        pass

    @abstractmethod
    async def get_by_id(self, job_id: str) -> Optional[IngestionJob]:
        pass

    @abstractmethod
    async def save(self, job: IngestionJob) -> IngestionJob:
        """Persist status, timestamps and the per-file list."""
        pass


class IGuardrailRepository(ABC):

    @abstractmethod
    async def create(
        self, name: str, description: str, source_name: str,
        source_config: Dict[str, Any], response_blocking: bool
    ) -> Guardrail:
        pass

    @abstractmethod
    async def get_by_id(self, guardrail_id: str) -> Optional[Guardrail]:
        pass

    @abstractmethod
    async def get_many(self, guardrail_ids: List[str]) -> List[Guardrail]:
        """Return guardrails in the order of the given ids (missing ids skipped)."""
        pass

    @abstractmethod
    async def list_by_source_kb(self, kb_id: str) -> List[Guardrail]:
        """Guardrails whose source fabric searches the given knowledge base."""
        pass


class IAgentRepository(ABC):
    """Templates, execution layers and agents."""

    @abstractmethod
    async def create_template(self, name: str, content: str) -> Template:
        pass

    @abstractmethod
    async def get_template(self, template_id: str) -> Optional[Template]:
        pass

    @abstractmethod
    async def create_execution_layer(
        self, name: str, description: str, layer_type: str, config: Dict[str, Any]
    ) -> ExecutionLayer:
        pass

    @abstractmethod
    async def get_execution_layers(self, layer_ids: List[str]) -> List[ExecutionLayer]:
        """Return layers in the order of the given ids (missing ids skipped)."""
        pass

    @abstractmethod
    async def create_agent(
        self, name: str, template_id: str,
        execution_layer_ids: List[str], guardrail_ids: List[str]
    ) -> Agent:
        pass

    @abstractmethod
    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        pass

    @abstractmethod
    async def update_agent(self, agent_id: str, changes: Dict[str, Any]) -> Optional[Agent]:
        pass


class IConversationRepository(ABC):
    """Interface for conversation threading (multi-turn history)"""

    @abstractmethod
    async def create(self, agent_id: Optional[str], kb_id: Optional[str]) -> str:
        """Create a conversation and return its id"""
        pass

    @abstractmethod
    async def exists(self, conversation_id: str) -> bool:
        pass

    @abstractmethod
    async def add_message(
        self, conversation_id: str, query_id: str, sender: str, content: str
    ) -> None:
        pass

    @abstractmethod
    async def get_history(self, conversation_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent messages, oldest first"""
        pass
