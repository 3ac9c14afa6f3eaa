# services/factory.py
from functools import lru_cache
from typing import Optional

import chromadb
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Depends

from database.session import get_db
from config import settings
from core.interfaces import (
    IVectorStore, IEmbeddingService, IFileStorage, ITextExtractor,
    IKnowledgeBaseRepository, IDocumentRepository, IJobRepository,
    IGuardrailRepository, IAgentRepository, IConversationRepository
)
from infrastructure.faiss_store import FAISSVectorStore
from infrastructure.vector_stores import ChromaDBVectorStore
from infrastructure.embedding_services import SentenceTransformerEmbedding
from infrastructure.file_storage import LocalFileStorage
from infrastructure.text_extractors import PyMuPDFTextExtractor
from infrastructure.repositories import (
    SQLKnowledgeBaseRepository, SQLDocumentRepository, SQLJobRepository,
    SQLGuardrailRepository, SQLAgentRepository, SQLConversationRepository
)
from services.agent_service import AgentService
from services.guardrail_service import GuardrailService
from services.ingestion_service import IngestionService
from services.knowledge_base_service import KnowledgeBaseService
from services.llm_service import LLMService
from services.query_service import AnswerComposer, QueryService
from services.retrieval import SimilaritySearch

# Provider functions for each component.
# Stateful components (index in memory, loaded model) are process-wide singletons.

@lru_cache
def get_vector_store() -> IVectorStore:
    """Create vector store based on configuration."""
    if settings.VECTOR_STORE_TYPE == "faiss":
        return FAISSVectorStore(settings.VECTOR_DB_PATH)
    if settings.VECTOR_STORE_TYPE == "chromadb":
        client = chromadb.PersistentClient(path=settings.VECTOR_DB_PATH)
        return ChromaDBVectorStore(client)
    raise ValueError(f"Unknown vector store type: {settings.VECTOR_STORE_TYPE}")

@lru_cache
def get_embedding_service() -> IEmbeddingService:
    """Create embedding service based on configuration."""
    return SentenceTransformerEmbedding(settings.EMBEDDING_MODEL_NAME)

def get_file_storage() -> IFileStorage:
    """Create file storage based on configuration."""
    return LocalFileStorage(base_path=settings.UPLOADS_DIR)

def get_text_extractor() -> ITextExtractor:
    return PyMuPDFTextExtractor()

def get_llm_service() -> Optional[LLMService]:
    """None unless an LLM is configured; answers are then extractive."""
    if not settings.LLM_ENABLED:
        return None
    return LLMService(settings.LLM_BASE_URL, settings.LLM_MODEL_NAME)

# Repositories (request-scoped session)

def get_kb_repository(session: AsyncSession = Depends(get_db)) -> IKnowledgeBaseRepository:
    return SQLKnowledgeBaseRepository(session)

def get_document_repository(session: AsyncSession = Depends(get_db)) -> IDocumentRepository:
    """Create document repository with injected session."""
    return SQLDocumentRepository(session)

def get_job_repository(session: AsyncSession = Depends(get_db)) -> IJobRepository:
    return SQLJobRepository(session)

def get_guardrail_repository(session: AsyncSession = Depends(get_db)) -> IGuardrailRepository:
    return SQLGuardrailRepository(session)

def get_agent_repository(session: AsyncSession = Depends(get_db)) -> IAgentRepository:
    return SQLAgentRepository(session)

def get_conversation_repository(session: AsyncSession = Depends(get_db)) -> IConversationRepository:
    return SQLConversationRepository(session)

# Services

def get_similarity_search(
    vector_store: IVectorStore = Depends(get_vector_store),
    embedding_service: IEmbeddingService = Depends(get_embedding_service),
) -> SimilaritySearch:
    return SimilaritySearch(vector_store, embedding_service)

def get_answer_composer(llm_service: Optional[LLMService] = Depends(get_llm_service)) -> AnswerComposer:
    return AnswerComposer(llm_service)

def get_knowledge_base_service(
    kb_repo: IKnowledgeBaseRepository = Depends(get_kb_repository),
    document_repo: IDocumentRepository = Depends(get_document_repository),
    vector_store: IVectorStore = Depends(get_vector_store),
    file_storage: IFileStorage = Depends(get_file_storage),
    guardrail_repo: IGuardrailRepository = Depends(get_guardrail_repository),
) -> KnowledgeBaseService:
    return KnowledgeBaseService(kb_repo, document_repo, vector_store, file_storage, guardrail_repo)

def get_ingestion_service(
    job_repo: IJobRepository = Depends(get_job_repository),
    kb_repo: IKnowledgeBaseRepository = Depends(get_kb_repository),
    document_repo: IDocumentRepository = Depends(get_document_repository),
    vector_store: IVectorStore = Depends(get_vector_store),
    embedding_service: IEmbeddingService = Depends(get_embedding_service),
    file_storage: IFileStorage = Depends(get_file_storage),
    text_extractor: ITextExtractor = Depends(get_text_extractor),
) -> IngestionService:
    """
    Create ingestion service with full dependency injection.

    Background jobs open their own session; everything else is shared.
    """
    return IngestionService(
        job_repo=job_repo,
        kb_repo=kb_repo,
        document_repo=document_repo,
        vector_store=vector_store,
        embedding_service=embedding_service,
        file_storage=file_storage,
        text_extractor=text_extractor,
    )

def get_guardrail_service(
    guardrail_repo: IGuardrailRepository = Depends(get_guardrail_repository),
    kb_repo: IKnowledgeBaseRepository = Depends(get_kb_repository),
    search: SimilaritySearch = Depends(get_similarity_search),
) -> GuardrailService:
    return GuardrailService(guardrail_repo, kb_repo, search)

def get_query_service(
    kb_repo: IKnowledgeBaseRepository = Depends(get_kb_repository),
    conversation_repo: IConversationRepository = Depends(get_conversation_repository),
    search: SimilaritySearch = Depends(get_similarity_search),
    composer: AnswerComposer = Depends(get_answer_composer),
) -> QueryService:
    return QueryService(kb_repo, conversation_repo, search, composer)

def get_agent_service(
    agent_repo: IAgentRepository = Depends(get_agent_repository),
    kb_repo: IKnowledgeBaseRepository = Depends(get_kb_repository),
    guardrails: GuardrailService = Depends(get_guardrail_service),
    queries: QueryService = Depends(get_query_service),
    search: SimilaritySearch = Depends(get_similarity_search),
    composer: AnswerComposer = Depends(get_answer_composer),
) -> AgentService:
    return AgentService(agent_repo, kb_repo, guardrails, queries, search, composer)
