# config.py
"""Service configuration loaded from environment / .env"""
from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from utils.common import get_log_file_path, get_project_root

class Settings(BaseSettings):
    """Application configuration"""

    # Logger configuration
    LOGGER_NAME: str = "kbase"
    LOG_FILE_PATH: str = get_log_file_path()
    LOG_LEVEL: str = "INFO"
    LOG_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 5

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./kbase.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour

    # Vector store
    VECTOR_DB_PATH: str = "./vector_db"
    VECTOR_STORE_TYPE: str = "faiss"  # Options: faiss, chromadb

    # Embedding model
    EMBEDDING_MODEL_NAME: str = "paraphrase-multilingual-mpnet-base-v2"
    EMBEDDING_BATCH_SIZE: int = 32

    # Chunking defaults (used when a knowledge base omits "paragraphs")
    DEFAULT_CHUNK_SIZE: int = 400
    DEFAULT_CHUNK_OVERLAP: int = 200

    # Uploads
    MAX_FILE_SIZE: int = 50 * 1024 * 1024
    UPLOADS_DIR: str = f"{get_project_root()}/uploads"
    UPLOAD_LINK_SECRET: str = "CHANGE_ME_IN_PROD"
    UPLOAD_LINK_TTL_SECONDS: int = 15 * 60
    SUPPORTED_CONNECTORS: List[str] = ["local"]

    # Extension -> accepted Content-Type headers
    MIME_TYPES: Dict[str, List[str]] = {
        "pdf": ["application/pdf"],
        "txt": ["text/plain"],
        "md": ["text/markdown", "text/x-markdown", "text/plain"],
        "csv": ["text/csv", "text/plain"],
        "json": ["application/json"],
    }

    @property
    def ALLOWED_FILE_EXTENSIONS(self) -> List[str]:
        return list(self.MIME_TYPES.keys())

    # Search quality controls
    SEARCH_SCORE_THRESHOLD: float = 0.8
    SEARCH_CANDIDATE_K: int = 40
    TOP_K: int = 5
    QUERY_MIN_CHARS: int = 3
    QUERY_MAX_CHARS: int = 2000

    # Fusion weight of the dense score in hybrid search
    HYBRID_BETA: float = 0.6

    # Guardrail defaults
    GUARDRAIL_DEFAULT_THRESHOLD: float = 0.8
    GUARDRAIL_DEFAULT_LEVEL: str = "high"
    GUARDRAIL_DEFAULT_MESSAGE: str = "The request was blocked by a guardrail."

    # LLM (Ollama-compatible). Disabled -> extractive answers.
    LLM_ENABLED: bool = False
    LLM_MODEL_NAME: str = "llama3.1:8b"
    LLM_BASE_URL: str = "http://localhost:11434"
    REQUEST_TIMEOUT: int = 60
    CHAT_CONTEXT_LIMIT: int = 4
    AGENT_MAX_TOOL_ROUNDS: int = 4
    API_CALL_RESPONSE_LIMIT: int = 4000

    # Background jobs
    MAX_CONCURRENT_JOBS: int = 3

    # App metadata
    APP_TITLE: str = "Knowledge Base Service"
    APP_VERSION: str = "1.0.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
