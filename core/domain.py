# core/domain.py
"""Domain enums, errors and models shared across the application."""
from enum import Enum

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional

# ============= Enums =============

class ErrorCode(str, Enum):
    """Error codes for user-facing error messages."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_FORMAT = "INVALID_FORMAT"
    UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    # Per-file ingestion outcomes (recorded on the job, never raised to clients)
    FILE_NOT_UPLOADED = "FILE_NOT_UPLOADED"
    UNSUPPORTED_CONNECTOR = "UNSUPPORTED_CONNECTOR"
    NO_TEXT_FOUND = "NO_TEXT_FOUND"
    PROCESSING_FAILED = "PROCESSING_FAILED"


class KnowledgeBaseType(str, Enum):
    """Semantic role of a knowledge base."""
    QUERY = "query"  # answer corpus
    TECH = "tech"    # denylist corpus for guardrails


class JobStatus(str, Enum):
    """Two-phase ingestion job lifecycle."""
    CREATED = "created"
    POPULATED = "populated"
    TRIGGERED = "triggered"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class FileStatus(str, Enum):
    """Status of one file, both on the document record and inside a job."""
    PENDING = "pending"
    UPLOADED = "uploaded"
    INDEXED = "indexed"
    FAILED = "failed"


class ExecutionLayerType(str, Enum):
    KNOWLEDGE_BASE = "knowledge_base"
    API_CALL = "api_call"


# ============= Errors =============

class ServiceError(Exception):
    """Raised by services with a specific error code; mapped to HTTP by the API layer."""

    def __init__(self, message: str, error_code: ErrorCode):
        self.message = message
        self.error_code = error_code
        super().__init__(message)

    def __str__(self):
        # Format used for logging and job file records
        return f"[{self.error_code.value}] {self.message}"


class NotFoundError(ServiceError):
    def __init__(self, what: str, identifier: str):
        super().__init__(f"{what} '{identifier}' not found", ErrorCode.NOT_FOUND)


class IngestionError(ServiceError):
    """Failure of a single file inside a job."""


# ============= Domain Models =============

@dataclass
class KnowledgeBase:
    id: str
    name: str
    type: KnowledgeBaseType
    chunk_size: int
    chunk_overlap: int
    date_created: datetime


@dataclass
class Document:
    """An uploaded file belonging to exactly one knowledge base"""
    id: str
    knowledge_base_id: str
    file_name: str
    stored_filename: str
    content_type: str
    file_hash: str
    size: int
    status: FileStatus
    connector: str = "local"
    last_modified: Optional[str] = None
    chunk_count: int = 0
    error: Optional[str] = None
    date_created: Optional[datetime] = None


@dataclass
class DocumentChunk:
    """Domain model for document chunks"""
    id: str
    content: str
    document_id: str
    metadata: Dict[str, Any]
    embedding: Optional[List[float]] = None # Vector of float numbers


@dataclass
class ChunkSearchResult:
    """Domain model for search results"""
    chunk: DocumentChunk
    score: float
    keyword_score: float = 0.0


@dataclass
class JobFile:
    file_name: str
    last_modified: Optional[str] = None
    connector: str = "local"
    status: FileStatus = FileStatus.PENDING
    document_id: Optional[str] = None
    chunks: int = 0
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "last_modified": self.last_modified,
            "connector": self.connector,
            "status": self.status.value,
            "document_id": self.document_id,
            "chunks": self.chunks,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobFile":
        return cls(
            file_name=data["file_name"],
            last_modified=data.get("last_modified"),
            connector=data.get("connector") or "local",
            status=FileStatus(data.get("status", FileStatus.PENDING.value)),
            document_id=data.get("document_id"),
            chunks=data.get("chunks", 0),
            error=data.get("error"),
            error_code=ErrorCode(data["error_code"]) if data.get("error_code") else None,
        )


@dataclass
class IngestionJob:
    id: str
    knowledge_base_id: str
    status: JobStatus
    files: List[JobFile] = field(default_factory=list)
    date_created: Optional[datetime] = None
    date_triggered: Optional[datetime] = None
    date_finished: Optional[datetime] = None


@dataclass
class Guardrail:
    id: str
    name: str
    description: str
    source_name: str
    source_config: Dict[str, Any]
    response_blocking: bool


@dataclass
class TriggeredGuardrail:
    id: str
    name: str
    level: str
    source: str
    message: str
    score: float
    blocking: bool


@dataclass
class Template:
    id: str
    name: str
    content: str


@dataclass
class ExecutionLayer:
    id: str
    name: str
    description: str
    type: ExecutionLayerType
    config: Dict[str, Any]


@dataclass
class Agent:
    id: str
    name: str
    template_id: str
    execution_layer_ids: List[str] = field(default_factory=list)
    guardrail_ids: List[str] = field(default_factory=list)


@dataclass
class AnswerFragment:
    answer: str
    reference: Optional[ChunkSearchResult] = None


@dataclass
class QueryResult:
    query_id: str
    conversation_id: str
    fragments: List[AnswerFragment]
    triggered_guardrails: List[TriggeredGuardrail] = field(default_factory=list)
    blocked: bool = False
