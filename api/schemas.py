# api/schemas.py
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, Optional, List

from core.domain import (
    Agent, AnswerFragment, Document, ErrorCode, ExecutionLayer, Guardrail, IngestionJob,
    KnowledgeBase, QueryResult, Template, TriggeredGuardrail
)

class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class ErrorResponse(CamelModel):
    detail: str
    error_code: ErrorCode

# ---------- Knowledge bases ----------

class ParagraphsConfig(CamelModel):
    chunk_size: Optional[int] = None
    chunk_overlap: Optional[int] = None

class KnowledgeBaseCreate(CamelModel):
    name: str
    type: str = "query"
    paragraphs: Optional[ParagraphsConfig] = None

class KnowledgeBaseResponse(CamelModel):
    id: str
    name: str
    type: str
    paragraphs: ParagraphsConfig
    date_created: datetime

    @classmethod
    def from_domain(cls, kb: KnowledgeBase) -> "KnowledgeBaseResponse":
        return cls(
            id=kb.id,
            name=kb.name,
            type=kb.type.value,
            paragraphs=ParagraphsConfig(chunk_size=kb.chunk_size, chunk_overlap=kb.chunk_overlap),
            date_created=kb.date_created,
        )

class KnowledgeBaseFileResponse(CamelModel):
    id: str
    knowledge_base_id: str
    file_name: str
    content_type: str
    size: int
    status: str
    connector: str
    last_modified: Optional[str] = None
    chunk_count: int = 0
    error: Optional[str] = None
    date_created: Optional[datetime] = None

    @classmethod
    def from_domain(cls, doc: Document) -> "KnowledgeBaseFileResponse":
        return cls(
            id=doc.id,
            knowledge_base_id=doc.knowledge_base_id,
            file_name=doc.file_name,
            content_type=doc.content_type,
            size=doc.size,
            status=doc.status.value,
            connector=doc.connector,
            last_modified=doc.last_modified,
            chunk_count=doc.chunk_count,
            error=doc.error,
            date_created=doc.date_created,
        )

class UploadResponse(CamelModel):
    file_id: str
    file_name: str
    size: int
    status: str

# ---------- Jobs ----------

class JobFileDescriptor(CamelModel):
    file_name: str
    last_modified: Optional[str] = None
    connector: str = "local"

class JobFileResponse(JobFileDescriptor):
    status: str
    file_id: Optional[str] = None
    chunks: int = 0
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

class JobResponse(CamelModel):
    id: str
    knowledge_base_id: str
    status: str
    files: List[JobFileResponse]
    date_created: Optional[datetime] = None
    date_triggered: Optional[datetime] = None
    date_finished: Optional[datetime] = None

    @classmethod
    def from_domain(cls, job: IngestionJob) -> "JobResponse":
        return cls(
            id=job.id,
            knowledge_base_id=job.knowledge_base_id,
            status=job.status.value,
            files=[
                JobFileResponse(
                    file_name=f.file_name,
                    last_modified=f.last_modified,
                    connector=f.connector,
                    status=f.status.value,
                    file_id=f.document_id,
                    chunks=f.chunks,
                    error=f.error,
                    error_code=f.error_code,
                )
                for f in job.files
            ],
            date_created=job.date_created,
            date_triggered=job.date_triggered,
            date_finished=job.date_finished,
        )

# ---------- Guardrails ----------

class SourceFabric(CamelModel):
    name: str
    config: Dict[str, Any] = Field(default_factory=dict)

class GuardrailCreate(CamelModel):
    name: str
    description: str = ""
    source_fabric: SourceFabric
    response_blocking: bool = False

class GuardrailResponse(GuardrailCreate):
    id: str

    @classmethod
    def from_domain(cls, guardrail: Guardrail) -> "GuardrailResponse":
        return cls(
            id=guardrail.id,
            name=guardrail.name,
            description=guardrail.description,
            source_fabric=SourceFabric(name=guardrail.source_name, config=guardrail.source_config),
            response_blocking=guardrail.response_blocking,
        )

class TriggeredGuardrailResponse(CamelModel):
    id: str
    name: str
    level: str
    source: str
    message: str
    score: float

    @classmethod
    def from_domain(cls, triggered: TriggeredGuardrail) -> "TriggeredGuardrailResponse":
        return cls(id=triggered.id, name=triggered.name, level=triggered.level,
                   source=triggered.source, message=triggered.message, score=triggered.score)

# ---------- Agents ----------

class TemplateCreate(CamelModel):
    name: str
    content: str

class TemplateResponse(TemplateCreate):
    id: str

    @classmethod
    def from_domain(cls, template: Template) -> "TemplateResponse":
        return cls(id=template.id, name=template.name, content=template.content)

class ExecutionLayerCreate(CamelModel):
    name: str
    description: str = ""
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)

class ExecutionLayerResponse(ExecutionLayerCreate):
    id: str

    @classmethod
    def from_domain(cls, layer: ExecutionLayer) -> "ExecutionLayerResponse":
        return cls(id=layer.id, name=layer.name, description=layer.description,
                   type=layer.type.value, config=layer.config)

class AgentCreate(CamelModel):
    name: str
    template_id: str
    execution_layers: List[str] = Field(default_factory=list)
    guard_rails: List[str] = Field(default_factory=list)

class AgentPatch(CamelModel):
    name: Optional[str] = None
    template_id: Optional[str] = None
    execution_layers: Optional[List[str]] = None
    guard_rails: Optional[List[str]] = None

    def to_changes(self) -> Dict[str, Any]:
        """Only the fields the client actually sent."""
        names = {"template_id": "template_id", "execution_layers": "execution_layer_ids",
                 "guard_rails": "guardrail_ids", "name": "name"}
        return {names[k]: v for k, v in self.model_dump(exclude_unset=True).items()}

class AgentResponse(AgentCreate):
    id: str

    @classmethod
    def from_domain(cls, agent: Agent) -> "AgentResponse":
        return cls(id=agent.id, name=agent.name, template_id=agent.template_id,
                   execution_layers=agent.execution_layer_ids, guard_rails=agent.guardrail_ids)

# ---------- Queries ----------

class Reference(CamelModel):
    knowledge_base_id: str
    file_id: str
    file_name: Optional[str] = None
    chunk_id: str
    chunk_index: Optional[int] = None
    score: float

class AnswerItem(CamelModel):
    answer: str
    reference: Optional[Reference] = None

    @classmethod
    def from_domain(cls, fragment: AnswerFragment) -> "AnswerItem":
        ref = fragment.reference
        if ref is None:
            return cls(answer=fragment.answer)
        meta = ref.chunk.metadata
        return cls(
            answer=fragment.answer,
            reference=Reference(
                knowledge_base_id=meta.get("knowledge_base_id", ""),
                file_id=ref.chunk.document_id,
                file_name=meta.get("file_name"),
                chunk_id=ref.chunk.id,
                chunk_index=meta.get("chunk_index"),
                score=round(ref.score, 4),
            ),
        )

class QueryResponse(CamelModel):
    response: List[AnswerItem]
    query_id: str
    conversation_id: str
    triggered_guard_rails: Optional[List[TriggeredGuardrailResponse]] = None

    @classmethod
    def from_domain(cls, result: QueryResult) -> "QueryResponse":
        return cls(
            response=[AnswerItem.from_domain(f) for f in result.fragments],
            query_id=result.query_id,
            conversation_id=result.conversation_id,
            triggered_guard_rails=[
                TriggeredGuardrailResponse.from_domain(t) for t in result.triggered_guardrails
            ] or None,
        )

class MessageItem(CamelModel):
    query_id: str
    sender: str
    content: str
    timestamp: Optional[datetime] = None

class ConversationResponse(CamelModel):
    conversation_id: str
    messages: List[MessageItem]
