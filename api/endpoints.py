# api/endpoints.py
"""
API endpoints for the knowledge base service.

SECURITY NOTE:
==================================
These endpoints have NO AUTHENTICATION. Upload links are the only
credential-like artifact: they carry a signed token that expires.
Put the service behind an authenticating gateway before exposing it.
==================================
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from config import settings
from core.domain import KnowledgeBaseType
from services.agent_service import AgentService
from services.factory import (
    get_agent_service, get_guardrail_service, get_ingestion_service,
    get_knowledge_base_service, get_query_service
)
from services.guardrail_service import GuardrailService
from services.ingestion_service import IngestionService
from services.knowledge_base_service import KnowledgeBaseService
from services.query_service import QueryService
from api.schemas import (
    AgentCreate, AgentPatch, AgentResponse, ConversationResponse, ExecutionLayerCreate,
    ExecutionLayerResponse, GuardrailCreate, GuardrailResponse, JobFileDescriptor,
    JobResponse, KnowledgeBaseCreate, KnowledgeBaseFileResponse, KnowledgeBaseResponse,
    MessageItem, QueryResponse, TemplateCreate, TemplateResponse, UploadResponse
)

router = APIRouter()


# ---------- Knowledge bases ----------
@router.post("/knowledge-base/", response_model=KnowledgeBaseResponse, status_code=201)
async def create_knowledge_base(
    body: KnowledgeBaseCreate,
    kb_service: KnowledgeBaseService = Depends(get_knowledge_base_service),
) -> KnowledgeBaseResponse:
    paragraphs = body.paragraphs
    kb = await kb_service.create(
        body.name,
        body.type,
        chunk_size=paragraphs.chunk_size if paragraphs else None,
        chunk_overlap=paragraphs.chunk_overlap if paragraphs else None,
    )
    return KnowledgeBaseResponse.from_domain(kb)


@router.get("/knowledge-base/", response_model=List[KnowledgeBaseResponse])
async def list_knowledge_bases(
    kb_type: Optional[KnowledgeBaseType] = Query(None, alias="type"),
    kb_service: KnowledgeBaseService = Depends(get_knowledge_base_service),
) -> List[KnowledgeBaseResponse]:
    return [KnowledgeBaseResponse.from_domain(kb) for kb in await kb_service.list(kb_type)]


@router.get("/knowledge-base/{kb_id}", response_model=KnowledgeBaseResponse)
async def get_knowledge_base(
    kb_id: str,
    kb_service: KnowledgeBaseService = Depends(get_knowledge_base_service),
) -> KnowledgeBaseResponse:
    return KnowledgeBaseResponse.from_domain(await kb_service.get(kb_id))


@router.delete("/knowledge-base/{kb_id}", status_code=204)
async def delete_knowledge_base(
    kb_id: str,
    kb_service: KnowledgeBaseService = Depends(get_knowledge_base_service),
) -> None:
    await kb_service.delete(kb_id)


@router.get("/knowledge-base/{kb_id}/files", response_model=List[KnowledgeBaseFileResponse])
async def list_knowledge_base_files(
    kb_id: str,
    kb_service: KnowledgeBaseService = Depends(get_knowledge_base_service),
) -> List[KnowledgeBaseFileResponse]:
    return [KnowledgeBaseFileResponse.from_domain(d) for d in await kb_service.list_files(kb_id)]


# ---------- Local connector ----------
@router.get("/connectors/local/s3-upload-links")
async def get_upload_link(
    request: Request,
    kb: str = Query(...),
    file_name: str = Query(..., alias="fileName"),
    kb_service: KnowledgeBaseService = Depends(get_knowledge_base_service),
) -> dict:
    """Returns {fileName: uploadUri}; PUT the file bytes to the URI."""
    return await kb_service.create_upload_link(kb, file_name, str(request.base_url))


@router.put("/connectors/local/uploads/{token}", response_model=UploadResponse)
async def upload_file(
    token: str,
    request: Request,
    kb_service: KnowledgeBaseService = Depends(get_knowledge_base_service),
) -> UploadResponse:
    content = await request.body()
    document = await kb_service.receive_upload(
        token, request.headers.get("content-type", ""), content
    )
    return UploadResponse(
        file_id=document.id,
        file_name=document.file_name,
        size=document.size,
        status=document.status.value,
    )


# ---------- Jobs ----------
@router.post("/knowledge-base/{kb_id}/jobs", response_model=JobResponse, status_code=201)
async def create_job(
    kb_id: str,
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> JobResponse:
    return JobResponse.from_domain(await ingestion.create_job(kb_id))


@router.put("/knowledge-base/{kb_id}/jobs/{job_id}", response_model=JobResponse)
async def populate_job(
    kb_id: str,
    job_id: str,
    files: List[JobFileDescriptor],
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> JobResponse:
    job = await ingestion.populate_job(kb_id, job_id, [f.model_dump() for f in files])
    return JobResponse.from_domain(job)


@router.get("/knowledge-base/{kb_id}/jobs/{job_id}", response_model=JobResponse)
async def get_job(
    kb_id: str,
    job_id: str,
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> JobResponse:
    return JobResponse.from_domain(await ingestion.get_job(kb_id, job_id))


@router.post("/knowledge-base/{kb_id}/jobs/{job_id}/trigger", response_model=JobResponse, status_code=202)
async def trigger_job(
    kb_id: str,
    job_id: str,
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> JobResponse:
    """Starts processing in the background; poll GET .../jobs/{job_id} for the outcome."""
    return JobResponse.from_domain(await ingestion.trigger_job(kb_id, job_id))


@router.post("/knowledge-base/{kb_id}/jobs/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    kb_id: str,
    job_id: str,
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> JobResponse:
    return JobResponse.from_domain(await ingestion.cancel_job(kb_id, job_id))


# ---------- Guardrails ----------
@router.post("/users/guard-rails", response_model=GuardrailResponse, status_code=201)
async def create_guardrail(
    body: GuardrailCreate,
    guardrails: GuardrailService = Depends(get_guardrail_service),
) -> GuardrailResponse:
    guardrail = await guardrails.create(
        body.name, body.description, body.source_fabric.name,
        body.source_fabric.config, body.response_blocking
    )
    return GuardrailResponse.from_domain(guardrail)


@router.get("/users/guard-rails/{guardrail_id}", response_model=GuardrailResponse)
async def get_guardrail(
    guardrail_id: str,
    guardrails: GuardrailService = Depends(get_guardrail_service),
) -> GuardrailResponse:
    return GuardrailResponse.from_domain(await guardrails.get(guardrail_id))


# ---------- Agents ----------
@router.post("/ask/templates", response_model=TemplateResponse, status_code=201)
async def create_template(
    body: TemplateCreate,
    agents: AgentService = Depends(get_agent_service),
) -> TemplateResponse:
    return TemplateResponse.from_domain(await agents.create_template(body.name, body.content))


@router.post("/users/agents/execution-layers", response_model=ExecutionLayerResponse, status_code=201)
async def create_execution_layer(
    body: ExecutionLayerCreate,
    agents: AgentService = Depends(get_agent_service),
) -> ExecutionLayerResponse:
    layer = await agents.create_execution_layer(body.name, body.description, body.type, body.config)
    return ExecutionLayerResponse.from_domain(layer)


@router.post("/users/agents", response_model=AgentResponse, status_code=201)
async def create_agent(
    body: AgentCreate,
    agents: AgentService = Depends(get_agent_service),
) -> AgentResponse:
    agent = await agents.create_agent(body.name, body.template_id, body.execution_layers, body.guard_rails)
    return AgentResponse.from_domain(agent)


@router.get("/users/agents/{agent_id}", response_model=AgentResponse)
async def get_agent(
    agent_id: str,
    agents: AgentService = Depends(get_agent_service),
) -> AgentResponse:
    return AgentResponse.from_domain(await agents.get_agent(agent_id))


@router.patch("/users/agents/{agent_id}", response_model=AgentResponse)
async def patch_agent(
    agent_id: str,
    body: AgentPatch,
    agents: AgentService = Depends(get_agent_service),
) -> AgentResponse:
    return AgentResponse.from_domain(await agents.patch_agent(agent_id, body.to_changes()))


# ---------- Queries ----------
@router.post("/ask/query", response_model=QueryResponse, response_model_exclude_none=True)
async def ask(
    q: str = Query(...),
    kb: Optional[str] = Query(None),
    with_reference: bool = Query(False, alias="withReference"),
    hybrid_search: bool = Query(False, alias="hybridSearch"),
    threshold: float = Query(settings.SEARCH_SCORE_THRESHOLD),
    file_ids: Optional[List[str]] = Query(None, alias="fileIds"),
    top_k: int = Query(settings.TOP_K, alias="topK"),
    conversation_id: Optional[str] = Query(None, alias="conversationId"),
    queries: QueryService = Depends(get_query_service),
) -> QueryResponse:
    result = await queries.query(
        q, kb_id=kb, with_reference=with_reference, hybrid_search=hybrid_search,
        threshold=threshold, file_ids=file_ids, top_k=top_k, conversation_id=conversation_id
    )
    return QueryResponse.from_domain(result)


@router.post("/ask/agents/{agent_id}/query", response_model=QueryResponse, response_model_exclude_none=True)
async def ask_agent(
    agent_id: str,
    q: str = Query(...),
    with_reference: bool = Query(False, alias="withReference"),
    hybrid_search: bool = Query(False, alias="hybridSearch"),
    threshold: float = Query(settings.SEARCH_SCORE_THRESHOLD),
    file_ids: Optional[List[str]] = Query(None, alias="fileIds"),
    top_k: int = Query(settings.TOP_K, alias="topK"),
    conversation_id: Optional[str] = Query(None, alias="conversationId"),
    agents: AgentService = Depends(get_agent_service),
) -> QueryResponse:
    result = await agents.query(
        agent_id, q, with_reference=with_reference, hybrid_search=hybrid_search,
        threshold=threshold, file_ids=file_ids, top_k=top_k, conversation_id=conversation_id
    )
    return QueryResponse.from_domain(result)


@router.get("/ask/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    queries: QueryService = Depends(get_query_service),
) -> ConversationResponse:
    messages = await queries.get_conversation(conversation_id)
    return ConversationResponse(
        conversation_id=conversation_id,
        messages=[MessageItem(**m) for m in messages],
    )
