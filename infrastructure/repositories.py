"""Database repository implementations"""
import logging
from typing import List, Optional, Dict, Any
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from core.interfaces import (
    IAgentRepository, IConversationRepository, IDocumentRepository,
    IGuardrailRepository, IJobRepository, IKnowledgeBaseRepository
)
from core.domain import (
    Agent, Document, ExecutionLayer, ExecutionLayerType, FileStatus, Guardrail,
    IngestionJob, JobFile, JobStatus, KnowledgeBase, KnowledgeBaseType, Template
)
from database.session import (
    AgentEntity, ConversationEntity, DocumentEntity, ExecutionLayerEntity,
    GuardrailEntity, JobEntity, KnowledgeBaseEntity, MessageEntity, TemplateEntity
)
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)


class SQLKnowledgeBaseRepository(IKnowledgeBaseRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, entity: Optional[KnowledgeBaseEntity]) -> Optional[KnowledgeBase]:
        if entity is None:
            return None
        return KnowledgeBase(
            id=entity.id, # type: ignore
            name=entity.name, # type: ignore
            type=KnowledgeBaseType(entity.kb_type),
            chunk_size=entity.chunk_size, # type: ignore
            chunk_overlap=entity.chunk_overlap, # type: ignore
            date_created=entity.timestamp, # type: ignore
        )

    async def create(self, name: str, kb_type: KnowledgeBaseType,
                     chunk_size: int, chunk_overlap: int) -> KnowledgeBase:
        entity = KnowledgeBaseEntity(
            name=name, kb_type=kb_type.value,
            chunk_size=chunk_size, chunk_overlap=chunk_overlap
        )
        self.session.add(entity)
        await self.session.commit()
        await self.session.refresh(entity)
        logger.info(f"Created knowledge base {entity.id} ('{name}', {kb_type.value})")

        result = self._to_domain(entity)
        assert result is not None, "Created knowledge base should never be None"
        return result

    async def get_by_id(self, kb_id: str) -> Optional[KnowledgeBase]:
        return self._to_domain(await self.session.get(KnowledgeBaseEntity, kb_id))

    async def list_all(self, kb_type: Optional[KnowledgeBaseType] = None) -> List[KnowledgeBase]:
        stmt = select(KnowledgeBaseEntity).order_by(KnowledgeBaseEntity.timestamp.desc())
        if kb_type is not None:
            stmt = stmt.where(KnowledgeBaseEntity.kb_type == kb_type.value)
        result = await self.session.execute(stmt)
        kbs = [self._to_domain(e) for e in result.scalars().all()]
        return [kb for kb in kbs if kb is not None]

    async def delete(self, kb_id: str) -> bool:
        entity = await self.session.get(KnowledgeBaseEntity, kb_id)
        if not entity:
            return False
        # SQLite does not enforce ON DELETE CASCADE unless the pragma is set
        await self.session.execute(delete(DocumentEntity).where(DocumentEntity.kb_id == kb_id))
        await self.session.execute(delete(JobEntity).where(JobEntity.kb_id == kb_id))
        await self.session.delete(entity)
        await self.session.commit()
        return True


class SQLDocumentRepository(IDocumentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, db_doc: Optional[DocumentEntity]) -> Optional[Document]:
        """Converts an SQLAlchemy entity to a domain model."""
        if db_doc is None:
            return None
        return Document(
            id=db_doc.id, # type: ignore
            knowledge_base_id=db_doc.kb_id, # type: ignore
            file_name=db_doc.file_name, # type: ignore
            stored_filename=db_doc.stored_filename, # type: ignore
            content_type=db_doc.content_type, # type: ignore
            file_hash=db_doc.file_hash, # type: ignore
            size=db_doc.size, # type: ignore
            status=FileStatus(db_doc.status),
            connector=db_doc.connector, # type: ignore
            last_modified=db_doc.last_modified, # type: ignore
            chunk_count=db_doc.chunk_count, # type: ignore
            error=db_doc.error, # type: ignore
            date_created=db_doc.timestamp, # type: ignore
        )

    async def _get_entity_by_name(self, kb_id: str, file_name: str) -> Optional[DocumentEntity]:
        result = await self.session.execute(
            select(DocumentEntity).where(
                DocumentEntity.kb_id == kb_id, DocumentEntity.file_name == file_name
            )
        )
        return result.scalar_one_or_none()

    async def upsert_upload(self, kb_id: str, file_name: str, stored_filename: str,
                            content_type: str, file_hash: str, size: int) -> Document:
        db_doc = await self._get_entity_by_name(kb_id, file_name)
        if db_doc is None:
            db_doc = DocumentEntity(kb_id=kb_id, file_name=file_name)
            self.session.add(db_doc)
        db_doc.stored_filename = stored_filename
        db_doc.content_type = content_type
        db_doc.file_hash = file_hash
        db_doc.size = size
        db_doc.status = FileStatus.UPLOADED.value
        db_doc.error = None
        await self.session.commit()
        await self.session.refresh(db_doc)
        logger.info(f"Recorded upload of '{file_name}' in knowledge base {kb_id}")

        result = self._to_domain(db_doc)
        assert result is not None
        return result

    async def get_by_id(self, document_id: str) -> Optional[Document]:
        return self._to_domain(await self.session.get(DocumentEntity, document_id))

    async def get_by_name(self, kb_id: str, file_name: str) -> Optional[Document]:
        return self._to_domain(await self._get_entity_by_name(kb_id, file_name))

    async def list_by_kb(self, kb_id: str) -> List[Document]:
        result = await self.session.execute(
            select(DocumentEntity)
            .where(DocumentEntity.kb_id == kb_id)
            .order_by(DocumentEntity.timestamp.desc())
        )
        docs = [self._to_domain(doc) for doc in result.scalars().all()]
        return [d for d in docs if d is not None]

    async def update_status(self, document_id: str, status: FileStatus, *,
                            chunk_count: int = 0, error: Optional[str] = None,
                            last_modified: Optional[str] = None,
                            connector: Optional[str] = None) -> bool:
        db_doc = await self.session.get(DocumentEntity, document_id)
        if not db_doc:
            return False
        db_doc.status = status.value
        db_doc.chunk_count = chunk_count
        db_doc.error = error
        if last_modified is not None:
            db_doc.last_modified = last_modified
        if connector is not None:
            db_doc.connector = connector
        await self.session.commit()
        return True


class SQLJobRepository(IJobRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, entity: Optional[JobEntity]) -> Optional[IngestionJob]:
        if entity is None:
            return None
        return IngestionJob(
            id=entity.id, # type: ignore
            knowledge_base_id=entity.kb_id, # type: ignore
            status=JobStatus(entity.status),
            files=[JobFile.from_dict(f) for f in (entity.files or [])],
            date_created=entity.timestamp, # type: ignore
            date_triggered=entity.triggered_at, # type: ignore
            date_finished=entity.finished_at, # type: ignore
        )

    async def create(self, kb_id: str) -> IngestionJob:
        entity = JobEntity(kb_id=kb_id, status=JobStatus.CREATED.value, files=[])
        self.session.add(entity)
        await self.session.commit()
        await self.session.refresh(entity)
        result = self._to_domain(entity)
        assert result is not None
        return result

    async def get_by_id(self, job_id: str) -> Optional[IngestionJob]:
        entity = await self.session.get(JobEntity, job_id)
        if entity is not None:
            # Jobs are mutated by background tasks through other sessions
            await self.session.refresh(entity)
        return self._to_domain(entity)

    async def save(self, job: IngestionJob) -> IngestionJob:
        entity = await self.session.get(JobEntity, job.id)
        if entity is None:
            raise KeyError(job.id)
        entity.status = job.status.value
        # New list object so the JSON column is flagged dirty
        entity.files = [f.to_dict() for f in job.files]
        entity.triggered_at = job.date_triggered
        entity.finished_at = job.date_finished
        await self.session.commit()
        return job


class SQLGuardrailRepository(IGuardrailRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, entity: Optional[GuardrailEntity]) -> Optional[Guardrail]:
        if entity is None:
            return None
        return Guardrail(
            id=entity.id, # type: ignore
            name=entity.name, # type: ignore
            description=entity.description, # type: ignore
            source_name=entity.source_name, # type: ignore
            source_config=dict(entity.source_config or {}),
            response_blocking=bool(entity.response_blocking),
        )

    async def create(self, name: str, description: str, source_name: str,
                     source_config: Dict[str, Any], response_blocking: bool) -> Guardrail:
        entity = GuardrailEntity(
            name=name, description=description, source_name=source_name,
            source_config=source_config, response_blocking=response_blocking
        )
        self.session.add(entity)
        await self.session.commit()
        await self.session.refresh(entity)
        result = self._to_domain(entity)
        assert result is not None
        return result

    async def get_by_id(self, guardrail_id: str) -> Optional[Guardrail]:
        return self._to_domain(await self.session.get(GuardrailEntity, guardrail_id))

    async def get_many(self, guardrail_ids: List[str]) -> List[Guardrail]:
        if not guardrail_ids:
            return []
        result = await self.session.execute(
            select(GuardrailEntity).where(GuardrailEntity.id.in_(list(guardrail_ids)))
        )
        by_id = {e.id: self._to_domain(e) for e in result.scalars().all()}
        return [by_id[g] for g in guardrail_ids if by_id.get(g) is not None] # type: ignore

    async def list_by_source_kb(self, kb_id: str) -> List[Guardrail]:
        # source_config is a JSON column; filter after loading
        result = await self.session.execute(select(GuardrailEntity))
        guardrails = [self._to_domain(e) for e in result.scalars().all()]
        return [g for g in guardrails if g is not None and g.source_config.get("knowledgeBaseId") == kb_id]


class SQLAgentRepository(IAgentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _agent(entity: Optional[AgentEntity]) -> Optional[Agent]:
        if entity is None:
            return None
        return Agent(
            id=entity.id, # type: ignore
            name=entity.name, # type: ignore
            template_id=entity.template_id, # type: ignore
            execution_layer_ids=list(entity.execution_layer_ids or []),
            guardrail_ids=list(entity.guardrail_ids or []),
        )

    @staticmethod
    def _layer(entity: ExecutionLayerEntity) -> ExecutionLayer:
        return ExecutionLayer(
            id=entity.id, # type: ignore
            name=entity.name, # type: ignore
            description=entity.description, # type: ignore
            type=ExecutionLayerType(entity.layer_type),
            config=dict(entity.config or {}),
        )

    async def create_template(self, name: str, content: str) -> Template:
        entity = TemplateEntity(name=name, content=content)
        self.session.add(entity)
        await self.session.commit()
        await self.session.refresh(entity)
        return Template(id=entity.id, name=entity.name, content=entity.content) # type: ignore

    async def get_template(self, template_id: str) -> Optional[Template]:
        entity = await self.session.get(TemplateEntity, template_id)
        if entity is None:
            return None
        return Template(id=entity.id, name=entity.name, content=entity.content) # type: ignore

    async def create_execution_layer(self, name: str, description: str,
                                     layer_type: str, config: Dict[str, Any]) -> ExecutionLayer:
        entity = ExecutionLayerEntity(
            name=name, description=description, layer_type=layer_type, config=config
        )
        self.session.add(entity)
        await self.session.commit()
        await self.session.refresh(entity)
        return self._layer(entity)

    async def get_execution_layers(self, layer_ids: List[str]) -> List[ExecutionLayer]:
        if not layer_ids:
            return []
        result = await self.session.execute(
            select(ExecutionLayerEntity).where(ExecutionLayerEntity.id.in_(list(layer_ids)))
        )
        by_id = {e.id: self._layer(e) for e in result.scalars().all()}
        return [by_id[i] for i in layer_ids if i in by_id]

    async def create_agent(self, name: str, template_id: str,
                           execution_layer_ids: List[str], guardrail_ids: List[str]) -> Agent:
        entity = AgentEntity(
            name=name, template_id=template_id,
            execution_layer_ids=list(execution_layer_ids),
            guardrail_ids=list(guardrail_ids),
        )
        self.session.add(entity)
        await self.session.commit()
        await self.session.refresh(entity)
        result = self._agent(entity)
        assert result is not None
        return result

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self._agent(await self.session.get(AgentEntity, agent_id))

    async def update_agent(self, agent_id: str, changes: Dict[str, Any]) -> Optional[Agent]:
        entity = await self.session.get(AgentEntity, agent_id)
        if entity is None:
            return None
        if "name" in changes:
            entity.name = changes["name"]
        if "template_id" in changes:
            entity.template_id = changes["template_id"]
        if "execution_layer_ids" in changes:
            entity.execution_layer_ids = list(changes["execution_layer_ids"])
        if "guardrail_ids" in changes:
            entity.guardrail_ids = list(changes["guardrail_ids"])
        await self.session.commit()
        await self.session.refresh(entity)
        return self._agent(entity)


class SQLConversationRepository(IConversationRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, agent_id: Optional[str], kb_id: Optional[str]) -> str:
        entity = ConversationEntity(agent_id=agent_id, kb_id=kb_id)
        self.session.add(entity)
        await self.session.commit()
        return entity.id # type: ignore

    async def exists(self, conversation_id: str) -> bool:
        return await self.session.get(ConversationEntity, conversation_id) is not None

    async def add_message(self, conversation_id: str, query_id: str,
                          sender: str, content: str) -> None:
        message = MessageEntity(
            conversation_id=conversation_id, query_id=query_id,
            sender=sender, content=content
        )
        self.session.add(message)
        await self.session.commit()

    async def get_history(self, conversation_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Get the latest messages of a conversation, oldest first"""
        result = await self.session.execute(
            select(MessageEntity)
            .where(MessageEntity.conversation_id == conversation_id)
            .order_by(MessageEntity.id.desc())
            .limit(limit)
        )
        messages = list(reversed(result.scalars().all()))

        return [
            {
                "query_id": msg.query_id,
                "sender": msg.sender,
                "content": msg.content,
                "timestamp": msg.timestamp.isoformat() if msg.timestamp else None
            }
            for msg in messages
        ]
