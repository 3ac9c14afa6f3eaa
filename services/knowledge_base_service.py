# services/knowledge_base_service.py
"""Knowledge base registry and local upload connector."""
import logging
from typing import Dict, List, Optional

from config import settings
from core.domain import (
    Document, ErrorCode, KnowledgeBase, KnowledgeBaseType, NotFoundError, ServiceError
)
from core.interfaces import (
    IDocumentRepository, IFileStorage, IGuardrailRepository, IKnowledgeBaseRepository, IVectorStore
)
from services.chunking import validate_chunk_config
from utils.common import get_file_hash, validate_file_name, validate_upload
from utils import upload_token

logger = logging.getLogger(settings.LOGGER_NAME)


class KnowledgeBaseService:
    def __init__(
        self,
        kb_repo: IKnowledgeBaseRepository,
        document_repo: IDocumentRepository,
        vector_store: IVectorStore,
        file_storage: IFileStorage,
        guardrail_repo: Optional[IGuardrailRepository] = None,
    ):
        self.kb_repo = kb_repo
        self.document_repo = document_repo
        self.vector_store = vector_store
        self.file_storage = file_storage
        self.guardrail_repo = guardrail_repo

    # ============ REGISTRY ============

    async def create(
        self,
        name: str,
        kb_type: str,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> KnowledgeBase:
        name = (name or "").strip()
        if not name:
            raise ServiceError("Knowledge base name is required", ErrorCode.VALIDATION_ERROR)
        try:
            parsed_type = KnowledgeBaseType(kb_type)
        except ValueError:
            allowed = ", ".join(t.value for t in KnowledgeBaseType)
            raise ServiceError(f"Unknown knowledge base type '{kb_type}'. Allowed: {allowed}",
                               ErrorCode.VALIDATION_ERROR)

        size = settings.DEFAULT_CHUNK_SIZE if chunk_size is None else chunk_size
        overlap = settings.DEFAULT_CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        validate_chunk_config(size, overlap)

        return await self.kb_repo.create(name, parsed_type, size, overlap)

    async def get(self, kb_id: str) -> KnowledgeBase:
        kb = await self.kb_repo.get_by_id(kb_id)
        if kb is None:
            raise NotFoundError("Knowledge base", kb_id)
        return kb

    async def list(self, kb_type: Optional[KnowledgeBaseType] = None) -> List[KnowledgeBase]:
        return await self.kb_repo.list_all(kb_type)

    async def list_files(self, kb_id: str) -> List[Document]:
        await self.get(kb_id)
        return await self.document_repo.list_by_kb(kb_id)

    async def delete(self, kb_id: str) -> None:
        """Delete a knowledge base with its files and vectors."""
        kb = await self.get(kb_id)
        if kb.type == KnowledgeBaseType.TECH and self.guardrail_repo is not None:
            # A guardrail over a missing corpus would never fire
            in_use = await self.guardrail_repo.list_by_source_kb(kb_id)
            if in_use:
                names = ", ".join(g.name for g in in_use)
                raise ServiceError(
                    f"Knowledge base {kb_id} is the source of guardrails: {names}",
                    ErrorCode.INVALID_STATE
                )

        # Vectors and files first; the DB record going away is what makes it "deleted"
        if not await self.vector_store.delete_collection(kb_id):
            logger.warning(f"Vector cleanup failed for knowledge base {kb_id}")
        if not await self.file_storage.delete_folder(kb_id):
            logger.warning(f"File cleanup failed for knowledge base {kb_id}")

        await self.kb_repo.delete(kb_id)
        logger.info(f"Deleted knowledge base {kb_id}")

    # ============ LOCAL CONNECTOR ============

    async def create_upload_link(self, kb_id: str, file_name: str, base_url: str) -> Dict[str, str]:
        """Return {fileName: uploadUri}; the URI embeds a signed, expiring token."""
        await self.get(kb_id)
        safe_name = validate_file_name(file_name)
        token = upload_token.issue(kb_id, safe_name)
        return {safe_name: f"{base_url.rstrip('/')}/connectors/local/uploads/{token}"}

    async def receive_upload(self, token: str, content_type: str, content: bytes) -> Document:
        """Store bytes PUT to an upload link and record the document."""
        try:
            grant = upload_token.verify(token)
        except ValueError as e:
            logger.warning(f"[UPLOAD] Rejected upload link: {e}")
            raise ServiceError("Upload link is invalid or expired", ErrorCode.INVALID_TOKEN)

        kb_id, file_name = grant.knowledge_base_id, grant.file_name
        await self.get(kb_id)

        if not content:
            raise ServiceError("Uploaded file is empty", ErrorCode.VALIDATION_ERROR)
        validate_upload(file_name, content_type, content)

        stored_filename = f"{kb_id}/{file_name}"
        await self.file_storage.save(content, stored_filename)
        return await self.document_repo.upsert_upload(
            kb_id=kb_id,
            file_name=file_name,
            stored_filename=stored_filename,
            content_type=content_type.split(";")[0].strip().lower(),
            file_hash=get_file_hash(content),
            size=len(content),
        )
