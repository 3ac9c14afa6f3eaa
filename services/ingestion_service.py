# services/ingestion_service.py
"""Two-phase ingestion jobs: create → populate → trigger → background processing."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Callable, Dict, List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.domain import (
    DocumentChunk, ErrorCode, FileStatus, IngestionError, IngestionJob, JobFile,
    JobStatus, KnowledgeBase, NotFoundError, ServiceError
)
from core.interfaces import (
    IDocumentRepository, IEmbeddingService, IFileStorage, IJobRepository,
    IKnowledgeBaseRepository, ITextExtractor, IVectorStore
)
from database.session import get_session
from infrastructure.repositories import (
    SQLDocumentRepository, SQLJobRepository, SQLKnowledgeBaseRepository
)
from services.async_processor import AsyncJobProcessor, job_processor
from services.chunking import chunk_text
from utils.common import get_file_extension, sanitize_filename

logger = logging.getLogger(settings.LOGGER_NAME)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class IngestionService:
    def __init__(
        self,
        job_repo: IJobRepository,
        kb_repo: IKnowledgeBaseRepository,
        document_repo: IDocumentRepository,
        vector_store: IVectorStore,
        embedding_service: IEmbeddingService,
        file_storage: IFileStorage,
        text_extractor: ITextExtractor,
        processor: AsyncJobProcessor = job_processor,
        session_factory: SessionFactory = get_session,
    ):
        self.job_repo = job_repo
        self.kb_repo = kb_repo
        self.document_repo = document_repo
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.file_storage = file_storage
        self.text_extractor = text_extractor
        self.processor = processor
        self.session_factory = session_factory

    # ============ JOB STATE MACHINE ============

    async def _get_kb(self, kb_id: str) -> KnowledgeBase:
        kb = await self.kb_repo.get_by_id(kb_id)
        if kb is None:
            raise NotFoundError("Knowledge base", kb_id)
        return kb

    async def get_job(self, kb_id: str, job_id: str) -> IngestionJob:
        await self._get_kb(kb_id)
        job = await self.job_repo.get_by_id(job_id)
        if job is None or job.knowledge_base_id != kb_id:
            raise NotFoundError("Job", job_id)
        return job

    async def create_job(self, kb_id: str) -> IngestionJob:
        await self._get_kb(kb_id)
        job = await self.job_repo.create(kb_id)
        logger.info(f"[INGEST] Created job {job.id} for knowledge base {kb_id}")
        return job

    async def populate_job(self, kb_id: str, job_id: str, files: List[Dict[str, Any]]) -> IngestionJob:
        """Replace the job's file list. Only allowed before the job is triggered."""
        job = await self.get_job(kb_id, job_id)
        if job.status not in (JobStatus.CREATED, JobStatus.POPULATED):
            raise ServiceError(
                f"Job {job_id} is {job.status.value}; files can only be set before triggering",
                ErrorCode.INVALID_STATE
            )
        if not files:
            raise ServiceError("A job needs at least one file", ErrorCode.VALIDATION_ERROR)

        by_name: Dict[str, JobFile] = {}
        for descriptor in files:
            name = sanitize_filename((descriptor.get("file_name") or "").strip())
            if not name:
                raise ServiceError("Every file needs a fileName", ErrorCode.VALIDATION_ERROR)
            by_name[name] = JobFile(
                file_name=name,
                last_modified=descriptor.get("last_modified"),
                connector=descriptor.get("connector") or "local",
            )

        job.files = list(by_name.values())
        job.status = JobStatus.POPULATED
        await self.job_repo.save(job)
        logger.info(f"[INGEST] Job {job_id} populated with {len(job.files)} files")
        return job

    async def trigger_job(self, kb_id: str, job_id: str) -> IngestionJob:
        """Start background processing; returns immediately."""
        job = await self.get_job(kb_id, job_id)
        if job.status != JobStatus.POPULATED:
            raise ServiceError(
                f"Job {job_id} is {job.status.value}; only populated jobs can be triggered",
                ErrorCode.INVALID_STATE
            )
        job.status = JobStatus.TRIGGERED
        job.date_triggered = _utcnow()
        await self.job_repo.save(job)

        self.processor.submit(job.id, self.run_job(job.id))
        logger.info(f"[INGEST] Job {job_id} triggered")
        return job

    async def cancel_job(self, kb_id: str, job_id: str) -> IngestionJob:
        """
        Cancel a job that has not finished.

        A running task writes its own terminal state, so the task is stopped and
        awaited before the job is re-read. The request only writes CANCELLED
        when no task has written a terminal state.
        """
        job = await self.get_job(kb_id, job_id)
        if job.status.is_terminal:
            raise ServiceError(f"Job {job_id} already {job.status.value}", ErrorCode.INVALID_STATE)

        if self.processor.cancel(job_id):
            await self.processor.wait(job_id)
        # Re-read: the task may have committed a terminal state meanwhile
        job = await self.get_job(kb_id, job_id)

        if job.status.is_terminal and job.status != JobStatus.CANCELLED:
            raise ServiceError(f"Job {job_id} already {job.status.value}", ErrorCode.INVALID_STATE)
        if job.status != JobStatus.CANCELLED:
            job.status = JobStatus.CANCELLED
            job.date_finished = _utcnow()
            await self.job_repo.save(job)
        logger.info(f"[INGEST] Job {job_id} cancelled")
        return job

    # ============ BACKGROUND PROCESSING ============

    async def run_job(self, job_id: str) -> None:
        """
        Process every file of a triggered job with an independent session.

        A failing file is recorded on the job and processing moves on. The job
        completes when at least one file was indexed, otherwise it fails.
        """
        async with self.session_factory() as session:
            job_repo = SQLJobRepository(session)
            doc_repo = SQLDocumentRepository(session)
            kb_repo = SQLKnowledgeBaseRepository(session)

            job = await job_repo.get_by_id(job_id)
            if job is None or job.status != JobStatus.TRIGGERED:
                logger.warning(f"[INGEST] Job {job_id} is not runnable, skipping")
                return

            try:
                kb = await kb_repo.get_by_id(job.knowledge_base_id)
                if kb is None:
                    raise NotFoundError("Knowledge base", job.knowledge_base_id)

                job.status = JobStatus.RUNNING
                await job_repo.save(job)

                for job_file in job.files:
                    await self._process_file(kb, job_file, doc_repo)
                    await job_repo.save(job)

                indexed = sum(1 for f in job.files if f.status == FileStatus.INDEXED)
                job.status = JobStatus.COMPLETED if indexed else JobStatus.FAILED
                job.date_finished = _utcnow()
                await job_repo.save(job)
                logger.info(f"[INGEST] Job {job_id} {job.status.value}: "
                            f"{indexed}/{len(job.files)} files indexed")

            except asyncio.CancelledError:
                job.status = JobStatus.CANCELLED
                job.date_finished = _utcnow()
                await job_repo.save(job)
                raise

            except Exception as e:
                logger.exception(f"[INGEST] Job {job_id} aborted")
                job.status = JobStatus.FAILED
                job.date_finished = _utcnow()
                for job_file in job.files:
                    if job_file.status == FileStatus.PENDING:
                        job_file.status = FileStatus.FAILED
                        job_file.error = f"System error: {str(e)[:100]}"
                        job_file.error_code = ErrorCode.PROCESSING_FAILED
                await job_repo.save(job)

    async def _process_file(self, kb: KnowledgeBase, job_file: JobFile,
                            doc_repo: IDocumentRepository) -> None:
        """Ingest one file and record the outcome on job_file."""
        document = None
        try:
            if job_file.connector not in settings.SUPPORTED_CONNECTORS:
                raise IngestionError(
                    f"Unsupported connector '{job_file.connector}'", ErrorCode.UNSUPPORTED_CONNECTOR
                )
            document = await doc_repo.get_by_name(kb.id, job_file.file_name)
            if document is None:
                raise IngestionError(
                    f"'{job_file.file_name}' was not uploaded to this knowledge base",
                    ErrorCode.FILE_NOT_UPLOADED
                )
            job_file.document_id = document.id

            chunk_count = await self.ingest_document(
                kb, document.id, document.file_name, document.stored_filename
            )

            await doc_repo.update_status(
                document.id, FileStatus.INDEXED, chunk_count=chunk_count,
                last_modified=job_file.last_modified, connector=job_file.connector
            )
            job_file.status = FileStatus.INDEXED
            job_file.chunks = chunk_count
            logger.info(f"[INGEST] Indexed '{job_file.file_name}' ({chunk_count} chunks)")

        except ServiceError as e:
            logger.error(f"[INGEST] '{job_file.file_name}' failed: {e}")
            job_file.status = FileStatus.FAILED
            job_file.error = e.message
            job_file.error_code = e.error_code

        except Exception as e:
            logger.exception(f"[INGEST] Unexpected error processing '{job_file.file_name}'")
            job_file.status = FileStatus.FAILED
            job_file.error = f"System error: {str(e)[:100]}"
            job_file.error_code = ErrorCode.PROCESSING_FAILED

        if document is not None and job_file.status == FileStatus.FAILED:
            await doc_repo.update_status(
                document.id, FileStatus.FAILED, chunk_count=0, error=job_file.error
            )

    async def ingest_document(self, kb: KnowledgeBase, document_id: str,
                              file_name: str, stored_filename: str) -> int:
        """Extract → chunk → embed → replace the document's vectors. Returns chunk count."""
        file_path = await self.file_storage.get_path(stored_filename)
        if file_path is None:
            raise IngestionError(f"Stored file for '{file_name}' is missing", ErrorCode.FILE_NOT_UPLOADED)

        text = await self.text_extractor.extract(file_path, get_file_extension(file_name))
        spans = chunk_text(text, kb.chunk_size, kb.chunk_overlap)
        if not spans:
            raise IngestionError("No content extracted from document", ErrorCode.NO_TEXT_FOUND)

        chunks, embeddings = await self._embed(spans, kb, document_id, file_name)
        for chunk, embedding in zip(chunks, embeddings):
            chunk.embedding = embedding

        # Re-ingestion replaces whatever was indexed for this document before
        await self.vector_store.delete_by_document(kb.id, document_id)
        if not await self.vector_store.add_chunks(kb.id, chunks):
            raise IngestionError("Failed to store vectors", ErrorCode.PROCESSING_FAILED)
        return len(chunks)

    async def _embed(self, spans, kb: KnowledgeBase, document_id: str,
                     file_name: str) -> Tuple[List[DocumentChunk], List[List[float]]]:
        chunks = [
            DocumentChunk(
                id=f"{document_id}_{span.index}",
                content=span.text,
                document_id=document_id,
                metadata={
                    "knowledge_base_id": kb.id,
                    "document_id": document_id,
                    "file_name": file_name,
                    "chunk_index": span.index,
                    "token_start": span.token_start,
                    "token_end": span.token_end,
                },
            )
            for span in spans
        ]
        embeddings = await self.embedding_service.generate_embeddings([c.content for c in chunks])
        return chunks, embeddings
