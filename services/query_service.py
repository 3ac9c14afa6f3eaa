# services/query_service.py
"""Knowledge base queries: retrieval, answer composition and conversation threading."""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from config import settings
from core.domain import (
    AnswerFragment, ChunkSearchResult, ErrorCode, KnowledgeBaseType, NotFoundError,
    QueryResult, ServiceError
)
from core.interfaces import IConversationRepository, IKnowledgeBaseRepository
from services.llm_service import LLMService
from services.retrieval import SimilaritySearch

logger = logging.getLogger(settings.LOGGER_NAME)

DEFAULT_SYSTEM_PROMPT = (
    "You answer questions using only the context passages provided. "
    "If the context does not contain the answer, say that you do not know."
)


def validate_query(q: str) -> str:
    q = (q or "").strip()
    if not settings.QUERY_MIN_CHARS <= len(q) <= settings.QUERY_MAX_CHARS:
        raise ServiceError(
            f"q must be between {settings.QUERY_MIN_CHARS} and {settings.QUERY_MAX_CHARS} characters",
            ErrorCode.VALIDATION_ERROR
        )
    return q


def validate_search_params(threshold: float, top_k: int) -> None:
    if not 0.0 <= threshold <= 1.0:
        raise ServiceError("threshold must be between 0 and 1", ErrorCode.VALIDATION_ERROR)
    if top_k < 1:
        raise ServiceError("topK must be at least 1", ErrorCode.VALIDATION_ERROR)


def build_context(results: List[ChunkSearchResult]) -> str:
    return "\n\n".join(
        f"[{i}] ({r.chunk.metadata.get('file_name', 'unknown')}) {r.chunk.content}"
        for i, r in enumerate(results, start=1)
    )


class AnswerComposer:
    """
    Turns retrieved chunks into answer fragments.

    Extractive by default: one fragment per chunk, the chunk text being the answer.
    With an LLM, a single generated answer grounded on the chunks, referencing
    the best chunk. A failed LLM call falls back to the extractive answer.
    """

    def __init__(self, llm_service: Optional[LLMService] = None):
        self.llm_service = llm_service

    @property
    def generative(self) -> bool:
        return self.llm_service is not None

    @staticmethod
    def extractive(results: List[ChunkSearchResult]) -> List[AnswerFragment]:
        return [AnswerFragment(answer=r.chunk.content, reference=r) for r in results]

    async def compose(
        self,
        q: str,
        results: List[ChunkSearchResult],
        history: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
    ) -> List[AnswerFragment]:
        if not results:
            return []
        if not self.generative:
            return self.extractive(results)

        messages = [{"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT}]
        messages.extend(history_to_messages(history))
        messages.append({
            "role": "user",
            "content": f"Context:\n{build_context(results)}\n\nQuestion: {q}",
        })

        reply = await asyncio.to_thread(self.llm_service.chat, messages)
        if reply["status"] != "success" or not reply["message"].get("content"):
            logger.warning(f"[QUERY] LLM unavailable ({reply.get('error')}); answering extractively")
            return self.extractive(results)
        return [AnswerFragment(answer=reply["message"]["content"].strip(), reference=results[0])]


def history_to_messages(history: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    return [
        {"role": "assistant" if m["sender"] == "assistant" else "user", "content": m["content"]}
        for m in history
    ]


class QueryService:
    def __init__(
        self,
        kb_repo: IKnowledgeBaseRepository,
        conversation_repo: IConversationRepository,
        search: SimilaritySearch,
        composer: AnswerComposer,
    ):
        self.kb_repo = kb_repo
        self.conversation_repo = conversation_repo
        self.search = search
        self.composer = composer

    # ============ CONVERSATIONS ============

    async def open_conversation(
        self,
        conversation_id: Optional[str],
        agent_id: Optional[str] = None,
        kb_id: Optional[str] = None,
    ) -> Tuple[str, List[Dict[str, Any]]]:
        """Continue an existing conversation (with its recent history) or start one."""
        if conversation_id:
            if not await self.conversation_repo.exists(conversation_id):
                raise NotFoundError("Conversation", conversation_id)
            history = await self.conversation_repo.get_history(
                conversation_id, limit=settings.CHAT_CONTEXT_LIMIT * 2
            )
            return conversation_id, history
        return await self.conversation_repo.create(agent_id, kb_id), []

    async def record_turn(self, conversation_id: str, query_id: str, q: str,
                          fragments: List[AnswerFragment]) -> None:
        await self.conversation_repo.add_message(conversation_id, query_id, "user", q)
        answer = "\n\n".join(f.answer for f in fragments)
        if answer:
            await self.conversation_repo.add_message(conversation_id, query_id, "assistant", answer)

    async def get_conversation(self, conversation_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        if not await self.conversation_repo.exists(conversation_id):
            raise NotFoundError("Conversation", conversation_id)
        return await self.conversation_repo.get_history(conversation_id, limit=limit)

    # ============ QUERY ============

    async def resolve_scope(self, kb_id: Optional[str]) -> List[str]:
        """An explicit knowledge base, or every `query` knowledge base."""
        if kb_id:
            if await self.kb_repo.get_by_id(kb_id) is None:
                raise NotFoundError("Knowledge base", kb_id)
            return [kb_id]
        return [kb.id for kb in await self.kb_repo.list_all(KnowledgeBaseType.QUERY)]

    async def query(
        self,
        q: str,
        kb_id: Optional[str] = None,
        with_reference: bool = False,
        hybrid_search: bool = False,
        threshold: Optional[float] = None,
        file_ids: Optional[List[str]] = None,
        top_k: Optional[int] = None,
        conversation_id: Optional[str] = None,
    ) -> QueryResult:
        q = validate_query(q)
        threshold = settings.SEARCH_SCORE_THRESHOLD if threshold is None else threshold
        top_k = settings.TOP_K if top_k is None else top_k
        validate_search_params(threshold, top_k)

        kb_ids = await self.resolve_scope(kb_id)
        conversation_id, history = await self.open_conversation(conversation_id, kb_id=kb_id)
        query_id = str(uuid.uuid4())

        results = await self.search.search(
            kb_ids, q, threshold=threshold, top_k=top_k,
            document_ids=file_ids or None, hybrid=hybrid_search
        )
        logger.info(f"[QUERY] {query_id}: {len(results)} chunks over {len(kb_ids)} knowledge bases "
                    f"(hybrid={hybrid_search}, threshold={threshold})")

        fragments = await self.composer.compose(q, results, history)
        await self.record_turn(conversation_id, query_id, q, fragments)

        if not with_reference:
            for fragment in fragments:
                fragment.reference = None
        return QueryResult(query_id=query_id, conversation_id=conversation_id, fragments=fragments)
