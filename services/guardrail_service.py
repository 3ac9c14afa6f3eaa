# services/guardrail_service.py
"""Guardrails backed by similarity against a `tech` (denylist) knowledge base."""
import logging
from typing import Any, Dict, List, Optional

from config import settings
from core.domain import (
    ErrorCode, Guardrail, KnowledgeBaseType, NotFoundError, ServiceError, TriggeredGuardrail
)
from core.interfaces import IGuardrailRepository, IKnowledgeBaseRepository
from services.retrieval import SimilaritySearch

logger = logging.getLogger(settings.LOGGER_NAME)

KB_SIMILARITY_SOURCE = "kb_similarity"


class GuardrailService:
    def __init__(
        self,
        guardrail_repo: IGuardrailRepository,
        kb_repo: IKnowledgeBaseRepository,
        search: SimilaritySearch,
    ):
        self.guardrail_repo = guardrail_repo
        self.kb_repo = kb_repo
        self.search = search

    async def create(
        self,
        name: str,
        description: str,
        source_name: str,
        source_config: Dict[str, Any],
        response_blocking: bool,
    ) -> Guardrail:
        name = (name or "").strip()
        if not name:
            raise ServiceError("Guardrail name is required", ErrorCode.VALIDATION_ERROR)
        if source_name != KB_SIMILARITY_SOURCE:
            raise ServiceError(
                f"Unknown source fabric '{source_name}'. Allowed: {KB_SIMILARITY_SOURCE}",
                ErrorCode.VALIDATION_ERROR
            )

        config = await self._normalize_config(source_config or {})
        guardrail = await self.guardrail_repo.create(
            name, description or "", source_name, config, response_blocking
        )
        logger.info(f"[GUARDRAIL] Created '{name}' on knowledge base {config['knowledgeBaseId']}")
        return guardrail

    async def _normalize_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        kb_id = config.get("knowledgeBaseId")
        if not kb_id:
            raise ServiceError("sourceFabric.config.knowledgeBaseId is required",
                               ErrorCode.VALIDATION_ERROR)
        kb = await self.kb_repo.get_by_id(kb_id)
        if kb is None:
            raise NotFoundError("Knowledge base", kb_id)
        if kb.type != KnowledgeBaseType.TECH:
            raise ServiceError(
                f"Knowledge base {kb_id} is of type '{kb.type.value}'; guardrails need a 'tech' knowledge base",
                ErrorCode.VALIDATION_ERROR
            )

        threshold = config.get("threshold", settings.GUARDRAIL_DEFAULT_THRESHOLD)
        try:
            threshold = float(threshold)
        except (TypeError, ValueError):
            raise ServiceError("threshold must be a number", ErrorCode.VALIDATION_ERROR)
        if not 0.0 <= threshold <= 1.0:
            raise ServiceError("threshold must be between 0 and 1", ErrorCode.VALIDATION_ERROR)

        return {
            "knowledgeBaseId": kb_id,
            "threshold": threshold,
            "level": config.get("level") or settings.GUARDRAIL_DEFAULT_LEVEL,
            "message": config.get("message") or settings.GUARDRAIL_DEFAULT_MESSAGE,
        }

    async def get(self, guardrail_id: str) -> Guardrail:
        guardrail = await self.guardrail_repo.get_by_id(guardrail_id)
        if guardrail is None:
            raise NotFoundError("Guardrail", guardrail_id)
        return guardrail

    async def get_many(self, guardrail_ids: List[str]) -> List[Guardrail]:
        """Resolve ids in order; any unknown id is a not-found error."""
        guardrails = await self.guardrail_repo.get_many(guardrail_ids)
        found = {g.id for g in guardrails}
        for guardrail_id in guardrail_ids:
            if guardrail_id not in found:
                raise NotFoundError("Guardrail", guardrail_id)
        return guardrails

    async def evaluate(
        self,
        guardrails: List[Guardrail],
        query: str,
        query_embedding: Optional[List[float]] = None,
    ) -> List[TriggeredGuardrail]:
        """Run every guardrail against the query; returns the ones that fired."""
        if not guardrails:
            return []
        if query_embedding is None:
            query_embedding = await self.search.embed(query)

        triggered: List[TriggeredGuardrail] = []
        for guardrail in guardrails:
            config = guardrail.source_config
            hits = await self.search.search(
                [config["knowledgeBaseId"]],
                query,
                threshold=config.get("threshold", settings.GUARDRAIL_DEFAULT_THRESHOLD),
                top_k=1,
                query_embedding=query_embedding,
            )
            if not hits:
                continue

            score = hits[0].score
            logger.info(f"[GUARDRAIL] '{guardrail.name}' triggered (score={score:.3f}, "
                        f"blocking={guardrail.response_blocking})")
            triggered.append(TriggeredGuardrail(
                id=guardrail.id,
                name=guardrail.name,
                level=config.get("level", settings.GUARDRAIL_DEFAULT_LEVEL),
                source=guardrail.source_name,
                message=config.get("message", settings.GUARDRAIL_DEFAULT_MESSAGE),
                score=score,
                blocking=guardrail.response_blocking,
            ))
        return triggered


def is_blocked(triggered: List[TriggeredGuardrail]) -> bool:
    """Block wins: one blocking guardrail is enough to suppress the answer."""
    return any(t.blocking for t in triggered)
