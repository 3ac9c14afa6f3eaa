# services/agent_service.py
"""Agents: a template (system prompt), ordered execution layers and guardrails."""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import requests

from config import settings
from core.domain import (
    Agent, AnswerFragment, ChunkSearchResult, ErrorCode, ExecutionLayer, ExecutionLayerType,
    NotFoundError, QueryResult, ServiceError, Template
)
from core.interfaces import IAgentRepository, IKnowledgeBaseRepository
from services.guardrail_service import GuardrailService, is_blocked
from services.query_service import (
    AnswerComposer, QueryService, build_context, history_to_messages,
    validate_query, validate_search_params
)
from services.retrieval import SimilaritySearch

logger = logging.getLogger(settings.LOGGER_NAME)

HTTP_METHODS = {"GET", "POST"}


class AgentService:
    def __init__(
        self,
        agent_repo: IAgentRepository,
        kb_repo: IKnowledgeBaseRepository,
        guardrails: GuardrailService,
        queries: QueryService,
        search: SimilaritySearch,
        composer: AnswerComposer,
    ):
        self.agent_repo = agent_repo
        self.kb_repo = kb_repo
        self.guardrails = guardrails
        self.queries = queries
        self.search = search
        self.composer = composer

    # ============ TEMPLATES & LAYERS ============

    async def create_template(self, name: str, content: str) -> Template:
        name, content = (name or "").strip(), (content or "").strip()
        if not name or not content:
            raise ServiceError("Template name and content are required", ErrorCode.VALIDATION_ERROR)
        return await self.agent_repo.create_template(name, content)

    async def create_execution_layer(self, name: str, description: str, layer_type: str,
                                     config: Dict[str, Any]) -> ExecutionLayer:
        name = (name or "").strip()
        if not name:
            raise ServiceError("Execution layer name is required", ErrorCode.VALIDATION_ERROR)
        try:
            parsed_type = ExecutionLayerType(layer_type)
        except ValueError:
            allowed = ", ".join(t.value for t in ExecutionLayerType)
            raise ServiceError(f"Unknown execution layer type '{layer_type}'. Allowed: {allowed}",
                               ErrorCode.VALIDATION_ERROR)

        config = config or {}
        if parsed_type == ExecutionLayerType.KNOWLEDGE_BASE:
            kb_id = config.get("knowledgeBaseId")
            if not kb_id:
                raise ServiceError("config.knowledgeBaseId is required", ErrorCode.VALIDATION_ERROR)
            if await self.kb_repo.get_by_id(kb_id) is None:
                raise NotFoundError("Knowledge base", kb_id)
            config = {"knowledgeBaseId": kb_id}
        else:
            url = config.get("url") or ""
            if not url.startswith(("http://", "https://")):
                raise ServiceError("config.url must be an http(s) URL", ErrorCode.VALIDATION_ERROR)
            method = (config.get("method") or "GET").upper()
            if method not in HTTP_METHODS:
                raise ServiceError(f"config.method must be one of {sorted(HTTP_METHODS)}",
                                   ErrorCode.VALIDATION_ERROR)
            headers = config.get("headers") or {}
            if not isinstance(headers, dict):
                raise ServiceError("config.headers must be an object", ErrorCode.VALIDATION_ERROR)
            config = {"url": url, "method": method, "headers": headers}

        layer = await self.agent_repo.create_execution_layer(name, description or "", parsed_type.value, config)
        logger.info(f"[AGENT] Created {parsed_type.value} execution layer '{name}'")
        return layer

    # ============ AGENTS ============

    async def _require_template(self, template_id: str) -> Template:
        template = await self.agent_repo.get_template(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)
        return template

    async def _require_layers(self, layer_ids: List[str]) -> List[ExecutionLayer]:
        layers = await self.agent_repo.get_execution_layers(layer_ids)
        found = {layer.id for layer in layers}
        for layer_id in layer_ids:
            if layer_id not in found:
                raise NotFoundError("Execution layer", layer_id)
        return layers

    async def create_agent(self, name: str, template_id: str,
                           execution_layer_ids: List[str], guardrail_ids: List[str]) -> Agent:
        name = (name or "").strip()
        if not name:
            raise ServiceError("Agent name is required", ErrorCode.VALIDATION_ERROR)
        await self._require_template(template_id)
        await self._require_layers(execution_layer_ids)
        await self.guardrails.get_many(guardrail_ids)

        agent = await self.agent_repo.create_agent(name, template_id, execution_layer_ids, guardrail_ids)
        logger.info(f"[AGENT] Created agent '{name}' ({len(execution_layer_ids)} layers, "
                    f"{len(guardrail_ids)} guardrails)")
        return agent

    async def get_agent(self, agent_id: str) -> Agent:
        agent = await self.agent_repo.get_agent(agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        return agent

    async def patch_agent(self, agent_id: str, changes: Dict[str, Any]) -> Agent:
        """Apply a partial update; only the keys present in changes are touched."""
        await self.get_agent(agent_id)

        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
            if not changes["name"]:
                raise ServiceError("Agent name must not be empty", ErrorCode.VALIDATION_ERROR)
        if "template_id" in changes:
            await self._require_template(changes["template_id"])
        if "execution_layer_ids" in changes:
            await self._require_layers(changes["execution_layer_ids"])
        if "guardrail_ids" in changes:
            await self.guardrails.get_many(changes["guardrail_ids"])

        agent = await self.agent_repo.update_agent(agent_id, changes)
        logger.info(f"[AGENT] Updated agent {agent_id}: {sorted(changes)}")
        return agent

    # ============ QUERY ============

    async def query(
        self,
        agent_id: str,
        q: str,
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

        agent = await self.get_agent(agent_id)
        template = await self._require_template(agent.template_id)
        layers = await self._require_layers(agent.execution_layer_ids)
        guardrails = await self.guardrails.get_many(agent.guardrail_ids)

        conversation_id, history = await self.queries.open_conversation(conversation_id, agent_id=agent.id)
        query_id = str(uuid.uuid4())

        # Guardrails run before any answer is produced
        query_embedding = await self.search.embed(q)
        triggered = await self.guardrails.evaluate(guardrails, q, query_embedding)
        if is_blocked(triggered):
            logger.info(f"[AGENT] {query_id}: blocked by {[t.name for t in triggered if t.blocking]}")
            await self.queries.record_turn(conversation_id, query_id, q, [])
            return QueryResult(query_id=query_id, conversation_id=conversation_id, fragments=[],
                               triggered_guardrails=triggered, blocked=True)

        search_args = dict(threshold=threshold, top_k=top_k, file_ids=file_ids,
                           hybrid=hybrid_search, query_embedding=query_embedding)
        fragments = None
        if self.composer.generative and layers:
            fragments = await self._run_tool_loop(q, template, layers, history, search_args)
        if fragments is None:
            results = await self._search_layers(q, layers, **search_args)
            fragments = AnswerComposer.extractive(results)

        await self.queries.record_turn(conversation_id, query_id, q, fragments)
        logger.info(f"[AGENT] {query_id}: {len(fragments)} fragments, {len(triggered)} guardrails triggered")

        if not with_reference:
            for fragment in fragments:
                fragment.reference = None
        return QueryResult(query_id=query_id, conversation_id=conversation_id, fragments=fragments,
                           triggered_guardrails=triggered)

    async def _search_layers(self, q: str, layers: List[ExecutionLayer], *, threshold: float,
                             top_k: int, file_ids: Optional[List[str]], hybrid: bool,
                             query_embedding: List[float]) -> List[ChunkSearchResult]:
        """Retrieve from knowledge base layers in layer order, up to top_k chunks overall."""
        results: List[ChunkSearchResult] = []
        for layer in layers:
            if layer.type != ExecutionLayerType.KNOWLEDGE_BASE or len(results) >= top_k:
                continue
            results.extend(await self.search.search(
                [layer.config["knowledgeBaseId"]], q, threshold=threshold,
                top_k=top_k - len(results), document_ids=file_ids or None,
                hybrid=hybrid, query_embedding=query_embedding
            ))
        return results

    # ============ FUNCTION CALLING ============

    @staticmethod
    def _tool_name(index: int) -> str:
        return f"layer_{index}"

    def _tool_definitions(self, layers: List[ExecutionLayer]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": self._tool_name(i),
                    "description": f"{layer.name}: {layer.description}".strip(": "),
                    "parameters": {
                        "type": "object",
                        "properties": {"query": {"type": "string", "description": "What to look up"}},
                        "required": ["query"],
                    },
                },
            }
            for i, layer in enumerate(layers)
        ]

    async def _run_tool_loop(self, q: str, template: Template, layers: List[ExecutionLayer],
                             history: List[Dict[str, Any]],
                             search_args: Dict[str, Any]) -> Optional[List[AnswerFragment]]:
        """
        Let the model call execution layers until it answers (bounded rounds).
        Returns None when the model is unreachable so the caller can answer extractively.
        """
        tools = self._tool_definitions(layers)
        # Fallback grounding when the model answers without calling a knowledge base tool
        retrieved = await self._search_layers(q, layers, **search_args)
        has_kb_layer = any(layer.type == ExecutionLayerType.KNOWLEDGE_BASE for layer in layers)
        by_name = {self._tool_name(i): layer for i, layer in enumerate(layers)}
        messages: List[Dict[str, Any]] = [{"role": "system", "content": template.content}]
        messages.extend(history_to_messages(history))
        messages.append({"role": "user", "content": q})
        references: List[ChunkSearchResult] = []

        for round_no in range(settings.AGENT_MAX_TOOL_ROUNDS + 1):
            # The last round withholds tools so the model has to answer
            offer_tools = tools if round_no < settings.AGENT_MAX_TOOL_ROUNDS else None
            reply = await asyncio.to_thread(self.composer.llm_service.chat, messages, offer_tools)
            if reply["status"] != "success":
                logger.warning(f"[AGENT] LLM unavailable ({reply.get('error')}); answering extractively")
                return None

            message = reply["message"]
            tool_calls = message.get("tool_calls") or []
            if not tool_calls or offer_tools is None:
                answer = (message.get("content") or "").strip()
                if not answer:
                    return []
                grounding = references or retrieved
                if not grounding and has_kb_layer:
                    logger.info("[AGENT] No retrieved passage supports the answer; dropping it")
                    return []
                best = max(grounding, key=lambda r: r.score) if grounding else None
                return [AnswerFragment(answer=answer, reference=best)]

            messages.append(message)
            for call in tool_calls:
                function = call.get("function") or {}
                layer = by_name.get(function.get("name"))
                arguments = function.get("arguments") or {}
                if isinstance(arguments, str):
                    try:
                        arguments = json.loads(arguments)
                    except ValueError:
                        arguments = {}
                if not isinstance(arguments, dict):
                    arguments = {}
                tool_query = arguments.get("query")
                if not isinstance(tool_query, str) or not tool_query.strip():
                    tool_query = q

                if layer is None:
                    output = f"error: unknown tool {function.get('name')}"
                elif layer.type == ExecutionLayerType.KNOWLEDGE_BASE:
                    hits = await self.search.search(
                        [layer.config["knowledgeBaseId"]], tool_query,
                        threshold=search_args["threshold"], top_k=search_args["top_k"],
                        document_ids=search_args["file_ids"] or None, hybrid=search_args["hybrid"],
                    )
                    references.extend(hits)
                    output = build_context(hits) or "No relevant passages found."
                else:
                    output = await asyncio.to_thread(call_api_layer, layer, tool_query)

                logger.info(f"[AGENT] Tool '{layer.name if layer else function.get('name')}' called")
                messages.append({"role": "tool", "content": output})

        return []


def call_api_layer(layer: ExecutionLayer, query: str) -> str:
    """Invoke an api_call layer; errors are returned as text for the model to read."""
    config = layer.config
    try:
        if config.get("method", "GET") == "POST":
            response = requests.post(config["url"], json={"query": query},
                                     headers=config.get("headers") or {}, timeout=settings.REQUEST_TIMEOUT)
        else:
            response = requests.get(config["url"], params={"q": query},
                                    headers=config.get("headers") or {}, timeout=settings.REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.text[:settings.API_CALL_RESPONSE_LIMIT]
    except requests.exceptions.RequestException as e:
        logger.error(f"[AGENT] API layer '{layer.name}' failed: {e}")
        return f"error: {e}"
