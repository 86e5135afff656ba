"""
Chat Service - Application Orchestration Layer

This service is the entry point for all conversation operations. It loads the
session, asks the MessageRouter for one decision, runs the matching handler
and saves the session once at the end of the turn.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from ..execution.engine import WorkflowEngine
from ..federation.collectors import CollectorExecutionCoordinator
from ..federation.node_routing import NodeRoutingCoordinator
from ..knowledge.interface import KnowledgeSearch
from ..llm.interface import LLMProvider, generate_with_timeout
from ..prompts import Template, render
from ..repositories.session import SessionStore
from ..routing import follow_up_state
from ..routing.message_router import COUNTING_PATTERN, SELECT_ENTITY, MessageRouter
from ..routing.positional import PositionalReferenceCoordinator
from ..schemas.decisions import RoutingAction, RoutingDecision, TurnReply
from ..state.models import RAG_LAST_METADATA, EntityList, SessionContext
from .exceptions import OrchestratorError
from .policy import AgentPolicy

logger = logging.getLogger(__name__)

CONVERSATION_WINDOW = 6
MUTATING_OPERATIONS = ("create", "update", "delete")
FALLBACK_CHAT_REPLY = (
    "I'm here to help. You can ask me to create records, look things up, "
    "or ask about results I've shown you."
)


class ChatService:
    def __init__(
        self,
        session_store: SessionStore,
        router: MessageRouter,
        engine: WorkflowEngine,
        collectors: CollectorExecutionCoordinator,
        positional: PositionalReferenceCoordinator,
        knowledge: KnowledgeSearch,
        policy: AgentPolicy,
        node_router: Optional[NodeRoutingCoordinator] = None,
        llm: Optional[LLMProvider] = None,
        ttl: Optional[int] = None,
        timeout: float = 15.0,
    ):
        self.session_store = session_store
        self.router = router
        self.engine = engine
        self.collectors = collectors
        self.positional = positional
        self.knowledge = knowledge
        self.policy = policy
        self.node_router = node_router
        self.llm = llm
        self.ttl = ttl
        self.timeout = timeout

    def create_session(self, user_id: Optional[str] = None) -> SessionContext:
        """Creates a new empty session."""
        context = SessionContext(session_id=str(uuid.uuid4()), user_id=user_id)
        context.persist(self.session_store, self.ttl)
        return context

    def get_session(self, session_id: str) -> Optional[SessionContext]:
        """Retrieves a session (for resuming)."""
        return self.session_store.load(session_id)

    def delete_session(self, session_id: str) -> bool:
        return self.session_store.delete(session_id)

    async def process_message(
        self, session_id: str, text: str, user_id: Optional[str] = None
    ) -> TurnReply:
        """
        One turn:
        1. Load (or start) the session
        2. Route
        3. Run the handler for the decision
        4. Record the reply and save the session
        """
        context = SessionContext.from_store(self.session_store, session_id, user_id)
        context.add_user_message(text)

        try:
            decision = await self.router.decide(text, context)
            reply = await self._dispatch(decision, text, context)
            reply.metadata.setdefault("action", decision.action.value)
        except OrchestratorError as e:
            logger.error(f"Turn failed for session {session_id}: {e}")
            reply = TurnReply(reply=self.policy.generic_error(), status="failed")
        except Exception:
            # Collaborator failures (search backend, entity store, permission checks)
            logger.exception(f"Unexpected error handling turn for session {session_id}")
            reply = TurnReply(reply=self.policy.generic_error(), status="failed")

        context.add_assistant_message(reply.reply, reply.metadata)
        context.persist(self.session_store, self.ttl)
        return reply

    # ==========================================================================
    # Dispatch
    # ==========================================================================

    async def _dispatch(self, decision: RoutingDecision, message: str, context: SessionContext) -> TurnReply:
        action = decision.action

        if action == RoutingAction.CONTINUE_WORKFLOW:
            return await self.engine.continue_workflow(message, context)

        if action == RoutingAction.START_WORKFLOW:
            return await self.engine.start(decision.resource_name, context, message)

        if action == RoutingAction.CANCEL_WORKFLOW:
            return self.engine.cancel(context)

        if action == RoutingAction.START_COLLECTOR:
            return await self.collectors.execute(decision.resource_name, message, context)

        if action == RoutingAction.ROUTE_TO_REMOTE_NODE:
            if self.node_router is None:
                return TurnReply(reply=self.policy.node_not_found(decision.resource_name or ""), status="failed")
            return await self.node_router.route_to_node(decision.resource_name, message, context)

        if action == RoutingAction.SEARCH_KNOWLEDGE:
            return await self._handle_knowledge(decision, message, context)

        return await self._handle_conversational(message, context)

    async def _handle_knowledge(
        self, decision: RoutingDecision, message: str, context: SessionContext
    ) -> TurnReply:
        if decision.operation == SELECT_ENTITY:
            return await self.positional.handle(message, context)

        if decision.operation == "query" and COUNTING_PATTERN.search(message):
            aggregated = await self.knowledge.aggregate([], message, context.user_id)
            if aggregated:
                return TurnReply(reply=self._format_aggregate(aggregated), metadata={"aggregate": aggregated})

        history = context.recent_history(CONVERSATION_WINDOW)
        result = await self.knowledge.search(
            message, [], history, {"operation": decision.operation}, context.user_id
        )

        if not result.content.strip():
            if decision.operation in MUTATING_OPERATIONS:
                return TurnReply(reply=self.policy.no_collector(message), status="failed")
            return TurnReply(reply=self.policy.no_relevant_info())

        reply_metadata: Dict[str, Any] = {"sources": result.sources}
        entity_ids = result.metadata.get("entity_ids")
        if entity_ids:
            entity_list = EntityList(
                entity_type=result.metadata.get("entity_type"),
                entity_ids=list(entity_ids),
                entity_data=list(result.metadata.get("entity_data") or []),
                start_position=int(result.metadata.get("start_position") or 1),
            )
            context.remember_entity_list(entity_list)
            context.metadata[RAG_LAST_METADATA] = {
                "entity_ids": entity_list.entity_ids,
                "entity_type": entity_list.entity_type,
            }
            reply_metadata.update({
                "entity_ids": entity_list.entity_ids,
                "entity_type": entity_list.entity_type,
                "start_position": entity_list.start_position,
            })
        return TurnReply(reply=result.content, metadata=reply_metadata)

    @staticmethod
    def _format_aggregate(aggregated: Dict[str, Any]) -> str:
        lines: List[str] = []
        for collection, summary in aggregated.items():
            line = f"{collection}: {summary.get('count', 0)} record(s)"
            if "sum" in summary:
                line += f", total {summary['sum']:,.2f}"
            lines.append(line)
        return "\n".join(lines)

    async def _handle_conversational(self, message: str, context: SessionContext) -> TurnReply:
        if self.llm is None:
            return TurnReply(reply=FALLBACK_CHAT_REPLY)

        # The current message is rendered separately
        history = context.recent_history(CONVERSATION_WINDOW + 1)[:-1]
        list_context = follow_up_state.format_entity_list_context(context)
        prompt = render(
            Template.CONVERSATIONAL,
            selected_entity=follow_up_state.selected_entity_context(context),
            list_context=list_context if list_context != "(none)" else None,
            history=history,
            message=message,
        )
        try:
            reply = await generate_with_timeout(self.llm, prompt, timeout=self.timeout, max_tokens=500, temperature=0.7)
        except Exception as e:
            logger.warning(f"Conversational reply failed: {e}")
            return TurnReply(reply=FALLBACK_CHAT_REPLY)
        return TurnReply(reply=reply.strip() or FALLBACK_CHAT_REPLY)
