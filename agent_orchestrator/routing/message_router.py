"""
Message Router.

Produces exactly one RoutingDecision per turn. The checks are priority
ordered and short-circuit:

1. Session pinned to a remote node -> keep forwarding, re-route, or un-pin
   and continue at step 5 as if the session had never been pinned.
2. A collector is running -> continue it.
3. A workflow is active -> continue it (or cancel it on a cancel word).
4. Collector trigger -> start_collector; workflow trigger -> start_workflow;
   positional pick from the last list -> search_knowledge (select_entity).
5. Federation match -> route_to_remote_node.
6. CRUD/chat classification, with a keyword fallback, then the follow-up guard.

The router only decides; it never executes a handler.
"""

import asyncio
import logging
import re
from typing import Optional

from ..execution.declarative import matches_word
from ..execution.registry import WorkflowRegistry
from ..config import WorkflowEngineConfig
from ..federation.collectors import CollectorRegistry
from ..federation.node_routing import NodeRoutingCoordinator
from ..federation.routed_session import RoutedAction, RoutedSessionPolicy
from ..llm.interface import LLMProvider
from ..prompts import Template, render
from ..schemas.decisions import CrudIntent, RoutingAction, RoutingDecision
from ..services.exceptions import ClassificationError
from ..state.models import ACTIVE_COLLECTOR, SessionContext
from . import follow_up_state
from .follow_up import FollowUpResolver
from .intent_classifier import IntentClassifier, contains_any_word

logger = logging.getLogger(__name__)

SELECT_ENTITY = "select_entity"
CRUD_HISTORY_WINDOW = 4

COUNTING_PATTERN = re.compile(
    r"\b(how many|how much|count|total|number of|amount of|sum|average|statistics)\b",
    re.IGNORECASE,
)
CREATE_WORDS = ["create", "add", "new", "register", "make"]
UPDATE_WORDS = ["update", "change", "edit", "modify", "rename"]
DELETE_WORDS = ["delete", "remove", "erase"]


class MessageRouter:
    def __init__(
        self,
        classifier: IntentClassifier,
        follow_up: FollowUpResolver,
        workflows: WorkflowRegistry,
        collectors: CollectorRegistry,
        node_router: Optional[NodeRoutingCoordinator] = None,
        routed_policy: Optional[RoutedSessionPolicy] = None,
        llm: Optional[LLMProvider] = None,
        engine_config: Optional[WorkflowEngineConfig] = None,
        federation_enabled: bool = True,
        timeout: float = 15.0,
    ):
        self.classifier = classifier
        self.follow_up = follow_up
        self.workflows = workflows
        self.collectors = collectors
        self.node_router = node_router
        self.routed_policy = routed_policy
        self.llm = llm
        self.engine_config = engine_config or WorkflowEngineConfig()
        self.federation_enabled = federation_enabled
        self.timeout = timeout

    async def decide(self, message: str, context: SessionContext) -> RoutingDecision:
        decision = await self._decide(message, context)
        logger.info(
            f"Routing decision for session {context.session_id}: {decision.action.value}"
            f" resource={decision.resource_name} ({decision.reasoning}) message={message[:100]!r}"
        )
        return decision

    async def _decide(self, message: str, context: SessionContext) -> RoutingDecision:
        # 1. Pinned session
        if context.routed_to_node is not None:
            decision = await self._evaluate_pinned(message, context)
            if decision is not None:
                return decision
            return await self._decide_unpinned(message, context)

        # 2-3. Work in progress
        if context.has_active_workflow:
            if matches_word(message, self.engine_config.cancel_words):
                return RoutingDecision(
                    action=RoutingAction.CANCEL_WORKFLOW,
                    resource_name=context.current_workflow,
                    reasoning="Cancel requested during an active workflow",
                )
            if context.metadata.get(ACTIVE_COLLECTOR):
                return RoutingDecision(
                    action=RoutingAction.CONTINUE_WORKFLOW,
                    resource_name=context.metadata[ACTIVE_COLLECTOR],
                    reasoning="Collector session in progress",
                )
            return RoutingDecision(
                action=RoutingAction.CONTINUE_WORKFLOW,
                resource_name=context.current_workflow,
                reasoning="Workflow in progress",
            )

        if matches_word(message, self.engine_config.cancel_words) and len(message.split()) <= 2:
            return RoutingDecision(
                action=RoutingAction.CANCEL_WORKFLOW,
                reasoning="Cancel requested with no active workflow",
            )

        # 4. Triggers and positional picks
        collector = await self.collectors.find_config_for_message(message, context.user_id)
        if collector is not None:
            return RoutingDecision(
                action=RoutingAction.START_COLLECTOR,
                resource_name=collector.name,
                reasoning="Collector trigger matched",
            )

        definition = self.workflows.find_by_trigger(message)
        if definition is not None:
            return RoutingDecision(
                action=RoutingAction.START_WORKFLOW,
                resource_name=definition.workflow_id,
                reasoning="Workflow trigger matched",
            )

        if self._is_positional_pick(message, context):
            return RoutingDecision(
                action=RoutingAction.SEARCH_KNOWLEDGE,
                operation=SELECT_ENTITY,
                reasoning="Positional reference to the previous list",
            )

        return await self._decide_unpinned(message, context)

    async def _evaluate_pinned(self, message: str, context: SessionContext) -> Optional[RoutingDecision]:
        pinned = context.routed_to_node
        if self.routed_policy is None:
            context.unpin_node()
            return None

        evaluation = await self.routed_policy.evaluate(message, context)
        if evaluation.action == RoutedAction.CONTINUE:
            return RoutingDecision(
                action=RoutingAction.ROUTE_TO_REMOTE_NODE,
                resource_name=pinned.node_slug,
                reasoning=f"Routed session continues: {evaluation.reason}",
            )
        if evaluation.action == RoutedAction.RE_ROUTE:
            return RoutingDecision(
                action=RoutingAction.ROUTE_TO_REMOTE_NODE,
                resource_name=evaluation.node_slug,
                reasoning=f"Routed session re-routed: {evaluation.reason}",
            )

        logger.info(f"Session {context.session_id} un-pinned from '{pinned.node_slug}': {evaluation.reason}")
        context.unpin_node()
        return None

    def _is_positional_pick(self, message: str, context: SessionContext) -> bool:
        if not follow_up_state.has_entity_list_context(context):
            return False
        return (
            self.classifier.is_positional_reference(message)
            or self.classifier.is_option_selection(message, context)
        )

    async def _decide_unpinned(self, message: str, context: SessionContext) -> RoutingDecision:
        # 5. Federation
        if self.federation_enabled and self.node_router is not None:
            capability = await self.node_router.detect_remote_capability(message, context)
            if capability is not None:
                return RoutingDecision(
                    action=RoutingAction.ROUTE_TO_REMOTE_NODE,
                    resource_name=capability.node_slug,
                    reasoning=f"Remote node owns '{capability.entity_key}' ({capability.source})",
                )

        # 6. Default classification
        decision = await self.classify_crud(message, context)
        return await self.follow_up.apply_guard(decision, message, context)

    async def classify_crud(self, message: str, context: SessionContext) -> RoutingDecision:
        if self.llm is not None:
            try:
                intent = await self._classify_with_model(message, context)
                return self._decision_for_intent(intent.intent, intent.reasoning, intent.confidence)
            except Exception as e:
                logger.warning(f"CRUD intent classification failed, using keywords: {e}")

        return self.classify_with_keywords(message)

    async def _classify_with_model(self, message: str, context: SessionContext) -> CrudIntent:
        history = [m for m in context.recent_history(CRUD_HISTORY_WINDOW + 1) if m.content != message]
        prompt = render(Template.CRUD_INTENT, message=message, history=history[-CRUD_HISTORY_WINDOW:])
        result = await asyncio.wait_for(
            self.llm.generate_structured_output(
                messages=[{"role": "user", "content": prompt}],
                response_model=CrudIntent,
                temperature=0.0,
            ),
            timeout=self.timeout,
        )
        if not isinstance(result, CrudIntent):
            raise ClassificationError(f"Unexpected structured output: {result!r}")
        return result

    def classify_with_keywords(self, message: str) -> RoutingDecision:
        if contains_any_word(message, DELETE_WORDS):
            return self._decision_for_intent("delete", "Keyword fallback: deletion vocabulary")
        if contains_any_word(message, UPDATE_WORDS):
            return self._decision_for_intent("update", "Keyword fallback: update vocabulary")
        if contains_any_word(message, CREATE_WORDS):
            return self._decision_for_intent("create", "Keyword fallback: creation vocabulary")
        if COUNTING_PATTERN.search(message) or self.classifier.is_explicit_list_request(message):
            return self._decision_for_intent("query", "Keyword fallback: counting or listing vocabulary")
        return self._decision_for_intent("chat", "Keyword fallback: no data vocabulary")

    @staticmethod
    def _decision_for_intent(intent: str, reasoning: str, confidence: float = 0.5) -> RoutingDecision:
        if intent == "chat":
            return RoutingDecision(
                action=RoutingAction.CONVERSATIONAL, reasoning=reasoning, confidence=confidence
            )
        return RoutingDecision(
            action=RoutingAction.SEARCH_KNOWLEDGE,
            operation=intent,
            reasoning=reasoning,
            confidence=confidence,
        )
