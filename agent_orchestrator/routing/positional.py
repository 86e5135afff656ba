"""
Positional references.

PositionalResolver turns "the second one", "#3" or "item 4" into a 1-based
position against the most recent result list. PositionalReferenceCoordinator
then maps that position to an entity, fetches its details and remembers it
as the selected entity for follow-up questions.
"""

import logging
import re
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from ..config import PositionalConfig
from ..llm.interface import LLMProvider, generate_with_timeout
from ..prompts import Template, render
from ..repositories.entity import EntityStore
from ..schemas.decisions import TurnReply
from ..services.policy import AgentPolicy
from ..state.models import SELECTED_ENTITY_CONTEXT, SessionContext
from . import follow_up_state
from .intent_classifier import IntentClassifier

if TYPE_CHECKING:
    from ..federation.node_routing import NodeRoutingCoordinator

logger = logging.getLogger(__name__)


class PositionalResolver:
    def __init__(
        self,
        classifier: IntentClassifier,
        llm: Optional[LLMProvider] = None,
        config: Optional[PositionalConfig] = None,
        timeout: float = 15.0,
    ):
        self.classifier = classifier
        self.llm = llm
        self.config = config or PositionalConfig()
        self.timeout = timeout

    @property
    def ai_enabled(self) -> bool:
        return self.config.enabled and self.llm is not None

    async def resolve_position(self, message: str, context: SessionContext) -> Optional[int]:
        if not follow_up_state.has_entity_list_context(context):
            return None

        if not self.ai_enabled:
            return self.resolve_with_rules(message, context)

        try:
            raw = await generate_with_timeout(
                self.llm,
                self.build_prompt(message, context),
                timeout=self.timeout,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
            parsed, position = self.parse_position(raw)
            if parsed:
                return self._within_max(position)
            logger.debug(f"Positional resolver could not parse: {raw[:120]!r}")
        except Exception as e:
            logger.warning(f"Positional resolution failed: {e}")

        if self.config.rules_fallback_on_ai_failure:
            return self.resolve_with_rules(message, context)
        return None

    def resolve_with_rules(self, message: str, context: SessionContext) -> Optional[int]:
        if not (
            self.classifier.is_positional_reference(message)
            or self.classifier.is_option_selection(message, context)
        ):
            return None

        position = self._within_max(self.classifier.extract_position(message))
        if position is None:
            return None

        # Rules only accept positions that exist in the presented list
        last_position = _last_listed_position(context)
        if last_position is not None and position > last_position:
            return None
        return position

    def parse_position(self, content: str) -> Tuple[bool, Optional[int]]:
        """Returns (understood, position). NONE is understood with no position."""
        key = re.escape(self.config.response_key)
        none_value = re.escape(self.config.none_value)
        match = re.search(rf"{key}:\s*(\d+|{none_value})", content, re.IGNORECASE)
        if not match:
            return False, None
        value = match.group(1)
        if value.upper() == self.config.none_value.upper():
            return True, None
        return True, int(value)

    def build_prompt(self, message: str, context: SessionContext) -> str:
        return render(
            Template.POSITIONAL_REFERENCE,
            list_context=follow_up_state.format_entity_list_context(context),
            message=message,
            response_key=self.config.response_key,
            none_value=self.config.none_value,
        )

    def _within_max(self, position: Optional[int]) -> Optional[int]:
        if position is None or position < 1 or position > self.config.max_position:
            return None
        return position


def _last_listed_position(context: SessionContext) -> Optional[int]:
    entity_list = context.last_entity_list
    if entity_list is not None and entity_list.size:
        return entity_list.last_position
    history_ids = follow_up_state.latest_history_entity_ids(context)
    if history_ids:
        return len(history_ids)
    return None


class PositionalReferenceCoordinator:
    def __init__(
        self,
        resolver: PositionalResolver,
        entity_store: EntityStore,
        policy: AgentPolicy,
        node_router: Optional["NodeRoutingCoordinator"] = None,
    ):
        self.resolver = resolver
        self.entity_store = entity_store
        self.policy = policy
        self.node_router = node_router

    async def handle(self, message: str, context: SessionContext) -> TurnReply:
        position = await self.resolver.resolve_position(message, context)
        if position is None:
            return TurnReply(reply=self.policy.positional_unknown(), status="needs_input")

        entity_type, entity_ids, start, node_ref = self._current_list(context)
        index = position - start
        if index < 0 or index >= len(entity_ids):
            return TurnReply(reply=self.policy.positional_not_found(position), status="needs_input")

        entity_id = entity_ids[index]

        if node_ref and self.node_router is not None:
            logger.info(f"Positional item {position} lives on node '{node_ref}', forwarding lookup")
            lookup = self.policy.option_remote_lookup(entity_type, entity_id)
            return await self.node_router.route_to_node(node_ref, lookup, context)

        entity = await self.entity_store.find(entity_type, "id", entity_id)
        if entity is None:
            return TurnReply(
                reply=self.policy.positional_details_unavailable(entity_type),
                status="failed",
            )

        context.metadata[SELECTED_ENTITY_CONTEXT] = {
            "entity_id": entity_id,
            "entity_type": entity_type,
            "entity_data": entity,
            "selected_via": "positional_reference",
            "position": position,
        }
        return TurnReply(
            reply=self.policy.selected_option(position, entity),
            metadata={"entity_id": entity_id, "entity_type": entity_type},
        )

    @staticmethod
    def _current_list(context: SessionContext) -> Tuple[str, List[Any], int, Optional[str]]:
        """Latest assistant-attached ids win over the stored list."""
        for message in reversed(context.conversation_history):
            if message.role == "assistant" and message.metadata.get("entity_ids"):
                return (
                    message.metadata.get("entity_type") or "item",
                    list(message.metadata["entity_ids"]),
                    int(message.metadata.get("start_position", 1)),
                    message.metadata.get("node_ref"),
                )
        entity_list = context.last_entity_list
        if entity_list is None:
            return "item", [], 1, None
        return (
            entity_list.entity_type or "item",
            list(entity_list.entity_ids),
            entity_list.start_position,
            entity_list.node_ref,
        )
