"""
Node routing coordinator.

Matches a fresh message against the capability catalog of the remote nodes
and forwards the turn to the node that owns the data. A successful forward
pins the session to that node and keeps the node's result list so that
positional follow-ups ("the second one") keep working locally.
"""

import logging
from typing import Any, Dict, Optional

from ..config import NodeRoutingConfig
from ..domain.models import NodeCapability, RemoteNode
from ..llm.interface import LLMProvider, generate_with_timeout
from ..prompts import Template, render
from ..schemas.decisions import TurnReply
from ..services.policy import AgentPolicy
from ..state.models import EntityList, RoutedNode, SessionContext
from .catalog import CapabilityCatalog, normalize_key
from .forwarder import ForwardResult, NodeForwarder
from .node_registry import NodeRegistry

logger = logging.getLogger(__name__)


class NodeRoutingCoordinator:
    def __init__(
        self,
        registry: NodeRegistry,
        forwarder: NodeForwarder,
        policy: AgentPolicy,
        llm: Optional[LLMProvider] = None,
        config: Optional[NodeRoutingConfig] = None,
        timeout: float = 15.0,
    ):
        self.registry = registry
        self.forwarder = forwarder
        self.policy = policy
        self.llm = llm
        self.config = config or NodeRoutingConfig()
        self.timeout = timeout

    def build_catalog(self) -> CapabilityCatalog:
        return CapabilityCatalog.build(
            self.registry.get_active_nodes(),
            min_keyword_length=self.config.min_keyword_length,
        )

    # ==========================================================================
    # Matching
    # ==========================================================================

    async def detect_remote_capability(
        self, message: str, context: SessionContext
    ) -> Optional[NodeCapability]:
        catalog = self.build_catalog()
        if not len(catalog):
            return None

        # Terse messages inside an ongoing conversation are left to the default path
        if self._is_short_contextual_query(message, context):
            logger.debug("Skipping node capability match for short contextual query")
            return None

        if self.llm is not None:
            try:
                raw = await generate_with_timeout(
                    self.llm,
                    render(Template.NODE_CAPABILITY_MATCH, catalog=catalog.entries, message=message),
                    timeout=self.timeout,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                )
                match = catalog.lookup(raw.strip().splitlines()[0] if raw.strip() else "none")
                if match is not None:
                    logger.info(f"Message matched remote capability '{match.entity_key}' on '{match.node_slug}'")
                return match
            except Exception as e:
                logger.warning(f"Node capability classification failed, using alias match: {e}")

        return catalog.match_in_message(message)

    def _is_short_contextual_query(self, message: str, context: SessionContext) -> bool:
        if len(message.split()) > self.config.short_query_max_words:
            return False
        return any(m.role == "assistant" for m in context.conversation_history)

    def resolve_node_for_routing(self, resource: str) -> Optional[RemoteNode]:
        """Exact slug, then normalized slug/name, then collection ownership."""
        if not resource:
            return None

        node = self.registry.get_node(resource)
        if node is not None and node.is_active:
            return node

        wanted = normalize_key(resource)
        active = self.registry.get_active_nodes()
        for candidate in active:
            if wanted in (normalize_key(candidate.slug), normalize_key(candidate.name)):
                return candidate

        for candidate in active:
            owned = {normalize_key(c) for c in list(candidate.collections) + list(candidate.data_types)}
            if wanted in owned or normalize_key(resource.rstrip("s")) in owned:
                return candidate

        capability = self.build_catalog().lookup(resource)
        if capability is not None:
            return self.registry.get_node(capability.node_slug)
        return None

    # ==========================================================================
    # Forwarding
    # ==========================================================================

    async def route_to_node(
        self,
        resource: str,
        message: str,
        context: SessionContext,
        options: Optional[Dict[str, Any]] = None,
    ) -> TurnReply:
        node = self.resolve_node_for_routing(resource)
        if node is None:
            logger.warning(f"No remote node matches '{resource}'")
            return TurnReply(reply=self.policy.node_not_found(resource), status="failed")

        try:
            result = await self.forwarder.forward(
                node, message, context.session_id, options or {}, context.user_id
            )
        except Exception as e:
            logger.error(f"Forwarding to node '{node.slug}' raised: {e}")
            result = ForwardResult(success=False, error=str(e))

        if not result.success:
            # The pin is left untouched; only the continuation check may un-pin
            return TurnReply(
                reply=self.policy.node_unreachable(node.name, node.url, result.error),
                status="failed",
                metadata={"node_slug": node.slug},
            )

        context.pin_to_node(RoutedNode(node_slug=node.slug, node_name=node.name, node_id=node.node_id))
        reply_metadata: Dict[str, Any] = {"node_slug": node.slug, "node_name": node.name}
        self._remember_entity_list(context, node, result.metadata, reply_metadata)

        logger.info(f"Session {context.session_id} routed to node '{node.slug}'")
        return TurnReply(reply=result.response, metadata=reply_metadata)

    @staticmethod
    def _remember_entity_list(
        context: SessionContext,
        node: RemoteNode,
        metadata: Dict[str, Any],
        reply_metadata: Dict[str, Any],
    ) -> None:
        entity_ids = metadata.get("entity_ids") or []
        entity_data = metadata.get("entity_data") or []
        if not entity_ids and not entity_data:
            return

        entity_list = EntityList(
            entity_type=metadata.get("entity_type"),
            entity_ids=list(entity_ids),
            entity_data=list(entity_data),
            start_position=int(metadata.get("start_position") or 1),
            end_position=metadata.get("end_position"),
            node_ref=node.slug,
        )
        context.remember_entity_list(entity_list)
        reply_metadata.update({
            "entity_ids": entity_list.entity_ids,
            "entity_type": entity_list.entity_type,
            "start_position": entity_list.start_position,
            "node_ref": node.slug,
        })
