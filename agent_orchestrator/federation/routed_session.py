"""
Routed session policy.

Once a session is pinned to a remote node, every later turn is re-checked:
keep forwarding (CONTINUE), move to another node (RE_ROUTE), or stop
forwarding and route locally (LOCAL). Anything the policy cannot establish
ends in LOCAL; continuing is never the default on failure unless configured.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from ..config import RoutedSessionConfig
from ..domain.models import RemoteNode
from ..llm.interface import LLMProvider, generate_with_timeout
from ..prompts import Template, render
from ..state.models import SessionContext
from .catalog import humanize, singularize
from .digest import node_digest, node_summary
from .node_registry import NodeRegistry

logger = logging.getLogger(__name__)

HISTORY_LINE_MAX = 200

FAST_PATH_PATTERNS = [
    re.compile(r"^\d{1,3}$"),
    re.compile(r"^(yes|no|ok|okay|sure|yep|nope|cancel|done|thanks|thank you)$", re.IGNORECASE),
    re.compile(r"^(next|previous|prev|more|back|first|last|show|details|expand)$", re.IGNORECASE),
    re.compile(r"^(next page|prev page|show more|tell me more|go back)$", re.IGNORECASE),
    re.compile(r"^(the )?(first|second|third|fourth|fifth|last|[0-9]+(?:st|nd|rd|th)?) ?(one)?$", re.IGNORECASE),
]
FOLLOW_UP_MARKERS = re.compile(r"\?|\b(it|its|them|those|these|that|this|ones)\b", re.IGNORECASE)


class RoutedAction(str, Enum):
    CONTINUE = "CONTINUE"
    RE_ROUTE = "RE_ROUTE"
    LOCAL = "LOCAL"


@dataclass
class RoutedSessionDecision:
    action: RoutedAction
    node_slug: Optional[str]
    reason: str


class RoutedSessionPolicy:
    def __init__(
        self,
        registry: NodeRegistry,
        llm: Optional[LLMProvider] = None,
        config: Optional[RoutedSessionConfig] = None,
        timeout: float = 15.0,
    ):
        self.registry = registry
        self.llm = llm
        self.config = config or RoutedSessionConfig()
        self.timeout = timeout

    async def should_continue(self, message: str, context: SessionContext) -> bool:
        decision = await self.evaluate(message, context)
        return decision.action == RoutedAction.CONTINUE

    async def evaluate(self, message: str, context: SessionContext) -> RoutedSessionDecision:
        pinned = context.routed_to_node
        if pinned is None:
            return RoutedSessionDecision(RoutedAction.LOCAL, None, "No active routed node")

        node = self.registry.get_node(pinned.node_slug)
        if node is None or not node.is_active:
            return RoutedSessionDecision(RoutedAction.LOCAL, None, "Active node not found")

        if self.is_short_follow_up(message):
            return RoutedSessionDecision(RoutedAction.CONTINUE, node.slug, "Short follow-up detected")

        if self.llm is None:
            return self.evaluate_with_rules(message, context, node)

        try:
            raw = await generate_with_timeout(
                self.llm,
                self.build_prompt(message, context, node),
                timeout=self.timeout,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except Exception as e:
            logger.warning(f"Routed session evaluation failed for node '{node.slug}': {e}")
            if self.config.fallback_continue_on_ai_error:
                return RoutedSessionDecision(RoutedAction.CONTINUE, node.slug, "Evaluation failed, continuing")
            return RoutedSessionDecision(RoutedAction.LOCAL, None, "Evaluation failed, routing locally")

        decision = self.parse_response(raw, node.slug)
        logger.info(
            f"Routed session evaluation for '{node.slug}': {decision.action.value}"
            f" ({decision.reason}) message={message[:100]!r}"
        )
        return decision

    @staticmethod
    def is_short_follow_up(message: str) -> bool:
        """Numbers, confirmations and pagination are continuations of the node's last reply."""
        normalized = message.strip().lower()
        return any(pattern.match(normalized) for pattern in FAST_PATH_PATTERNS)

    def evaluate_with_rules(
        self, message: str, context: SessionContext, node: RemoteNode
    ) -> RoutedSessionDecision:
        """
        Without a model the message must mention the node's vocabulary, or be
        a follow-up question while the recent conversation does.
        """
        vocabulary = self._vocabulary(node)
        if _mentions_any(message, vocabulary):
            return RoutedSessionDecision(RoutedAction.CONTINUE, node.slug, "Message matches node vocabulary")

        if FOLLOW_UP_MARKERS.search(message):
            # Skip the current message, which the caller already appended
            history = [m.content for m in context.recent_history(self.config.history_window + 1)]
            if history and history[-1] == message:
                history = history[:-1]
            if any(_mentions_any(text, vocabulary) for text in history):
                return RoutedSessionDecision(RoutedAction.CONTINUE, node.slug, "Follow-up on node topic")

        return RoutedSessionDecision(RoutedAction.LOCAL, None, "Message does not match node domain")

    def parse_response(self, raw: str, current_slug: str) -> RoutedSessionDecision:
        upper = raw.strip().upper()

        if "CONTINUE" in upper:
            return RoutedSessionDecision(RoutedAction.CONTINUE, current_slug, "Continue on current node")

        match = re.search(r"RE_ROUTE\s*[:=]\s*(\S+)", raw, re.IGNORECASE)
        if match:
            target = match.group(1).strip().strip("'\".,").lower()
            target_node = self.registry.get_node(target)
            if target_node is None or not target_node.is_active:
                return RoutedSessionDecision(RoutedAction.LOCAL, None, f"Unknown re-route target '{target}'")
            if target_node.slug == current_slug:
                return RoutedSessionDecision(RoutedAction.CONTINUE, current_slug, "Re-route target is current node")
            return RoutedSessionDecision(RoutedAction.RE_ROUTE, target_node.slug, "Message belongs to another node")

        if "LOCAL" in upper:
            return RoutedSessionDecision(RoutedAction.LOCAL, None, "Handle locally")

        # Older two-way protocol
        if "DIFFERENT" in upper:
            return RoutedSessionDecision(RoutedAction.LOCAL, None, "Different topic")
        if "RELATED" in upper:
            return RoutedSessionDecision(RoutedAction.CONTINUE, current_slug, "Related topic")

        return RoutedSessionDecision(RoutedAction.LOCAL, None, "Unparseable evaluation")

    def build_prompt(self, message: str, context: SessionContext, node: RemoteNode) -> str:
        other_nodes = [
            node_digest(other)
            for other in self.registry.get_active_nodes()
            if other.slug != node.slug
        ]
        return render(
            Template.ROUTED_SESSION,
            node=node,
            node_summary=node_summary(node),
            other_nodes=other_nodes,
            history=self._history_text(context),
            message=message,
        )

    def _history_text(self, context: SessionContext) -> str:
        lines = []
        for entry in context.recent_history(max(1, self.config.history_window)):
            content = entry.content
            if len(content) > HISTORY_LINE_MAX:
                content = content[:HISTORY_LINE_MAX] + "..."
            lines.append(f"{entry.role}: {content}")
        return "\n".join(lines) if lines else "(none)"

    @staticmethod
    def _vocabulary(node: RemoteNode) -> List[str]:
        words = set()
        for value in list(node.collections) + list(node.data_types) + list(node.keywords) + list(node.domains):
            term = humanize(value.lower())
            if len(term) >= 3:
                words.add(term)
                words.add(singularize(term))
        return sorted(words)


def _mentions_any(text: str, terms: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(re.search(rf"\b{re.escape(term)}s?\b", lowered) for term in terms)
