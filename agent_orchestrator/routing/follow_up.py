"""
Follow-up resolution.

Decides whether a message that arrives after a result list continues that
topic ("the total amount?") or starts a new one. The language-model path is
optional; the rule path built on IntentClassifier signals is the fallback
and, when the model is disabled, the primary path.
"""

import logging
import re
from typing import Dict, Optional

from ..config import FollowUpGuardConfig
from ..llm.interface import LLMProvider, generate_with_timeout
from ..prompts import Template, render
from ..schemas.decisions import FollowUpClass, RoutingAction, RoutingDecision
from ..state.models import SessionContext
from . import follow_up_state
from .intent_classifier import IntentClassifier

logger = logging.getLogger(__name__)

HISTORY_LINE_MAX = 240
GUARD_REASONING = "Follow-up guard: answer from previous result context without re-listing"


def format_recent_history(context: SessionContext, window: int, line_max: int) -> str:
    lines = []
    for message in context.recent_history(max(1, window)):
        content = message.content.strip()
        if content:
            lines.append(f"{message.role}: {content[:line_max]}")
    return "\n".join(lines) if lines else "(none)"


class FollowUpResolver:
    def __init__(
        self,
        classifier: IntentClassifier,
        llm: Optional[LLMProvider] = None,
        config: Optional[FollowUpGuardConfig] = None,
        timeout: float = 15.0,
    ):
        self.classifier = classifier
        self.llm = llm
        self.config = config or FollowUpGuardConfig()
        self.timeout = timeout

    # --- wire labels ---

    @property
    def labels(self) -> Dict[str, str]:
        labels = {cls.value: cls.name for cls in FollowUpClass}
        for key, label in self.config.labels.items():
            labels[key] = label.strip().upper()
        return labels

    def label(self, cls: FollowUpClass) -> str:
        return self.labels[cls.value]

    def _class_for_label(self, label: str) -> FollowUpClass:
        """Exact label first, then the longest label the answer starts with."""
        normalized = label.strip().strip("'\"`.,;").upper()
        labels = self.labels
        for key, value in labels.items():
            if value == normalized:
                return FollowUpClass(key)
        for key, value in sorted(labels.items(), key=lambda item: len(item[1]), reverse=True):
            if value and normalized.startswith(value):
                rest = normalized[len(value):]
                if not rest or not (rest[0].isalnum() or rest[0] in "_-"):
                    return FollowUpClass(key)
        return FollowUpClass.UNKNOWN

    @property
    def ai_enabled(self) -> bool:
        return self.config.enabled and self.llm is not None

    # --- classification ---

    async def classify(self, message: str, context: SessionContext) -> FollowUpClass:
        if not follow_up_state.has_entity_list_context(context):
            return FollowUpClass.NEW_QUERY

        if not self.ai_enabled:
            if self.config.rules_fallback_when_ai_disabled:
                return self.classify_with_rules(message, context)
            return FollowUpClass.UNKNOWN

        try:
            raw = await generate_with_timeout(
                self.llm,
                self.build_prompt(message, context),
                timeout=self.timeout,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
            classification = self.parse_classification(raw)
            if classification != FollowUpClass.UNKNOWN:
                return classification
            logger.debug(f"Follow-up classifier returned an unknown label: {raw[:180]!r}")
        except Exception as e:
            logger.warning(f"Follow-up classification failed: {e}")

        if self.config.rules_fallback_on_ai_failure:
            return self.classify_with_rules(message, context)
        return FollowUpClass.UNKNOWN

    def classify_with_rules(self, message: str, context: SessionContext) -> FollowUpClass:
        signals = self.classifier.analyze(message, context)

        if signals.is_explicit_list_request:
            return FollowUpClass.REFRESH_LIST
        if signals.is_follow_up_question:
            return FollowUpClass.FOLLOW_UP_ANSWER
        if signals.is_explicit_entity_lookup or signals.is_positional_reference:
            return FollowUpClass.ENTITY_LOOKUP
        return FollowUpClass.NEW_QUERY

    def parse_classification(self, content: str) -> FollowUpClass:
        key = re.escape(self.config.response_key.strip().upper() or "CLASSIFICATION")
        # Labels are configurable and may contain hyphens, digits or spaces
        match = re.search(rf"{key}:[ \t]*([^\n]+)", content, re.IGNORECASE)
        if match:
            return self._class_for_label(match.group(1))

        line = content.strip().split("\n", 1)[0].strip() if content.strip() else ""
        if ":" in line:
            line = line.split(":", 1)[1].strip()
        return self._class_for_label(line)

    def build_prompt(self, message: str, context: SessionContext) -> str:
        return render(
            Template.FOLLOW_UP_CLASSIFICATION,
            list_context=follow_up_state.format_entity_list_context(context),
            history=format_recent_history(context, self.config.history_window, HISTORY_LINE_MAX),
            message=message,
            labels=self.labels,
            response_key=self.config.response_key.strip().upper(),
        )

    # --- guard ---

    async def apply_guard(
        self,
        decision: RoutingDecision,
        message: str,
        context: SessionContext,
        prior_classification: Optional[FollowUpClass] = None,
    ) -> RoutingDecision:
        """
        Rewrites a tentative search into a conversational answer when the
        message only continues the previous result list. Other actions and
        other classifications pass through untouched.
        """
        if decision.action != RoutingAction.SEARCH_KNOWLEDGE:
            return decision

        classification = prior_classification
        if classification is None:
            classification = await self.classify(message, context)
        if classification != FollowUpClass.FOLLOW_UP_ANSWER:
            return decision

        logger.info("Follow-up guard rewrote search_knowledge to conversational")
        return decision.model_copy(update={
            "action": RoutingAction.CONVERSATIONAL,
            "resource_name": None,
            "reasoning": GUARD_REASONING,
        })
