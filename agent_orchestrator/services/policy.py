"""
Agent Policy - user-facing fixed replies.

Every canned string the orchestrator can answer with lives in PolicyMessages
(configurable); this class only fills in the ':placeholders'.
"""

import re
from typing import Any, Dict, Optional

from ..config import PolicyMessages


class AgentPolicy:
    def __init__(self, messages: Optional[PolicyMessages] = None):
        self.messages = messages or PolicyMessages()

    @staticmethod
    def _fill(template: str, **values: Any) -> str:
        # Longest names first so ':node' does not clobber ':node_url'
        for name in sorted(values, key=len, reverse=True):
            template = template.replace(f":{name}", str(values[name]))
        return template

    def node_not_found(self, resource: str) -> str:
        return self._fill(self.messages.node_not_found, resource=resource)

    def node_unreachable(self, node_slug: str, node_url: Optional[str], error: Optional[str] = None) -> str:
        summary = re.sub(r"\s+", " ", error.strip()) if error else "unknown routing error"
        limit = self.messages.node_error_summary_max
        if limit > 0 and len(summary) > limit:
            summary = summary[:limit] + "..."
        return self._fill(
            self.messages.node_unreachable,
            node=node_slug,
            location=f" at {node_url}" if node_url else "",
            summary=summary,
        )

    def positional_unknown(self) -> str:
        return self.messages.positional_unknown

    def positional_not_found(self, position: int) -> str:
        return self._fill(self.messages.positional_not_found, position=position)

    def positional_details_unavailable(self, entity_type: str) -> str:
        return self._fill(self.messages.positional_details_unavailable, entity=entity_type)

    def selected_option(self, number: int, entity: Dict[str, Any]) -> str:
        detail = "\n".join(f"- {key}: {value}" for key, value in entity.items())
        return self._fill(self.messages.selected_option, number=number, detail=detail)

    def option_remote_lookup(self, entity_type: str, entity_id: Any) -> str:
        return f"show details for {entity_type} id {entity_id}"

    def collector_not_specified(self) -> str:
        return self.messages.collector_not_specified

    def collector_unavailable(self, collector: str) -> str:
        return self._fill(self.messages.collector_unavailable, collector=collector)

    def no_collector(self, message: str) -> str:
        """Explains why nothing could handle a data-changing request."""
        verbs = self.messages.destructive_verbs
        if verbs and re.search(rf"\b({'|'.join(map(re.escape, verbs))})\b", message, re.IGNORECASE):
            return self.messages.no_collector_destructive
        return self.messages.no_collector_generic

    def no_relevant_info(self) -> str:
        return self.messages.rag_no_relevant_info

    def workflow_unavailable(self, workflow: str) -> str:
        return self._fill(self.messages.workflow_unavailable, workflow=workflow)

    def workflow_cancelled(self) -> str:
        return self.messages.workflow_cancelled

    def nothing_to_cancel(self) -> str:
        return self.messages.nothing_to_cancel

    def generic_error(self) -> str:
        return self.messages.generic_error
