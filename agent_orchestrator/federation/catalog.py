"""
Capability catalog.

Every active node advertises collectors, workflows, data types and keywords.
They are flattened into one entry per normalized entity key; when several
nodes or sources claim the same key, the highest-priority source wins
(collector > workflow > data_type > keyword).
"""

import re
from typing import Dict, Iterable, List, Optional

from ..domain.models import SOURCE_PRIORITY, CapabilitySource, NodeCapability, RemoteNode

WORKFLOW_NOISE = {"declarative", "workflow", "create", "update", "delete", "manage"}


def normalize_key(value: str) -> str:
    """'Sales-Orders / EU' -> 'sales_orders_eu'"""
    value = re.sub(r"[-/]", " ", value.strip().lower())
    value = re.sub(r"\s+", " ", value).strip()
    return value.replace(" ", "_")


def humanize(key: str) -> str:
    return key.replace("_", " ").strip()


def singularize(word: str) -> str:
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith("s") and not word.endswith("ss") and len(word) > 1:
        return word[:-1]
    return word


def pluralize(word: str) -> str:
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith("s"):
        return word
    return word + "s"


def workflow_entity(workflow_name: str) -> Optional[str]:
    """
    Infers the entity a workflow manages from its name:
    'CreateInvoiceWorkflow' or 'create_invoice' -> 'invoice'.
    """
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", workflow_name)
    words = [w for w in re.split(r"[\s_\-./\\]+", spaced.lower()) if w]
    words = [w for w in words if w not in WORKFLOW_NOISE]
    if not words:
        return None
    return " ".join(words)


class CapabilityCatalog:
    def __init__(self, min_keyword_length: int = 3):
        self.min_keyword_length = min_keyword_length
        self._entries: Dict[str, NodeCapability] = {}

    @classmethod
    def build(cls, nodes: Iterable[RemoteNode], min_keyword_length: int = 3) -> "CapabilityCatalog":
        catalog = cls(min_keyword_length=min_keyword_length)
        for node in nodes:
            catalog.register_node(node)
        return catalog

    @property
    def entries(self) -> Dict[str, NodeCapability]:
        return dict(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def register_node(self, node: RemoteNode) -> None:
        for collector in node.autonomous_collectors:
            entity = workflow_entity(collector)
            if entity:
                self.register_capability(node, entity, "collector")
        for workflow in node.workflows:
            entity = workflow_entity(workflow)
            if entity:
                self.register_capability(node, entity, "workflow")
        for data_type in list(node.data_types) + list(node.collections):
            self.register_capability(node, data_type, "data_type")
        for keyword in node.keywords:
            if len(keyword.strip()) >= self.min_keyword_length:
                self.register_capability(node, keyword, "keyword")

    def register_capability(
        self,
        node: RemoteNode,
        entity: str,
        source: CapabilitySource,
        label: Optional[str] = None,
    ) -> bool:
        """Returns True when the entry was added or replaced."""
        key = normalize_key(singularize(entity.strip()))
        if not key:
            return False

        priority = SOURCE_PRIORITY[source]
        existing = self._entries.get(key)
        if existing is not None and existing.priority >= priority:
            return False

        label = label or humanize(key)
        self._entries[key] = NodeCapability(
            entity_key=key,
            label=label,
            node_slug=node.slug,
            node_name=node.name,
            node_id=node.node_id,
            source=source,
            priority=priority,
            aliases=self._aliases(key, label),
        )
        return True

    @staticmethod
    def _aliases(key: str, label: str) -> List[str]:
        spaced = humanize(key)
        aliases = {
            label.lower(),
            singularize(label.lower()),
            pluralize(label.lower()),
            spaced,
            pluralize(spaced),
        }
        return sorted(a for a in aliases if a)

    def lookup(self, text: str) -> Optional[NodeCapability]:
        """Exact key or alias lookup."""
        cleaned = text.strip().strip("'\".").lower()
        if not cleaned or cleaned == "none":
            return None
        key = normalize_key(cleaned)
        if key in self._entries:
            return self._entries[key]
        singular_key = normalize_key(singularize(cleaned))
        if singular_key in self._entries:
            return self._entries[singular_key]
        for capability in self._entries.values():
            if cleaned in capability.aliases:
                return capability
        return None

    def match_in_message(self, message: str) -> Optional[NodeCapability]:
        """Finds a catalog alias mentioned as whole words; longest alias wins."""
        lowered = message.lower()
        best: Optional[NodeCapability] = None
        best_length = 0
        for capability in self._entries.values():
            for alias in capability.aliases:
                if len(alias) <= best_length:
                    continue
                if re.search(rf"\b{re.escape(alias)}\b", lowered):
                    best, best_length = capability, len(alias)
        return best
