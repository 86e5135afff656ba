"""
Compact one-line summaries of remote nodes for routing prompts.
"""

from typing import List, Sequence

from ..domain.models import RemoteNode
from ..prompts import Template, render
from .catalog import humanize, workflow_entity

MAX_WORDS = 5


def join_words(words: Sequence[str], max_words: int = MAX_WORDS) -> str:
    """['a'] -> 'a', ['a', 'b'] -> 'a and b', ['a', 'b', 'c'] -> 'a, b, and c'"""
    words = [w for w in words if w][:max_words]
    if not words:
        return ""
    if len(words) == 1:
        return words[0]
    if len(words) == 2:
        return f"{words[0]} and {words[1]}"
    return ", ".join(words[:-1]) + f", and {words[-1]}"


def collection_names(node: RemoteNode) -> List[str]:
    names = []
    for value in list(node.collections) + list(node.data_types):
        name = humanize(value.lower())
        if name and name not in names:
            names.append(name)
    return names


def node_actions(node: RemoteNode) -> List[str]:
    actions = []
    for collector in node.autonomous_collectors:
        action = humanize(collector.lower())
        if action not in actions:
            actions.append(action)
    for workflow in node.workflows:
        entity = workflow_entity(workflow)
        if entity and f"manage {entity}" not in actions:
            actions.append(f"manage {entity}")
    return actions


def node_summary(node: RemoteNode) -> str:
    """'Handles: invoices, payments. Domains: finance.'"""
    parts = []
    collections = collection_names(node)
    if collections:
        parts.append("Handles: " + ", ".join(collections))
    if node.domains:
        parts.append("Domains: " + ", ".join(node.domains[:MAX_WORDS]))
    return ". ".join(parts) + "." if parts else "General operations."


def node_digest(node: RemoteNode) -> str:
    collections = collection_names(node)
    return render(
        Template.NODE_DIGEST,
        node=node,
        manages=f"manages {join_words(collections)}" if collections else "general purpose",
        can=join_words(node_actions(node)),
        domains=join_words(list(node.domains)),
    )
