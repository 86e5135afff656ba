"""
Follow-up state helpers.

Answers "is there a previously presented result list this message could be
about?" and renders that list compactly for classifier prompts. Looks at the
stored entity list first, then the last search metadata, the selected entity,
and finally entity ids attached to earlier assistant messages.
"""

import json
from typing import Any, Dict, List, Optional

from ..state.models import (
    RAG_LAST_METADATA,
    SELECTED_ENTITY_CONTEXT,
    SessionContext,
)

IDS_PREVIEW = 10
DATA_PREVIEW = 5


def selected_entity_context(context: SessionContext) -> Optional[Dict[str, Any]]:
    selected = context.metadata.get(SELECTED_ENTITY_CONTEXT)
    if isinstance(selected, dict) and selected.get("entity_id") is not None:
        return selected
    return None


def has_entity_list_context(context: SessionContext) -> bool:
    entity_list = context.last_entity_list
    if entity_list and (entity_list.entity_ids or entity_list.entity_data):
        return True

    rag_metadata = context.metadata.get(RAG_LAST_METADATA) or {}
    if any(rag_metadata.get(key) for key in ("entity_ids", "numbered_options", "sources")):
        return True

    if selected_entity_context(context) is not None:
        return True

    return latest_history_entity_ids(context) is not None


def latest_history_entity_ids(context: SessionContext) -> Optional[List[Any]]:
    """Entity ids attached to the most recent assistant message that carried any."""
    for message in reversed(context.conversation_history):
        if message.role != "assistant":
            continue
        entity_ids = message.metadata.get("entity_ids")
        if entity_ids:
            return list(entity_ids)
    return None


def format_entity_list_context(context: SessionContext) -> str:
    payload = _payload_from_entity_list(context) or _payload_from_history(context)
    if payload is None:
        selected = selected_entity_context(context)
        if selected is not None:
            payload = {
                "entity_type": selected.get("entity_type") or "item",
                "count": 1,
                "selected_entity": selected,
            }
    if payload is None:
        return "(none)"
    return json.dumps(payload, indent=2, default=str)


def _payload_from_entity_list(context: SessionContext) -> Optional[Dict[str, Any]]:
    entity_list = context.last_entity_list
    if entity_list is None:
        return None

    entity_ids = [i for i in entity_list.entity_ids if i is not None and i != ""]
    if not entity_ids and not entity_list.entity_data:
        return None

    payload: Dict[str, Any] = {
        "entity_type": entity_list.entity_type or "item",
        "count": len(entity_ids) if entity_ids else len(entity_list.entity_data),
    }
    if entity_ids:
        payload["entity_ids_preview"] = entity_ids[:IDS_PREVIEW]
    if entity_list.entity_data:
        payload["entity_data_preview"] = entity_list.entity_data[:DATA_PREVIEW]
    payload["start_position"] = entity_list.start_position
    if entity_list.end_position is not None:
        payload["end_position"] = entity_list.end_position
    return payload


def _payload_from_history(context: SessionContext) -> Optional[Dict[str, Any]]:
    for message in reversed(context.conversation_history):
        if message.role != "assistant" or not message.metadata.get("entity_ids"):
            continue
        entity_ids = list(message.metadata["entity_ids"])
        return {
            "entity_type": message.metadata.get("entity_type") or "item",
            "count": len(entity_ids),
            "entity_ids_preview": entity_ids[:IDS_PREVIEW],
        }
    return None
