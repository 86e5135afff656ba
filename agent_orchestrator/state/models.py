"""
State Layer - Runtime Data Models

This module defines the durable per-conversation state. It implements a Call
Stack pattern for nested workflows (a parent is suspended while a sub-workflow
collects a missing entity) and keeps cross-turn scratch data, such as the most
recently presented result list, in a free-form metadata mapping.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..repositories.session import SessionStore


# Metadata keys shared across components
LAST_ENTITY_LIST = "last_entity_list"
SELECTED_ENTITY_CONTEXT = "selected_entity_context"
ROUTED_TO_NODE = "routed_to_node"
AWAITING_CONFIRMATION = "awaiting_confirmation"
ASKING_FOR = "asking_for"
ACTIVE_COLLECTOR = "active_collector"
RAG_LAST_METADATA = "rag_last_metadata"

# Scratch flags that only make sense while a workflow is running
WORKFLOW_SCRATCH_KEYS = (AWAITING_CONFIRMATION, ASKING_FOR, ACTIVE_COLLECTOR)


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowFrame(BaseModel):
    """
    A suspended parent workflow on the call stack.

    `awaiting_field` names the parent field whose entity the child workflow
    is creating; the child's result is merged back under that name.
    """
    workflow_id: str
    step: Optional[str] = None
    state: Dict[str, Any] = Field(default_factory=dict)
    collected_data: Dict[str, Any] = Field(default_factory=dict)
    awaiting_field: Optional[str] = None


class EntityList(BaseModel):
    """The most recent list of records shown to the user."""
    entity_type: Optional[str] = None
    entity_ids: List[Any] = Field(default_factory=list)
    entity_data: List[Dict[str, Any]] = Field(default_factory=list)
    start_position: int = 1
    end_position: Optional[int] = None
    node_ref: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def size(self) -> int:
        return len(self.entity_ids) or len(self.entity_data)

    @property
    def last_position(self) -> int:
        if self.end_position is not None:
            return self.end_position
        return self.start_position + max(self.size, 1) - 1


class RoutedNode(BaseModel):
    node_slug: str
    node_name: Optional[str] = None
    node_id: Optional[str] = None


class SessionContext(BaseModel):
    """
    The global state for a single conversation.

    Nothing here talks to storage until `persist()` is called; callers are
    expected to persist once per turn.
    """
    session_id: str
    user_id: Optional[str] = None
    conversation_history: List[Message] = Field(default_factory=list)

    current_workflow: Optional[str] = None
    current_step: Optional[str] = None
    workflow_state: Dict[str, Any] = Field(default_factory=dict)
    workflow_stack: List[WorkflowFrame] = Field(default_factory=list)

    metadata: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # --- workflow state access ---

    def get(self, key: str, default: Any = None) -> Any:
        return self.workflow_state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.workflow_state[key] = value

    def has(self, key: str) -> bool:
        return key in self.workflow_state

    def forget(self, key: str) -> None:
        self.workflow_state.pop(key, None)

    # --- history ---

    def add_user_message(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.conversation_history.append(
            Message(role="user", content=content, metadata=metadata or {})
        )

    def add_assistant_message(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.conversation_history.append(
            Message(role="assistant", content=content, metadata=metadata or {})
        )

    def recent_history(self, window: int) -> List[Message]:
        if window <= 0:
            return []
        return self.conversation_history[-window:]

    def last_assistant_message(self) -> Optional[Message]:
        for message in reversed(self.conversation_history):
            if message.role == "assistant":
                return message
        return None

    # --- active workflow pointers ---

    @property
    def has_active_workflow(self) -> bool:
        return self.current_workflow is not None

    def activate(self, workflow_id: str, step: str) -> None:
        """Point the session at a workflow step. Both pointers always move together."""
        self.current_workflow = workflow_id
        self.current_step = step

    def reset_workflow(self) -> None:
        """
        Abandons the active workflow and every suspended parent in one mutation.
        Cross-turn data such as the last entity list is kept.
        """
        self.current_workflow = None
        self.current_step = None
        self.workflow_state = {}
        self.workflow_stack = []
        for key in WORKFLOW_SCRATCH_KEYS:
            self.metadata.pop(key, None)

    # --- call stack ---

    def push_workflow(
        self,
        workflow_id: str,
        step: Optional[str],
        state: Dict[str, Any],
        collected_data: Optional[Dict[str, Any]] = None,
        awaiting_field: Optional[str] = None,
    ) -> WorkflowFrame:
        frame = WorkflowFrame(
            workflow_id=workflow_id,
            step=step,
            state=dict(state),
            collected_data=dict(collected_data or {}),
            awaiting_field=awaiting_field,
        )
        self.workflow_stack.append(frame)
        return frame

    def pop_workflow(self) -> Optional[WorkflowFrame]:
        """Returns the innermost suspended parent, or None when there is no parent."""
        if not self.workflow_stack:
            return None
        return self.workflow_stack.pop()

    def is_in_subworkflow(self) -> bool:
        return bool(self.workflow_stack)

    # --- typed views over metadata ---

    @property
    def last_entity_list(self) -> Optional[EntityList]:
        raw = self.metadata.get(LAST_ENTITY_LIST)
        if not raw:
            return None
        return EntityList(**raw)

    def remember_entity_list(self, entity_list: EntityList) -> None:
        self.metadata[LAST_ENTITY_LIST] = entity_list.model_dump(mode="json")

    @property
    def routed_to_node(self) -> Optional[RoutedNode]:
        raw = self.metadata.get(ROUTED_TO_NODE)
        if not raw or not raw.get("node_slug"):
            return None
        return RoutedNode(**raw)

    def pin_to_node(self, node: RoutedNode) -> None:
        self.metadata[ROUTED_TO_NODE] = node.model_dump()

    def unpin_node(self) -> None:
        self.metadata.pop(ROUTED_TO_NODE, None)

    # --- persistence ---

    def persist(self, store: "SessionStore", ttl: Optional[int] = None) -> None:
        """Overwrites the stored snapshot for this session."""
        self.updated_at = datetime.utcnow()
        store.save(self, ttl)

    @classmethod
    def from_store(
        cls, store: "SessionStore", session_id: str, user_id: Optional[str] = None
    ) -> "SessionContext":
        """Loads the stored session, or starts an empty one."""
        context = store.load(session_id)
        if context is None:
            return cls(session_id=session_id, user_id=user_id)
        if user_id is not None and context.user_id is None:
            context.user_id = user_id
        return context
