"""
Schemas - Decisions and Results Exchanged Between Layers

This module defines the Pydantic models that carry a routing decision from
the MessageRouter to its dispatcher, the outcome of a single workflow step,
the rule-based intent signals, and the structured output expected from the
language model when classifying CRUD intent.
"""
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class RoutingAction(str, Enum):
    """What the orchestrator does with the current turn."""
    CONTINUE_WORKFLOW = "continue_workflow"
    START_WORKFLOW = "start_workflow"
    SEARCH_KNOWLEDGE = "search_knowledge"
    CONVERSATIONAL = "conversational"
    ROUTE_TO_REMOTE_NODE = "route_to_remote_node"
    CANCEL_WORKFLOW = "cancel_workflow"
    START_COLLECTOR = "start_collector"


class RoutingDecision(BaseModel):
    """
    One decision per turn.
    `reasoning` and `confidence` are diagnostic only and never gate control flow.
    """
    action: RoutingAction
    resource_name: Optional[str] = Field(
        None,
        description="Workflow, collector or node identifier the action applies to."
    )
    reasoning: str = ""
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    operation: Optional[str] = Field(
        None,
        description="CRUD verb hint for search_knowledge (create/update/delete/query) or 'select_entity'."
    )


class StepStatus(str, Enum):
    """
    Outcome of executing one workflow step.

    SUCCESS: Advance via on_success (or finalize when there is none).
    NEEDS_INPUT: Stop and surface the step's prompt to the user.
    FAILURE: Advance via on_failure, or surface the error and stay on the step.
    """
    SUCCESS = "success"
    NEEDS_INPUT = "needs_input"
    FAILURE = "failure"


class Delegation(BaseModel):
    """Asks the engine to suspend the current workflow and start a sub-workflow."""
    workflow_id: str
    field: str = Field(..., description="Parent field the sub-workflow result is merged under.")
    seed: Dict[str, Any] = Field(default_factory=dict)


class StepResult(BaseModel):
    status: StepStatus
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    next_step: Optional[str] = Field(
        None,
        description="Overrides the step's static on_success/on_failure target."
    )
    delegate: Optional[Delegation] = None

    @classmethod
    def success(cls, message: Optional[str] = None, **data) -> "StepResult":
        return cls(status=StepStatus.SUCCESS, message=message, data=data)

    @classmethod
    def needs_input(cls, message: str, **data) -> "StepResult":
        return cls(status=StepStatus.NEEDS_INPUT, message=message, data=data)

    @classmethod
    def failure(cls, message: str, **data) -> "StepResult":
        return cls(status=StepStatus.FAILURE, message=message, data=data)


class FollowUpClass(str, Enum):
    """Canonical follow-up classes. Wire labels are configurable per class."""
    FOLLOW_UP_ANSWER = "follow_up_answer"
    REFRESH_LIST = "refresh_list"
    ENTITY_LOOKUP = "entity_lookup"
    NEW_QUERY = "new_query"
    UNKNOWN = "unknown"


class IntentSignals(BaseModel):
    """Structural signals extracted from a message without any network call."""
    has_entity_list_context: bool = False
    is_explicit_list_request: bool = False
    is_follow_up_question: bool = False
    is_positional_reference: bool = False
    is_explicit_entity_lookup: bool = False
    is_option_selection: bool = False
    extracted_position: Optional[int] = None


class CrudIntent(BaseModel):
    """
    The strict structure the language model must return when asked what kind
    of request a fresh message is.
    """
    intent: Literal["create", "update", "delete", "query", "chat"] = Field(
        ...,
        description="create/update/delete for data changes, query for data lookups, chat for anything else."
    )
    confidence: float = Field(
        0.5, ge=0.0, le=1.0,
        description="How certain the classification is."
    )
    reasoning: str = Field(
        "",
        description="One short sentence justifying the intent."
    )


class TurnReply(BaseModel):
    """What a handler produced for the turn."""
    reply: str
    status: Literal["ok", "needs_input", "completed", "cancelled", "failed"] = "ok"
    metadata: Dict[str, Any] = Field(default_factory=dict)
