"""
Domain Layer - Static Definitions

This module defines the static structure the orchestrator works against:
workflow definitions (declarative field/entity specs or explicit step graphs),
the remote nodes of the federation and the capabilities they advertise, and
autonomous collectors. None of these change while a conversation runs.
"""

from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
)

if TYPE_CHECKING:
    from ..schemas.decisions import StepResult
    from ..state.models import SessionContext

# Terminal markers an explicit step may transition to instead of a step id.
COMPLETE = "complete"
ERROR = "error"
CANCEL = "cancel"
TERMINAL_MARKERS = frozenset({COMPLETE, ERROR, CANCEL})

StepCallable = Callable[["SessionContext", Optional[str]], Awaitable["StepResult"]]

# Receives the collected workflow state and returns the data the action produced.
FinalAction = Callable[[Dict[str, Any], "SessionContext"], Awaitable[Dict[str, Any]]]

"""
CapabilitySource ranks how a node claims an entity:
- collector: the node runs an autonomous collector for it (strongest claim)
- workflow: an entity inferred from one of the node's workflow names
- data_type: a declared data type / collection
- keyword: a free keyword (weakest claim)
"""
CapabilitySource = Literal["collector", "workflow", "data_type", "keyword"]

SOURCE_PRIORITY: Dict[str, int] = {
    "collector": 4,
    "workflow": 3,
    "data_type": 2,
    "keyword": 1,
}


@dataclass
class FieldSpec:
    """
    A value a declarative workflow collects from the user.

    Attributes:
        name: Key in the workflow state.
        type: Loose type hint ("string", "email", "number", "integer").
        required: Optional fields can be skipped by the user.
        prompt: Question shown when asking for this field.
        pattern: Regex whose first group extracts the value from free text.
        description: Used in language-model extraction prompts.
    """
    name: str
    type: str = "string"
    required: bool = True
    prompt: Optional[str] = None
    pattern: Optional[str] = None
    description: Optional[str] = None

    @property
    def question(self) -> str:
        return self.prompt or f"What is the {self.name.replace('_', ' ')}?"


@dataclass
class EntitySpec:
    """
    A reference to a host business object that must exist before the
    workflow can complete.

    Attributes:
        name: Entity name (e.g. "customer"); also the default field.
        model: Model reference handed to the entity store.
        lookup_field: Workflow field holding the lookup value.
        search_keys: Entity attributes tried in order when looking up.
        create_if_missing: Offer to create the entity when lookup misses.
        subflow: Workflow id delegated to for creation. Without one, the
            entity's `create_fields` are asked inline.
        allow_multiple: The field may hold a comma separated list of values.
        create_fields: Attributes asked for inline creation.
    """
    name: str
    model: str
    lookup_field: Optional[str] = None
    search_keys: List[str] = field(default_factory=lambda: ["name"])
    create_if_missing: bool = False
    subflow: Optional[str] = None
    allow_multiple: bool = False
    create_fields: List[str] = field(default_factory=list)

    @property
    def field_name(self) -> str:
        return self.lookup_field or self.name


@dataclass
class Step:
    """
    Fundamental unit of work in a workflow.

    Attributes:
        id: Unique identifier within the workflow.
        execute: Coroutine run against the session and the raw message
            (None when the step is entered without fresh user input).
        requires_user_input: When the engine advances into this step it
            stops and waits instead of running it immediately.
        on_success: Next step id or terminal marker. None means complete.
        on_failure: Step id or terminal marker taken on failure. None keeps
            the workflow on this step so the user can retry.
        prompt: Shown when the engine stops in front of this step.
    """
    id: str
    execute: StepCallable
    requires_user_input: bool = False
    on_success: Optional[str] = None
    on_failure: Optional[str] = None
    prompt: Optional[str] = None
    description: Optional[str] = None


@dataclass
class WorkflowDefinition:
    """
    A named, possibly multi-turn procedure.

    Declarative definitions list `fields` and `entities` and get their steps
    generated; explicit definitions provide `steps` (and optionally
    `start_step`, defaulting to the first one).

    Attributes:
        workflow_id: Stable identifier stored in the session.
        goal: Free text for language-model prompts; never drives control flow.
        triggers: Phrases that start this workflow from a fresh message.
        success_message: Reply on completion. Formatted with the final data.
    """
    workflow_id: str
    goal: str
    title: Optional[str] = None
    fields: Dict[str, FieldSpec] = field(default_factory=dict)
    entities: Dict[str, EntitySpec] = field(default_factory=dict)
    final_action: Optional[FinalAction] = None
    confirm_before_complete: bool = False
    steps: Dict[str, Step] = field(default_factory=dict)
    start_step: Optional[str] = None
    triggers: List[str] = field(default_factory=list)
    success_message: Optional[str] = None

    @property
    def is_declarative(self) -> bool:
        return not self.steps

    @property
    def display_name(self) -> str:
        return self.title or self.workflow_id.replace("_", " ")


@dataclass
class RemoteNode:
    """
    A cooperating instance of the orchestrator that owns a data domain.
    """
    slug: str
    name: str
    url: Optional[str] = None
    node_id: Optional[str] = None
    description: Optional[str] = None
    collections: List[str] = field(default_factory=list)
    data_types: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    autonomous_collectors: List[str] = field(default_factory=list)
    workflows: List[str] = field(default_factory=list)
    domains: List[str] = field(default_factory=list)
    is_active: bool = True


@dataclass
class NodeCapability:
    """One routable entity claimed by a node."""
    entity_key: str
    label: str
    node_slug: str
    node_name: str
    source: CapabilitySource
    priority: int
    node_id: Optional[str] = None
    aliases: List[str] = field(default_factory=list)


@dataclass
class CollectorConfig:
    """
    An autonomous data-collection flow. Local collectors run as a workflow
    of the same id; remote ones are owned by `node_slug`.
    """
    name: str
    goal: str
    description: Optional[str] = None
    triggers: List[str] = field(default_factory=list)
    workflow_id: Optional[str] = None
    node_slug: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.node_slug is not None

    @property
    def required_operation(self) -> str:
        if self.name.endswith("_delete"):
            return "delete"
        if self.name.endswith("_update"):
            return "update"
        return "create"
