"""
Agent Orchestrator

A conversational agent orchestrator: routes each user turn to a multi-turn
workflow, a knowledge search, a plain conversational answer, or a cooperating
remote node, keeping the dialogue state in a persisted SessionContext.
"""

from agent_orchestrator.domain import (
    CollectorConfig,
    EntitySpec,
    FieldSpec,
    NodeCapability,
    RemoteNode,
    Step,
    WorkflowDefinition,
)
from agent_orchestrator.state import (
    EntityList,
    Message,
    RoutedNode,
    SessionContext,
    WorkflowFrame,
)
from agent_orchestrator.schemas import RoutingAction, RoutingDecision, StepResult, StepStatus, TurnReply
from agent_orchestrator.execution import WorkflowEngine, WorkflowRegistry

__all__ = [
    # Domain Layer
    "CollectorConfig",
    "EntitySpec",
    "FieldSpec",
    "NodeCapability",
    "RemoteNode",
    "Step",
    "WorkflowDefinition",
    # State Layer
    "EntityList",
    "Message",
    "RoutedNode",
    "SessionContext",
    "WorkflowFrame",
    # Schemas
    "RoutingAction",
    "RoutingDecision",
    "StepResult",
    "StepStatus",
    "TurnReply",
    # Execution Layer
    "WorkflowEngine",
    "WorkflowRegistry",
]
