"""
State Layer - Runtime Data Models

Defines the per-conversation session context, including the workflow call
stack and cross-turn scratch metadata.
"""

from agent_orchestrator.state.models import (
    EntityList,
    Message,
    RoutedNode,
    SessionContext,
    WorkflowFrame,
)

__all__ = [
    "EntityList",
    "Message",
    "RoutedNode",
    "SessionContext",
    "WorkflowFrame",
]
