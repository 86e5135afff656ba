"""
Domain Layer - Static Definitions

Defines workflow definitions, federation nodes and their capabilities,
and autonomous collectors.
"""

from agent_orchestrator.domain.models import (
    CollectorConfig,
    EntitySpec,
    FieldSpec,
    NodeCapability,
    RemoteNode,
    Step,
    WorkflowDefinition,
)

__all__ = [
    "CollectorConfig",
    "EntitySpec",
    "FieldSpec",
    "NodeCapability",
    "RemoteNode",
    "Step",
    "WorkflowDefinition",
]
