"""
Execution Layer - Workflow Orchestration

Defines the WorkflowRegistry, the generated steps of declarative workflows
and the WorkflowEngine (deterministic state machine with a call stack).
"""

from agent_orchestrator.execution.declarative import DeclarativeStepBuilder, FieldExtractor
from agent_orchestrator.execution.engine import WorkflowEngine
from agent_orchestrator.execution.registry import WorkflowHandler, WorkflowRegistry


__all__ = [
    "DeclarativeStepBuilder",
    "FieldExtractor",
    "WorkflowEngine",
    "WorkflowHandler",
    "WorkflowRegistry",
]
