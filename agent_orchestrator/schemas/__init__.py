"""
Schemas - Decisions and Results Exchanged Between Layers

Defines routing decisions, step results, intent signals and the structured
output models requested from the language model.
"""

from agent_orchestrator.schemas.decisions import (
    CrudIntent,
    Delegation,
    FollowUpClass,
    IntentSignals,
    RoutingAction,
    RoutingDecision,
    StepResult,
    StepStatus,
    TurnReply,
)

__all__ = [
    "CrudIntent",
    "Delegation",
    "FollowUpClass",
    "IntentSignals",
    "RoutingAction",
    "RoutingDecision",
    "StepResult",
    "StepStatus",
    "TurnReply",
]
