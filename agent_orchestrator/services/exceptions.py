"""
Service Layer Exceptions

Custom exceptions for the orchestrator. Classification and forwarding
failures are normally absorbed by fallback paths; configuration errors are
fatal to a turn and turned into a safe reply by the ChatService.
"""


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestrator."""
    pass


class UnknownWorkflowError(OrchestratorError):
    """Raised when a workflow id is not registered."""
    pass


class WorkflowConfigurationError(OrchestratorError):
    """Raised when a step graph references a step that does not exist."""
    pass


class SessionNotFoundError(OrchestratorError):
    """Raised when an API call names a session the store does not have."""
    pass


class ClassificationError(OrchestratorError):
    """Raised when a language-model classification cannot be used."""
    pass
