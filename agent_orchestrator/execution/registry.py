"""
Workflow registry and handlers.

The registry maps stable workflow ids to their definitions and is populated
explicitly. A WorkflowHandler is the runnable form of one definition: its
steps (generated or explicit) with the graph already validated.
"""

import re
from typing import Dict, Iterable, List, Optional

from ..domain.models import TERMINAL_MARKERS, Step, WorkflowDefinition
from ..services.exceptions import UnknownWorkflowError, WorkflowConfigurationError


class WorkflowRegistry:
    def __init__(self, definitions: Optional[Iterable[WorkflowDefinition]] = None):
        self._definitions: Dict[str, WorkflowDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.workflow_id] = definition

    def get(self, workflow_id: str) -> WorkflowDefinition:
        if workflow_id not in self._definitions:
            raise UnknownWorkflowError(f"Workflow '{workflow_id}' not found.")
        return self._definitions[workflow_id]

    def has(self, workflow_id: str) -> bool:
        return workflow_id in self._definitions

    def definitions(self) -> List[WorkflowDefinition]:
        return list(self._definitions.values())

    def find_by_trigger(self, message: str) -> Optional[WorkflowDefinition]:
        lowered = message.lower()
        for definition in self._definitions.values():
            for trigger in definition.triggers:
                if re.search(rf"\b{re.escape(trigger.lower())}\b", lowered):
                    return definition
        return None


class WorkflowHandler:
    def __init__(self, definition: WorkflowDefinition, steps: Dict[str, Step]):
        if not steps:
            raise WorkflowConfigurationError(f"Workflow '{definition.workflow_id}' has no steps.")
        self.definition = definition
        self.steps = steps
        self.first_step = definition.start_step or next(iter(steps))
        self._validate()

    @property
    def workflow_id(self) -> str:
        return self.definition.workflow_id

    def _validate(self):
        if self.first_step not in self.steps:
            raise WorkflowConfigurationError(
                f"Workflow '{self.workflow_id}' starts at unknown step '{self.first_step}'."
            )
        for step in self.steps.values():
            for target in (step.on_success, step.on_failure):
                if target is None or target in TERMINAL_MARKERS or target in self.steps:
                    continue
                raise WorkflowConfigurationError(
                    f"Step '{step.id}' of workflow '{self.workflow_id}' points at unknown step '{target}'."
                )

    def step(self, step_id: str) -> Step:
        if step_id not in self.steps:
            raise WorkflowConfigurationError(
                f"Workflow '{self.workflow_id}' has no step '{step_id}'."
            )
        return self.steps[step_id]
