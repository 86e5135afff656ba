"""
Engine - Workflow Orchestration Layer

The WorkflowEngine is the deterministic state machine that moves the session
pointers through a workflow's step graph and manages the call stack of
suspended parents.
-----------------------------------------------

A turn is not 1 Request -> 1 Step. The engine keeps executing steps until one
of them blocks on the user (NEEDS_INPUT), the workflow completes, or the
execution guard trips:

1. SUCCESS moves the pointer along on_success (or the step's override). A
   step that requires user input and carries a prompt stops the loop; any
   other step runs immediately in the same turn.
2. FAILURE moves along on_failure when there is one, otherwise the error is
   surfaced and the pointer stays put so the user can retry.
3. A delegation suspends the current workflow on the stack and starts the
   requested sub-workflow. When the child completes, its result is merged
   into the parent under the awaited field and the paused parent step runs
   again.

Only the first step executed in a turn sees the user's message.
"""

import logging
from typing import Any, Dict, List, Optional

from ..config import WorkflowEngineConfig
from ..domain.models import CANCEL, COMPLETE, ERROR, WorkflowDefinition
from ..llm.interface import LLMProvider
from ..repositories.entity import EntityStore
from ..schemas.decisions import StepResult, StepStatus, TurnReply
from ..services.exceptions import OrchestratorError, UnknownWorkflowError
from ..services.policy import AgentPolicy
from ..state.models import ASKING_FOR, AWAITING_CONFIRMATION, SessionContext
from .declarative import DeclarativeStepBuilder, FieldExtractor
from .registry import WorkflowHandler, WorkflowRegistry

logger = logging.getLogger(__name__)


class WorkflowEngine:
    def __init__(
        self,
        registry: WorkflowRegistry,
        entity_store: EntityStore,
        config: Optional[WorkflowEngineConfig] = None,
        policy: Optional[AgentPolicy] = None,
        llm: Optional[LLMProvider] = None,
        timeout: float = 15.0,
    ):
        self.registry = registry
        self.config = config or WorkflowEngineConfig()
        self.policy = policy or AgentPolicy()
        self.builder = DeclarativeStepBuilder(
            entity_store, self.config, FieldExtractor(llm, timeout)
        )
        self._handlers: Dict[str, WorkflowHandler] = {}

    # ==========================================================================
    # Public operations
    # ==========================================================================

    async def start(
        self, workflow_id: str, context: SessionContext, initial_message: Optional[str] = None
    ) -> TurnReply:
        try:
            handler = self._handler(workflow_id)
        except OrchestratorError as e:
            logger.error(f"Cannot start workflow '{workflow_id}': {e}")
            return TurnReply(reply=self.policy.workflow_unavailable(workflow_id), status="failed")

        # Starting a top-level workflow abandons whatever was running
        context.reset_workflow()
        context.activate(handler.workflow_id, handler.first_step)
        logger.info(f"Session {context.session_id} started workflow '{workflow_id}'")
        return await self._run_safely(context, initial_message)

    async def continue_workflow(self, message: str, context: SessionContext) -> TurnReply:
        if not context.has_active_workflow:
            logger.warning(f"Session {context.session_id} has no active workflow to continue")
            return TurnReply(reply=self.policy.generic_error(), status="failed")
        return await self._run_safely(context, message)

    def cancel(self, context: SessionContext) -> TurnReply:
        """Abandons the active workflow and every suspended parent."""
        if not context.has_active_workflow and not context.workflow_stack:
            return TurnReply(reply=self.policy.nothing_to_cancel())

        logger.info(
            f"Session {context.session_id} cancelled '{context.current_workflow}' "
            f"at depth {len(context.workflow_stack)}"
        )
        context.reset_workflow()
        return TurnReply(reply=self.policy.workflow_cancelled(), status="cancelled")

    # ==========================================================================
    # Execution loop
    # ==========================================================================

    async def _run_safely(self, context: SessionContext, message: Optional[str]) -> TurnReply:
        workflow_id = context.current_workflow
        try:
            return await self._run(context, message)
        except OrchestratorError as e:
            logger.error(f"Workflow '{workflow_id}' aborted: {e}")
            context.reset_workflow()
            return TurnReply(reply=self.policy.workflow_unavailable(workflow_id or "workflow"), status="failed")

    async def _run(self, context: SessionContext, message: Optional[str]) -> TurnReply:
        replies: List[str] = []
        metadata: Dict[str, Any] = {}
        current_input = message
        executions = 0

        while context.has_active_workflow:
            executions += 1
            if executions > self.config.max_step_executions:
                logger.error(
                    f"Workflow '{context.current_workflow}' exceeded "
                    f"{self.config.max_step_executions} step executions at '{context.current_step}'"
                )
                replies.append(self.policy.generic_error())
                return self._reply(replies, "failed", metadata)

            handler = self._handler(context.current_workflow)
            step = handler.step(context.current_step)
            result = await self._execute(handler, context, current_input)
            current_input = None

            if result.message:
                replies.append(result.message)

            # 1. Delegation: suspend the parent, start the child
            if result.delegate is not None:
                try:
                    self._delegate(handler, context, result)
                except UnknownWorkflowError as e:
                    logger.error(f"Workflow '{handler.workflow_id}' delegated to a missing workflow: {e}")
                    replies.append(self.policy.workflow_unavailable(result.delegate.workflow_id))
                    return self._reply(replies, "failed", metadata)
                continue

            # 2. Blocked on the user
            if result.status == StepStatus.NEEDS_INPUT:
                if result.next_step:
                    context.activate(handler.workflow_id, result.next_step)
                return self._reply(replies, "needs_input", metadata)

            # 3. Failure
            if result.status == StepStatus.FAILURE:
                target = result.next_step or step.on_failure
                if target is None:
                    return self._reply(replies, "failed", metadata)
                if target in (ERROR, CANCEL):
                    context.reset_workflow()
                    return self._reply(replies, "failed", metadata)
                if target == COMPLETE:
                    resumed = self._complete(handler.definition, context, result, replies, metadata)
                    if not resumed:
                        return self._reply(replies, "completed", metadata)
                    continue
                context.activate(handler.workflow_id, target)
                continue

            # 4. Success
            target = result.next_step or step.on_success
            if target is None or target == COMPLETE:
                resumed = self._complete(handler.definition, context, result, replies, metadata)
                if not resumed:
                    return self._reply(replies, "completed", metadata)
                continue
            if target in (ERROR, CANCEL):
                context.reset_workflow()
                return self._reply(replies, "failed", metadata)

            context.activate(handler.workflow_id, target)
            next_step = handler.step(target)
            if next_step.requires_user_input and next_step.prompt:
                replies.append(next_step.prompt)
                return self._reply(replies, "needs_input", metadata)

        return self._reply(replies, "ok", metadata)

    async def _execute(
        self, handler: WorkflowHandler, context: SessionContext, message: Optional[str]
    ) -> StepResult:
        step = handler.step(context.current_step)
        logger.debug(f"Executing {handler.workflow_id}.{step.id}")
        try:
            return await step.execute(context, message)
        except OrchestratorError:
            raise
        except Exception as e:
            logger.exception(f"Step {handler.workflow_id}.{step.id} raised")
            return StepResult.failure(f"Something went wrong: {e}")

    # ==========================================================================
    # Call stack
    # ==========================================================================

    def _delegate(self, parent: WorkflowHandler, context: SessionContext, result: StepResult) -> None:
        delegation = result.delegate
        # Resolved before anything is pushed; a missing child leaves the parent active
        child = self._handler(delegation.workflow_id)

        collected = {
            name: context.get(name) for name in parent.definition.fields if context.has(name)
        }
        context.push_workflow(
            parent.workflow_id,
            context.current_step,
            context.workflow_state,
            collected_data=collected,
            awaiting_field=delegation.field,
        )

        child_state = dict(delegation.seed)
        for name in child.definition.fields:
            if name not in child_state and name in collected:
                child_state[name] = collected[name]
        context.workflow_state = child_state
        context.metadata.pop(ASKING_FOR, None)
        context.metadata.pop(AWAITING_CONFIRMATION, None)
        context.activate(child.workflow_id, child.first_step)
        logger.info(
            f"Session {context.session_id} suspended '{parent.workflow_id}' for "
            f"'{child.workflow_id}' (depth {len(context.workflow_stack)})"
        )

    def _complete(
        self,
        definition: WorkflowDefinition,
        context: SessionContext,
        result: StepResult,
        replies: List[str],
        metadata: Dict[str, Any],
    ) -> bool:
        """
        Finishes the active workflow. Returns True when a suspended parent was
        resumed and the loop should keep going.
        """
        parent = context.pop_workflow()
        data = dict(result.data)

        if parent is None:
            context.reset_workflow()
            replies.append(self._success_message(definition, data))
            metadata["completed_workflow"] = definition.workflow_id
            logger.info(f"Session {context.session_id} completed '{definition.workflow_id}'")
            return False

        state = dict(parent.state)
        if parent.awaiting_field:
            state[parent.awaiting_field] = data
            if data.get("id") is not None:
                state[f"{parent.awaiting_field}_id"] = data["id"]
        context.workflow_state = state
        context.metadata.pop(ASKING_FOR, None)
        context.metadata.pop(AWAITING_CONFIRMATION, None)
        context.activate(parent.workflow_id, parent.step)
        replies.append(self._success_message(definition, data))
        metadata["resumed_at"] = f"{parent.workflow_id}.{parent.step}"
        logger.info(f"Session {context.session_id} resumed '{parent.workflow_id}' at '{parent.step}'")
        return True

    # ==========================================================================
    # Standard Helpers
    # ==========================================================================

    def _handler(self, workflow_id: str) -> WorkflowHandler:
        if workflow_id not in self._handlers:
            definition = self.registry.get(workflow_id)
            steps = self.builder.build(definition) if definition.is_declarative else definition.steps
            self._handlers[workflow_id] = WorkflowHandler(definition, steps)
        return self._handlers[workflow_id]

    @staticmethod
    def _success_message(definition: WorkflowDefinition, data: Dict[str, Any]) -> str:
        fallback = f"Done! {definition.display_name} completed."
        if not definition.success_message:
            return fallback
        try:
            return definition.success_message.format(**data)
        except (KeyError, IndexError):
            return fallback

    @staticmethod
    def _reply(replies: List[str], status: str, metadata: Dict[str, Any]) -> TurnReply:
        return TurnReply(reply="\n\n".join(replies), status=status, metadata=metadata)
