"""
Declarative Steps - generated from a workflow's fields and entities.

A declarative WorkflowDefinition gets this linear graph:

    collect_data -> resolve_<entity> (one per entity, declared order)
                 -> confirm_action (only with confirm_before_complete)
                 -> execute_final_action -> complete

Entity resolution never treats "not found" as an error: it either offers to
create the entity (through a sub-workflow, or inline by asking for its
fields) or asks the user for a different value.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

from ..config import WorkflowEngineConfig
from ..domain.models import COMPLETE, EntitySpec, FieldSpec, Step, WorkflowDefinition
from ..llm.interface import LLMProvider, generate_with_timeout
from ..prompts import Template, render
from ..repositories.entity import EntityStore
from ..schemas.decisions import Delegation, StepResult, StepStatus
from ..state.models import ASKING_FOR, AWAITING_CONFIRMATION, SessionContext

logger = logging.getLogger(__name__)

COLLECT_DATA = "collect_data"
CONFIRM_ACTION = "confirm_action"
EXECUTE_FINAL_ACTION = "execute_final_action"

# Internal workflow_state keys
SKIPPED = "_skipped"
PENDING_CREATE = "_pending_create"
INLINE_CREATE = "_inline_create"

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PROCEED_PROMPT = "Would you like to proceed? Type 'yes' to confirm or 'cancel' to stop."


def resolve_step_id(entity: EntitySpec) -> str:
    return f"resolve_{entity.name}"


def matches_word(message: Optional[str], words: List[str]) -> bool:
    """Whole reply, or its first word, is one of `words`."""
    if not message:
        return False
    normalized = message.strip().lower().strip(".!")
    if normalized in words:
        return True
    first = normalized.split()[0] if normalized.split() else ""
    return first.strip(",.!") in words


def display_value(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("name") or value.get("title") or value.get("id") or value)
    if isinstance(value, list):
        return ", ".join(display_value(v) for v in value)
    return str(value)


class FieldExtractor:
    """
    Pulls field values out of free text: per-field regex patterns first,
    then (when a model is configured) a JSON extraction prompt for what is
    still missing.
    """

    def __init__(self, llm: Optional[LLMProvider] = None, timeout: float = 15.0):
        self.llm = llm
        self.timeout = timeout

    async def extract(
        self,
        definition: WorkflowDefinition,
        fields: List[FieldSpec],
        message: str,
        collected: Dict[str, Any],
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for spec in fields:
            if not spec.pattern:
                continue
            match = re.search(spec.pattern, message)
            if match:
                raw = match.group(1) if match.groups() else match.group(0)
                values[spec.name] = raw.strip()

        remaining = [spec for spec in fields if spec.name not in values]
        if remaining and self.llm is not None:
            values.update(await self._extract_with_model(definition, remaining, message, collected))
        return values

    async def _extract_with_model(
        self,
        definition: WorkflowDefinition,
        fields: List[FieldSpec],
        message: str,
        collected: Dict[str, Any],
    ) -> Dict[str, Any]:
        prompt = render(
            Template.FIELD_EXTRACTION,
            goal=definition.goal,
            fields=fields,
            collected=json.dumps({k: display_value(v) for k, v in collected.items()}),
            message=message,
        )
        try:
            raw = await generate_with_timeout(self.llm, prompt, timeout=self.timeout, max_tokens=200)
            match = re.search(r"\{.*\}", raw, re.DOTALL)
            parsed = json.loads(match.group(0)) if match else {}
        except Exception as e:
            logger.warning(f"Field extraction failed for '{definition.workflow_id}': {e}")
            return {}

        allowed = {spec.name for spec in fields}
        return {
            key: value for key, value in parsed.items()
            if key in allowed and value not in (None, "", [])
        }


class DeclarativeStepBuilder:
    def __init__(
        self,
        entity_store: EntityStore,
        config: Optional[WorkflowEngineConfig] = None,
        extractor: Optional[FieldExtractor] = None,
    ):
        self.entity_store = entity_store
        self.config = config or WorkflowEngineConfig()
        self.extractor = extractor or FieldExtractor()

    def build(self, definition: WorkflowDefinition) -> Dict[str, Step]:
        order = [COLLECT_DATA]
        order += [resolve_step_id(entity) for entity in definition.entities.values()]
        if definition.confirm_before_complete:
            order.append(CONFIRM_ACTION)
        order.append(EXECUTE_FINAL_ACTION)

        def next_of(step_id: str) -> str:
            position = order.index(step_id)
            return order[position + 1] if position + 1 < len(order) else COMPLETE

        steps: Dict[str, Step] = {
            COLLECT_DATA: Step(
                id=COLLECT_DATA,
                execute=lambda context, message: self.collect_data(definition, context, message),
                requires_user_input=True,
                on_success=next_of(COLLECT_DATA),
                description="Collect declared fields",
            ),
        }
        for entity in definition.entities.values():
            step_id = resolve_step_id(entity)
            steps[step_id] = Step(
                id=step_id,
                execute=self._resolver(definition, entity),
                on_success=next_of(step_id),
                description=f"Resolve {entity.name}",
            )
        if definition.confirm_before_complete:
            steps[CONFIRM_ACTION] = Step(
                id=CONFIRM_ACTION,
                execute=lambda context, message: self.confirm_action(definition, context, message),
                requires_user_input=True,
                on_success=next_of(CONFIRM_ACTION),
                description="Ask for confirmation",
            )
        steps[EXECUTE_FINAL_ACTION] = Step(
            id=EXECUTE_FINAL_ACTION,
            execute=lambda context, message: self.execute_final_action(definition, context, message),
            on_success=COMPLETE,
            description="Run the final action",
        )
        return steps

    def _resolver(self, definition: WorkflowDefinition, entity: EntitySpec):
        async def execute(context: SessionContext, message: Optional[str]) -> StepResult:
            return await self.resolve_entity(definition, entity, context, message)
        return execute

    # ==========================================================================
    # collect_data
    # ==========================================================================

    async def collect_data(
        self, definition: WorkflowDefinition, context: SessionContext, message: Optional[str]
    ) -> StepResult:
        fields = definition.fields
        skipped = set(context.get(SKIPPED, []))
        asking_for = context.metadata.get(ASKING_FOR)

        if message and asking_for in fields:
            spec = fields[asking_for]
            if matches_word(message, self.config.skip_words):
                if spec.required:
                    return StepResult.needs_input(f"{spec.question} (this one is required)")
                if "all" in message.lower():
                    skipped.update(f.name for f in fields.values() if not f.required)
                else:
                    skipped.add(spec.name)
                context.set(SKIPPED, sorted(skipped))
            else:
                value, error = self._coerce(spec, message.strip())
                if error:
                    return StepResult.needs_input(f"{error} {spec.question}")
                context.set(spec.name, value)
        elif message:
            missing = [spec for spec in fields.values() if not context.has(spec.name)]
            if missing:
                extracted = await self.extractor.extract(
                    definition, missing, message, self._collected(definition, context)
                )
                for name, raw in extracted.items():
                    value, error = self._coerce(fields[name], raw)
                    if not error:
                        context.set(name, value)

        # Only cleared once the pending answer is accepted
        context.metadata.pop(ASKING_FOR, None)

        for spec in fields.values():
            if spec.required and not context.has(spec.name):
                context.metadata[ASKING_FOR] = spec.name
                return StepResult.needs_input(spec.question)

        for spec in fields.values():
            if not spec.required and not context.has(spec.name) and spec.name not in skipped:
                context.metadata[ASKING_FOR] = spec.name
                return StepResult.needs_input(f"{spec.question} (optional, type 'skip' to leave it empty)")

        return StepResult.success()

    @staticmethod
    def _coerce(spec: FieldSpec, raw: Any):
        """Returns (value, error message)."""
        if spec.type == "email":
            value = str(raw).strip()
            if not EMAIL_PATTERN.match(value):
                return None, "That doesn't look like a valid email address."
            return value, None
        if spec.type in ("number", "integer"):
            try:
                number = float(str(raw).replace(",", "").strip())
                if not math.isfinite(number):
                    raise ValueError(f"non-finite value {raw!r}")
                value = int(number) if spec.type == "integer" else number
            except (ValueError, OverflowError):
                return None, "Please enter a number."
            return value, None
        return raw, None

    @staticmethod
    def _collected(definition: WorkflowDefinition, context: SessionContext) -> Dict[str, Any]:
        return {name: context.get(name) for name in definition.fields if context.has(name)}

    # ==========================================================================
    # resolve_<entity>
    # ==========================================================================

    async def resolve_entity(
        self,
        definition: WorkflowDefinition,
        entity: EntitySpec,
        context: SessionContext,
        message: Optional[str],
    ) -> StepResult:
        field = entity.field_name
        id_key = f"{field}_ids" if entity.allow_multiple else f"{field}_id"
        if context.has(id_key):
            return StepResult.success()

        inline = context.get(INLINE_CREATE)
        if inline and inline.get("entity") == entity.name:
            return await self._continue_inline_create(entity, context, message, inline)

        pending = context.get(PENDING_CREATE)
        if pending and pending.get("entity") == entity.name:
            return await self._answer_create_offer(definition, entity, context, message, pending)

        value = context.get(field)
        if value in (None, "", []):
            spec = definition.fields.get(field)
            if spec is not None and not spec.required:
                return StepResult.success()
            context.forget(field)
            context.metadata[ASKING_FOR] = field
            return StepResult(
                status=StepStatus.NEEDS_INPUT,
                message=spec.question if spec else f"Which {entity.name} should I use?",
                next_step=COLLECT_DATA,
            )

        values = self._split(value) if entity.allow_multiple else [value]
        found_ids = []
        for item in values:
            record = await self._lookup(entity, item)
            if record is None:
                return self._not_found(entity, context, item)
            found_ids.append(record.get("id"))

        context.set(id_key, found_ids if entity.allow_multiple else found_ids[0])
        return StepResult.success()

    async def _lookup(self, entity: EntitySpec, value: Any) -> Optional[Dict[str, Any]]:
        if isinstance(value, dict) and value.get("id") is not None:
            return value
        for key in entity.search_keys:
            record = await self.entity_store.find(entity.model, key, value)
            if record is not None:
                return record
        return None

    @staticmethod
    def _split(value: Any) -> List[Any]:
        if isinstance(value, list):
            return value
        parts = re.split(r",|\band\b", str(value))
        return [part.strip() for part in parts if part.strip()]

    def _not_found(self, entity: EntitySpec, context: SessionContext, value: Any) -> StepResult:
        field = entity.field_name
        if not entity.create_if_missing:
            context.forget(field)
            context.metadata[ASKING_FOR] = field
            return StepResult(
                status=StepStatus.FAILURE,
                message=f"I couldn't find {entity.name} '{display_value(value)}'.",
                next_step=COLLECT_DATA,
            )

        context.set(PENDING_CREATE, {"entity": entity.name, "value": value})
        return StepResult.needs_input(
            f"I couldn't find {entity.name} '{display_value(value)}'. Would you like to create it? (yes/no)"
        )

    async def _answer_create_offer(
        self,
        definition: WorkflowDefinition,
        entity: EntitySpec,
        context: SessionContext,
        message: Optional[str],
        pending: Dict[str, Any],
    ) -> StepResult:
        value = pending.get("value")
        field = entity.field_name

        if matches_word(message, self.config.affirmative_words):
            context.forget(PENDING_CREATE)
            seed = {entity.search_keys[0]: value} if entity.search_keys else {}
            if entity.subflow:
                logger.info(f"Delegating creation of {entity.name} to workflow '{entity.subflow}'")
                return StepResult(
                    status=StepStatus.NEEDS_INPUT,
                    message=f"Let's create the {entity.name} first.",
                    delegate=Delegation(workflow_id=entity.subflow, field=field, seed=seed),
                )
            context.set(INLINE_CREATE, {"entity": entity.name, "values": seed})
            return await self._continue_inline_create(entity, context, None, context.get(INLINE_CREATE))

        if matches_word(message, self.config.negative_words):
            context.forget(PENDING_CREATE)
            context.forget(field)
            context.metadata[ASKING_FOR] = field
            return StepResult(
                status=StepStatus.NEEDS_INPUT,
                message=f"Okay. Which {entity.name} should I use instead?",
                next_step=COLLECT_DATA,
            )

        return StepResult.needs_input(
            f"Should I create {entity.name} '{display_value(value)}'? Please answer yes or no."
        )

    async def _continue_inline_create(
        self,
        entity: EntitySpec,
        context: SessionContext,
        message: Optional[str],
        inline: Dict[str, Any],
    ) -> StepResult:
        values = dict(inline.get("values") or {})
        asking = inline.get("asking")
        if message and asking:
            if not matches_word(message, self.config.skip_words):
                values[asking] = message.strip()

        for name in entity.create_fields:
            if name not in values and name != asking:
                context.set(INLINE_CREATE, {"entity": entity.name, "values": values, "asking": name})
                return StepResult.needs_input(f"What is the {entity.name}'s {name.replace('_', ' ')}?")

        record = await self.entity_store.create(entity.model, values)
        context.forget(INLINE_CREATE)
        context.set(entity.field_name, record)
        context.set(f"{entity.field_name}_id", record.get("id"))
        logger.info(f"Created {entity.name} {record.get('id')} inline")
        return StepResult.success(f"Created {entity.name} '{display_value(record)}'.")

    # ==========================================================================
    # confirm_action / execute_final_action
    # ==========================================================================

    async def confirm_action(
        self, definition: WorkflowDefinition, context: SessionContext, message: Optional[str]
    ) -> StepResult:
        if context.is_in_subworkflow() and self.config.skip_confirmation_in_subworkflow:
            return StepResult.success()

        if not context.metadata.get(AWAITING_CONFIRMATION) or message is None:
            context.metadata[AWAITING_CONFIRMATION] = True
            return StepResult.needs_input(f"{self.summary(definition, context)}\n\n{PROCEED_PROMPT}")

        if matches_word(message, self.config.affirmative_words):
            context.metadata.pop(AWAITING_CONFIRMATION, None)
            return StepResult.success()

        if matches_word(message, self.config.negative_words):
            return StepResult.needs_input(
                "No problem, nothing has been saved yet. Type 'yes' when you're ready "
                "to proceed, or 'cancel' to stop."
            )

        return StepResult.needs_input(f"{self.summary(definition, context)}\n\n{PROCEED_PROMPT}")

    def summary(self, definition: WorkflowDefinition, context: SessionContext) -> str:
        lines = [f"Please review the {definition.display_name}:"]
        for name in definition.fields:
            if context.has(name):
                lines.append(f"- {name.replace('_', ' ').capitalize()}: {display_value(context.get(name))}")
        return "\n".join(lines)

    async def execute_final_action(
        self, definition: WorkflowDefinition, context: SessionContext, message: Optional[str]
    ) -> StepResult:
        collected = {
            key: value for key, value in context.workflow_state.items() if not key.startswith("_")
        }
        if definition.final_action is None:
            return StepResult(status=StepStatus.SUCCESS, data=collected)

        try:
            data = await definition.final_action(collected, context)
        except Exception as e:
            logger.exception(f"Final action of '{definition.workflow_id}' failed")
            return StepResult.failure(f"I couldn't complete the {definition.display_name}: {e}")

        return StepResult(status=StepStatus.SUCCESS, data=dict(data or {}))
