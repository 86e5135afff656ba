import pytest

from agent_orchestrator.config import WorkflowEngineConfig
from agent_orchestrator.domain.models import COMPLETE, EntitySpec, FieldSpec, Step, WorkflowDefinition
from agent_orchestrator.execution.engine import WorkflowEngine
from agent_orchestrator.execution.registry import WorkflowRegistry
from agent_orchestrator.schemas.decisions import Delegation, StepResult, StepStatus
from agent_orchestrator.state.models import ASKING_FOR, AWAITING_CONFIRMATION


def assert_pointers_consistent(context):
    assert (context.current_workflow is None) == (context.current_step is None)


def step(step_id, execute, **kwargs):
    return Step(id=step_id, execute=execute, **kwargs)


def build_parent_child(executed):
    """
    parent: need_child (delegates to child for 'thing') -> review (waits)
    child:  make (returns {"id": 42, "name": "widget"})
    """

    async def need_child(context, message):
        executed.append("parent.need_child")
        if context.has("thing"):
            return StepResult.success()
        return StepResult(
            status=StepStatus.NEEDS_INPUT,
            delegate=Delegation(workflow_id="child", field="thing", seed={"name": "widget"}),
        )

    async def review(context, message):
        executed.append("parent.review")
        return StepResult.success()

    async def make(context, message):
        executed.append("child.make")
        return StepResult.success(id=42, name=context.get("name"))

    parent = WorkflowDefinition(
        workflow_id="parent",
        goal="parent",
        steps={
            "need_child": step("need_child", need_child, on_success="review"),
            "review": step("review", review, requires_user_input=True, prompt="Look good?"),
        },
    )
    child = WorkflowDefinition(
        workflow_id="child",
        goal="child",
        steps={"make": step("make", make, on_success=COMPLETE)},
        success_message="Made {name}.",
    )
    return WorkflowRegistry([parent, child])


async def test_subworkflow_result_merges_into_parent_and_resumes_paused_step(entity_store, context):
    executed = []
    engine = WorkflowEngine(build_parent_child(executed), entity_store)

    reply = await engine.start("parent", context, "go")

    assert executed == ["parent.need_child", "child.make", "parent.need_child"]
    assert context.current_workflow == "parent"
    assert context.current_step == "review"
    assert context.get("thing") == {"id": 42, "name": "widget"}
    assert context.get("thing_id") == 42
    assert context.workflow_stack == []
    assert reply.metadata["resumed_at"] == "parent.need_child"
    assert "Made widget." in reply.reply
    assert "Look good?" in reply.reply
    assert_pointers_consistent(context)


def build_chain(depth):
    """wf_0 delegates to wf_1 ... wf_depth, which waits for input."""
    definitions = []
    for level in range(depth + 1):
        if level < depth:
            async def delegate(context, message, target=f"wf_{level + 1}"):
                return StepResult(
                    status=StepStatus.NEEDS_INPUT,
                    delegate=Delegation(workflow_id=target, field="child"),
                )
            steps = {"go": step("go", delegate)}
        else:
            async def wait(context, message):
                return StepResult.needs_input("Still waiting.")
            steps = {"wait": step("wait", wait)}
        definitions.append(WorkflowDefinition(workflow_id=f"wf_{level}", goal="chain", steps=steps))
    return WorkflowRegistry(definitions)


@pytest.mark.parametrize("depth", [1, 2, 5])
async def test_cancel_at_any_depth_clears_everything_in_one_operation(entity_store, context, depth):
    engine = WorkflowEngine(build_chain(depth), entity_store)
    await engine.start("wf_0", context, "start")
    assert len(context.workflow_stack) == depth
    context.metadata[AWAITING_CONFIRMATION] = True

    reply = engine.cancel(context)

    assert reply.status == "cancelled"
    assert context.current_workflow is None
    assert context.current_step is None
    assert context.workflow_state == {}
    assert context.workflow_stack == []
    assert AWAITING_CONFIRMATION not in context.metadata


def test_cancel_with_nothing_active(engine, context, policy):
    reply = engine.cancel(context)
    assert reply.reply == policy.nothing_to_cancel()
    assert_pointers_consistent(context)


async def test_failed_final_action_keeps_subworkflow_active(entity_store, context):
    async def explode(collected, context):
        raise RuntimeError("backend down")

    async def need_child(context, message):
        if context.has("thing"):
            return StepResult.success()
        return StepResult(
            status=StepStatus.NEEDS_INPUT,
            delegate=Delegation(workflow_id="child", field="thing", seed={"name": "widget"}),
        )

    registry = WorkflowRegistry([
        WorkflowDefinition(workflow_id="parent", goal="p", steps={"need_child": step("need_child", need_child)}),
        WorkflowDefinition(
            workflow_id="child",
            goal="c",
            fields={"name": FieldSpec(name="name")},
            final_action=explode,
        ),
    ])
    engine = WorkflowEngine(registry, entity_store)

    reply = await engine.start("parent", context, "go")

    assert reply.status == "failed"
    assert "backend down" in reply.reply
    assert context.current_workflow == "child"
    assert context.current_step == "execute_final_action"
    assert len(context.workflow_stack) == 1


async def test_step_exception_becomes_failure_and_workflow_stays(entity_store, context):
    async def boom(context, message):
        raise ValueError("bad input")

    registry = WorkflowRegistry([
        WorkflowDefinition(workflow_id="fragile", goal="f", steps={"boom": step("boom", boom)}),
    ])
    engine = WorkflowEngine(registry, entity_store)

    reply = await engine.start("fragile", context, "hi")

    assert reply.status == "failed"
    assert context.current_workflow == "fragile"
    assert context.current_step == "boom"


async def test_failure_follows_on_failure_transition(entity_store, context):
    async def check(context, message):
        return StepResult.failure("Not valid.")

    async def recover(context, message):
        return StepResult.needs_input("Try again?")

    registry = WorkflowRegistry([
        WorkflowDefinition(
            workflow_id="branchy",
            goal="b",
            steps={
                "check": step("check", check, on_failure="recover"),
                "recover": step("recover", recover),
            },
        ),
    ])
    engine = WorkflowEngine(registry, entity_store)

    reply = await engine.start("branchy", context, "x")

    assert context.current_step == "recover"
    assert reply.reply == "Not valid.\n\nTry again?"


async def test_loop_guard_stops_runaway_workflow(entity_store, context, policy):
    async def spin(context, message):
        return StepResult.success()

    registry = WorkflowRegistry([
        WorkflowDefinition(
            workflow_id="spinner",
            goal="s",
            steps={
                "ping": step("ping", spin, on_success="pong"),
                "pong": step("pong", spin, on_success="ping"),
            },
        ),
    ])
    engine = WorkflowEngine(registry, entity_store, config=WorkflowEngineConfig(max_step_executions=5))

    reply = await engine.start("spinner", context, "go")

    assert reply.status == "failed"
    assert policy.generic_error() in reply.reply
    assert context.current_workflow == "spinner"
    assert_pointers_consistent(context)


async def test_unknown_workflow_gives_safe_reply(engine, context, policy):
    reply = await engine.start("does_not_exist", context, "hi")

    assert reply.status == "failed"
    assert reply.reply == policy.workflow_unavailable("does_not_exist")
    assert context.current_workflow is None
    assert_pointers_consistent(context)


async def test_malformed_graph_gives_safe_reply(entity_store, context, policy):
    async def noop(context, message):
        return StepResult.success()

    registry = WorkflowRegistry([
        WorkflowDefinition(
            workflow_id="broken",
            goal="b",
            steps={"only": step("only", noop, on_success="nowhere")},
        ),
    ])
    engine = WorkflowEngine(registry, entity_store, policy=policy)

    reply = await engine.start("broken", context, "go")

    assert reply.reply == policy.workflow_unavailable("broken")
    assert context.current_workflow is None


async def test_confirmation_gate(engine, entity_store, context):
    customer = await entity_store.create("customer", {"name": "Acme Corp", "email": "ops@acme.test"})

    reply = await engine.start("create_invoice", context, "Create invoice for Acme Corp with 3 chairs")
    assert reply.status == "needs_input"
    assert "Would you like to proceed?" in reply.reply
    assert "Acme Corp" in reply.reply
    assert context.current_step == "confirm_action"

    for answer in ("no", "maybe later"):
        reply = await engine.continue_workflow(answer, context)
        assert reply.status == "needs_input"
        assert context.current_step == "confirm_action"
    assert entity_store.all("invoice") == []

    reply = await engine.continue_workflow("yes", context)

    assert reply.status == "completed"
    invoices = entity_store.all("invoice")
    assert len(invoices) == 1
    assert invoices[0]["customer_id"] == customer["id"]
    assert invoices[0]["items"] == "3 chairs"
    assert f"Invoice #{invoices[0]['id']} created for Acme Corp." in reply.reply
    assert context.current_workflow is None
    assert_pointers_consistent(context)


async def test_declining_creation_asks_for_another_value(engine, entity_store, context):
    await entity_store.create("customer", {"name": "Acme Corp"})

    reply = await engine.start("create_invoice", context, "Create invoice for Nobody Inc with 1 desk")
    assert "Would you like to create it?" in reply.reply

    reply = await engine.continue_workflow("no", context)
    assert reply.status == "needs_input"
    assert context.current_step == "collect_data"
    assert not context.has("customer")

    reply = await engine.continue_workflow("Acme Corp", context)
    assert context.current_step == "confirm_action"
    assert context.get("customer_id") is not None


async def test_missing_entity_without_creation_fails_and_asks_again(entity_store, context):
    registry = WorkflowRegistry([
        WorkflowDefinition(
            workflow_id="assign_owner",
            goal="Assign an owner",
            fields={"owner": FieldSpec(name="owner", prompt="Who owns it?")},
            entities={"owner": EntitySpec(name="owner", model="user")},
        ),
    ])
    engine = WorkflowEngine(registry, entity_store)

    await engine.start("assign_owner", context, None)
    reply = await engine.continue_workflow("ghost", context)

    assert "couldn't find owner 'ghost'" in reply.reply
    assert "Who owns it?" in reply.reply
    assert context.current_step == "collect_data"


async def test_inline_creation_without_subflow(entity_store, context):
    registry = WorkflowRegistry([
        WorkflowDefinition(
            workflow_id="create_order",
            goal="Order a product",
            fields={"product": FieldSpec(name="product", pattern=r"\border\s+(\w+)")},
            entities={
                "product": EntitySpec(
                    name="product",
                    model="product",
                    create_if_missing=True,
                    create_fields=["name", "price"],
                ),
            },
        ),
    ])
    engine = WorkflowEngine(registry, entity_store)

    reply = await engine.start("create_order", context, "order Widget")
    assert "Would you like to create it?" in reply.reply

    reply = await engine.continue_workflow("yes", context)
    assert "price" in reply.reply
    assert context.workflow_stack == []

    reply = await engine.continue_workflow("9.99", context)

    assert reply.status == "completed"
    products = entity_store.all("product")
    assert products == [{"name": "Widget", "price": "9.99", "id": products[0]["id"]}]


def quantity_registry(received):
    async def record(collected, context):
        received.append(collected["quantity"])
        return {"quantity": collected["quantity"]}

    return WorkflowRegistry([
        WorkflowDefinition(
            workflow_id="restock",
            goal="Restock an item",
            fields={"quantity": FieldSpec(name="quantity", type="integer")},
            final_action=record,
        ),
    ])


@pytest.mark.parametrize("answer", ["inf", "nan", "-Infinity", "1e400", "lots"])
async def test_rejected_number_keeps_asking_for_the_same_field(entity_store, context, answer):
    received = []
    engine = WorkflowEngine(quantity_registry(received), entity_store)
    await engine.start("restock", context, "restock please")
    assert context.metadata[ASKING_FOR] == "quantity"

    reply = await engine.continue_workflow(answer, context)

    assert reply.status == "needs_input"
    assert reply.reply == "Please enter a number. What is the quantity?"
    assert context.metadata[ASKING_FOR] == "quantity"
    assert not context.has("quantity")

    reply = await engine.continue_workflow("12", context)

    assert reply.status == "completed"
    assert received == [12]
    assert context.current_workflow is None


async def test_delegation_to_missing_workflow_keeps_parent_active(entity_store, context, policy):
    async def need_ghost(context, message):
        return StepResult(
            status=StepStatus.NEEDS_INPUT,
            delegate=Delegation(workflow_id="ghost", field="thing"),
        )

    registry = WorkflowRegistry([
        WorkflowDefinition(
            workflow_id="parent",
            goal="parent",
            steps={"need_ghost": step("need_ghost", need_ghost)},
        ),
    ])
    engine = WorkflowEngine(registry, entity_store, policy=policy)

    reply = await engine.start("parent", context, "go")

    assert reply.status == "failed"
    assert reply.reply == policy.workflow_unavailable("ghost")
    assert context.current_workflow == "parent"
    assert context.current_step == "need_ghost"
    assert context.workflow_stack == []
    assert_pointers_consistent(context)
