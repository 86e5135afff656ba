import pytest

from agent_orchestrator.domain.models import CollectorConfig
from agent_orchestrator.federation.collectors import CollectorExecutionCoordinator, CollectorRegistry
from agent_orchestrator.federation.forwarder import ForwardResult
from agent_orchestrator.federation.node_registry import InMemoryNodeRegistry
from agent_orchestrator.federation.node_routing import NodeRoutingCoordinator
from agent_orchestrator.state.models import ACTIVE_COLLECTOR
from tests.conftest import BILLING_NODE, FakeForwarder, ScriptedLLM

CUSTOMER_COLLECTOR = CollectorConfig(
    name="customer_create",
    goal="Register a new customer",
    triggers=["add customer"],
    workflow_id="create_customer",
)
INVOICE_DELETE = CollectorConfig(
    name="invoice_delete",
    goal="Remove an invoice",
    triggers=["remove invoice"],
    node_slug="billing",
)


def make_registry(llm=None, permission_checker=None):
    registry = CollectorRegistry(llm=llm, permission_checker=permission_checker)
    registry.register(CUSTOMER_COLLECTOR)
    registry.register(INVOICE_DELETE)
    return registry


def test_required_operation_from_name():
    assert CUSTOMER_COLLECTOR.required_operation == "create"
    assert INVOICE_DELETE.required_operation == "delete"
    assert CollectorConfig(name="order_update", goal="").required_operation == "update"


async def test_trigger_match():
    config = await make_registry().find_config_for_message("please add customer Jane")
    assert config is CUSTOMER_COLLECTOR


async def test_trigger_must_be_whole_words():
    assert await make_registry().find_config_for_message("readd customers") is None


async def test_permission_checker_hides_collectors():
    checks = []

    def checker(user_id, operation, name):
        checks.append((user_id, operation, name))
        return operation != "delete"

    registry = make_registry(permission_checker=checker)

    assert [c.name for c in registry.get_configs("u-1")] == ["customer_create"]
    assert await registry.find_config_for_message("remove invoice 4", "u-1") is None
    assert ("u-1", "delete", "invoice_delete") in checks


@pytest.mark.parametrize("answer, expected", [("2", "invoice_delete"), ("1.", "customer_create"), ("0", None), ("9", None), ("no", None)])
async def test_model_picks_numbered_collector(answer, expected):
    llm = ScriptedLLM([answer])
    config = await make_registry(llm).find_config_for_message("I want to get rid of an old bill")

    assert (config.name if config else None) == expected
    assert "1. customer_create: Register a new customer" in llm.prompts[0]
    assert "2. invoice_delete: Remove an invoice" in llm.prompts[0]


async def test_model_failure_means_no_collector():
    llm = ScriptedLLM(error=RuntimeError("boom"))
    assert await make_registry(llm).find_config_for_message("get rid of a bill") is None


# ==============================================================================
# Execution
# ==============================================================================


@pytest.fixture
def forwarder():
    return FakeForwarder(ForwardResult(success=True, response="Which invoice should I delete?"))


@pytest.fixture
def coordinator(engine, policy, forwarder):
    node_router = NodeRoutingCoordinator(InMemoryNodeRegistry([BILLING_NODE]), forwarder, policy)
    return CollectorExecutionCoordinator(make_registry(), engine, node_router, policy)


async def test_collector_name_required(coordinator, context, policy):
    reply = await coordinator.execute(None, "start", context)
    assert reply.reply == policy.collector_not_specified()


async def test_unknown_collector(coordinator, context, policy):
    reply = await coordinator.execute("spaceship_create", "build me a rocket", context)
    assert reply.reply == policy.collector_unavailable("spaceship_create")
    assert reply.status == "failed"


async def test_unknown_name_falls_back_to_message_match(coordinator, context):
    reply = await coordinator.execute("customers", "add customer", context)

    assert reply.status == "needs_input"
    assert context.current_workflow == "create_customer"


async def test_local_collector_runs_workflow(coordinator, context):
    reply = await coordinator.execute("customer_create", "add customer", context)

    assert reply.status == "needs_input"
    assert context.current_workflow == "create_customer"
    assert context.metadata[ACTIVE_COLLECTOR] == "customer_create"


async def test_remote_collector_is_forwarded(coordinator, context, forwarder):
    reply = await coordinator.execute("invoice_delete", "remove invoice 4", context)

    assert reply.reply == "Which invoice should I delete?"
    assert forwarder.calls == [
        {"node": "billing", "message": "remove invoice 4", "options": {"collector": "invoice_delete"}}
    ]
    assert context.routed_to_node.node_slug == "billing"
    assert not context.has_active_workflow
