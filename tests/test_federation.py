import httpx
import pytest

from agent_orchestrator.config import RoutedSessionConfig
from agent_orchestrator.domain.models import RemoteNode
from agent_orchestrator.federation.catalog import CapabilityCatalog, workflow_entity
from agent_orchestrator.federation.digest import join_words, node_digest, node_summary
from agent_orchestrator.federation.forwarder import ForwardResult, HttpNodeForwarder
from agent_orchestrator.federation.node_registry import InMemoryNodeRegistry
from agent_orchestrator.federation.node_routing import NodeRoutingCoordinator
from agent_orchestrator.federation.routed_session import RoutedAction, RoutedSessionPolicy
from agent_orchestrator.state.models import RoutedNode
from tests.conftest import BILLING_NODE, MAIL_NODE, FakeForwarder, ScriptedLLM

# ==============================================================================
# Capability catalog
# ==============================================================================


def test_workflow_entity_inference():
    assert workflow_entity("CreateInvoiceWorkflow") == "invoice"
    assert workflow_entity("declarative_update_purchase_order") == "purchase order"
    assert workflow_entity("create_workflow") is None


def test_higher_priority_source_wins_regardless_of_order():
    keyword_node = RemoteNode(slug="crm", name="CRM", keywords=["invoice"])
    data_node = RemoteNode(slug="erp", name="ERP", data_types=["invoices"])
    collector_node = RemoteNode(slug="billing", name="Billing", autonomous_collectors=["invoice_create"])

    for nodes in ([keyword_node, data_node, collector_node], [collector_node, data_node, keyword_node]):
        entry = CapabilityCatalog.build(nodes).entries["invoice"]
        assert entry.node_slug == "billing"
        assert entry.source == "collector"
        assert entry.priority == 4


def test_equal_priority_keeps_first_claim():
    first = RemoteNode(slug="a", name="A", data_types=["orders"])
    second = RemoteNode(slug="b", name="B", collections=["order"])

    catalog = CapabilityCatalog.build([first, second])

    assert catalog.entries["order"].node_slug == "a"
    assert catalog.register_capability(second, "order", "keyword") is False
    assert catalog.register_capability(second, "order", "workflow") is True
    assert catalog.entries["order"].node_slug == "b"


def test_short_keywords_are_ignored():
    catalog = CapabilityCatalog.build([RemoteNode(slug="x", name="X", keywords=["ab", "abc"])])
    assert set(catalog.entries) == {"abc"}


def test_lookup_and_message_match():
    catalog = CapabilityCatalog.build([BILLING_NODE, MAIL_NODE])

    assert catalog.lookup("Invoices").node_slug == "billing"
    assert catalog.lookup("none") is None
    assert catalog.match_in_message("any new emails today?").node_slug == "mail"
    assert catalog.match_in_message("how is the weather") is None


# ==============================================================================
# Digest
# ==============================================================================


def test_join_words():
    assert join_words(["a"]) == "a"
    assert join_words(["a", "b"]) == "a and b"
    assert join_words(["a", "b", "c"]) == "a, b, and c"
    assert join_words(["a", "b", "c", "d", "e", "f"]) == "a, b, c, d, and e"


def test_node_digest_line():
    assert node_digest(BILLING_NODE) == (
        "- Billing Node (billing): manages invoices and payments. "
        "Can: manage invoice. Domains: finance."
    )
    bare = RemoteNode(slug="misc", name="Misc")
    assert node_digest(bare) == "- Misc (misc): general purpose."


def test_node_summary():
    assert node_summary(BILLING_NODE) == "Handles: invoices, payments. Domains: finance."
    assert node_summary(RemoteNode(slug="misc", name="Misc")) == "General operations."


# ==============================================================================
# Routed session policy
# ==============================================================================


@pytest.fixture
def node_registry():
    return InMemoryNodeRegistry([BILLING_NODE, MAIL_NODE])


@pytest.fixture
def pinned_context(context):
    context.pin_to_node(RoutedNode(node_slug="billing", node_name="Billing Node"))
    return context


async def test_unpinned_session_is_local(node_registry, context):
    decision = await RoutedSessionPolicy(node_registry).evaluate("anything", context)
    assert decision.action == RoutedAction.LOCAL


async def test_inactive_pinned_node_is_local(pinned_context):
    registry = InMemoryNodeRegistry([RemoteNode(slug="billing", name="Billing Node", is_active=False)])
    decision = await RoutedSessionPolicy(registry).evaluate("2", pinned_context)
    assert decision.action == RoutedAction.LOCAL


@pytest.mark.parametrize("message", ["2", "yes", "next", "the second one", "show more"])
async def test_short_follow_ups_continue_without_model(node_registry, pinned_context, message):
    llm = ScriptedLLM(["LOCAL"])
    policy = RoutedSessionPolicy(node_registry, llm)

    assert await policy.should_continue(message, pinned_context) is True
    assert llm.prompts == []


async def test_one_word_off_topic_message_stops_forwarding(node_registry, pinned_context):
    pinned_context.add_user_message("weather")
    policy = RoutedSessionPolicy(node_registry)

    assert await policy.should_continue("weather", pinned_context) is False


async def test_rules_continue_on_node_vocabulary(node_registry, pinned_context):
    policy = RoutedSessionPolicy(node_registry)
    assert await policy.should_continue("show the unpaid invoices", pinned_context) is True


async def test_rules_continue_follow_up_on_node_topic(node_registry, pinned_context):
    pinned_context.add_user_message("list my invoices")
    pinned_context.add_assistant_message("1. INV-1\n2. INV-2")
    pinned_context.add_user_message("what about those?")

    policy = RoutedSessionPolicy(node_registry)

    assert await policy.should_continue("what about those?", pinned_context) is True


@pytest.mark.parametrize("flag, expected", [(False, RoutedAction.LOCAL), (True, RoutedAction.CONTINUE)])
async def test_model_failure_defaults_to_local(node_registry, pinned_context, flag, expected):
    policy = RoutedSessionPolicy(
        node_registry,
        ScriptedLLM(error=TimeoutError()),
        RoutedSessionConfig(fallback_continue_on_ai_error=flag),
    )
    decision = await policy.evaluate("tell me about the quarterly plan", pinned_context)
    assert decision.action == expected


def test_default_config_is_conservative():
    assert RoutedSessionConfig().fallback_continue_on_ai_error is False


@pytest.mark.parametrize(
    "answer, action, slug",
    [
        ("CONTINUE", RoutedAction.CONTINUE, "billing"),
        ("RE_ROUTE: mail", RoutedAction.RE_ROUTE, "mail"),
        ("RE_ROUTE:billing", RoutedAction.CONTINUE, "billing"),
        ("RE_ROUTE: nowhere", RoutedAction.LOCAL, None),
        ("LOCAL", RoutedAction.LOCAL, None),
        ("RELATED", RoutedAction.CONTINUE, "billing"),
        ("DIFFERENT", RoutedAction.LOCAL, None),
        ("no idea", RoutedAction.LOCAL, None),
    ],
)
def test_parse_response(node_registry, answer, action, slug):
    decision = RoutedSessionPolicy(node_registry).parse_response(answer, "billing")
    assert decision.action == action
    assert decision.node_slug == slug


async def test_prompt_lists_other_nodes(node_registry, pinned_context):
    llm = ScriptedLLM(["RE_ROUTE: mail"])
    decision = await RoutedSessionPolicy(node_registry, llm).evaluate("check my inbox", pinned_context)

    assert decision.action == RoutedAction.RE_ROUTE
    assert "- Mail Node (mail): manages emails." in llm.prompts[0]
    assert "Handles: invoices, payments." in llm.prompts[0]


# ==============================================================================
# Node routing coordinator
# ==============================================================================


def coordinator(policy, llm=None, forwarder=None, nodes=(BILLING_NODE, MAIL_NODE)):
    return NodeRoutingCoordinator(InMemoryNodeRegistry(list(nodes)), forwarder or FakeForwarder(), policy, llm=llm)


async def test_detects_capability_by_alias(policy, context):
    capability = await coordinator(policy).detect_remote_capability("show my invoices from last month", context)
    assert capability.node_slug == "billing"
    assert capability.source == "workflow"


async def test_short_query_with_history_is_not_matched(policy, context):
    context.add_assistant_message("Here you go.")
    assert await coordinator(policy).detect_remote_capability("invoices please", context) is None


async def test_short_query_without_history_is_matched(policy, context):
    capability = await coordinator(policy).detect_remote_capability("invoices please", context)
    assert capability.node_slug == "billing"


async def test_model_answer_picks_catalog_key(policy, context):
    llm = ScriptedLLM(["email"])
    capability = await coordinator(policy, llm).detect_remote_capability("did Bob write back to me yet", context)

    assert capability.node_slug == "mail"
    assert "- invoice: invoice (node: Billing Node)" in llm.prompts[0]


async def test_model_none_answer_means_no_match(policy, context):
    llm = ScriptedLLM(["none"])
    assert await coordinator(policy, llm).detect_remote_capability("show my invoices from last month", context) is None


async def test_model_failure_falls_back_to_alias_match(policy, context):
    llm = ScriptedLLM(error=RuntimeError("boom"))
    capability = await coordinator(policy, llm).detect_remote_capability("show my invoices from last month", context)
    assert capability.node_slug == "billing"


def test_resolve_node_for_routing(policy):
    router = coordinator(policy)
    assert router.resolve_node_for_routing("mail").slug == "mail"
    assert router.resolve_node_for_routing("Mail Node").slug == "mail"
    assert router.resolve_node_for_routing("emails").slug == "mail"
    assert router.resolve_node_for_routing("payment").slug == "billing"
    assert router.resolve_node_for_routing("spaceships") is None


async def test_successful_forward_pins_and_remembers_list(policy, context):
    forwarder = FakeForwarder(ForwardResult(
        success=True,
        response="1. INV-1\n2. INV-2",
        metadata={"entity_ids": [1, 2], "entity_type": "invoice", "start_position": 1},
    ))

    reply = await coordinator(policy, forwarder=forwarder).route_to_node("billing", "list invoices", context)

    assert reply.reply == "1. INV-1\n2. INV-2"
    assert reply.metadata["node_ref"] == "billing"
    assert reply.metadata["entity_ids"] == [1, 2]
    assert context.routed_to_node.node_slug == "billing"
    assert context.last_entity_list.node_ref == "billing"
    assert context.last_entity_list.entity_ids == [1, 2]


async def test_failed_forward_names_node_and_keeps_pin(policy, context):
    context.pin_to_node(RoutedNode(node_slug="mail", node_name="Mail Node"))
    forwarder = FakeForwarder(ForwardResult(success=False, error="connection refused"))

    reply = await coordinator(policy, forwarder=forwarder).route_to_node("billing", "list invoices", context)

    assert reply.status == "failed"
    assert "Billing Node" in reply.reply
    assert "connection refused" in reply.reply
    assert "http://billing.local" in reply.reply
    assert context.routed_to_node.node_slug == "mail"


async def test_unknown_node(policy, context):
    reply = await coordinator(policy).route_to_node("spaceships", "hi", context)
    assert reply.reply == policy.node_not_found("spaceships")
    assert context.routed_to_node is None


# ==============================================================================
# HTTP forwarder
# ==============================================================================


async def test_http_forwarder_posts_to_node_chat_endpoint():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.read().decode()
        return httpx.Response(200, json={"response": "hello from billing", "metadata": {"entity_ids": [7]}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await HttpNodeForwarder(client=client).forward(BILLING_NODE, "list invoices", "s-1", {}, "u-1")

    assert seen["url"] == "http://billing.local/api/chat"
    assert '"session_id":"s-1"' in seen["body"].replace(" ", "")
    assert result.success is True
    assert result.response == "hello from billing"
    assert result.metadata == {"entity_ids": [7]}


async def test_http_forwarder_reports_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await HttpNodeForwarder(client=client).forward(BILLING_NODE, "hi", "s-1")

    assert result.success is False
    assert "503" in result.error


async def test_http_forwarder_without_url():
    result = await HttpNodeForwarder().forward(RemoteNode(slug="x", name="X"), "hi", "s-1")
    assert result.success is False
