"""
Pytest configuration and shared fixtures.

Language models and remote nodes are replaced by scripted fakes; every store
is the in-memory implementation.
"""
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from agent_orchestrator.config import Settings
from agent_orchestrator.data.sample_workflows import register_samples
from agent_orchestrator.domain.models import RemoteNode
from agent_orchestrator.execution.engine import WorkflowEngine
from agent_orchestrator.execution.registry import WorkflowRegistry
from agent_orchestrator.federation.collectors import CollectorExecutionCoordinator, CollectorRegistry
from agent_orchestrator.federation.forwarder import ForwardResult, NodeForwarder
from agent_orchestrator.federation.node_registry import InMemoryNodeRegistry
from agent_orchestrator.federation.node_routing import NodeRoutingCoordinator
from agent_orchestrator.federation.routed_session import RoutedSessionPolicy
from agent_orchestrator.knowledge.interface import InMemoryKnowledgeSearch
from agent_orchestrator.llm.interface import LLMProvider
from agent_orchestrator.repositories.entity import InMemoryEntityStore
from agent_orchestrator.repositories.session import InMemorySessionStore
from agent_orchestrator.routing.follow_up import FollowUpResolver
from agent_orchestrator.routing.intent_classifier import IntentClassifier
from agent_orchestrator.routing.message_router import MessageRouter
from agent_orchestrator.routing.positional import PositionalReferenceCoordinator, PositionalResolver
from agent_orchestrator.services.chat import ChatService
from agent_orchestrator.services.policy import AgentPolicy
from agent_orchestrator.state.models import EntityList, SessionContext


class ScriptedLLM(LLMProvider):
    """
    Answers from a list of canned replies (consumed in order) or from a
    callable receiving the prompt. `error` is raised on every call.
    """

    def __init__(
        self,
        replies: Union[List[str], Callable[[str], str], None] = None,
        structured: Any = None,
        error: Optional[Exception] = None,
    ):
        self.replies = replies if callable(replies) else list(replies or [])
        self.structured = structured
        self.error = error
        self.prompts: List[str] = []

    async def generate(self, prompt, system_prompt=None, max_tokens=64, temperature=0.0):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if callable(self.replies):
            return self.replies(prompt)
        return self.replies.pop(0) if self.replies else ""

    async def generate_structured_output(self, messages, response_model, temperature=0.0):
        self.prompts.append(messages[-1]["content"])
        if self.error is not None:
            raise self.error
        return self.structured


class FakeForwarder(NodeForwarder):
    def __init__(self, result: Optional[ForwardResult] = None):
        self.result = result or ForwardResult(success=True, response="remote reply")
        self.calls: List[Dict[str, Any]] = []

    async def forward(self, node, message, session_id, options=None, user_id=None):
        self.calls.append({"node": node.slug, "message": message, "options": options or {}})
        return self.result


BILLING_NODE = RemoteNode(
    slug="billing",
    name="Billing Node",
    url="http://billing.local",
    collections=["invoices", "payments"],
    keywords=["billing"],
    workflows=["CreateInvoiceWorkflow"],
    domains=["finance"],
)

MAIL_NODE = RemoteNode(
    slug="mail",
    name="Mail Node",
    url="http://mail.local",
    collections=["emails"],
    keywords=["inbox", "mailbox"],
    domains=["communication"],
)


@pytest.fixture
def settings():
    return Settings(OPENAI_API_KEY=None, DATABASE_URL=None)


@pytest.fixture
def policy():
    return AgentPolicy()


@pytest.fixture
def classifier():
    return IntentClassifier()


@pytest.fixture
def entity_store():
    return InMemoryEntityStore()


@pytest.fixture
def session_store():
    return InMemorySessionStore(max_history=10)


@pytest.fixture
def context():
    return SessionContext(session_id="session-1", user_id="user-1")


@pytest.fixture
def list_context(context):
    """A session that was just shown invoices 11, 12 and 13."""
    context.remember_entity_list(EntityList(entity_type="invoice", entity_ids=[11, 12, 13]))
    context.add_assistant_message(
        "1. INV-11\n2. INV-12\n3. INV-13",
        {"entity_ids": [11, 12, 13], "entity_type": "invoice", "start_position": 1},
    )
    return context


@pytest.fixture
def workflows(entity_store):
    registry = WorkflowRegistry()
    register_samples(registry, CollectorRegistry(), entity_store)
    return registry


@pytest.fixture
def engine(workflows, entity_store, policy):
    return WorkflowEngine(workflows, entity_store, policy=policy)


@pytest.fixture
def build_service(session_store, entity_store, policy):
    """Factory for a fully wired ChatService."""

    def _build(
        llm: Optional[LLMProvider] = None,
        nodes: Optional[List[RemoteNode]] = None,
        forwarder: Optional[NodeForwarder] = None,
        knowledge: Optional[InMemoryKnowledgeSearch] = None,
    ) -> ChatService:
        classifier = IntentClassifier()
        workflows = WorkflowRegistry()
        collectors = CollectorRegistry(llm=llm)
        register_samples(workflows, collectors, entity_store)

        engine = WorkflowEngine(workflows, entity_store, policy=policy, llm=llm)
        node_registry = InMemoryNodeRegistry(nodes or [])
        node_router = NodeRoutingCoordinator(node_registry, forwarder or FakeForwarder(), policy, llm=llm)
        router = MessageRouter(
            classifier=classifier,
            follow_up=FollowUpResolver(classifier, llm),
            workflows=workflows,
            collectors=collectors,
            node_router=node_router,
            routed_policy=RoutedSessionPolicy(node_registry, llm),
            llm=llm,
        )
        positional = PositionalReferenceCoordinator(
            PositionalResolver(classifier, llm), entity_store, policy, node_router
        )
        return ChatService(
            session_store=session_store,
            router=router,
            engine=engine,
            collectors=CollectorExecutionCoordinator(collectors, engine, node_router, policy),
            positional=positional,
            knowledge=knowledge or InMemoryKnowledgeSearch(),
            policy=policy,
            node_router=node_router,
            llm=llm,
            ttl=3600,
        )

    return _build
