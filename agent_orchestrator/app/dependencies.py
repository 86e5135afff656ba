"""
Dependency Injection Wiring (Composition Root).

This module acts as the central "container" for the application's services.
It is responsible for:
1. Instantiating the core singleton collaborators (stores, registries, LLM adapter).
2. Wiring them together into the router, the engine and the ChatService.
3. Managing the lifecycle of these objects using @lru_cache to ensure
   they are created only once per application process.

Nothing below the API layer reads `settings` directly; every component gets
its configuration section through its constructor.
"""

import logging
from functools import lru_cache
from typing import Optional

from ..config import settings
from ..data.sample_workflows import register_samples
from ..execution.engine import WorkflowEngine
from ..execution.registry import WorkflowRegistry
from ..federation.collectors import CollectorExecutionCoordinator, CollectorRegistry
from ..federation.forwarder import HttpNodeForwarder, NodeForwarder
from ..federation.node_registry import InMemoryNodeRegistry, NodeRegistry
from ..federation.node_routing import NodeRoutingCoordinator
from ..federation.routed_session import RoutedSessionPolicy
from ..infrastructure.database.connection import get_engine, init_db
from ..knowledge.interface import InMemoryKnowledgeSearch, KnowledgeSearch
from ..llm.adapters.openai_adapter import OpenAIAdapter
from ..llm.interface import LLMProvider
from ..repositories.entity import EntityStore, InMemoryEntityStore
from ..repositories.session import InMemorySessionStore, SessionStore, SqlSessionStore
from ..routing.follow_up import FollowUpResolver
from ..routing.intent_classifier import IntentClassifier
from ..routing.message_router import MessageRouter
from ..routing.positional import PositionalReferenceCoordinator, PositionalResolver
from ..services.chat import ChatService
from ..services.policy import AgentPolicy

logger = logging.getLogger(__name__)


# LLM Provider (Singleton). Without an API key every classifier runs its rule path.
@lru_cache()
def get_llm_provider() -> Optional[LLMProvider]:
    if not settings.OPENAI_API_KEY:
        logger.info("OPENAI_API_KEY not set; language-model paths disabled")
        return None
    return OpenAIAdapter(
        api_key=settings.OPENAI_API_KEY,
        model_name=settings.OPENAI_MODEL,
        request_timeout=settings.LLM_TIMEOUT_SECONDS,
    )


# Session Store (Singleton)
# Note: In-memory storage must be a singleton so data persists across requests!
@lru_cache()
def get_session_store() -> SessionStore:
    if settings.DATABASE_URL:
        engine = get_engine(settings.DATABASE_URL)
        init_db(engine)
        return SqlSessionStore(engine, max_history=settings.SESSION_MAX_HISTORY)
    return InMemorySessionStore(max_history=settings.SESSION_MAX_HISTORY)


@lru_cache()
def get_entity_store() -> EntityStore:
    return InMemoryEntityStore()


@lru_cache()
def get_knowledge_search() -> KnowledgeSearch:
    return InMemoryKnowledgeSearch()


@lru_cache()
def get_policy() -> AgentPolicy:
    return AgentPolicy(settings.messages)


@lru_cache()
def get_node_registry() -> NodeRegistry:
    return InMemoryNodeRegistry()


@lru_cache()
def get_node_forwarder() -> NodeForwarder:
    return HttpNodeForwarder(timeout=settings.NODE_FORWARD_TIMEOUT_SECONDS)


@lru_cache()
def get_workflow_registry() -> WorkflowRegistry:
    return WorkflowRegistry()


@lru_cache()
def get_collector_registry() -> CollectorRegistry:
    return CollectorRegistry(llm=get_llm_provider(), timeout=settings.LLM_TIMEOUT_SECONDS)


@lru_cache()
def get_node_router() -> NodeRoutingCoordinator:
    return NodeRoutingCoordinator(
        registry=get_node_registry(),
        forwarder=get_node_forwarder(),
        policy=get_policy(),
        llm=get_llm_provider(),
        config=settings.node_routing,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )


# The Engine (Singleton Service)
@lru_cache()
def get_workflow_engine() -> WorkflowEngine:
    return WorkflowEngine(
        registry=get_workflow_registry(),
        entity_store=get_entity_store(),
        config=settings.engine,
        policy=get_policy(),
        llm=get_llm_provider(),
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )


@lru_cache()
def get_message_router() -> MessageRouter:
    llm = get_llm_provider()
    classifier = IntentClassifier(settings.intent)
    return MessageRouter(
        classifier=classifier,
        follow_up=FollowUpResolver(
            classifier, llm, settings.followup_guard, timeout=settings.LLM_TIMEOUT_SECONDS
        ),
        workflows=get_workflow_registry(),
        collectors=get_collector_registry(),
        node_router=get_node_router(),
        routed_policy=RoutedSessionPolicy(
            get_node_registry(), llm, settings.routed_session, timeout=settings.LLM_TIMEOUT_SECONDS
        ),
        llm=llm,
        engine_config=settings.engine,
        federation_enabled=settings.FEDERATION_ENABLED,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )


# The Chat Service (Singleton Service)
@lru_cache()
def get_chat_service() -> ChatService:
    """
    Injects all necessary components into the ChatService.
    """
    llm = get_llm_provider()
    policy = get_policy()
    engine = get_workflow_engine()
    node_router = get_node_router()
    register_samples(get_workflow_registry(), get_collector_registry(), get_entity_store())

    positional = PositionalReferenceCoordinator(
        PositionalResolver(
            IntentClassifier(settings.intent), llm, settings.positional,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        ),
        get_entity_store(),
        policy,
        node_router,
    )
    return ChatService(
        session_store=get_session_store(),
        router=get_message_router(),
        engine=engine,
        collectors=CollectorExecutionCoordinator(get_collector_registry(), engine, node_router, policy),
        positional=positional,
        knowledge=get_knowledge_search(),
        policy=policy,
        node_router=node_router,
        llm=llm,
        ttl=settings.SESSION_TTL_SECONDS,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
