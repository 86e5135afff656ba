from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IntentConfig(BaseModel):
    """Vocabulary and limits used by the rule-based intent signals."""

    list_verbs: List[str] = [
        "list", "show", "display", "search", "find", "fetch", "retrieve", "refresh", "relist",
    ]
    refresh_words: List[str] = ["again", "reload"]
    record_terms: List[str] = ["invoices", "emails", "items", "records"]
    entity_terms: List[str] = [
        "invoice", "email", "item", "record", "entry", "customer", "product",
    ]
    followup_keywords: List[str] = [
        "what", "which", "who", "when", "where", "why", "how",
        "total", "sum", "count", "average", "status", "due",
        "paid", "unpaid", "latest", "earliest",
    ]
    followup_pronouns: List[str] = ["it", "its", "them", "those", "these", "that", "this", "ones"]
    ordinal_map: Dict[str, int] = {
        "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
        "1st": 1, "2nd": 2, "3rd": 3, "4th": 4, "5th": 5,
    }
    positional_entity_words: List[str] = ["item", "email", "invoice", "entry", "record"]
    max_positional_index: int = 100
    max_option_selection: int = 10


class FollowUpGuardConfig(BaseModel):
    enabled: bool = True
    history_window: int = 4
    max_tokens: int = 64
    temperature: float = 0.0
    rules_fallback_on_ai_failure: bool = False
    rules_fallback_when_ai_disabled: bool = True

    # Wire protocol: the key the model answers with and the label for each class
    response_key: str = "CLASSIFICATION"
    labels: Dict[str, str] = {
        "follow_up_answer": "FOLLOW_UP_ANSWER",
        "refresh_list": "REFRESH_LIST",
        "entity_lookup": "ENTITY_LOOKUP",
        "new_query": "NEW_QUERY",
        "unknown": "UNKNOWN",
    }


class PositionalConfig(BaseModel):
    enabled: bool = True
    max_tokens: int = 24
    temperature: float = 0.0
    max_position: int = 100
    rules_fallback_on_ai_failure: bool = True
    response_key: str = "POSITION"
    none_value: str = "NONE"


class RoutedSessionConfig(BaseModel):
    history_window: int = 3
    max_tokens: int = 20
    temperature: float = 0.0
    # Stop forwarding when the continuation check itself fails
    fallback_continue_on_ai_error: bool = False


class NodeRoutingConfig(BaseModel):
    short_query_max_words: int = 4
    max_tokens: int = 50
    temperature: float = 0.0
    min_keyword_length: int = 3


class WorkflowEngineConfig(BaseModel):
    max_step_executions: int = 100
    skip_confirmation_in_subworkflow: bool = True
    affirmative_words: List[str] = ["yes", "y", "yeah", "yep", "sure", "confirm", "ok", "okay", "proceed"]
    negative_words: List[str] = ["no", "n", "nope", "not yet", "wait"]
    skip_words: List[str] = ["skip", "none", "n/a", "no thanks"]
    cancel_words: List[str] = ["cancel", "stop", "abort", "quit", "nevermind", "never mind"]


class PolicyMessages(BaseModel):
    """User-facing fixed replies. ':name' placeholders are substituted at render time."""

    node_not_found: str = "I couldn't find a remote node matching ':resource'."
    node_unreachable: str = (
        "I couldn't reach remote node ':node':location (:summary). I did not run a local "
        "fallback query to avoid mixed-domain results. Please verify the node is running and try again."
    )
    node_error_summary_max: int = 220
    positional_unknown: str = "I couldn't understand which item you're referring to. Could you be more specific?"
    positional_not_found: str = "I couldn't find item #:position in the previous list. Please check the number and try again."
    positional_details_unavailable: str = "I found the :entity but couldn't retrieve its details. Please try again."
    selected_option: str = "**Selected option :number**\n\n:detail"
    collector_not_specified: str = "No collector specified."
    collector_unavailable: str = "Collector ':collector' not available."
    no_collector_destructive: str = (
        "Delete operations are not currently available through the AI assistant. "
        "Please use the application interface to delete records."
    )
    no_collector_generic: str = (
        "I couldn't find a way to handle that request. I can help you create, update, "
        "or search for records. What would you like to do?"
    )
    rag_no_results: str = "No results found."
    rag_no_relevant_info: str = "I couldn't find any relevant information. Could you please rephrase your question?"
    workflow_unavailable: str = "Sorry, I can't run ':workflow' right now. Please try again later."
    workflow_cancelled: str = "Okay, I've cancelled that. What would you like to do next?"
    nothing_to_cancel: str = "There's nothing in progress to cancel."
    generic_error: str = "Something went wrong while handling your message. Please try again."
    destructive_verbs: List[str] = ["delete", "remove", "cancel"]


class Settings(BaseSettings):
    # Security: Read from .env, never hardcode defaults here
    OPENAI_API_KEY: Optional[str] = None

    OPENAI_MODEL: str = "gpt-4o-mini"

    # Generation Parameters
    LLM_TEMPERATURE: float = 0.0
    LLM_TIMEOUT_SECONDS: float = 15.0

    # Persistence. Without a DATABASE_URL sessions live in memory.
    DATABASE_URL: Optional[str] = None
    SESSION_TTL_SECONDS: int = 86400
    SESSION_MAX_HISTORY: int = 10

    # Federation
    FEDERATION_ENABLED: bool = True
    NODE_FORWARD_TIMEOUT_SECONDS: float = 30.0

    LOG_LEVEL: str = "INFO"

    intent: IntentConfig = Field(default_factory=IntentConfig)
    followup_guard: FollowUpGuardConfig = Field(default_factory=FollowUpGuardConfig)
    positional: PositionalConfig = Field(default_factory=PositionalConfig)
    routed_session: RoutedSessionConfig = Field(default_factory=RoutedSessionConfig)
    node_routing: NodeRoutingConfig = Field(default_factory=NodeRoutingConfig)
    engine: WorkflowEngineConfig = Field(default_factory=WorkflowEngineConfig)
    messages: PolicyMessages = Field(default_factory=PolicyMessages)

    # Loads from a .env file in the root directory
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", env_nested_delimiter="__")

# Singleton instance
settings = Settings()
