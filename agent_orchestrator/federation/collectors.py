"""
Autonomous collectors.

A collector is a named data-collection flow ("customer_create",
"invoice_update") started straight from a fresh message. Local collectors run
as a workflow through the engine; remote ones are forwarded to the node that
owns them.
"""

import logging
import re
from typing import Callable, Dict, List, Optional

from ..domain.models import CollectorConfig
from ..llm.interface import LLMProvider, generate_with_timeout
from ..prompts import Template, render
from ..schemas.decisions import TurnReply
from ..services.policy import AgentPolicy
from ..state.models import ACTIVE_COLLECTOR, SessionContext

logger = logging.getLogger(__name__)

# (user_id, operation, collector name) -> allowed
PermissionChecker = Callable[[Optional[str], str, str], bool]


class CollectorRegistry:
    def __init__(
        self,
        llm: Optional[LLMProvider] = None,
        permission_checker: Optional[PermissionChecker] = None,
        timeout: float = 15.0,
    ):
        self.llm = llm
        self.permission_checker = permission_checker
        self.timeout = timeout
        self._configs: Dict[str, CollectorConfig] = {}

    def register(self, config: CollectorConfig) -> None:
        self._configs[config.name] = config

    def get(self, name: str) -> Optional[CollectorConfig]:
        return self._configs.get(name)

    def get_configs(self, user_id: Optional[str] = None) -> List[CollectorConfig]:
        """Collectors the user may start."""
        return [config for config in self._configs.values() if self._allowed(config, user_id)]

    def _allowed(self, config: CollectorConfig, user_id: Optional[str]) -> bool:
        if self.permission_checker is None:
            return True
        return bool(self.permission_checker(user_id, config.required_operation, config.name))

    async def find_config_for_message(
        self, message: str, user_id: Optional[str] = None
    ) -> Optional[CollectorConfig]:
        configs = self.get_configs(user_id)
        if not configs:
            return None

        lowered = message.lower()
        for config in configs:
            for trigger in config.triggers:
                if re.search(rf"\b{re.escape(trigger.lower())}\b", lowered):
                    logger.info(f"Collector '{config.name}' matched trigger '{trigger}'")
                    return config

        if self.llm is None:
            return None

        try:
            raw = await generate_with_timeout(
                self.llm,
                render(Template.COLLECTOR_DETECTION, configs=configs, message=message),
                timeout=self.timeout,
                max_tokens=5,
            )
        except Exception as e:
            logger.warning(f"Collector detection failed: {e}")
            return None

        match = re.search(r"\d+", raw)
        if not match:
            return None
        index = int(match.group(0))
        if 1 <= index <= len(configs):
            return configs[index - 1]
        return None


class CollectorExecutionCoordinator:
    def __init__(self, registry: CollectorRegistry, engine, node_router, policy: AgentPolicy):
        self.registry = registry
        self.engine = engine
        self.node_router = node_router
        self.policy = policy

    async def execute(self, name: Optional[str], message: str, context: SessionContext) -> TurnReply:
        if not name:
            return TurnReply(reply=self.policy.collector_not_specified(), status="failed")

        config = self.registry.get(name)
        if config is None:
            config = await self.registry.find_config_for_message(message, context.user_id)
        if config is None:
            logger.warning(f"Collector '{name}' is not registered")
            return TurnReply(reply=self.policy.collector_unavailable(name), status="failed")

        if config.is_remote:
            return await self.node_router.route_to_node(
                config.node_slug, message, context, {"collector": config.name}
            )

        reply = await self.engine.start(config.workflow_id or config.name, context, message)
        if context.has_active_workflow:
            context.metadata[ACTIVE_COLLECTOR] = config.name
        return reply
