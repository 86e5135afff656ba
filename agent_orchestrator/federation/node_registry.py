from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from ..domain.models import RemoteNode


class NodeRegistry(ABC):
    """
    Defines how the orchestrator discovers cooperating nodes.
    """

    @abstractmethod
    def get_active_nodes(self) -> List[RemoteNode]:
        pass

    @abstractmethod
    def get_node(self, slug: str) -> Optional[RemoteNode]:
        """Returns the node with this exact slug, active or not."""
        pass


class InMemoryNodeRegistry(NodeRegistry):
    """
    Explicitly populated registry. Construct an empty one per test or per
    process and `register` nodes into it.
    """

    def __init__(self, nodes: Optional[Iterable[RemoteNode]] = None):
        self._nodes: Dict[str, RemoteNode] = {}
        for node in nodes or []:
            self.register(node)

    def register(self, node: RemoteNode) -> None:
        self._nodes[node.slug] = node

    def unregister(self, slug: str) -> bool:
        return self._nodes.pop(slug, None) is not None

    def get_active_nodes(self) -> List[RemoteNode]:
        return [node for node in self._nodes.values() if node.is_active]

    def get_node(self, slug: str) -> Optional[RemoteNode]:
        return self._nodes.get(slug)
