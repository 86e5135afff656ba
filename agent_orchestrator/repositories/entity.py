from abc import ABC, abstractmethod
from itertools import count
from typing import Any, Dict, List, Optional


class EntityStore(ABC):
    """
    The host application's own data layer, seen through the two operations
    the orchestrator needs. Entities travel as plain dicts with an "id" key.
    """

    @abstractmethod
    async def find(self, model: str, key: str, value: Any) -> Optional[Dict[str, Any]]:
        """Returns the first entity whose `key` equals `value`, or None."""
        pass

    @abstractmethod
    async def create(self, model: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Creates an entity and returns it, including its new id."""
        pass


class InMemoryEntityStore(EntityStore):
    """
    Dict-backed store for tests and demos. String comparisons ignore case.
    """

    def __init__(self, seed: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._records: Dict[str, List[Dict[str, Any]]] = {}
        self._ids = count(1)
        for model, rows in (seed or {}).items():
            for row in rows:
                self._insert(model, dict(row))

    def _insert(self, model: str, row: Dict[str, Any]) -> Dict[str, Any]:
        if row.get("id") is None:
            row["id"] = next(self._ids)
        self._records.setdefault(model, []).append(row)
        return row

    @staticmethod
    def _matches(stored: Any, value: Any) -> bool:
        if isinstance(stored, str) and isinstance(value, str):
            return stored.strip().lower() == value.strip().lower()
        return stored == value or str(stored) == str(value)

    async def find(self, model: str, key: str, value: Any) -> Optional[Dict[str, Any]]:
        for row in self._records.get(model, []):
            if key in row and self._matches(row[key], value):
                return dict(row)
        return None

    async def create(self, model: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return dict(self._insert(model, dict(fields)))

    def all(self, model: str) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._records.get(model, [])]
