"""
Knowledge / search backend.

The orchestrator only needs two operations from it: a search that answers a
question (and may present a numbered list of records), and an aggregate
used as a fast path for count/sum style questions.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..state.models import Message

STOP_WORDS = {
    "a", "an", "the", "my", "me", "all", "any", "of", "for", "to", "in", "on",
    "show", "list", "find", "search", "get", "display", "what", "which", "is", "are",
    "do", "i", "have", "please", "with",
}


class KnowledgeResult(BaseModel):
    content: str
    sources: List[Dict[str, Any]] = Field(default_factory=list)
    # entity_ids / entity_type / start_position when a list was presented
    metadata: Dict[str, Any] = Field(default_factory=dict)


class KnowledgeSearch(ABC):
    @abstractmethod
    async def search(
        self,
        message: str,
        collections: List[str],
        history: List[Message],
        options: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> KnowledgeResult:
        pass

    @abstractmethod
    async def aggregate(
        self, collections: List[str], message: str, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Returns {collection: {"count": n, ...}}. An empty mapping means the
        fast path does not apply.
        """
        pass

    def collections(self) -> List[str]:
        return []


class InMemoryKnowledgeSearch(KnowledgeSearch):
    """
    Keyword search over records held in memory, grouped by collection
    (singular names: "invoice", "customer").
    """

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None, page_size: int = 5):
        self.records = {name: list(rows) for name, rows in (records or {}).items()}
        self.page_size = page_size

    def collections(self) -> List[str]:
        return list(self.records)

    def mentioned_collections(self, message: str) -> List[str]:
        lowered = message.lower()
        return [
            name for name in self.records
            if re.search(rf"\b{re.escape(name.lower())}s?\b", lowered)
        ]

    async def search(
        self,
        message: str,
        collections: List[str],
        history: List[Message],
        options: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> KnowledgeResult:
        targets = collections or self.mentioned_collections(message) or self.collections()
        terms = [
            word for word in re.findall(r"[\w@.'-]+", message.lower())
            if word not in STOP_WORDS and len(word) > 1
        ]
        # Words naming the collection itself list everything in it
        collection_words = {name.lower() for name in targets} | {f"{name.lower()}s" for name in targets}
        terms = [term for term in terms if term not in collection_words]

        matches = []
        for collection in targets:
            for row in self.records.get(collection, []):
                text = " ".join(str(value).lower() for value in row.values())
                if not terms or any(term in text for term in terms):
                    matches.append((collection, row))

        if not matches:
            return KnowledgeResult(content="")

        shown = matches[: self.page_size]
        lines = [
            f"{position}. {row.get('name') or row.get('title') or row.get('id')}"
            for position, (_, row) in enumerate(shown, start=1)
        ]
        entity_type = shown[0][0] if len({collection for collection, _ in shown}) == 1 else None
        return KnowledgeResult(
            content="\n".join(lines),
            sources=[{"collection": collection, "id": row.get("id")} for collection, row in shown],
            metadata={
                "entity_ids": [row.get("id") for _, row in shown],
                "entity_type": entity_type,
                "entity_data": [row for _, row in shown],
                "start_position": 1,
                "total": len(matches),
            },
        )

    async def aggregate(
        self, collections: List[str], message: str, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        targets = collections or self.mentioned_collections(message)
        result: Dict[str, Any] = {}
        for collection in targets:
            rows = self.records.get(collection, [])
            summary: Dict[str, Any] = {"count": len(rows)}
            amounts = [row["amount"] for row in rows if isinstance(row.get("amount"), (int, float))]
            if amounts:
                summary["sum"] = sum(amounts)
                summary["average"] = sum(amounts) / len(amounts)
            result[collection] = summary
        return result
