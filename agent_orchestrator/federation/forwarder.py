"""
Node forwarding.

Sends a user turn to the remote node that owns the relevant data and
returns the node's reply. Transport errors are reported in the result,
not raised, so the coordinator can surface a message naming the node.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from ..domain.models import RemoteNode

logger = logging.getLogger(__name__)


class ForwardResult(BaseModel):
    success: bool
    response: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class NodeForwarder(ABC):
    @abstractmethod
    async def forward(
        self,
        node: RemoteNode,
        message: str,
        session_id: str,
        options: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> ForwardResult:
        pass


class HttpNodeForwarder(NodeForwarder):
    """
    Posts the turn to `<node.url>/api/chat` and expects
    {"response": str, "metadata": {...}} back.
    """

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client

    async def forward(
        self,
        node: RemoteNode,
        message: str,
        session_id: str,
        options: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> ForwardResult:
        if not node.url:
            return ForwardResult(success=False, error=f"node '{node.slug}' has no url")

        url = node.url.rstrip("/") + "/api/chat"
        payload = {
            "message": message,
            "session_id": session_id,
            "user_id": user_id,
            "options": options or {},
        }
        headers = {"X-Forwarded-From-Node": "agent-orchestrator"}

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Forwarding to node '{node.slug}' failed: {e}")
            return ForwardResult(success=False, error=str(e) or e.__class__.__name__)
        except ValueError as e:
            logger.error(f"Node '{node.slug}' returned invalid JSON: {e}")
            return ForwardResult(success=False, error="invalid response body")

        reply = body.get("response") or body.get("message") or ""
        if body.get("success") is False:
            return ForwardResult(success=False, error=body.get("error") or "node reported failure")
        return ForwardResult(success=True, response=reply, metadata=body.get("metadata") or {})
