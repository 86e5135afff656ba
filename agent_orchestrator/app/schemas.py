"""
API Layer - Request/Response Schemas

Pydantic models for API request and response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CreateSessionRequest(BaseModel):
    user_id: Optional[str] = None


class CreateSessionResponse(BaseModel):
    session_id: str


class UserMessage(BaseModel):
    text: str = Field(..., min_length=1)
    user_id: Optional[str] = None


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatResponse(BaseModel):
    reply: str
    status: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionRead(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    history: List[ChatMessage]
    current_workflow: Optional[str] = None
    current_step: Optional[str] = None
    workflow_depth: int = 0
    routed_to_node: Optional[str] = None
    updated_at: datetime
