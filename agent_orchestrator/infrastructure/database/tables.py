"""
Database Table Definitions.

This module defines the SQL schema using SQLModel.
The 'DBModel' suffix distinguishes persistence models from the pydantic
SessionContext they store.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


class SessionDBModel(SQLModel, table=True):
    """
    Persistence model for conversation sessions.
    Maps 1-to-1 with the 'sessions' table.
    """

    __tablename__ = "sessions"

    session_id: str = Field(primary_key=True, index=True)
    user_id: Optional[str] = Field(default=None, index=True)

    # The whole SessionContext snapshot; JSONB on PostgreSQL, JSON elsewhere.
    state: Dict[str, Any] = Field(
        sa_column=Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = Field(default=None, index=True)
