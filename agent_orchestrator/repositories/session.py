from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from ..infrastructure.database.tables import SessionDBModel
from ..state.models import SessionContext


class SessionStore(ABC):
    """
    Defines how the orchestrator loads and saves conversation state.
    Saving always overwrites the whole snapshot.
    """

    @abstractmethod
    def load(self, session_id: str) -> Optional[SessionContext]:
        """Returns the stored session, or None when missing or expired."""
        pass

    @abstractmethod
    def save(self, context: SessionContext, ttl: Optional[int] = None) -> None:
        """Persists the session; `ttl` is in seconds, None keeps it forever."""
        pass

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Deletes a session. Returns True if found and deleted."""
        pass


def _expiry(ttl: Optional[int]) -> Optional[datetime]:
    if ttl is None or ttl <= 0:
        return None
    return datetime.utcnow() + timedelta(seconds=ttl)


def _expired(expires_at: Optional[datetime]) -> bool:
    return expires_at is not None and expires_at <= datetime.utcnow()


def _snapshot(context: SessionContext, max_history: Optional[int]) -> Dict:
    state = context.model_dump(mode="json")
    if max_history is not None and max_history > 0:
        state["conversation_history"] = state["conversation_history"][-max_history:]
    return state


class InMemorySessionStore(SessionStore):
    """
    Dictionary-backed storage for testing/dev purposes. Snapshots are stored
    serialized so later mutations of a loaded context never leak back in.
    """

    def __init__(self, max_history: Optional[int] = None):
        self.max_history = max_history
        self._store: Dict[str, Tuple[Dict, Optional[datetime]]] = {}

    def load(self, session_id: str) -> Optional[SessionContext]:
        entry = self._store.get(session_id)
        if entry is None:
            return None
        state, expires_at = entry
        if _expired(expires_at):
            del self._store[session_id]
            return None
        return SessionContext(**state)

    def save(self, context: SessionContext, ttl: Optional[int] = None) -> None:
        self._store[context.session_id] = (_snapshot(context, self.max_history), _expiry(ttl))

    def delete(self, session_id: str) -> bool:
        return self._store.pop(session_id, None) is not None


class SqlSessionStore(SessionStore):
    """
    SQL storage for session state (JSONB on PostgreSQL).
    """

    def __init__(self, engine: Engine, max_history: Optional[int] = 10):
        self.engine = engine
        self.max_history = max_history

    def _get_row(self, db: Session, session_id: str) -> Optional[SessionDBModel]:
        statement = select(SessionDBModel).where(SessionDBModel.session_id == session_id)
        return db.exec(statement).first()

    def load(self, session_id: str) -> Optional[SessionContext]:
        with Session(self.engine) as db:
            result = self._get_row(db, session_id)
            if not result or _expired(result.expires_at):
                return None

            # Deserialize the JSON snapshot back into the pydantic model
            context = SessionContext(**result.state)
            context.updated_at = result.updated_at
            return context

    def save(self, context: SessionContext, ttl: Optional[int] = None) -> None:
        with Session(self.engine) as db:
            result = self._get_row(db, context.session_id)
            if result is None:
                result = SessionDBModel(session_id=context.session_id)

            result.user_id = context.user_id
            result.state = _snapshot(context, self.max_history)
            result.updated_at = datetime.utcnow()
            result.expires_at = _expiry(ttl)
            db.add(result)
            db.commit()

    def delete(self, session_id: str) -> bool:
        with Session(self.engine) as db:
            result = self._get_row(db, session_id)
            if result:
                db.delete(result)
                db.commit()
                return True
            return False
