import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import JSONResponse, Response

from ..config import settings
from ..services.chat import ChatService
from ..services.exceptions import SessionNotFoundError
from .dependencies import get_chat_service
from .schemas import (
    ChatMessage,
    ChatResponse,
    CreateSessionRequest,
    CreateSessionResponse,
    SessionRead,
    UserMessage,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Agent Orchestrator")


def _require_session(service: ChatService, session_id: str):
    session = service.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found")
    return session


@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(request, exc: SessionNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


# --- Endpoints ---

@app.post(
    "/sessions",
    response_model=CreateSessionResponse,
    status_code=status.HTTP_201_CREATED
)
def create_session(
    request: Optional[CreateSessionRequest] = None,
    service: ChatService = Depends(get_chat_service)
):
    """Starts a new empty session."""
    session = service.create_session(user_id=request.user_id if request else None)
    return CreateSessionResponse(session_id=session.session_id)


@app.get("/sessions/{session_id}", response_model=SessionRead)
def get_session(
    session_id: str,
    service: ChatService = Depends(get_chat_service)
):
    session = _require_session(service, session_id)
    routed = session.routed_to_node

    # "dto" stands for Data Transfer Object.
    history_dto = [
        ChatMessage(role=msg.role, content=msg.content)
        for msg in session.conversation_history
    ]

    return SessionRead(
        session_id=session.session_id,
        user_id=session.user_id,
        history=history_dto,
        current_workflow=session.current_workflow,
        current_step=session.current_step,
        workflow_depth=len(session.workflow_stack),
        routed_to_node=routed.node_slug if routed else None,
        updated_at=session.updated_at,
    )


@app.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(
    session_id: str,
    service: ChatService = Depends(get_chat_service)
):
    """
    Deletes a session. Returns 204 No Content on success.
    """
    if not service.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")

    # For 204, we must explicitly return a Response object with no content
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/sessions/{session_id}/messages", response_model=ChatResponse)
async def handle_message(
    session_id: str,
    message: UserMessage,
    service: ChatService = Depends(get_chat_service)
):
    _require_session(service, session_id)
    turn = await service.process_message(session_id, message.text, message.user_id)

    # Explicitly Map: TurnReply (Service) -> ChatResponse (API)
    return ChatResponse(reply=turn.reply, status=turn.status, metadata=turn.metadata)
