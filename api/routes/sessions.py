"""Chat-history endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from api.dependencies import get_history
from gateway.errors import NotFoundError, ValidationError
from gateway.history import SessionQueryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


# --- Response Models ---

class SessionInfo(BaseModel):
    session_id: str
    session_name: str
    created_at: str


class SessionListResponse(BaseModel):
    sessions: List[SessionInfo]
    count: int


class MessageInfo(BaseModel):
    role: str
    question: str
    answer: str
    stores_used: List[str] = []
    grounding: List[Any] = []
    timestamp: str
    unresolved_parts: Optional[List[Dict[str, Any]]] = None
    searched_in: Optional[str] = None


class SessionDetail(BaseModel):
    session_id: str
    session_name: str
    email: str
    created_at: str
    updated_at: str
    messages: List[MessageInfo]


# --- Endpoints ---

@router.get("/{email}", response_model=SessionListResponse)
async def list_sessions(
    email: str,
    history: SessionQueryService = Depends(get_history),
):
    """List a student's sessions, newest first."""
    try:
        sessions = await history.list_sessions(email)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    return SessionListResponse(
        sessions=[SessionInfo(**s.to_dict()) for s in sessions],
        count=len(sessions),
    )


@router.get("/{email}/{session_id}", response_model=SessionDetail)
async def get_session(
    email: str,
    session_id: str,
    history: SessionQueryService = Depends(get_history),
):
    """Get a full session record with its messages in chronological order."""
    try:
        session = await history.get_session(email, session_id)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    return SessionDetail(**session.to_dict())
