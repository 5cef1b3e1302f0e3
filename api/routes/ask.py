"""Ask endpoint: the core of the gateway API."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field

from api.dependencies import get_orchestrator
from gateway.errors import NotFoundError, ValidationError
from gateway.orchestrator import AskOrchestrator, AskRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["ask"])


# --- Request / Response Models ---

class AskRequestBody(BaseModel):
    # Optional here so missing fields produce the gateway's own 400 message
    email: Optional[str] = None
    question: Optional[str] = None
    session_id: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Session ID to continue. Omit to start a new session.",
    )


class UnansweredInfo(BaseModel):
    text: str
    reason: str = ""


class AskResponseBody(BaseModel):
    session_id: Optional[str]
    answer: str
    stores_used: List[str] = []
    grounding: List[str] = []
    unanswered: Optional[List[UnansweredInfo]] = None
    searched_in: Optional[str] = None


# --- Endpoint ---

@router.post("/ask", response_model=AskResponseBody)
async def ask(
    request: AskRequestBody,
    background_tasks: BackgroundTasks,
    orchestrator: AskOrchestrator = Depends(get_orchestrator),
):
    """Answer a student's question from their department stores.

    Flow:
    1. Classify the question across the student's stores
    2. Query the selected stores one by one and merge the answers
    3. Return the answer
    4. After the response is sent, record the session message and the
       per-department audit entries (background task, not awaited)
    """
    try:
        outcome = await orchestrator.ask(AskRequest(
            email=request.email,
            question=request.question,
            session_id=request.session_id,
        ))
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    except Exception:
        logger.exception("Ask endpoint error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal Server Error",
        )

    if outcome.persistence is not None:
        background_tasks.add_task(outcome.persistence.run)

    return AskResponseBody(**asdict(outcome.response))
