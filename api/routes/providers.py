"""Department view of the questions routed to its stores."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.dependencies import get_audit_log
from gateway.audit import AuditLogSink

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/providers", tags=["providers"])


class ProviderQuestionsResponse(BaseModel):
    provider_email: str
    entries: List[Dict[str, Any]]
    count: int


@router.get("/{provider_email}/questions", response_model=ProviderQuestionsResponse)
async def list_provider_questions(
    provider_email: str,
    store_name: Optional[str] = Query(None, description="Only entries for this store"),
    audit_log: AuditLogSink = Depends(get_audit_log),
):
    """Return the audit log of questions asked of a department's stores.

    Entries are oldest first. Unanswered attempts have a null response.
    """
    entries = await audit_log.read(provider_email)
    if store_name:
        entries = [entry for entry in entries if entry.get("store_name") == store_name]

    logger.debug("Provider log read: provider=%s entries=%d", provider_email, len(entries))
    return ProviderQuestionsResponse(
        provider_email=provider_email,
        entries=entries,
        count=len(entries),
    )
