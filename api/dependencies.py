"""FastAPI dependency injection for the services built at startup."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from gateway.audit import AuditLogSink
from gateway.history import SessionQueryService
from gateway.orchestrator import AskOrchestrator


def _from_state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialised",
        )
    return service


async def get_orchestrator(request: Request) -> AskOrchestrator:
    """The ask pipeline wired in the lifespan handler.

    Routes use it as:
        async def my_route(orchestrator: AskOrchestrator = Depends(get_orchestrator)):
    """
    return _from_state(request, "orchestrator")


async def get_history(request: Request) -> SessionQueryService:
    return _from_state(request, "history")


async def get_audit_log(request: Request) -> AuditLogSink:
    return _from_state(request, "audit_log")
