"""FastAPI application entry point with lifespan management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gateway.accounts import AccountDirectory
from gateway.audit import AuditLogSink
from gateway.classifier import StoreClassifier
from gateway.config import AppConfig
from gateway.history import SessionQueryService
from gateway.logger import configure_logging
from gateway.orchestrator import AskOrchestrator
from gateway.retrieval import StoreRetriever
from gateway.sessions import ConversationStore

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle.

    Startup:
        1. Initialize AppConfig singleton (data directories, model names).
        2. Build the storage, classifier and retrieval components.
        3. Store shared services on app.state for dependency injection.

    Shutdown:
        Background persistence still pending at this point is not awaited;
        those history/audit writes are lost.
    """
    logger.info("Starting Ask Gateway API...")

    config = AppConfig.get()
    logger.info("Config loaded: data_dir=%s", config.paths.data_dir)

    conversations = ConversationStore(config.paths.sessions_dir)
    audit_log = AuditLogSink(config.paths.provider_logs_dir)
    orchestrator = AskOrchestrator(
        accounts=AccountDirectory(config.paths.students_dir, config.paths.universities_dir),
        classifier=StoreClassifier(config.classifier_model),
        retriever=StoreRetriever(config.retrieval_model),
        conversations=conversations,
        audit_log=audit_log,
    )

    app.state.config = config
    app.state.conversations = conversations
    app.state.audit_log = audit_log
    app.state.orchestrator = orchestrator
    app.state.history = SessionQueryService(conversations)

    logger.info("Startup complete")

    yield

    logger.info("Shutting down Ask Gateway API.")


app = FastAPI(
    title="Ask Gateway API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from api.routes.ask import router as ask_router
from api.routes.sessions import router as sessions_router
from api.routes.providers import router as providers_router

app.include_router(ask_router)
app.include_router(sessions_router)
app.include_router(providers_router)


@app.get("/api/v1/health")
async def health():
    """System health check.

    Reports whether startup wired the services and where records live.
    """
    config = getattr(app.state, "config", None)
    ready = getattr(app.state, "orchestrator", None) is not None
    return {
        "status": "ok" if ready else "degraded",
        "orchestrator_ready": ready,
        "sessions_dir": str(config.paths.sessions_dir) if config else None,
        "provider_logs_dir": str(config.paths.provider_logs_dir) if config else None,
    }
