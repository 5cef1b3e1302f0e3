"""Environment configuration and directory management."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .constants import DEFAULT_CLASSIFIER_MODEL, DEFAULT_RETRIEVAL_MODEL
from .logger import LOGGER


def ensure_directory(path: Path) -> Path:
    """Create a directory if it does not already exist."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_path(env_key: str, default: Path) -> Path:
    """Resolve a path from environment variables or revert to a default."""
    value = os.getenv(env_key)
    return ensure_directory(Path(value).expanduser().resolve()) if value else ensure_directory(default.resolve())


@dataclass(frozen=True)
class PathConfig:
    base_dir: Path
    data_dir: Path
    students_dir: Path
    universities_dir: Path
    sessions_dir: Path
    provider_logs_dir: Path


def build_paths(base_dir: Optional[Path] = None) -> PathConfig:
    """Produce all filesystem paths used by the application."""
    base = base_dir or Path(__file__).resolve().parent.parent
    data_dir = resolve_path("ASK_GATEWAY_DATA_DIR", base / "database")
    return PathConfig(
        base_dir=base,
        data_dir=data_dir,
        students_dir=resolve_path("ASK_GATEWAY_STUDENTS_DIR", data_dir / "students"),
        universities_dir=resolve_path("ASK_GATEWAY_UNIVERSITIES_DIR", data_dir / "universities"),
        sessions_dir=resolve_path("ASK_GATEWAY_SESSIONS_DIR", data_dir / "chat_sessions"),
        provider_logs_dir=resolve_path("ASK_GATEWAY_PROVIDER_LOGS_DIR", data_dir / "provider_questions"),
    )


class AppConfig:
    """Singleton-like accessor around shared configuration.

    Unlike a single-tenant deployment there is no process-wide Gemini key:
    each request is served with the credential of the student's owning
    organization, resolved per request by the account directory.
    """

    _instance: Optional["AppConfig"] = None

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self.paths = build_paths(base_dir)
        self.classifier_model = os.getenv("ASK_GATEWAY_CLASSIFIER_MODEL", DEFAULT_CLASSIFIER_MODEL)
        self.retrieval_model = os.getenv("ASK_GATEWAY_RETRIEVAL_MODEL", DEFAULT_RETRIEVAL_MODEL)
        LOGGER.debug("Configuration initialised with data directory %s", self.paths.data_dir)
        LOGGER.info(
            "Models: classifier=%s retrieval=%s",
            self.classifier_model,
            self.retrieval_model,
        )

    @classmethod
    def get(cls) -> "AppConfig":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance


__all__ = ["AppConfig", "PathConfig", "build_paths", "ensure_directory", "resolve_path"]
