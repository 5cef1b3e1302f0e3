"""Conversation history storage using one JSON record per session."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import AppConfig
from .constants import (
    ASSISTANT_ROLE,
    DEFAULT_SESSION_NAME,
    SESSION_NAME_ELLIPSIS,
    SESSION_NAME_MAX_WORDS,
)
from .errors import NotFoundError, PersistenceFailure
from .jsonstore import KeyedLocks, read_json, safe_key, write_json
from .logger import LOGGER


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def derive_session_name(question: Optional[str]) -> str:
    """Name a session after its first question.

    Questions of up to ten words are used verbatim (trimmed); longer ones are
    cut to their first ten words followed by an ellipsis.
    """
    if not question or not isinstance(question, str) or not question.strip():
        return DEFAULT_SESSION_NAME
    words = question.split()
    if len(words) <= SESSION_NAME_MAX_WORDS:
        return question.strip()
    return " ".join(words[:SESSION_NAME_MAX_WORDS]) + SESSION_NAME_ELLIPSIS


@dataclass(frozen=True)
class Message:
    """One logged exchange. Immutable once appended."""
    question: str
    answer: str
    stores_used: List[str] = field(default_factory=list)
    grounding: List[Any] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    role: str = ASSISTANT_ROLE
    unresolved_parts: Optional[List[Dict[str, Any]]] = None
    searched_in: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: Dict[str, Any] = {
            "role": self.role,
            "question": self.question,
            "answer": self.answer,
            "stores_used": list(self.stores_used),
            "grounding": list(self.grounding),
            "timestamp": self.timestamp.isoformat(),
        }
        if self.unresolved_parts is not None:
            data["unresolved_parts"] = [dict(part) for part in self.unresolved_parts]
        if self.searched_in is not None:
            data["searched_in"] = self.searched_in
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create Message from dictionary."""
        timestamp = data.get("timestamp")
        return cls(
            role=data.get("role", ASSISTANT_ROLE),
            question=data.get("question", ""),
            answer=data.get("answer", ""),
            stores_used=list(data.get("stores_used", [])),
            grounding=list(data.get("grounding", [])),
            # Older or hand-edited messages may lack a timestamp
            timestamp=datetime.fromisoformat(timestamp) if timestamp else utc_now(),
            unresolved_parts=data.get("unresolved_parts"),
            searched_in=data.get("searched_in"),
        )


@dataclass
class Session:
    """A named, ordered conversation thread owned by one user."""
    session_id: str
    session_name: str
    email: str
    created_at: datetime
    updated_at: datetime
    messages: List[Message] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "session_name": self.session_name,
            "created_at": self.created_at.isoformat(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "session_name": self.session_name,
            "email": self.email,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "messages": [message.to_dict() for message in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """Create Session from dictionary."""
        return cls(
            session_id=data["session_id"],
            session_name=data.get("session_name", DEFAULT_SESSION_NAME),
            email=data.get("email", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data.get("updated_at", data["created_at"])),
            messages=[Message.from_dict(item) for item in data.get("messages", [])],
        )


@dataclass(frozen=True)
class SessionSummary:
    """Index entry used by the chat-history list."""
    session_id: str
    session_name: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "session_name": self.session_name,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSummary":
        return cls(
            session_id=data["session_id"],
            session_name=data.get("session_name", DEFAULT_SESSION_NAME),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class ConversationStore:
    """Manages chat sessions as JSON records grouped per owner.

    Layout::

        <sessions_dir>/<owner>/index.json        session_id -> summary
        <sessions_dir>/<owner>/<session_id>.session.json full record

    The per-owner index lets the history list avoid reading every record.
    Read-modify-write cycles are serialised per (owner, session) and per
    owner index, so concurrent appends inside one process never drop a
    message.
    """

    INDEX_FILE = "index.json"
    RECORD_SUFFIX = ".session.json"

    def __init__(self, sessions_dir: Optional[Path] = None):
        """
        Initialize conversation store.

        Args:
            sessions_dir: Directory to store session records. If None, uses config default.
        """
        if sessions_dir is None:
            sessions_dir = AppConfig.get().paths.sessions_dir

        self.sessions_dir = sessions_dir
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self._session_locks = KeyedLocks()
        self._index_locks = KeyedLocks()

        LOGGER.debug("ConversationStore initialized: %s", self.sessions_dir)

    def _owner_dir(self, owner: str) -> Path:
        return self.sessions_dir / safe_key(owner)

    def _session_file(self, owner: str, session_id: str) -> Path:
        return self._owner_dir(owner) / f"{safe_key(session_id)}{self.RECORD_SUFFIX}"

    def _index_file(self, owner: str) -> Path:
        return self._owner_dir(owner) / self.INDEX_FILE

    @staticmethod
    def _record_key(owner: str, session_id: str) -> tuple:
        # Ids that map to the same file must share a lock
        return safe_key(owner), safe_key(session_id)

    # -----------------------------------------------------------------
    # Index maintenance
    # -----------------------------------------------------------------

    async def _load_index(self, owner: str) -> Dict[str, Dict[str, Any]]:
        """Load the owner's index, rebuilding it from records if unusable."""
        index: Any = None
        try:
            index = await read_json(self._index_file(owner))
        except FileNotFoundError:
            pass
        except json.JSONDecodeError:
            LOGGER.warning("Failed to load session index for %s, rebuilding", owner)

        if isinstance(index, dict):
            return index
        return await self._rebuild_index(owner)

    async def _rebuild_index(self, owner: str) -> Dict[str, Dict[str, Any]]:
        owner_dir = self._owner_dir(owner)
        if not owner_dir.is_dir():
            return {}

        index: Dict[str, Dict[str, Any]] = {}
        for path in sorted(owner_dir.glob(f"*{self.RECORD_SUFFIX}")):
            try:
                session = Session.from_dict(await read_json(path))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping unreadable session record %s: %s", path.name, exc)
                continue
            index[session.session_id] = session.summary()

        LOGGER.info("Rebuilt session index for %s: %d sessions", owner, len(index))
        return index

    async def _record_in_index(self, owner: str, session: Session) -> None:
        async with self._index_locks.hold(safe_key(owner)):
            index = await self._load_index(owner)
            index[session.session_id] = session.summary()
            await write_json(self._index_file(owner), index)

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    async def create_session(self, owner: str, session_id: str, name: str) -> Session:
        """
        Write a new, empty session record.

        An existing record for the same id is left untouched so that a late
        create can never erase messages already appended.

        Returns:
            The stored session.
        """
        path = self._session_file(owner, session_id)
        now = utc_now()
        session = Session(
            session_id=session_id,
            session_name=name,
            email=owner,
            created_at=now,
            updated_at=now,
        )

        async with self._session_locks.hold(self._record_key(owner, session_id)):
            if path.exists():
                LOGGER.warning("Session %s already exists for %s, keeping it", session_id, owner)
                return Session.from_dict(await read_json(path))
            await write_json(path, session.to_dict())

        await self._record_in_index(owner, session)
        LOGGER.info("Created session: %s (%s)", session_id, owner)
        return session

    async def append_message(self, owner: str, session_id: str, message: Message) -> Session:
        """
        Append a message to a session, creating the record if it is missing.

        Args:
            owner: Owner email
            session_id: Session identifier
            message: Message to append

        Returns:
            The session as written.

        Raises:
            PersistenceFailure: If the record exists but cannot be read, or
                the write fails. The record on disk is left as it was.
        """
        path = self._session_file(owner, session_id)
        created = False

        async with self._session_locks.hold(self._record_key(owner, session_id)):
            try:
                session = Session.from_dict(await read_json(path))
            except FileNotFoundError:
                session = None
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                # Never overwrite a record we cannot read back
                raise PersistenceFailure(f"Session record {session_id} is unreadable: {exc}") from exc

            if session is None:
                now = utc_now()
                session = Session(
                    session_id=session_id,
                    session_name=derive_session_name(message.question),
                    email=owner,
                    created_at=now,
                    updated_at=now,
                )
                created = True

            session.messages.append(message)
            session.updated_at = utc_now()
            await write_json(path, session.to_dict())

        if created:
            await self._record_in_index(owner, session)

        LOGGER.debug("Appended message to session %s (%d total)", session_id, len(session.messages))
        return session

    async def list_sessions(self, owner: str) -> List[SessionSummary]:
        """
        List an owner's sessions, newest first by creation time.
        """
        index = await self._load_index(owner)
        sessions = []
        for data in index.values():
            try:
                sessions.append(SessionSummary.from_dict(data))
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping malformed index entry for %s: %s", owner, exc)
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    async def get_session(self, owner: str, session_id: str) -> Session:
        """
        Load a full session record.

        Raises:
            NotFoundError: If no readable record exists.
        """
        try:
            return Session.from_dict(await read_json(self._session_file(owner, session_id)))
        except FileNotFoundError:
            raise NotFoundError("Session", session_id)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Session record %s is unreadable: %s", session_id, exc)
            raise NotFoundError("Session", session_id)


__all__ = [
    "ConversationStore",
    "Message",
    "Session",
    "SessionSummary",
    "derive_session_name",
    "utc_now",
]
