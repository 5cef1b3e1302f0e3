"""Read-only chat-history queries over the conversation store."""

from __future__ import annotations

from typing import List

from .errors import ValidationError
from .sessions import ConversationStore, Session, SessionSummary


class SessionQueryService:
    """Projection used by the chat-history UI. Holds no state of its own."""

    def __init__(self, conversations: ConversationStore) -> None:
        self.conversations = conversations

    async def list_sessions(self, email: str) -> List[SessionSummary]:
        if not (email or "").strip():
            raise ValidationError(["email"])
        return await self.conversations.list_sessions(email.strip())

    async def get_session(self, email: str, session_id: str) -> Session:
        missing = [name for name, value in (("email", email), ("session_id", session_id)) if not (value or "").strip()]
        if missing:
            raise ValidationError(missing)
        return await self.conversations.get_session(email.strip(), session_id.strip())


__all__ = ["SessionQueryService"]
