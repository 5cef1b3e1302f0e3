"""Per-provider audit log of questions routed to each department's store."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import AppConfig
from .constants import UNKNOWN_PROVIDER
from .jsonstore import KeyedLocks, read_json, safe_key, write_json
from .logger import LOGGER


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProviderLogEntry:
    provider_email: Optional[str]
    user_email: str
    store_name: str
    question: str
    response: Optional[str]
    grounding: Optional[List[Dict[str, Any]]] = None
    asked_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.grounding is None:
            del data["grounding"]
        return data


class AuditLogSink:
    """Append-only question log, one JSON list per provider identity.

    Audit logging must never fail a user-facing request, so ``append``
    swallows and logs every error.
    """

    def __init__(self, log_dir: Path | None = None) -> None:
        self.log_dir = log_dir or AppConfig.get().paths.provider_logs_dir
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._locks = KeyedLocks()

    def _log_file(self, provider: str) -> Path:
        return self.log_dir / f"{safe_key(provider or UNKNOWN_PROVIDER)}.json"

    async def _load(self, provider: str) -> List[Dict[str, Any]]:
        try:
            entries = await read_json(self._log_file(provider))
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            LOGGER.warning("Provider log for %s is corrupt, starting a new one", provider)
            return []
        if not isinstance(entries, list):
            LOGGER.warning("Provider log for %s is not a list, starting a new one", provider)
            return []
        return entries

    async def append(self, provider: str, entry: ProviderLogEntry) -> bool:
        """Append one entry to the provider's log. Returns False on failure."""
        try:
            async with self._locks.hold(safe_key(provider or UNKNOWN_PROVIDER)):
                entries = await self._load(provider)
                entries.append(entry.to_dict())
                await write_json(self._log_file(provider), entries)
        except Exception as exc:
            LOGGER.error("Provider log append failed for %s: %s", provider, exc)
            return False

        LOGGER.debug("Logged question for %s (store=%s)", provider, entry.store_name)
        return True

    async def read(self, provider: str) -> List[Dict[str, Any]]:
        """Return every entry recorded for a provider, oldest first."""
        return [entry for entry in await self._load(provider) if isinstance(entry, dict)]


__all__ = ["AuditLogSink", "ProviderLogEntry"]
