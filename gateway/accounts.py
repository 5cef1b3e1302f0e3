"""Read-only lookup of student accounts and their organization's credential.

Account records are owned by the account-management side of the platform;
the gateway only reads them. Student records list the knowledge stores the
student may query together with the department account owning each store,
and name the organization whose Gemini key serves the student's requests.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import AppConfig
from .jsonstore import read_json, safe_key
from .logger import LOGGER


@dataclass(frozen=True)
class AccessibleStore:
    store_name: str
    account_email: Optional[str] = None


@dataclass
class StudentAccount:
    email: str
    organization_email: Optional[str]
    accessible_stores: List[AccessibleStore] = field(default_factory=list)

    @property
    def store_names(self) -> List[str]:
        return [store.store_name for store in self.accessible_stores]

    def provider_for(self, store_name: str) -> Optional[str]:
        """Return the department account owning a store, if known."""
        for store in self.accessible_stores:
            if store.store_name == store_name:
                return store.account_email
        return None

    @classmethod
    def from_record(cls, email: str, data: Dict[str, Any]) -> "StudentAccount":
        stores = []
        for item in data.get("accessibleStores") or []:
            if isinstance(item, dict) and item.get("storeName"):
                stores.append(AccessibleStore(
                    store_name=item["storeName"],
                    account_email=item.get("accountEmail"),
                ))
        return cls(
            email=data.get("email", email),
            organization_email=data.get("universityEmail"),
            accessible_stores=stores,
        )


class AccountDirectory:
    """File-backed view over student and organization records."""

    def __init__(
        self,
        students_dir: Optional[Path] = None,
        organizations_dir: Optional[Path] = None,
    ) -> None:
        if students_dir is None or organizations_dir is None:
            paths = AppConfig.get().paths
            students_dir = students_dir or paths.students_dir
            organizations_dir = organizations_dir or paths.universities_dir
        self.students_dir = students_dir
        self.organizations_dir = organizations_dir

    async def _read_record(self, directory: Path, email: str) -> Optional[Dict[str, Any]]:
        try:
            data = await read_json(directory / f"{safe_key(email)}.json")
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            LOGGER.warning("Unreadable account record %s: %s", email, exc)
            return None
        return data if isinstance(data, dict) else None

    async def get_student(self, email: str) -> Optional[StudentAccount]:
        data = await self._read_record(self.students_dir, email)
        if data is None:
            return None
        return StudentAccount.from_record(email, data)

    async def get_credential(self, account: StudentAccount) -> Optional[str]:
        """Return the serving Gemini key of the account's organization.

        A missing organization or key is not an error: the caller continues
        with ``None`` and the classifier falls back to selecting every store.
        """
        if not account.organization_email:
            return None
        organization = await self._read_record(self.organizations_dir, account.organization_email)
        if organization is None:
            LOGGER.warning("Organization %s not found for %s", account.organization_email, account.email)
            return None
        key_info = organization.get("apiKeyInfo")
        if not isinstance(key_info, dict):
            return None
        return key_info.get("key") or None


__all__ = ["AccessibleStore", "AccountDirectory", "StudentAccount"]
