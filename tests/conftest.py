"""
Shared pytest configuration and test doubles.

Ensures the project root is importable and provides fake classifier and
retrieval adapters that record every call, plus helpers that write the
student/organization records the account directory reads.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from gateway.accounts import AccountDirectory  # noqa: E402
from gateway.audit import AuditLogSink  # noqa: E402
from gateway.classifier import ClassificationResult  # noqa: E402
from gateway.errors import RetrievalFailure  # noqa: E402
from gateway.orchestrator import AskOrchestrator  # noqa: E402
from gateway.retrieval import StoreAnswer  # noqa: E402
from gateway.sessions import ConversationStore  # noqa: E402


class FakeClassifier:
    """Returns a fixed partition (or raises) and records its inputs."""

    def __init__(self, result: Optional[ClassificationResult] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def classify(self, credential, store_names: Sequence[str], question: str) -> ClassificationResult:
        self.calls.append({"credential": credential, "store_names": list(store_names), "question": question})
        if self.error is not None:
            raise self.error
        if self.result is None:
            return ClassificationResult.select_all(store_names, "no_credential")
        return self.result


class FakeRetriever:
    """Answers per store from a mapping.

    A string value is the answer text; an exception instance is raised;
    ``None`` produces an empty answer.
    """

    def __init__(self, answers: Dict[str, Any], grounding: Optional[Dict[str, List[str]]] = None):
        self.answers = answers
        self.grounding = grounding or {}
        self.calls: List[Dict[str, Any]] = []

    async def query(self, credential, store_name: str, question: str):
        self.calls.append({"credential": credential, "store_name": store_name, "question": question})
        value = self.answers.get(store_name)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise RetrievalFailure(store_name, "empty answer")
        return StoreAnswer(
            store_name=store_name,
            answer_text=value,
            grounding_chunks=[
                {"text": text, "title": f"{store_name}.pdf", "uri": None}
                for text in self.grounding.get(store_name, [])
            ],
        )

    @property
    def queried_stores(self) -> List[str]:
        return [call["store_name"] for call in self.calls]


@pytest.fixture
def data_dirs(tmp_path):
    dirs = {
        "students": tmp_path / "students",
        "universities": tmp_path / "universities",
        "sessions": tmp_path / "chat_sessions",
        "provider_logs": tmp_path / "provider_questions",
    }
    for path in dirs.values():
        path.mkdir(parents=True)
    return dirs


@pytest.fixture
def write_student(data_dirs):
    def _write(email: str, stores: Sequence[tuple], university: Optional[str] = "uni@campus.edu") -> None:
        record = {
            "email": email,
            "universityEmail": university,
            "accessibleStores": [
                {"storeName": name, "accountEmail": owner} for name, owner in stores
            ],
        }
        (data_dirs["students"] / f"{email}.json").write_text(json.dumps(record))
    return _write


@pytest.fixture
def write_university(data_dirs):
    def _write(email: str, key: Optional[str]) -> None:
        record = {"email": email, "apiKeyInfo": {"key": key} if key else {}}
        (data_dirs["universities"] / f"{email}.json").write_text(json.dumps(record))
    return _write


@pytest.fixture
def accounts(data_dirs):
    return AccountDirectory(data_dirs["students"], data_dirs["universities"])


@pytest.fixture
def conversations(data_dirs):
    return ConversationStore(data_dirs["sessions"])


@pytest.fixture
def audit_log(data_dirs):
    return AuditLogSink(data_dirs["provider_logs"])


@pytest.fixture
def make_orchestrator(accounts, conversations, audit_log):
    def _make(classifier, retriever) -> AskOrchestrator:
        return AskOrchestrator(
            accounts=accounts,
            classifier=classifier,
            retriever=retriever,
            conversations=conversations,
            audit_log=audit_log,
        )
    return _make
