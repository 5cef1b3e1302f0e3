"""Ask-and-route pipeline.

Flow for one question:

1. Validate input and resolve the student account.
2. Classify the question across the student's stores (one Gemini call).
3. Query each selected store in classifier order, one at a time. The first
   store without a usable answer ends the request with an apology.
4. Merge the answers and build the response.
5. Hand back a ``PersistenceJob`` that records the session message and the
   per-provider audit entries. The caller runs it after the response has
   been sent; nothing in the response depends on it.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .accounts import AccountDirectory, StudentAccount
from .audit import AuditLogSink, ProviderLogEntry
from .classifier import ClassificationResult, StoreClassifier
from .constants import (
    NO_DEPARTMENT_ANSWER,
    NO_STORES_ANSWER,
    NOT_FOUND_ANSWER,
    SESSION_ID_PREFIX,
    UNKNOWN_PROVIDER,
)
from .errors import NotFoundError, PersistenceFailure, RetrievalFailure, ValidationError
from .logger import LOGGER
from .retrieval import StoreAnswer, StoreRetriever
from .sessions import ConversationStore, Message, derive_session_name


# =============================================================================
# Request / response types
# =============================================================================

@dataclass
class AskRequest:
    email: Optional[str]
    question: Optional[str]
    session_id: Optional[str] = None


@dataclass
class AskResponse:
    session_id: Optional[str]
    answer: str
    stores_used: List[str] = field(default_factory=list)
    grounding: List[str] = field(default_factory=list)
    unanswered: Optional[List[Dict[str, str]]] = None
    searched_in: Optional[str] = None


@dataclass
class PersistenceJob:
    """History and audit writes for one answered question.

    Steps run strictly in order: create the session (new sessions only),
    append the message, then one audit entry per queried store. Failures are
    logged and never raised; the response has already been delivered.
    """

    owner: str
    session_id: str
    message: Message
    provider_logs: List[ProviderLogEntry]
    conversations: ConversationStore
    audit_log: AuditLogSink
    new_session_name: Optional[str] = None    # set only when the session is new

    async def run(self) -> None:
        try:
            if self.new_session_name is not None:
                await self.conversations.create_session(self.owner, self.session_id, self.new_session_name)
            await self.conversations.append_message(self.owner, self.session_id, self.message)
        except PersistenceFailure as exc:
            LOGGER.error("Session write failed for %s/%s: %s", self.owner, self.session_id, exc)
        except Exception:
            LOGGER.exception("Unexpected session write error for %s/%s", self.owner, self.session_id)

        for entry in self.provider_logs:
            await self.audit_log.append(entry.provider_email or UNKNOWN_PROVIDER, entry)


@dataclass
class AskOutcome:
    response: AskResponse
    persistence: Optional[PersistenceJob] = None


# =============================================================================
# Helpers
# =============================================================================

def new_session_id() -> str:
    """Mint a session id: millisecond timestamp plus a random suffix."""
    return f"{SESSION_ID_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def merge_answers(answers: Sequence[StoreAnswer]) -> str:
    """Combine store answers in query order.

    A single answer is returned verbatim; several answers become labelled
    sections separated by a blank line.
    """
    if len(answers) == 1:
        return answers[0].answer_text
    return "\n\n".join(f"**{answer.store_name}**:\n{answer.answer_text}" for answer in answers)


def _is_usable(answer: Any) -> bool:
    return (
        isinstance(answer, StoreAnswer)
        and isinstance(answer.answer_text, str)
        and bool(answer.answer_text.strip())
    )


# =============================================================================
# AskOrchestrator
# =============================================================================

class AskOrchestrator:
    """Route a student's question to their department stores."""

    def __init__(
        self,
        accounts: AccountDirectory,
        classifier: StoreClassifier,
        retriever: StoreRetriever,
        conversations: ConversationStore,
        audit_log: AuditLogSink,
    ) -> None:
        self.accounts = accounts
        self.classifier = classifier
        self.retriever = retriever
        self.conversations = conversations
        self.audit_log = audit_log

    async def ask(self, request: AskRequest) -> AskOutcome:
        """Answer one question.

        Raises:
            ValidationError: email or question missing.
            NotFoundError: no student account for the email.
        """
        email = (request.email or "").strip()
        # Blank questions are rejected, but the question travels unmodified
        question = request.question or ""
        missing = [name for name, value in (("email", email), ("question", question.strip())) if not value]
        if missing:
            raise ValidationError(missing)

        account = await self.accounts.get_student(email)
        if account is None:
            raise NotFoundError("Student", email)

        store_names = account.store_names
        if not store_names:
            LOGGER.info("Ask: %s has no accessible stores", email)
            return AskOutcome(response=AskResponse(session_id=None, answer=NO_STORES_ANSWER))

        credential = await self.accounts.get_credential(account)

        session_id = request.session_id
        new_session_name = None
        if not session_id:
            session_id = new_session_id()
            new_session_name = derive_session_name(question)

        LOGGER.info(
            "Ask: user=%s session=%s%s stores=%d question='%s'",
            email, session_id, " (new)" if new_session_name else "", len(store_names), question[:80],
        )

        classification = await self._classify(credential, store_names, question)

        if not classification.stores:
            return self._no_department(account, session_id, new_session_name, question, classification)

        return await self._fan_out(account, credential, session_id, new_session_name, question, classification)

    async def _classify(
        self,
        credential: Optional[str],
        store_names: List[str],
        question: str,
    ) -> ClassificationResult:
        try:
            return await self.classifier.classify(credential, store_names, question)
        except Exception:
            LOGGER.exception("Classifier raised, asking all stores")
            return ClassificationResult.select_all(store_names, "call_failed")

    def _job(
        self,
        owner: str,
        session_id: str,
        new_session_name: Optional[str],
        message: Message,
        provider_logs: Optional[List[ProviderLogEntry]] = None,
    ) -> PersistenceJob:
        return PersistenceJob(
            owner=owner,
            session_id=session_id,
            message=message,
            provider_logs=provider_logs or [],
            conversations=self.conversations,
            audit_log=self.audit_log,
            new_session_name=new_session_name,
        )

    def _no_department(
        self,
        account: StudentAccount,
        session_id: str,
        new_session_name: Optional[str],
        question: str,
        classification: ClassificationResult,
    ) -> AskOutcome:
        unanswered = [part.to_dict() for part in classification.unanswered]
        LOGGER.info("Ask: no department selected for session %s", session_id)

        message = Message(
            question=question,
            answer=NO_DEPARTMENT_ANSWER,
            unresolved_parts=unanswered,
        )
        return AskOutcome(
            response=AskResponse(
                session_id=session_id,
                answer=NO_DEPARTMENT_ANSWER,
                unanswered=unanswered,
            ),
            persistence=self._job(account.email, session_id, new_session_name, message),
        )

    async def _query_store(self, credential: Optional[str], store_name: str, question: str) -> Optional[StoreAnswer]:
        """Query one store, returning None for any unusable outcome."""
        try:
            answer = await self.retriever.query(credential, store_name, question)
        except RetrievalFailure as exc:
            LOGGER.warning("%s", exc)
            return None
        except Exception:
            LOGGER.exception("Retrieval raised for store %s", store_name)
            return None

        if not _is_usable(answer):
            LOGGER.warning("Store %s returned no usable answer", store_name)
            return None
        return answer

    async def _fan_out(
        self,
        account: StudentAccount,
        credential: Optional[str],
        session_id: str,
        new_session_name: Optional[str],
        question: str,
        classification: ClassificationResult,
    ) -> AskOutcome:
        answers: List[StoreAnswer] = []

        # Sequential on purpose: one in-flight retrieval call per request
        for store_name in classification.stores:
            store_question = classification.question_for(store_name, question)
            answer = await self._query_store(credential, store_name, store_question)
            if answer is None:
                return self._store_failed(account, session_id, new_session_name, question, store_name, store_question)
            answers.append(answer)

        final_answer = merge_answers(answers)
        grounding = [text for answer in answers for text in answer.evidence_texts]
        stores_used = list(classification.stores)

        message = Message(
            question=question,
            answer=final_answer,
            stores_used=stores_used,
            grounding=grounding,
        )
        provider_logs = [
            ProviderLogEntry(
                provider_email=account.provider_for(answer.store_name),
                user_email=account.email,
                store_name=answer.store_name,
                question=classification.question_for(answer.store_name, question),
                response=answer.answer_text,
                grounding=answer.grounding_chunks,
            )
            for answer in answers
        ]

        LOGGER.info("Ask: answered session %s from %s", session_id, stores_used)
        return AskOutcome(
            response=AskResponse(
                session_id=session_id,
                answer=final_answer,
                stores_used=stores_used,
                grounding=grounding,
            ),
            persistence=self._job(account.email, session_id, new_session_name, message, provider_logs),
        )

    def _store_failed(
        self,
        account: StudentAccount,
        session_id: str,
        new_session_name: Optional[str],
        question: str,
        store_name: str,
        store_question: str,
    ) -> AskOutcome:
        """Abandon the fan-out after the first failing store."""
        provider = account.provider_for(store_name)
        LOGGER.info("Ask: store %s failed for session %s, abandoning fan-out", store_name, session_id)

        message = Message(
            question=question,
            answer=NOT_FOUND_ANSWER,
            stores_used=[store_name],
            searched_in=provider,
        )
        failed_attempt = ProviderLogEntry(
            provider_email=provider,
            user_email=account.email,
            store_name=store_name,
            question=store_question,
            response=None,
        )
        return AskOutcome(
            response=AskResponse(
                session_id=session_id,
                answer=NOT_FOUND_ANSWER,
                stores_used=[store_name],
                searched_in=provider,
            ),
            persistence=self._job(account.email, session_id, new_session_name, message, [failed_attempt]),
        )


__all__ = [
    "AskOrchestrator",
    "AskOutcome",
    "AskRequest",
    "AskResponse",
    "PersistenceJob",
    "merge_answers",
    "new_session_id",
]
