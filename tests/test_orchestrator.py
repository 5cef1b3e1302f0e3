import re

import pytest

from conftest import FakeClassifier, FakeRetriever
from gateway.classifier import ClassificationResult, UnansweredPart
from gateway.constants import NO_DEPARTMENT_ANSWER, NO_STORES_ANSWER, NOT_FOUND_ANSWER
from gateway.errors import NotFoundError, PersistenceFailure, RetrievalFailure, ValidationError
from gateway.orchestrator import AskRequest, merge_answers, new_session_id
from gateway.retrieval import StoreAnswer


STUDENT = "student@campus.edu"
UNIVERSITY = "uni@campus.edu"
ADMISSIONS = "admissions@campus.edu"
LIBRARY = "library@campus.edu"


@pytest.fixture
def campus(write_student, write_university):
    write_university(UNIVERSITY, "org-key")
    write_student(STUDENT, [("admissions", ADMISSIONS), ("library", LIBRARY), ("housing", "housing@campus.edu")])


def _result(stores, split=None, unanswered=None):
    return ClassificationResult(stores=stores, split_questions=split or {}, unanswered=unanswered or [])


# --- helpers ---

def test_new_session_id_format():
    assert re.fullmatch(r"session_\d{13}_[0-9a-f]{6}", new_session_id())
    assert new_session_id() != new_session_id()


def test_merge_single_answer_is_verbatim():
    assert merge_answers([StoreAnswer("library", "8am-10pm")]) == "8am-10pm"


def test_merge_labels_each_store_in_order():
    merged = merge_answers([StoreAnswer("admissions", "9am"), StoreAnswer("library", "8am-10pm")])
    assert merged == "**admissions**:\n9am\n\n**library**:\n8am-10pm"


# --- validation and lookup ---

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "email, question, message",
    [
        ("", "Hours?", "email required"),
        (STUDENT, "   ", "question required"),
        (None, None, "email & question required"),
    ],
)
async def test_missing_input_is_rejected(make_orchestrator, email, question, message):
    classifier, retriever = FakeClassifier(), FakeRetriever({})
    orchestrator = make_orchestrator(classifier, retriever)

    with pytest.raises(ValidationError) as excinfo:
        await orchestrator.ask(AskRequest(email=email, question=question))

    assert str(excinfo.value) == message
    assert classifier.calls == []


@pytest.mark.asyncio
async def test_unknown_student_is_not_found(make_orchestrator):
    orchestrator = make_orchestrator(FakeClassifier(), FakeRetriever({}))

    with pytest.raises(NotFoundError):
        await orchestrator.ask(AskRequest(email="ghost@campus.edu", question="Hours?"))


@pytest.mark.asyncio
async def test_student_without_stores_gets_canned_answer_and_nothing_is_recorded(
    make_orchestrator, write_student, conversations
):
    write_student(STUDENT, [])
    classifier, retriever = FakeClassifier(), FakeRetriever({})

    outcome = await make_orchestrator(classifier, retriever).ask(AskRequest(email=STUDENT, question="Hours?"))

    assert outcome.response.answer == NO_STORES_ANSWER
    assert outcome.response.session_id is None
    assert outcome.persistence is None
    assert classifier.calls == []
    assert retriever.calls == []
    assert await conversations.list_sessions(STUDENT) == []


# --- routing ---

@pytest.mark.asyncio
async def test_two_store_question_end_to_end(campus, make_orchestrator, conversations, audit_log):
    question = "What are the admission deadlines and when does the library open?"
    classifier = FakeClassifier(_result(
        ["admissions", "library"],
        split={"library": "When does the library open?"},
    ))
    retriever = FakeRetriever(
        {"admissions": "9am", "library": "8am-10pm"},
        grounding={"admissions": ["Deadline policy"], "library": ["Opening hours: 8am-10pm"]},
    )

    outcome = await make_orchestrator(classifier, retriever).ask(AskRequest(email=STUDENT, question=question))
    response = outcome.response

    assert response.answer == "**admissions**:\n9am\n\n**library**:\n8am-10pm"
    assert response.stores_used == ["admissions", "library"]
    assert response.grounding == ["Deadline policy", "Opening hours: 8am-10pm"]
    assert response.session_id.startswith("session_")
    assert classifier.calls[0]["credential"] == "org-key"
    assert classifier.calls[0]["store_names"] == ["admissions", "library", "housing"]
    assert [(c["store_name"], c["question"]) for c in retriever.calls] == [
        ("admissions", question),
        ("library", "When does the library open?"),
    ]

    # Nothing is written until the persistence job runs
    assert await conversations.list_sessions(STUDENT) == []
    assert await audit_log.read(ADMISSIONS) == []
    assert await audit_log.read(LIBRARY) == []

    await outcome.persistence.run()

    session = await conversations.get_session(STUDENT, response.session_id)
    assert session.session_name == "What are the admission deadlines and when does the library..."
    [message] = session.messages
    assert message.answer == response.answer
    assert message.stores_used == ["admissions", "library"]

    [admissions_entry] = await audit_log.read(ADMISSIONS)
    assert admissions_entry["question"] == question
    assert admissions_entry["response"] == "9am"
    [library_entry] = await audit_log.read(LIBRARY)
    assert library_entry["question"] == "When does the library open?"
    assert library_entry["response"] == "8am-10pm"
    assert library_entry["grounding"][0]["text"] == "Opening hours: 8am-10pm"


@pytest.mark.asyncio
async def test_single_store_answer_is_unlabelled(campus, make_orchestrator):
    classifier = FakeClassifier(_result(["library"]))
    retriever = FakeRetriever({"library": "8am-10pm"})

    outcome = await make_orchestrator(classifier, retriever).ask(
        AskRequest(email=STUDENT, question="What time does the library open on weekdays?")
    )

    assert outcome.response.answer == "8am-10pm"
    assert outcome.response.stores_used == ["library"]
    assert outcome.response.searched_in is None


@pytest.mark.asyncio
@pytest.mark.parametrize("failure", [None, RetrievalFailure("library", "empty answer"), RuntimeError("boom")])
async def test_first_failing_store_stops_the_fan_out(campus, make_orchestrator, conversations, audit_log, failure):
    classifier = FakeClassifier(_result(["admissions", "library", "housing"]))
    retriever = FakeRetriever({"admissions": "9am", "library": failure, "housing": "Dorm A"})

    outcome = await make_orchestrator(classifier, retriever).ask(
        AskRequest(email=STUDENT, question="Deadlines, hours and rooms?")
    )

    assert retriever.queried_stores == ["admissions", "library"]
    assert outcome.response.answer == NOT_FOUND_ANSWER
    assert outcome.response.stores_used == ["library"]
    assert outcome.response.searched_in == LIBRARY
    assert outcome.response.grounding == []

    assert await conversations.list_sessions(STUDENT) == []
    assert await audit_log.read(LIBRARY) == []

    await outcome.persistence.run()

    [message] = (await conversations.get_session(STUDENT, outcome.response.session_id)).messages
    assert message.answer == NOT_FOUND_ANSWER
    assert message.searched_in == LIBRARY
    [entry] = await audit_log.read(LIBRARY)
    assert entry["response"] is None
    assert await audit_log.read(ADMISSIONS) == []


@pytest.mark.asyncio
async def test_no_department_records_unresolved_parts(campus, make_orchestrator, conversations, audit_log):
    unanswered = [UnansweredPart("What is the weather tomorrow?", "No department can answer this")]
    classifier = FakeClassifier(_result([], unanswered=unanswered))
    retriever = FakeRetriever({})

    outcome = await make_orchestrator(classifier, retriever).ask(
        AskRequest(email=STUDENT, question="What is the weather tomorrow?")
    )

    assert outcome.response.answer == NO_DEPARTMENT_ANSWER
    assert outcome.response.unanswered == [
        {"text": "What is the weather tomorrow?", "reason": "No department can answer this"},
    ]
    assert retriever.calls == []

    assert await conversations.list_sessions(STUDENT) == []

    await outcome.persistence.run()

    [message] = (await conversations.get_session(STUDENT, outcome.response.session_id)).messages
    assert message.unresolved_parts == outcome.response.unanswered
    assert list(audit_log.log_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_classifier_crash_falls_back_to_every_store(campus, make_orchestrator):
    classifier = FakeClassifier(error=RuntimeError("classifier down"))
    retriever = FakeRetriever({"admissions": "a", "library": "b", "housing": "c"})

    outcome = await make_orchestrator(classifier, retriever).ask(AskRequest(email=STUDENT, question="Anything?"))

    assert retriever.queried_stores == ["admissions", "library", "housing"]
    assert outcome.response.stores_used == ["admissions", "library", "housing"]


@pytest.mark.asyncio
async def test_missing_credential_still_routes(write_student, make_orchestrator):
    write_student(STUDENT, [("library", LIBRARY)], university="missing@campus.edu")
    classifier = FakeClassifier()
    retriever = FakeRetriever({"library": "8am"})

    outcome = await make_orchestrator(classifier, retriever).ask(AskRequest(email=STUDENT, question="Hours?"))

    assert classifier.calls[0]["credential"] is None
    assert retriever.calls[0]["credential"] is None
    assert outcome.response.answer == "8am"


@pytest.mark.asyncio
async def test_store_without_owner_logs_under_unknown(write_student, write_university, make_orchestrator, audit_log):
    write_university(UNIVERSITY, "org-key")
    write_student(STUDENT, [("library", None)])
    outcome = await make_orchestrator(FakeClassifier(_result(["library"])), FakeRetriever({"library": "8am"})).ask(
        AskRequest(email=STUDENT, question="Hours?")
    )

    await outcome.persistence.run()

    [entry] = await audit_log.read("unknown")
    assert entry["provider_email"] is None
    assert entry["store_name"] == "library"


# --- sessions ---

@pytest.mark.asyncio
async def test_follow_up_appends_to_existing_session(campus, make_orchestrator, conversations):
    orchestrator = make_orchestrator(FakeClassifier(_result(["library"])), FakeRetriever({"library": "8am"}))

    first = await orchestrator.ask(AskRequest(email=STUDENT, question="When does the library open?"))
    await first.persistence.run()
    session_id = first.response.session_id

    second = await orchestrator.ask(AskRequest(email=STUDENT, question="And on Sundays?", session_id=session_id))
    assert second.response.session_id == session_id
    assert second.persistence.new_session_name is None
    await second.persistence.run()

    session = await conversations.get_session(STUDENT, session_id)
    assert session.session_name == "When does the library open?"
    assert [m.question for m in session.messages] == ["When does the library open?", "And on Sundays?"]
    assert len(await conversations.list_sessions(STUDENT)) == 1


@pytest.mark.asyncio
async def test_history_failure_does_not_block_audit(campus, make_orchestrator, conversations, audit_log, monkeypatch):
    async def failing_append(*args, **kwargs):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(conversations, "append_message", failing_append)
    outcome = await make_orchestrator(FakeClassifier(_result(["library"])), FakeRetriever({"library": "8am"})).ask(
        AskRequest(email=STUDENT, question="Hours?")
    )

    await outcome.persistence.run()

    assert len(await audit_log.read(LIBRARY)) == 1


@pytest.mark.asyncio
async def test_question_is_passed_on_unmodified(campus, make_orchestrator, conversations):
    raw_question = "  When does the library open?\n"
    classifier = FakeClassifier(_result(["library"]))
    retriever = FakeRetriever({"library": "8am"})

    outcome = await make_orchestrator(classifier, retriever).ask(AskRequest(email=STUDENT, question=raw_question))
    await outcome.persistence.run()

    assert classifier.calls[0]["question"] == raw_question
    assert retriever.calls[0]["question"] == raw_question
    session = await conversations.get_session(STUDENT, outcome.response.session_id)
    assert session.session_name == "When does the library open?"
    assert session.messages[0].question == raw_question
