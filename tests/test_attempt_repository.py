from datetime import timedelta
from unittest.mock import MagicMock, call

import mongomock
import pytest
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ServerSelectionTimeoutError

from attempt_service import database
from attempt_service.exceptions import DuplicateAttemptError
from attempt_service.models.attempt import Attempt, AttemptStatus, CheatLog, SubmittedAnswer
from attempt_service.services.attempt_repository import MemoryAttemptRepository, MongoAttemptRepository

from conftest import NOW, QUIZ_ID

STUDENT = "student-1"


def new_attempt(number=1, student_id=STUDENT, status=AttemptStatus.IN_PROGRESS, created_at=NOW, **fields):
    return Attempt(
        id=str(ObjectId()),
        quiz_id=QUIZ_ID,
        student_id=student_id,
        attempt_number=number,
        status=status,
        total_points=9,
        started_at=created_at,
        created_at=created_at,
        updated_at=created_at,
        **fields
    )


def answer(question_id="q-text", points=1):
    return SubmittedAnswer(
        question_id=question_id, answer="Paris", is_correct=points > 0, points_awarded=points, answered_at=NOW
    )


@pytest.fixture
def mongo_collection():
    collection = mongomock.MongoClient().db.quiz_attempts
    collection.create_index(
        [("quiz_id", ASCENDING), ("student_id", ASCENDING), ("attempt_number", ASCENDING)],
        unique=True
    )
    return collection


@pytest.fixture(params=["memory", "mongo"])
def repo(request, mongo_collection):
    if request.param == "memory":
        return MemoryAttemptRepository()
    return MongoAttemptRepository(mongo_collection)


# ========== SHARED CONTRACT ==========
def test_insert_and_get(repo):
    attempt = repo.insert(new_attempt(ip_address="10.0.0.1"))

    loaded = repo.get(attempt.id)
    assert loaded.id == attempt.id
    assert loaded.status == AttemptStatus.IN_PROGRESS
    assert loaded.ip_address == "10.0.0.1"
    assert loaded.version == 0
    assert repo.count_attempts(QUIZ_ID, STUDENT) == 1


def test_duplicate_attempt_number_is_rejected(repo):
    repo.insert(new_attempt(status=AttemptStatus.COMPLETED))
    with pytest.raises(DuplicateAttemptError):
        repo.insert(new_attempt())


def test_get_unknown_or_malformed_id(repo):
    assert repo.get(str(ObjectId())) is None
    assert repo.get("not-an-object-id") is None
    assert repo.find_owned("not-an-object-id", STUDENT) is None


def test_find_in_progress_and_owned(repo):
    repo.insert(new_attempt(status=AttemptStatus.COMPLETED))
    current = repo.insert(new_attempt(number=2, created_at=NOW + timedelta(minutes=5)))

    assert repo.find_in_progress(QUIZ_ID, STUDENT).id == current.id
    assert repo.find_in_progress(QUIZ_ID, "student-2") is None
    assert repo.find_owned(current.id, STUDENT).id == current.id
    assert repo.find_owned(current.id, "student-2") is None


def test_record_answer_upserts_and_raises_index(repo):
    attempt = repo.insert(new_attempt())

    updated = repo.record_answer(attempt.id, STUDENT, answer("q-image", 2), 4, NOW)
    assert updated.current_question_index == 5
    assert updated.version == 1

    updated = repo.record_answer(attempt.id, STUDENT, answer("q-image", 0), 0, NOW)
    assert updated.current_question_index == 5
    assert updated.answers["q-image"].points_awarded == 0
    assert list(updated.answers) == ["q-image"]


def test_record_answer_requires_owner_and_in_progress(repo):
    attempt = repo.insert(new_attempt())
    assert repo.record_answer(attempt.id, "student-2", answer(), 0, NOW) is None

    assert repo.mark_expired(attempt.id, NOW)
    assert repo.record_answer(attempt.id, STUDENT, answer(), 0, NOW) is None


def test_mark_expired_only_once(repo):
    attempt = repo.insert(new_attempt())
    assert repo.mark_expired(attempt.id, NOW) is True
    assert repo.mark_expired(attempt.id, NOW) is False
    assert repo.get(attempt.id).status == AttemptStatus.TIME_EXPIRED


def test_complete_is_compare_and_set(repo):
    attempt = repo.insert(new_attempt())
    repo.record_answer(attempt.id, STUDENT, answer(), 2, NOW)
    changes = {"status": "completed", "score": 1, "percentage": 11, "completed_at": NOW, "updated_at": NOW}

    assert repo.complete(attempt.id, 0, changes) is False
    assert repo.complete(attempt.id, 1, changes) is True
    assert repo.complete(attempt.id, 2, changes) is False

    stored = repo.get(attempt.id)
    assert stored.status == AttemptStatus.COMPLETED
    assert stored.percentage == 11
    assert stored.version == 2


def test_append_cheat_log(repo):
    attempt = repo.insert(new_attempt())
    entry = CheatLog(message="tab switch", timestamp=NOW, actor_id=STUDENT)

    assert repo.append_cheat_log(attempt.id, entry, NOW) is True
    assert repo.get(attempt.id).cheat_logs == [entry]

    repo.mark_expired(attempt.id, NOW)
    assert repo.append_cheat_log(attempt.id, entry, NOW) is False


def test_list_and_count(repo):
    for number in range(1, 4):
        repo.insert(new_attempt(
            number=number, status=AttemptStatus.COMPLETED, created_at=NOW + timedelta(minutes=number)
        ))
    repo.insert(new_attempt(student_id="student-2"))

    listed = repo.list_attempts({"student_id": STUDENT}, skip=1, limit=5)
    assert [a.attempt_number for a in listed] == [2, 1]
    assert repo.count({"student_id": STUDENT}) == 3
    assert repo.count({"quiz_id": QUIZ_ID, "status": "in-progress"}) == 1


def test_best_attempt_prefers_score_then_earliest(repo):
    assert repo.best_attempt(QUIZ_ID, STUDENT) is None

    repo.insert(new_attempt(number=1, status=AttemptStatus.COMPLETED, score=4, completed_at=NOW))
    best = repo.insert(new_attempt(
        number=2, status=AttemptStatus.COMPLETED, score=7, completed_at=NOW + timedelta(minutes=1)
    ))
    repo.insert(new_attempt(
        number=3, status=AttemptStatus.COMPLETED, score=7, completed_at=NOW + timedelta(minutes=2)
    ))
    repo.insert(new_attempt(number=4, status=AttemptStatus.TIME_EXPIRED, score=9))

    assert repo.best_attempt(QUIZ_ID, STUDENT).id == best.id


# ========== MEMORY ONLY ==========
def test_memory_rejects_second_in_progress_attempt():
    repo = MemoryAttemptRepository()
    repo.insert(new_attempt(number=1))
    with pytest.raises(DuplicateAttemptError):
        repo.insert(new_attempt(number=2))
    repo.insert(new_attempt(number=2, student_id="student-2"))


def test_memory_returns_copies():
    repo = MemoryAttemptRepository()
    attempt = repo.insert(new_attempt())

    loaded = repo.get(attempt.id)
    loaded.score = 99
    assert repo.get(attempt.id).score == 0


# ========== MONGO ONLY ==========
def test_mongo_document_shape(mongo_collection):
    repo = MongoAttemptRepository(mongo_collection)
    attempt = repo.insert(new_attempt())
    repo.record_answer(attempt.id, STUDENT, answer(), 2, NOW)

    doc = mongo_collection.find_one({"_id": ObjectId(attempt.id)})
    assert doc["status"] == "in-progress"
    assert doc["answers"]["q-text"]["answer"] == "Paris"
    assert doc["current_question_index"] == 3
    assert "id" not in doc


def test_ensure_attempt_indexes():
    collection = MagicMock()
    database.ensure_attempt_indexes(collection)

    calls = collection.create_index.call_args_list
    assert calls[0] == call(
        [("quiz_id", ASCENDING), ("student_id", ASCENDING), ("attempt_number", ASCENDING)],
        unique=True,
        name="uniq_quiz_student_attempt_number"
    )
    assert calls[1] == call(
        [("quiz_id", ASCENDING), ("student_id", ASCENDING)],
        unique=True,
        partialFilterExpression={"status": "in-progress"},
        name="uniq_quiz_student_in_progress"
    )
    assert call([("created_at", DESCENDING)]) in calls


def test_init_db_falls_back_to_memory(monkeypatch):
    client = MagicMock()
    client.admin.command.side_effect = ServerSelectionTimeoutError("no servers")
    monkeypatch.setattr(database, "MongoClient", MagicMock(return_value=client))

    assert database.init_db() is False
    assert database.get_db() is None


def test_init_db_creates_collection_and_indexes(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr(database, "MongoClient", MagicMock(return_value=client))
    db = client.__getitem__.return_value
    db.list_collection_names.return_value = []

    try:
        assert database.init_db() is True
        assert database.get_db() is db
        assert database.get_client() is client
        db.create_collection.assert_called_once_with("quiz_attempts")
        assert db.__getitem__.return_value.create_index.call_count == 6
    finally:
        database.close_db()

    client.close.assert_called_once()
    assert database.get_db() is None
    assert database.get_client() is None
