"""Attempt persistence.

Both repositories enforce the same storage rules: one attempt per
(quiz_id, student_id, attempt_number) and at most one in-progress attempt per
(quiz_id, student_id). Every mutation is a single conditional write and bumps
`version`.
"""

from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from attempt_service.database import str_to_object_id
from attempt_service.exceptions import DuplicateAttemptError
from attempt_service.models.attempt import Attempt, AttemptStatus, CheatLog, SubmittedAnswer

IN_PROGRESS = AttemptStatus.IN_PROGRESS.value


class AttemptRepository:
    """Storage contract used by the attempt service."""

    def count_attempts(self, quiz_id: str, student_id: str) -> int:
        raise NotImplementedError

    def get(self, attempt_id: str) -> Optional[Attempt]:
        raise NotImplementedError

    def find_in_progress(self, quiz_id: str, student_id: str) -> Optional[Attempt]:
        raise NotImplementedError

    def find_owned(self, attempt_id: str, student_id: str) -> Optional[Attempt]:
        """In-progress attempt with this id belonging to `student_id`."""
        raise NotImplementedError

    def insert(self, attempt: Attempt) -> Attempt:
        """Insert a new attempt or raise DuplicateAttemptError."""
        raise NotImplementedError

    def mark_expired(self, attempt_id: str, now: datetime) -> bool:
        raise NotImplementedError

    def record_answer(self, attempt_id: str, student_id: str, answer: SubmittedAnswer,
                      question_index: int, now: datetime) -> Optional[Attempt]:
        """Upsert one answer and raise current_question_index to at least question_index + 1."""
        raise NotImplementedError

    def complete(self, attempt_id: str, expected_version: int, changes: Dict[str, Any]) -> bool:
        """Apply `changes` if the attempt is still in progress at `expected_version`."""
        raise NotImplementedError

    def append_cheat_log(self, attempt_id: str, entry: CheatLog, now: datetime) -> bool:
        raise NotImplementedError

    def list_attempts(self, filters: Dict[str, Any], skip: int = 0, limit: int = 10) -> List[Attempt]:
        raise NotImplementedError

    def count(self, filters: Dict[str, Any]) -> int:
        raise NotImplementedError

    def best_attempt(self, quiz_id: str, student_id: str) -> Optional[Attempt]:
        raise NotImplementedError


# ========== MONGODB ==========
class MongoAttemptRepository(AttemptRepository):
    def __init__(self, collection):
        self.collection = collection

    @staticmethod
    def _to_document(attempt: Attempt) -> Dict[str, Any]:
        doc = attempt.model_dump(exclude={"id"})
        doc["_id"] = str_to_object_id(attempt.id)
        doc["status"] = attempt.status.value
        return doc

    @staticmethod
    def _to_attempt(doc) -> Optional[Attempt]:
        if not doc:
            return None
        doc["id"] = str(doc.pop("_id"))
        return Attempt.model_validate(doc)

    def _id_filter(self, attempt_id: str) -> Optional[Dict[str, Any]]:
        oid = str_to_object_id(attempt_id)
        return {"_id": oid} if oid is not None else None

    def count_attempts(self, quiz_id, student_id):
        return self.collection.count_documents({"quiz_id": quiz_id, "student_id": student_id})

    def get(self, attempt_id):
        query = self._id_filter(attempt_id)
        if query is None:
            return None
        return self._to_attempt(self.collection.find_one(query))

    def find_in_progress(self, quiz_id, student_id):
        doc = self.collection.find_one(
            {"quiz_id": quiz_id, "student_id": student_id, "status": IN_PROGRESS},
            sort=[("created_at", DESCENDING)]
        )
        return self._to_attempt(doc)

    def find_owned(self, attempt_id, student_id):
        query = self._id_filter(attempt_id)
        if query is None:
            return None
        query.update({"student_id": student_id, "status": IN_PROGRESS})
        return self._to_attempt(self.collection.find_one(query))

    def insert(self, attempt):
        try:
            self.collection.insert_one(self._to_document(attempt))
        except DuplicateKeyError as e:
            raise DuplicateAttemptError(str(e)) from e
        return attempt

    def mark_expired(self, attempt_id, now):
        query = self._id_filter(attempt_id)
        if query is None:
            return False
        query["status"] = IN_PROGRESS
        result = self.collection.update_one(
            query,
            {
                "$set": {"status": AttemptStatus.TIME_EXPIRED.value, "updated_at": now},
                "$inc": {"version": 1}
            }
        )
        return result.modified_count == 1

    def record_answer(self, attempt_id, student_id, answer, question_index, now):
        query = self._id_filter(attempt_id)
        if query is None:
            return None
        query.update({"student_id": student_id, "status": IN_PROGRESS})
        doc = self.collection.find_one_and_update(
            query,
            {
                "$set": {f"answers.{answer.question_id}": answer.model_dump(), "updated_at": now},
                "$max": {"current_question_index": question_index + 1},
                "$inc": {"version": 1}
            },
            return_document=ReturnDocument.AFTER
        )
        return self._to_attempt(doc)

    def complete(self, attempt_id, expected_version, changes):
        query = self._id_filter(attempt_id)
        if query is None:
            return False
        query.update({"status": IN_PROGRESS, "version": expected_version})
        result = self.collection.update_one(query, {"$set": changes, "$inc": {"version": 1}})
        return result.modified_count == 1

    def append_cheat_log(self, attempt_id, entry, now):
        query = self._id_filter(attempt_id)
        if query is None:
            return False
        query["status"] = IN_PROGRESS
        result = self.collection.update_one(
            query,
            {
                "$push": {"cheat_logs": entry.model_dump()},
                "$set": {"updated_at": now},
                "$inc": {"version": 1}
            }
        )
        return result.modified_count == 1

    def list_attempts(self, filters, skip=0, limit=10):
        cursor = self.collection.find(filters).sort("created_at", DESCENDING).skip(skip).limit(limit)
        return [self._to_attempt(doc) for doc in cursor]

    def count(self, filters):
        return self.collection.count_documents(filters)

    def best_attempt(self, quiz_id, student_id):
        doc = self.collection.find_one(
            {"quiz_id": quiz_id, "student_id": student_id, "status": AttemptStatus.COMPLETED.value},
            sort=[("score", DESCENDING), ("completed_at", 1)]
        )
        return self._to_attempt(doc)


# ========== MEMORY ==========
class MemoryAttemptRepository(AttemptRepository):
    """In-process storage used when MongoDB is unavailable, and in tests."""

    def __init__(self):
        self._attempts: Dict[str, Attempt] = {}
        self._lock = Lock()

    @staticmethod
    def _matches(attempt: Attempt, filters: Dict[str, Any]) -> bool:
        data = attempt.model_dump(mode="json")
        return all(data.get(key) == value for key, value in filters.items())

    def _owned(self, attempt_id: str, student_id: Optional[str]) -> Optional[Attempt]:
        attempt = self._attempts.get(attempt_id)
        if attempt is None or not attempt.is_in_progress:
            return None
        if student_id is not None and attempt.student_id != student_id:
            return None
        return attempt

    def _replace(self, attempt: Attempt, changes: Dict[str, Any]) -> Attempt:
        data = attempt.model_dump()
        data.update(changes)
        data["version"] = attempt.version + 1
        updated = Attempt.model_validate(data)
        self._attempts[updated.id] = updated
        return updated

    def count_attempts(self, quiz_id, student_id):
        with self._lock:
            return sum(
                1 for a in self._attempts.values()
                if a.quiz_id == quiz_id and a.student_id == student_id
            )

    def get(self, attempt_id):
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            return attempt.model_copy(deep=True) if attempt else None

    def find_in_progress(self, quiz_id, student_id):
        with self._lock:
            candidates = [
                a for a in self._attempts.values()
                if a.quiz_id == quiz_id and a.student_id == student_id and a.is_in_progress
            ]
            if not candidates:
                return None
            return max(candidates, key=lambda a: a.created_at).model_copy(deep=True)

    def find_owned(self, attempt_id, student_id):
        with self._lock:
            attempt = self._owned(attempt_id, student_id)
            return attempt.model_copy(deep=True) if attempt else None

    def insert(self, attempt):
        with self._lock:
            for existing in self._attempts.values():
                if existing.quiz_id != attempt.quiz_id or existing.student_id != attempt.student_id:
                    continue
                if existing.attempt_number == attempt.attempt_number:
                    raise DuplicateAttemptError(
                        f"attempt {attempt.attempt_number} already exists for quiz {attempt.quiz_id}"
                    )
                if existing.is_in_progress and attempt.is_in_progress:
                    raise DuplicateAttemptError(f"an attempt is already in progress for quiz {attempt.quiz_id}")
            self._attempts[attempt.id] = attempt.model_copy(deep=True)
        return attempt

    def mark_expired(self, attempt_id, now):
        with self._lock:
            attempt = self._owned(attempt_id, None)
            if attempt is None:
                return False
            self._replace(attempt, {"status": AttemptStatus.TIME_EXPIRED, "updated_at": now})
            return True

    def record_answer(self, attempt_id, student_id, answer, question_index, now):
        with self._lock:
            attempt = self._owned(attempt_id, student_id)
            if attempt is None:
                return None
            answers = {key: value.model_dump() for key, value in attempt.answers.items()}
            answers[answer.question_id] = answer.model_dump()
            updated = self._replace(attempt, {
                "answers": answers,
                "current_question_index": max(attempt.current_question_index, question_index + 1),
                "updated_at": now,
            })
            return updated.model_copy(deep=True)

    def complete(self, attempt_id, expected_version, changes):
        with self._lock:
            attempt = self._owned(attempt_id, None)
            if attempt is None or attempt.version != expected_version:
                return False
            self._replace(attempt, changes)
            return True

    def append_cheat_log(self, attempt_id, entry, now):
        with self._lock:
            attempt = self._owned(attempt_id, None)
            if attempt is None:
                return False
            logs = [log.model_dump() for log in attempt.cheat_logs] + [entry.model_dump()]
            self._replace(attempt, {"cheat_logs": logs, "updated_at": now})
            return True

    def list_attempts(self, filters, skip=0, limit=10):
        with self._lock:
            matching = [a for a in self._attempts.values() if self._matches(a, filters)]
        matching.sort(key=lambda a: a.created_at, reverse=True)
        return [a.model_copy(deep=True) for a in matching[skip:skip + limit]]

    def count(self, filters):
        with self._lock:
            return sum(1 for a in self._attempts.values() if self._matches(a, filters))

    def best_attempt(self, quiz_id, student_id):
        with self._lock:
            completed = [
                a for a in self._attempts.values()
                if a.quiz_id == quiz_id and a.student_id == student_id
                and a.status == AttemptStatus.COMPLETED
            ]
        if not completed:
            return None
        best = min(completed, key=lambda a: (-a.score, a.completed_at))
        return best.model_copy(deep=True)
