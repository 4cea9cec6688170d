"""Read-only access to quiz templates owned by the quiz service."""

from threading import Lock
from typing import Any, Dict, Optional
import json
import logging

from pydantic import ValidationError

from attempt_service.database import object_id_to_str, str_to_object_id
from attempt_service.models.quiz import QuizTemplate

logger = logging.getLogger(__name__)


class QuizTemplateStore:
    def get_quiz_for_attempt(self, quiz_id: str) -> Optional[QuizTemplate]:
        """Full template, answer keys included."""
        raise NotImplementedError

    def get_quiz_active_flag(self, quiz_id: str) -> bool:
        raise NotImplementedError


def normalize_quiz_ids(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Turn the `_id` of a quiz, its questions and their options into string `id`s"""
    object_id_to_str(doc)
    for question in doc.get("questions", []):
        object_id_to_str(question)
        for option in question.get("options", []):
            object_id_to_str(option)
    return doc


class MongoQuizStore(QuizTemplateStore):
    def __init__(self, collection):
        self.collection = collection

    def _query(self, quiz_id: str):
        oid = str_to_object_id(quiz_id)
        return {"_id": oid} if oid is not None else {"_id": quiz_id}

    def get_quiz_for_attempt(self, quiz_id):
        doc = self.collection.find_one(self._query(quiz_id))
        if not doc:
            return None

        try:
            return QuizTemplate.model_validate(normalize_quiz_ids(doc))
        except ValidationError as e:
            logger.error(f"Quiz {quiz_id} has an invalid document: {e}")
            return None

    def get_quiz_active_flag(self, quiz_id):
        doc = self.collection.find_one(self._query(quiz_id), {"is_active": 1})
        return bool(doc and doc.get("is_active", True))


class MemoryQuizStore(QuizTemplateStore):
    def __init__(self):
        self._quizzes: Dict[str, QuizTemplate] = {}
        self._lock = Lock()

    def add(self, quiz: QuizTemplate) -> QuizTemplate:
        with self._lock:
            self._quizzes[quiz.id] = quiz.model_copy(deep=True)
        return quiz

    def load_json(self, path: str) -> int:
        """Seed the store from a JSON file holding a list of quiz documents.

        Invalid documents raise, so a broken file is noticed at startup.
        """
        with open(path, encoding="utf-8") as f:
            documents = json.load(f)

        for doc in documents:
            self.add(QuizTemplate.model_validate(normalize_quiz_ids(doc)))
        logger.info(f"✅ Loaded {len(documents)} quizzes from {path}")
        return len(documents)

    def remove(self, quiz_id: str):
        with self._lock:
            self._quizzes.pop(quiz_id, None)

    def get_quiz_for_attempt(self, quiz_id):
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
            return quiz.model_copy(deep=True) if quiz else None

    def get_quiz_active_flag(self, quiz_id):
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
            return bool(quiz and quiz.is_active)
