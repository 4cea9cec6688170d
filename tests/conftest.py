from datetime import datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

from attempt_service.config import settings
from attempt_service.main import app
from attempt_service.models.quiz import QuizTemplate
from attempt_service.services.attempt_repository import MemoryAttemptRepository
from attempt_service.services.attempt_service import AttemptService
from attempt_service.services.quiz_store import MemoryQuizStore
from attempt_service.utils.dependencies import get_attempt_service

NOW = datetime(2026, 3, 2, 9, 0, 0)
QUIZ_ID = "quiz-1"
TEACHER_ID = "teacher-1"


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def build_quiz(quiz_id=QUIZ_ID, questions=None, **settings_overrides):
    quiz_settings = {
        "start_at": NOW - timedelta(days=1),
        "end_at": NOW + timedelta(days=1),
        "duration_minutes": 30,
        "max_attempts": 1,
        "passing_score_percent": 60,
        "show_answers_policy": "immediately",
        "show_score_policy": "immediately",
        "allow_resume": True,
    }
    quiz_settings.update(settings_overrides)

    if questions is None:
        questions = [
            {
                "id": "q-single",
                "answer_type": "single-choice",
                "content": "2 + 2 = ?",
                "points": 2,
                "options": [
                    {"id": "opt-3", "text": "3"},
                    {"id": "opt-4", "text": "4", "is_correct": True},
                ],
            },
            {
                "id": "q-multi",
                "answer_type": "multiple-choice",
                "content": "Pick the primes",
                "points": 3,
                "options": [
                    {"id": "opt-A", "text": "2", "is_correct": True},
                    {"id": "opt-B", "text": "3", "is_correct": True},
                    {"id": "opt-C", "text": "4"},
                ],
            },
            {
                "id": "q-text",
                "answer_type": "text-answer",
                "content": "Capital of France?",
                "points": 1,
                "correct_answer": "Paris",
            },
            {
                "id": "q-bool",
                "answer_type": "true-false",
                "content": "The earth is round",
                "points": 1,
                "correct_boolean": True,
            },
            {
                "id": "q-image",
                "answer_type": "image-selection",
                "content": "Which one is a cat?",
                "points": 2,
                "options": [
                    {"id": "img-dog", "image_url": "https://cdn.example.com/dog.png"},
                    {
                        "id": "img-cat",
                        "image_url": "https://cdn.example.com/cat.png",
                        "is_correct": True,
                        "metadata": {"grader_note": "tabby"},
                    },
                ],
            },
        ]

    return QuizTemplate.model_validate({
        "id": quiz_id,
        "title": "General knowledge",
        "created_by": TEACHER_ID,
        "questions": questions,
        "settings": quiz_settings,
    })


def make_token(user_id, role="student"):
    return jwt.encode({"user_id": user_id, "role": role}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(user_id, role="student"):
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def quiz_store():
    store = MemoryQuizStore()
    store.add(build_quiz())
    return store


@pytest.fixture
def repository():
    return MemoryAttemptRepository()


@pytest.fixture
def service(repository, quiz_store, clock):
    return AttemptService(repository, quiz_store, clock=clock)


@pytest.fixture
def client(service):
    app.dependency_overrides[get_attempt_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
