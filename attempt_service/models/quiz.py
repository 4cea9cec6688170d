# models/quiz.py
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Dict, Any, Union
from datetime import datetime, timezone
from enum import Enum


class AnswerType(str, Enum):
    SINGLE_CHOICE = "single-choice"
    MULTIPLE_CHOICE = "multiple-choice"
    IMAGE_SELECTION = "image-selection"
    TEXT_ANSWER = "text-answer"
    TRUE_FALSE = "true-false"


class VisibilityPolicy(str, Enum):
    IMMEDIATELY = "immediately"
    AFTER_END = "after-end"
    NEVER = "never"


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC; aware values are converted."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class QuizOption(BaseModel):
    id: str
    text: str = ""
    image_url: Optional[str] = None
    is_correct: bool = False
    metadata: Optional[Dict[str, Any]] = None


class QuizQuestion(BaseModel):
    id: str
    answer_type: Union[AnswerType, str]
    content: str = ""
    media_url: Optional[str] = None
    points: float = Field(1, ge=0)
    time_limit: int = 60  # seconds, informative only
    options: List[QuizOption] = Field(default_factory=list)
    correct_answer: Optional[str] = None
    correct_boolean: Optional[bool] = None

    @field_validator("answer_type", mode="before")
    @classmethod
    def known_answer_type(cls, value):
        # Unknown types are kept as plain strings and graded as incorrect.
        try:
            return AnswerType(value)
        except ValueError:
            return value

    def correct_option_ids(self) -> List[str]:
        return [option.id for option in self.options if option.is_correct]


class QuizSettings(BaseModel):
    start_at: datetime
    end_at: datetime
    duration_minutes: int = Field(..., ge=1)
    max_attempts: int = Field(1, ge=1)
    passing_score_percent: int = Field(60, ge=0, le=100)
    show_answers_policy: VisibilityPolicy = VisibilityPolicy.AFTER_END
    show_score_policy: VisibilityPolicy = VisibilityPolicy.IMMEDIATELY
    allow_resume: bool = True
    shuffle_questions: bool = False
    shuffle_options: bool = False

    @field_validator("start_at", "end_at")
    @classmethod
    def normalize_datetime(cls, value):
        return to_naive_utc(value)


class QuizTemplate(BaseModel):
    """Read-only view of a quiz, answer keys included."""

    id: str
    title: str = ""
    description: Optional[str] = None
    created_by: Optional[str] = None
    is_active: bool = True
    questions: List[QuizQuestion] = Field(default_factory=list)
    settings: QuizSettings

    @property
    def total_points(self) -> float:
        return sum(question.points for question in self.questions)

    def find_question(self, question_id: str) -> Optional[QuizQuestion]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def question_index(self, question_id: str) -> int:
        for index, question in enumerate(self.questions):
            if question.id == question_id:
                return index
        return -1

    def is_open_at(self, now: datetime) -> bool:
        return self.settings.start_at <= now <= self.settings.end_at

    def has_ended(self, now: datetime) -> bool:
        return now > self.settings.end_at
