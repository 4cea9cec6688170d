# models/attempt.py
from pydantic import BaseModel, Field, StrictBool, StrictStr
from typing import List, Optional, Dict, Any, Union
from datetime import datetime
from enum import Enum

from attempt_service.models.quiz import QuizOption

# Shape depends on the question's answer type; validated by the scoring service.
# Numbers are rejected, never coerced to bool or str.
RawAnswer = Union[StrictBool, StrictStr, List[StrictStr], Dict[str, Any], None]


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    TIME_EXPIRED = "time-expired"


class SubmittedAnswer(BaseModel):
    question_id: str
    answer: RawAnswer = None
    is_correct: bool = False
    points_awarded: float = 0
    time_spent_seconds: float = 0
    answered_at: datetime


class CheatLog(BaseModel):
    message: str
    timestamp: datetime
    actor_id: Optional[str] = None


class Attempt(BaseModel):
    id: str
    quiz_id: str
    student_id: str
    attempt_number: int = Field(..., ge=1)
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    answers: Dict[str, SubmittedAnswer] = Field(default_factory=dict)
    score: float = 0
    total_points: float = 0
    percentage: int = 0
    is_passed: bool = False
    started_at: datetime
    completed_at: Optional[datetime] = None
    time_spent_seconds: int = 0
    current_question_index: int = 0
    cheat_logs: List[CheatLog] = Field(default_factory=list)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int = 0

    @property
    def is_in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS

    def public_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"version"})


class RequestMeta(BaseModel):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


# ========== REQUESTS ==========
class StartAttemptRequest(BaseModel):
    quiz_id: str = Field(..., min_length=1)


class SubmitAnswerRequest(BaseModel):
    question_id: str = Field(..., min_length=1)
    answer: RawAnswer = None
    time_spent: float = Field(0, ge=0)


class CheatLogRequest(BaseModel):
    message: Optional[str] = None


# ========== RESULTS ==========
class StartResult(BaseModel):
    resumed: bool
    attempt: Attempt
    quiz: Dict[str, Any]


class SubmitAnswerResult(BaseModel):
    is_correct: bool
    points_awarded: float
    current_question_index: int


class CorrectAnswer(BaseModel):
    question_id: str
    correct_answer: Optional[str] = None
    correct_boolean: Optional[bool] = None
    correct_options: List[QuizOption] = Field(default_factory=list)


class AttemptSummary(BaseModel):
    id: str
    status: AttemptStatus
    total_points: float
    time_spent_seconds: int
    completed_at: Optional[datetime] = None
    score: Optional[float] = None
    percentage: Optional[int] = None
    is_passed: Optional[bool] = None


class CompletionResult(BaseModel):
    attempt: AttemptSummary
    answers: Optional[List[SubmittedAnswer]] = None
    correct_answers: Optional[List[CorrectAnswer]] = None


class Pagination(BaseModel):
    current: int
    pages: int
    total: int


class AttemptPage(BaseModel):
    attempts: List[Dict[str, Any]]
    pagination: Pagination
