from .quiz import AnswerType, VisibilityPolicy, QuizOption, QuizQuestion, QuizSettings, QuizTemplate
from .attempt import (
    AttemptStatus, SubmittedAnswer, CheatLog, Attempt, RequestMeta,
    StartAttemptRequest, SubmitAnswerRequest, CheatLogRequest,
    StartResult, SubmitAnswerResult, CorrectAnswer, AttemptSummary, CompletionResult,
    Pagination, AttemptPage
)
from .schemas import UserRole, UserResponse

__all__ = [
    "AnswerType", "VisibilityPolicy", "QuizOption", "QuizQuestion", "QuizSettings", "QuizTemplate",
    "AttemptStatus", "SubmittedAnswer", "CheatLog", "Attempt", "RequestMeta",
    "StartAttemptRequest", "SubmitAnswerRequest", "CheatLogRequest",
    "StartResult", "SubmitAnswerResult", "CorrectAnswer", "AttemptSummary", "CompletionResult",
    "Pagination", "AttemptPage",
    "UserRole", "UserResponse"
]
