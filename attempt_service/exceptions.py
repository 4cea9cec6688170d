from fastapi import status


class AttemptError(Exception):
    """Expected failure of an attempt operation, returned to the caller."""

    code = "ATTEMPT_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Attempt operation failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class QuizUnavailable(AttemptError):
    code = "QUIZ_UNAVAILABLE"
    message = "Quiz is not available"


class QuizNotFound(QuizUnavailable):
    code = "QUIZ_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Quiz not found"


class MaxAttemptsReached(AttemptError):
    code = "MAX_ATTEMPTS_REACHED"
    message = "Maximum attempts reached"


class ResumeNotAllowed(AttemptError):
    code = "RESUME_NOT_ALLOWED"
    message = "Cannot resume quiz"


class TimeExpired(AttemptError):
    code = "TIME_EXPIRED"
    message = "Quiz time has expired"


class AttemptNotFound(AttemptError):
    # Covers missing, foreign and finished attempts alike.
    code = "ATTEMPT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Quiz attempt not found or already completed"


class QuestionNotFound(AttemptError):
    code = "QUESTION_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Question not found"


class ConcurrentAttemptConflict(AttemptError):
    code = "CONCURRENT_ATTEMPT_CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    message = "Could not create quiz attempt, please retry"


class AccessDenied(AttemptError):
    code = "ACCESS_DENIED"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Access denied"


class DuplicateAttemptError(Exception):
    """Raised by a repository when a uniqueness constraint rejects an insert."""
