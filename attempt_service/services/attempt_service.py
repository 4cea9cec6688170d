import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId

from attempt_service.config import settings
from attempt_service.exceptions import (
    AttemptNotFound, ConcurrentAttemptConflict, DuplicateAttemptError, MaxAttemptsReached,
    QuestionNotFound, QuizNotFound, QuizUnavailable, ResumeNotAllowed, TimeExpired
)
from attempt_service.models.attempt import (
    Attempt, AttemptPage, AttemptStatus, AttemptSummary, CheatLog, CompletionResult, CorrectAnswer,
    Pagination, RawAnswer, RequestMeta, StartResult, SubmitAnswerResult, SubmittedAnswer
)
from attempt_service.models.quiz import QuizTemplate, VisibilityPolicy
from attempt_service.services.attempt_repository import AttemptRepository
from attempt_service.services.quiz_store import QuizTemplateStore
from attempt_service.services.sanitizer import sanitize_quiz
from attempt_service.services.scoring_service import percentage, score_answer
from attempt_service.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_CHEAT_MESSAGE = "Cheating event"


class AttemptService:
    """Lifecycle of quiz attempts: start/resume, answer, complete, lazy expiry.

    This is the only component that changes attempt state. Expected failures
    are raised as AttemptError subclasses; storage errors propagate untouched.
    """

    def __init__(
        self,
        repository: AttemptRepository,
        quiz_store: QuizTemplateStore,
        clock: Callable[[], datetime] = utcnow,
        complete_max_retries: int = settings.COMPLETE_MAX_RETRIES
    ):
        self.repository = repository
        self.quiz_store = quiz_store
        self.clock = clock
        self.complete_max_retries = complete_max_retries

    # ---------- helpers ----------
    def _load_quiz(self, quiz_id: str) -> QuizTemplate:
        quiz = self.quiz_store.get_quiz_for_attempt(quiz_id)
        if quiz is None:
            raise QuizNotFound()
        return quiz

    @staticmethod
    def _is_expired(attempt: Attempt, quiz: QuizTemplate, now: datetime) -> bool:
        elapsed = (now - attempt.started_at).total_seconds()
        return elapsed >= quiz.settings.duration_minutes * 60

    def _expire(self, attempt: Attempt, now: datetime):
        if not self.repository.mark_expired(attempt.id, now):
            # finished by a concurrent Complete
            raise AttemptNotFound()
        logger.info(f"Attempt {attempt.id} expired (quiz {attempt.quiz_id}, student {attempt.student_id})")
        raise TimeExpired()

    @staticmethod
    def _new_attempt(quiz: QuizTemplate, student_id: str, attempt_number: int,
                     now: datetime, meta: RequestMeta) -> Attempt:
        return Attempt(
            id=str(ObjectId()),
            quiz_id=quiz.id,
            student_id=student_id,
            attempt_number=attempt_number,
            total_points=quiz.total_points,
            started_at=now,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            created_at=now,
            updated_at=now
        )

    @staticmethod
    def _started(attempt: Attempt, quiz: QuizTemplate, resumed: bool) -> StartResult:
        return StartResult(resumed=resumed, attempt=attempt, quiz=sanitize_quiz(quiz, seed=attempt.id))

    @staticmethod
    def _policy_allows(policy: VisibilityPolicy, quiz: QuizTemplate, now: Optional[datetime] = None) -> bool:
        """`after-end` only counts when a read time is given and the quiz has ended."""
        if policy == VisibilityPolicy.IMMEDIATELY:
            return True
        if policy == VisibilityPolicy.AFTER_END and now is not None:
            return quiz.has_ended(now)
        return False

    @staticmethod
    def _correct_answers(quiz: QuizTemplate) -> List[CorrectAnswer]:
        return [
            CorrectAnswer(
                question_id=question.id,
                correct_answer=question.correct_answer,
                correct_boolean=question.correct_boolean,
                correct_options=[option for option in question.options if option.is_correct]
            )
            for question in quiz.questions
        ]

    # ---------- lifecycle ----------
    def start(self, quiz_id: str, student_id: str, meta: Optional[RequestMeta] = None) -> StartResult:
        """Start a new attempt, or resume the student's in-progress one."""
        meta = meta or RequestMeta()
        quiz = self._load_quiz(quiz_id)
        now = self.clock()

        if not self.quiz_store.get_quiz_active_flag(quiz_id) or not quiz.is_open_at(now):
            raise QuizUnavailable()

        existing = self.repository.find_in_progress(quiz_id, student_id)
        if existing is not None:
            return self._resume(existing, quiz, now)

        count = self.repository.count_attempts(quiz_id, student_id)
        if count >= quiz.settings.max_attempts:
            # the count may include an attempt created since the lookup above
            existing = self.repository.find_in_progress(quiz_id, student_id)
            if existing is None:
                raise MaxAttemptsReached()
            return self._resume(existing, quiz, now)

        return self._create(quiz, student_id, count + 1, now, meta)

    def _resume(self, attempt: Attempt, quiz: QuizTemplate, now: datetime) -> StartResult:
        if not quiz.settings.allow_resume:
            raise ResumeNotAllowed()
        if self._is_expired(attempt, quiz, now):
            self._expire(attempt, now)
        logger.info(f"Resuming attempt {attempt.id} for student {attempt.student_id}")
        return self._started(attempt, quiz, resumed=True)

    def _create(self, quiz: QuizTemplate, student_id: str, attempt_number: int,
                now: datetime, meta: RequestMeta) -> StartResult:
        attempt = self._new_attempt(quiz, student_id, attempt_number, now, meta)
        try:
            self.repository.insert(attempt)
        except DuplicateAttemptError:
            logger.warning(
                f"Concurrent start for quiz {quiz.id}, student {student_id} "
                f"(attempt #{attempt_number}); looking up the winning attempt"
            )
            winner = self.repository.find_in_progress(quiz.id, student_id)
            if winner is not None:
                return self._started(winner, quiz, resumed=True)

            fresh_count = self.repository.count_attempts(quiz.id, student_id)
            if fresh_count >= quiz.settings.max_attempts:
                raise MaxAttemptsReached()
            attempt = self._new_attempt(quiz, student_id, fresh_count + 1, now, meta)
            try:
                self.repository.insert(attempt)
            except DuplicateAttemptError as e:
                logger.error(f"Attempt creation conflict for quiz {quiz.id}, student {student_id}: {e}")
                raise ConcurrentAttemptConflict() from e

        logger.info(f"Attempt {attempt.id} (#{attempt.attempt_number}) started on quiz {quiz.id} by {student_id}")
        return self._started(attempt, quiz, resumed=False)

    def submit_answer(self, attempt_id: str, student_id: str, question_id: str,
                      raw_answer: RawAnswer, time_spent: float = 0) -> SubmitAnswerResult:
        """Grade and store one answer; resubmission overwrites the previous one."""
        attempt = self.repository.find_owned(attempt_id, student_id)
        if attempt is None:
            raise AttemptNotFound()

        quiz = self._load_quiz(attempt.quiz_id)
        now = self.clock()
        if self._is_expired(attempt, quiz, now):
            self._expire(attempt, now)

        question = quiz.find_question(question_id)
        if question is None:
            raise QuestionNotFound()

        is_correct, points = score_answer(question, raw_answer)
        answer = SubmittedAnswer(
            question_id=question_id,
            answer=raw_answer,
            is_correct=is_correct,
            points_awarded=points,
            time_spent_seconds=time_spent or 0,
            answered_at=now
        )

        updated = self.repository.record_answer(
            attempt.id, student_id, answer, quiz.question_index(question_id), now
        )
        if updated is None:
            # finished between the read and the write
            raise AttemptNotFound()

        return SubmitAnswerResult(
            is_correct=is_correct,
            points_awarded=points,
            current_question_index=updated.current_question_index
        )

    def complete(self, attempt_id: str, student_id: str) -> CompletionResult:
        """Finalise an attempt and return the result allowed by the quiz's visibility policy."""
        attempt = self.repository.find_owned(attempt_id, student_id)
        if attempt is None:
            raise AttemptNotFound()
        quiz = self._load_quiz(attempt.quiz_id)

        for _ in range(self.complete_max_retries):
            now = self.clock()
            score = sum(answer.points_awarded for answer in attempt.answers.values())
            pct = percentage(score, attempt.total_points)
            changes = {
                "status": AttemptStatus.COMPLETED.value,
                "score": score,
                "percentage": pct,
                "is_passed": pct >= quiz.settings.passing_score_percent,
                "completed_at": now,
                "time_spent_seconds": int((now - attempt.started_at).total_seconds()),
                "updated_at": now
            }
            if self.repository.complete(attempt.id, attempt.version, changes):
                attempt = attempt.model_copy(update={**changes, "status": AttemptStatus.COMPLETED})
                break

            logger.warning(f"Attempt {attempt.id} changed while completing, retrying")
            attempt = self.repository.find_owned(attempt_id, student_id)
            if attempt is None:
                raise AttemptNotFound()
        else:
            logger.error(f"Could not complete attempt {attempt_id} after {self.complete_max_retries} tries")
            raise ConcurrentAttemptConflict("Could not complete quiz attempt, please retry")

        logger.info(f"Attempt {attempt.id} completed: {attempt.score}/{attempt.total_points} ({attempt.percentage}%)")

        show_score = self._policy_allows(quiz.settings.show_score_policy, quiz)
        show_answers = self._policy_allows(quiz.settings.show_answers_policy, quiz)

        result = CompletionResult(attempt=self._summary(attempt, show_score))
        if show_answers:
            result.answers = list(attempt.answers.values())
            result.correct_answers = self._correct_answers(quiz)
        return result

    def record_cheat_event(self, attempt_id: str, actor_id: str, message: Optional[str] = None) -> CheatLog:
        """Append a cheat-log entry; the caller has already authorised `actor_id`."""
        entry = CheatLog(message=message or DEFAULT_CHEAT_MESSAGE, timestamp=self.clock(), actor_id=actor_id)
        if not self.repository.append_cheat_log(attempt_id, entry, entry.timestamp):
            raise AttemptNotFound()
        logger.info(f"Cheat log recorded on attempt {attempt_id} by {actor_id}")
        return entry

    # ---------- read paths ----------
    @staticmethod
    def _summary(attempt: Attempt, show_score: bool) -> AttemptSummary:
        return AttemptSummary(
            id=attempt.id,
            status=attempt.status,
            total_points=attempt.total_points,
            time_spent_seconds=attempt.time_spent_seconds,
            completed_at=attempt.completed_at,
            score=attempt.score if show_score else None,
            percentage=attempt.percentage if show_score else None,
            is_passed=attempt.is_passed if show_score else None
        )

    def get_attempt(self, attempt_id: str) -> Attempt:
        attempt = self.repository.get(attempt_id)
        if attempt is None:
            raise AttemptNotFound()
        return attempt

    def get_quiz_owner(self, quiz_id: str) -> Optional[str]:
        quiz = self.quiz_store.get_quiz_for_attempt(quiz_id)
        return quiz.created_by if quiz else None

    def own_attempt_details(self, attempt_id: str, student_id: str) -> Dict[str, Any]:
        """Owner view of any attempt with a text-only quiz for review.

        Score and answers are gated like Complete, plus `after-end` once the quiz closed.
        """
        attempt = self.repository.get(attempt_id)
        if attempt is None or attempt.student_id != student_id:
            raise AttemptNotFound()

        quiz = self.quiz_store.get_quiz_for_attempt(attempt.quiz_id)
        now = self.clock()
        finished = not attempt.is_in_progress

        data = attempt.public_dict()
        show_score = quiz is not None and self._policy_allows(quiz.settings.show_score_policy, quiz, now)
        if not (finished and show_score):
            for key in ("score", "percentage", "is_passed"):
                data.pop(key, None)

        show_answers = quiz is not None and self._policy_allows(quiz.settings.show_answers_policy, quiz, now)
        if finished and show_answers:
            data["correct_answers"] = [c.model_dump(mode="json") for c in self._correct_answers(quiz)]
        if quiz is not None:
            # review layout: same order as the attempt, without option images
            data["quiz"] = sanitize_quiz(quiz, strip_media=True, seed=attempt.id)
        return data

    def best_attempt(self, quiz_id: str, student_id: str) -> Attempt:
        attempt = self.repository.best_attempt(quiz_id, student_id)
        if attempt is None:
            raise AttemptNotFound("No completed attempt for this quiz")
        return attempt

    def list_attempts(self, filters: Dict[str, Any], page: int = 1, limit: int = settings.DEFAULT_PAGE_SIZE) -> AttemptPage:
        """Newest-first page of attempts matching `filters`."""
        limit = max(1, min(limit, settings.MAX_PAGE_SIZE))
        page = max(1, page)
        total = self.repository.count(filters)
        attempts = self.repository.list_attempts(filters, skip=(page - 1) * limit, limit=limit)
        return AttemptPage(
            attempts=[attempt.public_dict() for attempt in attempts],
            pagination=Pagination(current=page, pages=math.ceil(total / limit), total=total)
        )
