import math
from typing import List, Optional, Tuple

from attempt_service.models.quiz import AnswerType, QuizQuestion
from attempt_service.models.attempt import RawAnswer


def score_answer(question: QuizQuestion, raw_answer: RawAnswer) -> Tuple[bool, float]:
    """Grade one submitted answer.

    Returns (is_correct, points_awarded). Never raises: an unknown answer type
    or a malformed answer is graded as incorrect.
    """
    try:
        grader = _GRADERS.get(question.answer_type)
        is_correct = bool(grader(question, raw_answer)) if grader else False
    except (AttributeError, TypeError, ValueError):
        is_correct = False
    return is_correct, (question.points if is_correct else 0)


def percentage(score: float, total_points: float) -> int:
    """Half-up rounded percentage; 0 when the quiz carries no points."""
    if total_points <= 0:
        return 0
    return int(math.floor(score / total_points * 100 + 0.5))


def normalize_text(value: str) -> str:
    return value.strip().lower()


def normalize_boolean(raw_answer: RawAnswer) -> Optional[bool]:
    if isinstance(raw_answer, bool):
        return raw_answer
    if isinstance(raw_answer, str):
        lowered = raw_answer.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def normalize_option_ids(raw_answer: RawAnswer) -> Optional[List[str]]:
    """Accept a single option id or a non-empty list of option ids."""
    if isinstance(raw_answer, str):
        return [raw_answer]
    if isinstance(raw_answer, list) and raw_answer and all(isinstance(item, str) for item in raw_answer):
        return list(raw_answer)
    return None


def _grade_text(question: QuizQuestion, raw_answer: RawAnswer) -> bool:
    if not isinstance(raw_answer, str) or question.correct_answer is None:
        return False
    return normalize_text(raw_answer) == normalize_text(question.correct_answer)


def _grade_single(question: QuizQuestion, raw_answer: RawAnswer) -> bool:
    if not isinstance(raw_answer, str):
        return False
    return any(option.id == raw_answer and option.is_correct for option in question.options)


def _grade_multiple(question: QuizQuestion, raw_answer: RawAnswer) -> bool:
    selected = normalize_option_ids(raw_answer)
    if selected is None:
        return False
    correct = set(question.correct_option_ids())
    return bool(correct) and set(selected) == correct


def _grade_true_false(question: QuizQuestion, raw_answer: RawAnswer) -> bool:
    value = normalize_boolean(raw_answer)
    if value is None or question.correct_boolean is None:
        return False
    return value == question.correct_boolean


_GRADERS = {
    AnswerType.TEXT_ANSWER: _grade_text,
    AnswerType.SINGLE_CHOICE: _grade_single,
    AnswerType.IMAGE_SELECTION: _grade_single,
    AnswerType.MULTIPLE_CHOICE: _grade_multiple,
    AnswerType.TRUE_FALSE: _grade_true_false,
}
