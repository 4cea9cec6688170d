"""Student-facing quiz views with the answer key removed."""

import random
from typing import Any, Dict, Optional

from attempt_service.models.quiz import QuizTemplate

_QUESTION_KEY_FIELDS = {"correct_answer", "correct_boolean"}
_OPTION_KEY_FIELDS = {"is_correct"}
_OPTION_GRADING_FIELDS = {"image_url", "metadata"}


def sanitize_quiz(quiz: QuizTemplate, strip_media: bool = False, seed: Optional[str] = None) -> Dict[str, Any]:
    """Return a JSON-ready copy of `quiz` without any answer-key field.

    With `strip_media`, per-option images and metadata are removed as well.
    When the quiz asks for shuffling, `seed` (the attempt id) fixes the order
    so that a resumed attempt sees the same layout.
    """
    option_excludes = _OPTION_KEY_FIELDS | (_OPTION_GRADING_FIELDS if strip_media else set())

    questions = []
    for question in quiz.questions:
        data = question.model_dump(mode="json", exclude=_QUESTION_KEY_FIELDS | {"options"})
        data["options"] = [option.model_dump(mode="json", exclude=option_excludes) for option in question.options]
        questions.append(data)

    rng = random.Random(seed)
    if quiz.settings.shuffle_questions:
        rng.shuffle(questions)
    if quiz.settings.shuffle_options:
        for data in questions:
            rng.shuffle(data["options"])

    view = quiz.model_dump(mode="json", exclude={"questions"})
    view["questions"] = questions
    view["total_points"] = quiz.total_points
    return view
