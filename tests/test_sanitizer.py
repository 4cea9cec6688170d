from attempt_service.services.sanitizer import sanitize_quiz

from conftest import build_quiz

KEY_FIELDS = {"correct_answer", "correct_boolean", "is_correct"}


def collect_keys(value):
    keys = set()
    if isinstance(value, dict):
        for key, item in value.items():
            keys.add(key)
            keys |= collect_keys(item)
    elif isinstance(value, list):
        for item in value:
            keys |= collect_keys(item)
    return keys


def option_ids(view):
    return [[option["id"] for option in question["options"]] for question in view["questions"]]


def test_answer_key_is_removed_everywhere():
    view = sanitize_quiz(build_quiz())
    assert not collect_keys(view) & KEY_FIELDS


def test_view_keeps_what_students_need():
    view = sanitize_quiz(build_quiz())
    assert view["id"] == "quiz-1"
    assert view["total_points"] == 9
    assert [q["id"] for q in view["questions"]] == ["q-single", "q-multi", "q-text", "q-bool", "q-image"]
    assert view["questions"][0]["options"][1] == {"id": "opt-4", "text": "4", "image_url": None, "metadata": None}


def test_image_urls_are_kept_by_default():
    view = sanitize_quiz(build_quiz())
    image_question = view["questions"][4]
    assert image_question["options"][1]["image_url"] == "https://cdn.example.com/cat.png"


def test_strip_media_removes_option_images_and_metadata():
    view = sanitize_quiz(build_quiz(), strip_media=True)
    keys = collect_keys(view)
    assert "metadata" not in keys
    assert "image_url" not in keys
    assert not keys & KEY_FIELDS


def test_source_quiz_is_not_mutated():
    quiz = build_quiz()
    sanitize_quiz(quiz, strip_media=True)
    option = quiz.find_question("q-image").options[1]
    assert option.is_correct is True
    assert option.image_url == "https://cdn.example.com/cat.png"
    assert quiz.find_question("q-text").correct_answer == "Paris"


def test_order_is_preserved_without_shuffling():
    quiz = build_quiz()
    assert option_ids(sanitize_quiz(quiz, seed="a")) == option_ids(sanitize_quiz(quiz, seed="b"))
    assert option_ids(sanitize_quiz(quiz))[1] == ["opt-A", "opt-B", "opt-C"]


def test_shuffle_is_stable_for_a_seed():
    quiz = build_quiz(shuffle_questions=True, shuffle_options=True)
    first = sanitize_quiz(quiz, seed="attempt-1")
    second = sanitize_quiz(quiz, seed="attempt-1")
    assert [q["id"] for q in first["questions"]] == [q["id"] for q in second["questions"]]
    assert option_ids(first) == option_ids(second)


def test_shuffle_keeps_every_question_and_option():
    quiz = build_quiz(shuffle_questions=True, shuffle_options=True)
    view = sanitize_quiz(quiz, seed="attempt-2")
    assert sorted(q["id"] for q in view["questions"]) == sorted(q.id for q in quiz.questions)
    by_id = {q["id"]: q for q in view["questions"]}
    assert sorted(o["id"] for o in by_id["q-multi"]["options"]) == ["opt-A", "opt-B", "opt-C"]
    assert not collect_keys(view) & KEY_FIELDS
