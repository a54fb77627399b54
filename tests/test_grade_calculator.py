import math
from types import SimpleNamespace

import pytest

from learnhub.backend.services.grade_calculator import (
    answer_matches,
    class_statistics,
    course_grade,
    gpa,
    letter_grade,
    score_quiz,
    score_rubric,
    weighted_course_grade,
)


def collect_warnings():
    warnings = []
    return warnings, lambda message, context: warnings.append((message, context))


def test_true_false_answer_is_case_insensitive():
    questions = [{"type": "true-false", "correct_answer": "true", "points": 10}]

    result = score_quiz(questions, [{"answer": "True"}])

    assert result.score == 10
    assert result.percentage == 100
    assert result.correct_answers == 1
    assert result.graded_answers[0].is_correct is True


def test_essay_never_auto_scores():
    questions = [
        {"type": "essay", "correct_answer": "anything", "points": 20},
        {"type": "multiple-choice", "correct_answer": "B", "points": 5},
    ]

    result = score_quiz(questions, [{"answer": "anything"}, {"answer": "b"}])

    assert result.score == 5
    assert result.max_score == 25
    assert result.percentage == 20
    assert result.graded_answers[0].points_earned == 0


def test_short_answer_accepts_containment_either_way():
    assert answer_matches("short-answer", "the mitochondria", "mitochondria")
    assert answer_matches("short-answer", "mito", "mitochondria")
    assert not answer_matches("short-answer", "ribosome", "mitochondria")
    assert not answer_matches("multiple-choice", "A ", "B")
    assert not answer_matches("true-false", None, "true")


def test_blank_short_answer_is_not_a_match():
    assert not answer_matches("short-answer", "", "paris")
    assert not answer_matches("short-answer", "   ", "paris")

    result = score_quiz([{"type": "short-answer", "correct_answer": "Paris", "points": 5}], [{"answer": ""}])
    assert result.score == 0


def test_answer_without_question_scores_zero_and_warns():
    warnings, hook = collect_warnings()
    questions = [{"type": "true-false", "correct_answer": "false", "points": 4}]

    result = score_quiz(questions, [{"answer": "false"}, {"answer": "extra"}], on_warning=hook)

    assert result.score == 4
    assert len(result.graded_answers) == 2
    assert result.graded_answers[1].points_earned == 0
    assert warnings and warnings[0][0] == "Answer has no matching question"


def test_unknown_question_type_is_reported():
    warnings, hook = collect_warnings()

    result = score_quiz([{"type": "matching", "correct_answer": "x", "points": 3}], ["x"], on_warning=hook)

    assert result.score == 0
    assert warnings[0][1]["type"] == "matching"


def test_empty_quiz_gives_zeroed_result():
    assert score_quiz([], [{"answer": "a"}]).percentage == 0
    assert score_quiz(None, None).score == 0


def test_rubric_totals_and_skips_malformed_lines():
    warnings, hook = collect_warnings()

    result = score_rubric([
        {"criterion": "Clarity", "points_earned": 8, "max_points": 10},
        {"criterion": "Depth", "points_earned": 12, "max_points": 15},
        {"criterion": "Broken", "points_earned": "lots", "max_points": 5},
    ], on_warning=hook)

    assert result.score == 20
    assert result.max_score == 25
    assert result.percentage == 80
    assert len(result.breakdown) == 2
    assert len(warnings) == 1


@pytest.mark.parametrize("percentage,letter,points", [
    (97, "A+", 4.0),
    (93, "A", 4.0),
    (92, "A-", 3.7),
    (85, "B", 3.0),
    (71, "C-", 1.7),
    (60, "D-", 0.7),
    (59.99, "F", 0.0),
])
def test_letter_grade_and_gpa(percentage, letter, points):
    assert letter_grade(percentage) == letter
    assert gpa(percentage) == points


def test_weighted_grade_uses_assignment_weights():
    assignments = [
        SimpleNamespace(id="a1", title="Quiz", weight=1, total_points=10),
        SimpleNamespace(id="a2", title="Project", weight=2, total_points=50),
    ]
    submissions = [
        SimpleNamespace(assignment_id="a1", status="graded", score=8, max_score=10),
        SimpleNamespace(assignment_id="a2", status="graded", score=50, max_score=50),
    ]

    grade = weighted_course_grade(submissions, assignments)

    assert grade.percentage == 93.33
    assert grade.total_weight == 3
    assert grade.completed_assignments == 2


def test_missing_submissions_count_as_incomplete():
    assignments = [
        {"id": "a1", "title": "Quiz", "weight": None, "total_points": 10},
        {"id": "a2", "title": "Essay", "weight": 1, "total_points": 20},
    ]
    submissions = [
        {"assignment_id": "a1", "status": "graded", "score": 10, "max_score": 10},
        {"assignment_id": "a2", "status": "submitted", "score": 0, "max_score": 20},
    ]

    grade = course_grade(submissions, assignments)

    assert grade.grade.percentage == 50
    assert grade.grade.completed_assignments == 1
    assert grade.grade.breakdown[1].completed is False
    assert grade.letter_grade == "F"
    assert grade.to_dict()["gpa"] == 0.0


def test_course_grade_with_no_assignments_is_zero():
    grade = course_grade([], [])
    assert grade.grade.percentage == 0
    assert grade.letter_grade == "F"


def test_class_statistics():
    submissions = [{"percentage": value} for value in (60, 70, 80, 90)]

    stats = class_statistics(submissions)

    assert stats.mean == 75
    assert stats.median == 75
    assert math.isclose(stats.std_dev, 11.18, abs_tol=0.01)
    assert stats.min == 60
    assert stats.max == 90
    assert stats.total_submissions == 4
    assert stats.to_dict()["distribution"] == {"A": 1, "B": 1, "C": 1, "D": 1, "F": 0}


def test_class_statistics_mode_prefers_highest_on_tie():
    stats = class_statistics([{"percentage": value} for value in (50, 50, 80, 80, 70)])
    assert stats.mode == 80


def test_class_statistics_empty():
    stats = class_statistics([])
    assert stats.total_submissions == 0
    assert stats.mean == 0
