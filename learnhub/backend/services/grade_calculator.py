"""
LearnHub Learning Management System
Grade calculation: quiz auto-grading, rubric and weighted course grades,
letter grades and class statistics.

Every public function is best-effort. Empty or missing input yields a zeroed
result, and malformed entries are skipped and reported via ``on_warning``.
"""

import logging
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from ..utils.helpers import enum_value, round_half_up

# Configure logging
logger = logging.getLogger(__name__)

WarningHook = Callable[[str, Dict[str, Any]], None]

# (minimum percentage, letter, gpa), highest first
GRADE_SCALE: Tuple[Tuple[float, str, float], ...] = (
    (97, "A+", 4.0),
    (93, "A", 4.0),
    (90, "A-", 3.7),
    (87, "B+", 3.3),
    (83, "B", 3.0),
    (80, "B-", 2.7),
    (77, "C+", 2.3),
    (73, "C", 2.0),
    (70, "C-", 1.7),
    (67, "D+", 1.3),
    (63, "D", 1.0),
    (60, "D-", 0.7),
)

DISTRIBUTION_BUCKETS: Tuple[Tuple[str, float], ...] = (
    ("A", 90),
    ("B", 80),
    ("C", 70),
    ("D", 60),
)

EXACT_MATCH_TYPES = {"multiple-choice", "true-false"}
PARTIAL_MATCH_TYPES = {"short-answer"}
MANUAL_TYPES = {"essay"}


def log_warning(message: str, context: Dict[str, Any]) -> None:
    """Default observability hook"""
    logger.warning(f"{message}: {context}")


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a mapping or an attribute-bearing object"""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def _number(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if np.isnan(number) or np.isinf(number):
        return None
    return number


def _percentage(score: float, max_score: float) -> int:
    if max_score <= 0:
        return 0
    return round_half_up(score / max_score * 100)


# Result types
@dataclass(frozen=True)
class GradedAnswer:
    question_index: int
    answer: Optional[str]
    is_correct: bool
    points_earned: float
    max_points: float
    question_type: Optional[str]


@dataclass(frozen=True)
class QuizResult:
    score: float = 0.0
    max_score: float = 0.0
    percentage: int = 0
    correct_answers: int = 0
    total_questions: int = 0
    graded_answers: Tuple[GradedAnswer, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RubricLine:
    criterion: str
    points_earned: float
    max_points: float
    feedback: Optional[str] = None


@dataclass(frozen=True)
class RubricResult:
    score: float = 0.0
    max_score: float = 0.0
    percentage: int = 0
    breakdown: Tuple[RubricLine, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AssignmentGradeLine:
    assignment_id: str
    title: Optional[str]
    score: float
    max_score: float
    percentage: int
    weight: float
    weighted_score: float
    completed: bool


@dataclass(frozen=True)
class WeightedGrade:
    weighted_score: float = 0.0
    total_weight: float = 0.0
    percentage: float = 0.0
    breakdown: Tuple[AssignmentGradeLine, ...] = ()
    completed_assignments: int = 0
    total_assignments: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CourseGrade:
    grade: WeightedGrade
    letter_grade: str
    gpa: float

    def to_dict(self) -> Dict[str, Any]:
        data = self.grade.to_dict()
        data.update({"letter_grade": self.letter_grade, "gpa": self.gpa})
        return data


@dataclass(frozen=True)
class ClassStatistics:
    mean: float = 0.0
    median: float = 0.0
    mode: float = 0.0
    std_dev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    distribution: Tuple[Tuple[str, int], ...] = (("A", 0), ("B", 0), ("C", 0), ("D", 0), ("F", 0))
    total_submissions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["distribution"] = dict(self.distribution)
        return data


# Quiz grading
def answer_matches(question_type: Optional[str], answer: Any, correct_answer: Any) -> bool:
    """Compare a learner's answer with the answer key"""
    if question_type in MANUAL_TYPES or correct_answer is None or answer is None:
        return False

    given = str(answer).strip().lower()
    expected = str(correct_answer).strip().lower()

    if question_type in EXACT_MATCH_TYPES:
        return given == expected

    if question_type in PARTIAL_MATCH_TYPES:
        if not given or not expected:
            return given == expected
        return given == expected or expected in given or given in expected

    return False


def _answer_text(answer: Any) -> Optional[str]:
    if isinstance(answer, dict):
        value = answer.get("answer")
    else:
        value = answer
    return None if value is None else str(value)


def score_quiz(
    questions: Optional[Sequence[Dict[str, Any]]],
    answers: Optional[Sequence[Any]],
    on_warning: Optional[WarningHook] = None
) -> QuizResult:
    """Score answers against the quiz answer key, matching by position"""
    warn = on_warning or log_warning

    if not questions or not answers:
        return QuizResult()

    score = 0.0
    max_score = 0.0
    correct = 0
    graded = []

    for index, answer in enumerate(answers):
        response = _answer_text(answer)
        question = questions[index] if index < len(questions) else None

        if question is None:
            warn("Answer has no matching question", {"question_index": index})
            graded.append(GradedAnswer(index, response, False, 0.0, 0.0, None))
            continue

        question_type = enum_value(_field(question, "type"))
        points = _number(_field(question, "points", 0))
        if points is None:
            warn("Question has non-numeric points", {"question_index": index})
            points = 0.0

        if question_type in MANUAL_TYPES:
            is_correct = False
        elif question_type in EXACT_MATCH_TYPES or question_type in PARTIAL_MATCH_TYPES:
            is_correct = answer_matches(question_type, response, _field(question, "correct_answer"))
        else:
            warn("Unknown question type", {"question_index": index, "type": question_type})
            is_correct = False

        earned = points if is_correct else 0.0
        max_score += points
        score += earned
        correct += int(is_correct)

        graded.append(GradedAnswer(index, response, is_correct, earned, points, question_type))

    return QuizResult(
        score=score,
        max_score=max_score,
        percentage=_percentage(score, max_score),
        correct_answers=correct,
        total_questions=len(questions),
        graded_answers=tuple(graded)
    )


# Rubric grading
def score_rubric(
    rubric_scores: Optional[Iterable[Dict[str, Any]]],
    on_warning: Optional[WarningHook] = None
) -> RubricResult:
    """Sum earned and available points across rubric criteria"""
    warn = on_warning or log_warning

    if not rubric_scores:
        return RubricResult()

    score = 0.0
    max_score = 0.0
    lines = []

    for entry in rubric_scores:
        earned = _number(_field(entry, "points_earned", 0))
        available = _number(_field(entry, "max_points", 0))
        if earned is None or available is None:
            warn("Skipping malformed rubric entry", {"entry": entry})
            continue

        score += earned
        max_score += available
        lines.append(RubricLine(
            criterion=str(_field(entry, "criterion", "")),
            points_earned=earned,
            max_points=available,
            feedback=_field(entry, "feedback")
        ))

    return RubricResult(
        score=score,
        max_score=max_score,
        percentage=_percentage(score, max_score),
        breakdown=tuple(lines)
    )


# Course grading
def _submission_status(submission: Any) -> Any:
    return enum_value(_field(submission, "status"))


def weighted_course_grade(
    submissions: Optional[Sequence[Any]],
    assignments: Optional[Sequence[Any]],
    on_warning: Optional[WarningHook] = None
) -> WeightedGrade:
    """Weighted average of graded assignment percentages"""
    warn = on_warning or log_warning

    if submissions is None or not assignments:
        return WeightedGrade()

    graded_by_assignment: Dict[str, Any] = {}
    for submission in submissions:
        if _submission_status(submission) != "graded":
            continue
        key = str(_field(submission, "assignment_id"))
        graded_by_assignment.setdefault(key, submission)

    total_weighted = 0.0
    total_weight = 0.0
    lines = []

    for assignment in assignments:
        assignment_id = str(_field(assignment, "id"))
        weight = _number(_field(assignment, "weight")) or 1.0
        total_weight += weight
        submission = graded_by_assignment.get(assignment_id)

        if submission is None:
            lines.append(AssignmentGradeLine(
                assignment_id=assignment_id,
                title=_field(assignment, "title"),
                score=0.0,
                max_score=_number(_field(assignment, "total_points", 0)) or 0.0,
                percentage=0,
                weight=weight,
                weighted_score=0.0,
                completed=False
            ))
            continue

        score = _number(_field(submission, "score", 0)) or 0.0
        max_score = _number(_field(submission, "max_score", 0)) or 0.0
        if max_score <= 0:
            warn("Graded submission has no max score", {"assignment_id": assignment_id})
            assignment_percentage = 0.0
        else:
            assignment_percentage = score / max_score * 100

        weighted = assignment_percentage * weight
        total_weighted += weighted

        lines.append(AssignmentGradeLine(
            assignment_id=assignment_id,
            title=_field(assignment, "title"),
            score=score,
            max_score=max_score,
            percentage=round_half_up(assignment_percentage),
            weight=weight,
            weighted_score=round_half_up(weighted, 2),
            completed=True
        ))

    percentage = round_half_up(total_weighted / total_weight, 2) if total_weight > 0 else 0.0

    return WeightedGrade(
        weighted_score=round_half_up(total_weighted, 2),
        total_weight=total_weight,
        percentage=percentage,
        breakdown=tuple(lines),
        completed_assignments=sum(1 for line in lines if line.completed),
        total_assignments=len(assignments)
    )


def letter_grade(percentage: float) -> str:
    """Convert percentage to letter grade"""
    for minimum, letter, _ in GRADE_SCALE:
        if percentage >= minimum:
            return letter
    return "F"


def gpa(percentage: float) -> float:
    """Convert percentage to a 4.0 scale grade point"""
    for minimum, _, points in GRADE_SCALE:
        if percentage >= minimum:
            return points
    return 0.0


def course_grade(
    submissions: Optional[Sequence[Any]],
    assignments: Optional[Sequence[Any]],
    on_warning: Optional[WarningHook] = None
) -> CourseGrade:
    grade = weighted_course_grade(submissions, assignments, on_warning)
    return CourseGrade(
        grade=grade,
        letter_grade=letter_grade(grade.percentage),
        gpa=gpa(grade.percentage)
    )


# Class statistics
def _mode(scores: Sequence[float]) -> float:
    """Most frequent score; ties resolve to the numerically greatest value"""
    frequency = Counter(scores)
    top = max(frequency.values())
    return max(score for score, count in frequency.items() if count == top)


def grade_distribution(scores: Iterable[float]) -> Tuple[Tuple[str, int], ...]:
    counts = {label: 0 for label, _ in DISTRIBUTION_BUCKETS}
    counts["F"] = 0
    for score in scores:
        for label, minimum in DISTRIBUTION_BUCKETS:
            if score >= minimum:
                counts[label] += 1
                break
        else:
            counts["F"] += 1
    return tuple(counts.items())


def class_statistics(
    submissions: Optional[Sequence[Any]],
    on_warning: Optional[WarningHook] = None
) -> ClassStatistics:
    """Descriptive statistics over submission percentages"""
    warn = on_warning or log_warning

    if not submissions:
        return ClassStatistics()

    scores = []
    for submission in submissions:
        value = _number(_field(submission, "percentage"))
        if value is None:
            warn("Submission without a percentage skipped", {"submission": str(_field(submission, "id", ""))})
            continue
        scores.append(value)

    if not scores:
        return ClassStatistics()

    values = np.array(sorted(scores), dtype=float)

    return ClassStatistics(
        mean=round_half_up(float(np.mean(values)), 2),
        median=round_half_up(float(np.median(values)), 2),
        mode=_mode(scores),
        std_dev=round_half_up(float(np.std(values)), 2),
        min=float(values[0]),
        max=float(values[-1]),
        distribution=grade_distribution(scores),
        total_submissions=len(scores)
    )


__all__ = [
    "GRADE_SCALE",
    "GradedAnswer",
    "QuizResult",
    "RubricLine",
    "RubricResult",
    "AssignmentGradeLine",
    "WeightedGrade",
    "CourseGrade",
    "ClassStatistics",
    "answer_matches",
    "score_quiz",
    "score_rubric",
    "weighted_course_grade",
    "letter_grade",
    "gpa",
    "course_grade",
    "grade_distribution",
    "class_statistics"
]
