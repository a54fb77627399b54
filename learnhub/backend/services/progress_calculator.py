"""
LearnHub Learning Management System
Progress, streak and learning-time aggregation
"""

import logging
from dataclasses import dataclass, asdict, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

from ..utils.helpers import enum_value, isoformat_or_none, round_half_up

# Configure logging
logger = logging.getLogger(__name__)

WarningHook = Callable[[str, Dict[str, Any]], None]

PERIOD_DAYS = {
    "week": 7,
    "month": 30,
    "year": 365,
    "7days": 7,
    "30days": 30,
    "90days": 90,
}

DIFFICULTY_LEVELS = ("beginner", "intermediate", "advanced")


def log_warning(message: str, context: Dict[str, Any]) -> None:
    logger.warning(f"{message}: {context}")


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def _as_date(value: Any) -> Optional[date]:
    """Truncate a timestamp to its calendar date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            return None
    return None


def _minutes(session: Any) -> int:
    try:
        return int(_field(session, "duration", 0))
    except (TypeError, ValueError):
        return 0


# Result types
@dataclass(frozen=True)
class Streak:
    current_streak: int = 0
    longest_streak: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class DailyBucket:
    date: str
    total_time: int
    session_count: int
    courses: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["courses"] = list(self.courses)
        return data


@dataclass(frozen=True)
class CategoryBucket:
    total_time: int = 0
    session_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ProgressSummary:
    total_courses: int = 0
    completed_courses: int = 0
    in_progress_courses: int = 0
    average_completion: int = 0
    total_time_spent: int = 0
    categories_studied: Tuple[str, ...] = ()
    difficulty_levels: Dict[str, int] = field(
        default_factory=lambda: {level: 0 for level in DIFFICULTY_LEVELS}
    )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["categories_studied"] = list(self.categories_studied)
        return data


@dataclass(frozen=True)
class TaskCategoryStats:
    total: int = 0
    completed: int = 0
    total_progress: int = 0
    time_spent: int = 0
    average_progress: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TaskSummary:
    total_tasks: int = 0
    completed_tasks: int = 0
    total_time_spent: int = 0
    average_progress: float = 0.0
    categories: Dict[str, TaskCategoryStats] = field(default_factory=dict)
    recent_activity: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "total_time_spent": self.total_time_spent,
            "average_progress": self.average_progress,
            "categories": {name: stats.to_dict() for name, stats in self.categories.items()},
            "recent_activity": list(self.recent_activity)
        }


# Completion
def completion_percentage(modules_completed: Optional[Sequence[Any]], total_modules: int) -> int:
    """Share of completed modules, rounded and clamped to 0..100"""
    if not total_modules or total_modules <= 0:
        return 0
    completed = len(modules_completed or [])
    return max(0, min(100, round_half_up(completed / total_modules * 100)))


# Streaks
def calculate_streaks(
    sessions: Optional[Iterable[Any]],
    today: Optional[date] = None,
    on_warning: Optional[WarningHook] = None
) -> Streak:
    """Current and longest runs of consecutive learning days.

    Only sessions with a positive duration count. The current streak must
    start today or yesterday and stops at the first missing day.
    """
    warn = on_warning or log_warning

    if not sessions:
        return Streak()

    dates = set()
    for session in sessions:
        if _minutes(session) <= 0:
            continue
        day = _as_date(_field(session, "session_date"))
        if day is None:
            warn("Session without a usable date skipped", {"session": str(_field(session, "id", ""))})
            continue
        dates.add(day)

    if not dates:
        return Streak()

    ordered = sorted(dates, reverse=True)
    one_day = timedelta(days=1)
    today = today or datetime.utcnow().date()

    current = 0
    expected = today
    for day in ordered:
        if day == expected or (current == 0 and day == expected - one_day):
            current += 1
            expected = day - one_day
        else:
            break

    longest = 1
    run = 1
    for previous, day in zip(ordered, ordered[1:]):
        if previous - day == one_day:
            run += 1
        else:
            longest = max(longest, run)
            run = 1
    longest = max(longest, run)

    return Streak(current_streak=current, longest_streak=longest)


# Time aggregation
def learning_time_window(period: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of the reporting window, or None for an unbounded period"""
    days = PERIOD_DAYS.get(period or "")
    if days is None:
        return None
    return (now or datetime.utcnow()) - timedelta(days=days)


def total_learning_minutes(sessions: Optional[Iterable[Any]]) -> int:
    return sum(_minutes(session) for session in sessions or [])


def _session_category(session: Any) -> Optional[str]:
    category = _field(session, "category")
    if category is None:
        category = _field(_field(session, "course"), "category")
    return enum_value(category)


def _session_course_title(session: Any) -> Optional[str]:
    return _field(session, "course_title") or _field(_field(session, "course"), "title")


def bucket_sessions_by_day(
    sessions: Optional[Iterable[Any]],
    on_warning: Optional[WarningHook] = None
) -> Tuple[DailyBucket, ...]:
    """Per-day totals, ascending by date"""
    warn = on_warning or log_warning
    totals: Dict[str, Dict[str, Any]] = {}

    for session in sessions or []:
        day = _as_date(_field(session, "session_date"))
        if day is None:
            warn("Session without a usable date skipped", {"session": str(_field(session, "id", ""))})
            continue

        key = day.isoformat()
        bucket = totals.setdefault(key, {"total_time": 0, "session_count": 0, "courses": []})
        bucket["total_time"] += _minutes(session)
        bucket["session_count"] += 1

        title = _session_course_title(session)
        if title and title not in bucket["courses"]:
            bucket["courses"].append(title)

    return tuple(
        DailyBucket(
            date=key,
            total_time=bucket["total_time"],
            session_count=bucket["session_count"],
            courses=tuple(bucket["courses"])
        )
        for key, bucket in sorted(totals.items())
    )


def bucket_sessions_by_category(sessions: Optional[Iterable[Any]]) -> Dict[str, CategoryBucket]:
    """Per-category totals; sessions without a category fall under Other"""
    totals: Dict[str, list] = {}

    for session in sessions or []:
        category = _session_category(session) or "Other"
        bucket = totals.setdefault(category, [0, 0])
        bucket[0] += _minutes(session)
        bucket[1] += 1

    return {
        category: CategoryBucket(total_time=time_spent, session_count=count)
        for category, (time_spent, count) in totals.items()
    }


# Summary
def progress_summary(progress_rows: Optional[Sequence[Any]]) -> ProgressSummary:
    """Roll a learner's enrollments up into headline numbers"""
    if not progress_rows:
        return ProgressSummary()

    completed = 0
    in_progress = 0
    completion_total = 0
    time_total = 0
    categories = []
    difficulty_levels = {level: 0 for level in DIFFICULTY_LEVELS}

    for progress in progress_rows:
        percentage = _field(progress, "completion_percentage", 0)
        if _field(progress, "is_completed", False):
            completed += 1
        elif percentage > 0:
            in_progress += 1

        completion_total += percentage
        time_total += _field(progress, "total_time_spent", 0)

        course = _field(progress, "course")
        if course is None:
            continue

        category = enum_value(_field(course, "category"))
        if category and category not in categories:
            categories.append(category)

        difficulty = str(enum_value(_field(course, "difficulty", ""))).lower()
        if difficulty in difficulty_levels:
            difficulty_levels[difficulty] += 1

    return ProgressSummary(
        total_courses=len(progress_rows),
        completed_courses=completed,
        in_progress_courses=in_progress,
        average_completion=round_half_up(completion_total / len(progress_rows)),
        total_time_spent=time_total,
        categories_studied=tuple(categories),
        difficulty_levels=difficulty_levels
    )


# Learning tasks
def summarize_tasks(tasks: Optional[Sequence[Any]], recent_limit: int = 5) -> TaskSummary:
    """Totals, per-category progress and the most recently studied tasks"""
    if not tasks:
        return TaskSummary()

    totals: Dict[str, Dict[str, int]] = {}
    completed = 0
    time_total = 0
    progress_total = 0

    for task in tasks:
        progress = _field(task, "progress", 0) or 0
        time_spent = _field(task, "time_spent", 0) or 0
        is_completed = bool(_field(task, "completed", False))

        completed += int(is_completed)
        time_total += time_spent
        progress_total += progress

        bucket = totals.setdefault(
            _field(task, "category") or "General",
            {"total": 0, "completed": 0, "total_progress": 0, "time_spent": 0}
        )
        bucket["total"] += 1
        bucket["completed"] += int(is_completed)
        bucket["total_progress"] += progress
        bucket["time_spent"] += time_spent

    categories = {
        name: TaskCategoryStats(
            average_progress=round_half_up(bucket["total_progress"] / bucket["total"], 2),
            **bucket
        )
        for name, bucket in totals.items()
    }

    recent = sorted(tasks, key=lambda task: _field(task, "last_studied") or datetime.min, reverse=True)

    return TaskSummary(
        total_tasks=len(tasks),
        completed_tasks=completed,
        total_time_spent=time_total,
        average_progress=round_half_up(progress_total / len(tasks), 2),
        categories=categories,
        recent_activity=tuple(
            {
                "title": _field(task, "title"),
                "category": _field(task, "category"),
                "progress": _field(task, "progress", 0),
                "last_studied": isoformat_or_none(_field(task, "last_studied"))
            }
            for task in recent[:recent_limit]
        )
    )


__all__ = [
    "PERIOD_DAYS",
    "Streak",
    "DailyBucket",
    "CategoryBucket",
    "ProgressSummary",
    "TaskCategoryStats",
    "TaskSummary",
    "completion_percentage",
    "calculate_streaks",
    "learning_time_window",
    "total_learning_minutes",
    "bucket_sessions_by_day",
    "bucket_sessions_by_category",
    "progress_summary",
    "summarize_tasks"
]
