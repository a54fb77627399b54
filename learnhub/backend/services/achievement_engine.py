"""
LearnHub Learning Management System
Achievement rule engine
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Sequence, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import (
    Achievement, AchievementType, AchievementRarity, LearningProgress,
    LearningSession, User
)
from .progress_calculator import calculate_streaks

# Configure logging
logger = logging.getLogger(__name__)

WarningHook = Callable[[str, Dict[str, Any]], None]

COURSE_MILESTONES = (5, 10, 25, 50, 100)
STREAK_MILESTONES = (3, 7, 14, 30, 60, 100)
TIME_MILESTONES = (10, 25, 50, 100, 250, 500, 1000)  # hours

GRADE_EXCELLENCE_THRESHOLD = 95


def log_warning(message: str, context: Dict[str, Any]) -> None:
    logger.warning(f"{message}: {context}")


# Criteria models
class CourseCompletionCriteria(BaseModel):
    kind: Literal["course_completion"] = "course_completion"
    courses_completed: Optional[int] = None

    def dedup_key(self) -> str:
        return "" if self.courses_completed is None else str(self.courses_completed)


class StreakCriteria(BaseModel):
    kind: Literal["streak"] = "streak"
    streak_days: int

    def dedup_key(self) -> str:
        return str(self.streak_days)


class TimeMilestoneCriteria(BaseModel):
    kind: Literal["time_milestone"] = "time_milestone"
    hours_learned: int

    def dedup_key(self) -> str:
        return str(self.hours_learned)


class GradeExcellenceCriteria(BaseModel):
    kind: Literal["grade_excellence"] = "grade_excellence"
    course_grade: float

    def dedup_key(self) -> str:
        # one award per course regardless of the grade reached
        return ""


class SkillMasteryCriteria(BaseModel):
    kind: Literal["skill_mastery"] = "skill_mastery"
    skill_name: str

    def dedup_key(self) -> str:
        return self.skill_name.strip().lower()


AchievementCriteria = Annotated[
    Union[
        CourseCompletionCriteria,
        StreakCriteria,
        TimeMilestoneCriteria,
        GradeExcellenceCriteria,
        SkillMasteryCriteria,
    ],
    Field(discriminator="kind")
]

criteria_adapter = TypeAdapter(AchievementCriteria)


def parse_criteria(data: Optional[Dict[str, Any]]) -> Optional[BaseModel]:
    """Rebuild a criteria model from its stored JSON form"""
    if not data:
        return None
    return criteria_adapter.validate_python(data)


# Triggering events
@dataclass(frozen=True)
class AchievementEvent:
    type: str  # course_completion, learning_session, time_milestone, skill_mastery
    user_id: UUID
    course_id: Optional[UUID] = None
    skill_name: Optional[str] = None


# Rarity helpers
def escalating_rarity(value: int, rare_at: int, epic_at: int, legendary_at: int) -> AchievementRarity:
    """uncommon below rare_at, then rare, epic and legendary"""
    if value >= legendary_at:
        return AchievementRarity.LEGENDARY
    if value >= epic_at:
        return AchievementRarity.EPIC
    if value >= rare_at:
        return AchievementRarity.RARE
    return AchievementRarity.UNCOMMON


def course_milestone_rarity(count: int) -> AchievementRarity:
    return escalating_rarity(count, 10, 25, 50)


def streak_rarity(days: int) -> AchievementRarity:
    return escalating_rarity(days, 14, 30, 60)


def time_rarity(hours: int) -> AchievementRarity:
    return escalating_rarity(hours, 100, 250, 500)


def share_url_for(achievement_type: AchievementType, user_id: Any) -> str:
    return f"/achievements/{achievement_type.value}/{user_id}"


# Persistence
async def find_achievement(
    db: AsyncSession,
    user_id: Any,
    achievement_type: AchievementType,
    course_key: str,
    criteria_key: str
) -> Optional[Achievement]:
    result = await db.execute(
        select(Achievement).where(
            Achievement.user_id == user_id,
            Achievement.achievement_type == achievement_type,
            Achievement.course_key == course_key,
            Achievement.criteria_key == criteria_key
        )
    )
    return result.scalars().first()


async def create_achievement(
    db: AsyncSession,
    user_id: Any,
    achievement_type: AchievementType,
    title: str,
    description: str,
    criteria: Optional[BaseModel] = None,
    course_id: Optional[Any] = None,
    icon: Optional[str] = None,
    rarity: AchievementRarity = AchievementRarity.COMMON,
    points: int = 0,
    certificate: Optional[Dict[str, Any]] = None
) -> Optional[Achievement]:
    """Insert an achievement unless an identical one already exists.

    Identity is (user, type, course, deduplicating criteria field). Both an
    existing row and a lost insert race return None.
    """
    course_key = str(course_id) if course_id else ""
    criteria_key = criteria.dedup_key() if criteria is not None else ""

    existing = await find_achievement(db, user_id, achievement_type, course_key, criteria_key)
    if existing is not None:
        return None

    achievement = Achievement(
        user_id=user_id,
        achievement_type=achievement_type,
        title=title,
        description=description,
        icon=icon,
        course_id=course_id,
        criteria=criteria.model_dump() if criteria is not None else {},
        course_key=course_key,
        criteria_key=criteria_key,
        unlocked_at=datetime.utcnow(),
        is_visible=True,
        certificate=certificate,
        rarity=rarity,
        points=points,
        share_url=share_url_for(achievement_type, user_id)
    )

    try:
        async with db.begin_nested():
            db.add(achievement)
            await db.flush()
    except IntegrityError:
        logger.info(f"Achievement {achievement_type.value} already recorded for user {user_id}")
        return None

    logger.info(f"Achievement '{title}' unlocked for user {user_id}")
    return achievement


# Rules
async def _course_completion_rules(db: AsyncSession, event: AchievementEvent) -> List[Achievement]:
    awarded = []

    completed = await db.scalar(
        select(func.count(LearningProgress.id)).where(
            LearningProgress.user_id == event.user_id,
            LearningProgress.is_completed.is_(True),
            LearningProgress.is_deleted.is_(False)
        )
    ) or 0

    if completed == 1:
        awarded.append(await create_achievement(
            db, event.user_id, AchievementType.FIRST_COURSE,
            title="First Steps",
            description="Completed your first course!",
            icon="🎓",
            course_id=event.course_id,
            criteria=CourseCompletionCriteria(courses_completed=1),
            rarity=AchievementRarity.COMMON,
            points=50
        ))

    if completed in COURSE_MILESTONES:
        awarded.append(await create_achievement(
            db, event.user_id, AchievementType.COURSE_COMPLETION,
            title=f"Course Champion {completed}",
            description=f"Completed {completed} courses!",
            icon="🏆",
            criteria=CourseCompletionCriteria(courses_completed=completed),
            rarity=course_milestone_rarity(completed),
            points=completed * 10
        ))

    if event.course_id is not None:
        progress = await db.scalar(
            select(LearningProgress).where(
                LearningProgress.user_id == event.user_id,
                LearningProgress.course_id == event.course_id
            )
        )
        if progress is not None and progress.grade is not None and progress.grade >= GRADE_EXCELLENCE_THRESHOLD:
            awarded.append(await create_achievement(
                db, event.user_id, AchievementType.GRADE_EXCELLENCE,
                title="Excellence Award",
                description=f"Achieved {GRADE_EXCELLENCE_THRESHOLD}%+ grade in a course",
                icon="⭐",
                course_id=event.course_id,
                criteria=GradeExcellenceCriteria(course_grade=progress.grade),
                rarity=AchievementRarity.RARE,
                points=100
            ))

    return awarded


async def _streak_rules(db: AsyncSession, event: AchievementEvent, today: Optional[date]) -> List[Achievement]:
    result = await db.execute(
        select(LearningSession).where(
            LearningSession.user_id == event.user_id,
            LearningSession.duration > 0
        )
    )
    streak = calculate_streaks(result.scalars().all(), today=today)

    for milestone in STREAK_MILESTONES:
        if streak.current_streak == milestone:
            return [await create_achievement(
                db, event.user_id, AchievementType.STREAK,
                title=f"{milestone}-Day Streak",
                description=f"Maintained a {milestone}-day learning streak!",
                icon="🔥",
                criteria=StreakCriteria(streak_days=milestone),
                rarity=streak_rarity(milestone),
                points=milestone * 5
            )]

    return []


async def _time_rules(db: AsyncSession, event: AchievementEvent) -> List[Achievement]:
    hours = await db.scalar(select(User.total_learning_hours).where(User.id == event.user_id)) or 0

    awarded = []
    for milestone in TIME_MILESTONES:
        if hours < milestone:
            break
        awarded.append(await create_achievement(
            db, event.user_id, AchievementType.TIME_MILESTONE,
            title=f"{milestone}-Hour Scholar",
            description=f"Completed {milestone} hours of learning!",
            icon="⏰",
            criteria=TimeMilestoneCriteria(hours_learned=milestone),
            rarity=time_rarity(milestone),
            points=milestone * 2
        ))
    return awarded


async def _skill_rules(db: AsyncSession, event: AchievementEvent) -> List[Achievement]:
    if not event.skill_name:
        return []

    return [await create_achievement(
        db, event.user_id, AchievementType.SKILL_MASTERY,
        title=f"{event.skill_name} Master",
        description=f"Mastered the skill: {event.skill_name}",
        icon="🎯",
        criteria=SkillMasteryCriteria(skill_name=event.skill_name),
        rarity=AchievementRarity.RARE,
        points=75
    )]


async def check_and_award_achievements(
    db: AsyncSession,
    event: AchievementEvent,
    on_warning: Optional[WarningHook] = None,
    today: Optional[date] = None
) -> List[Achievement]:
    """Evaluate the rules for one triggering event.

    Never raises. Internal failures are reported through ``on_warning`` and
    produce an empty list.
    """
    warn = on_warning or log_warning

    try:
        if event.type == "course_completion":
            awarded = await _course_completion_rules(db, event)
        elif event.type == "learning_session":
            awarded = await _streak_rules(db, event, today)
        elif event.type == "time_milestone":
            awarded = await _time_rules(db, event)
        elif event.type == "skill_mastery":
            awarded = await _skill_rules(db, event)
        else:
            warn("Unknown achievement event", {"type": event.type})
            return []
    except Exception as e:
        warn("Achievement check failed", {"type": event.type, "user_id": str(event.user_id), "error": str(e)})
        return []

    return [achievement for achievement in awarded if achievement is not None]


async def award_for_events(
    db: AsyncSession,
    events: Sequence[AchievementEvent],
    on_warning: Optional[WarningHook] = None
) -> List[Achievement]:
    awarded = []
    for event in events:
        awarded.extend(await check_and_award_achievements(db, event, on_warning))
    return awarded


__all__ = [
    "CourseCompletionCriteria",
    "StreakCriteria",
    "TimeMilestoneCriteria",
    "GradeExcellenceCriteria",
    "SkillMasteryCriteria",
    "AchievementCriteria",
    "parse_criteria",
    "AchievementEvent",
    "escalating_rarity",
    "course_milestone_rarity",
    "streak_rarity",
    "time_rarity",
    "share_url_for",
    "find_achievement",
    "create_achievement",
    "check_and_award_achievements",
    "award_for_events"
]
