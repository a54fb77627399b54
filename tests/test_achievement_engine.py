from datetime import date, datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import select, func

from learnhub.backend.database.models import (
    Achievement, AchievementRarity, AchievementType, Course, CourseCategory,
    CourseDifficulty, LearningProgress, LearningSession, UserRole
)
from learnhub.backend.services.achievement_engine import (
    AchievementEvent,
    CourseCompletionCriteria,
    SkillMasteryCriteria,
    StreakCriteria,
    check_and_award_achievements,
    course_milestone_rarity,
    create_achievement,
    parse_criteria,
    streak_rarity,
    time_rarity,
)


async def count_achievements(db, user_id, achievement_type=None):
    query = select(func.count(Achievement.id)).where(Achievement.user_id == user_id)
    if achievement_type is not None:
        query = query.where(Achievement.achievement_type == achievement_type)
    return await db.scalar(query)


async def add_course(db, instructor, title="Course"):
    course = Course(
        title=title,
        description="A course",
        category=CourseCategory.PROGRAMMING,
        difficulty=CourseDifficulty.BEGINNER,
        syllabus=[{"module_title": "Only module", "topics": [], "estimated_hours": 1}],
        instructor_id=instructor.id
    )
    db.add(course)
    await db.flush()
    return course


async def complete_course(db, user, course, grade=None):
    progress = LearningProgress(
        user_id=user.id,
        course_id=course.id,
        completion_percentage=100,
        modules_completed=[{"module_index": 0}],
        is_completed=True,
        completion_date=datetime.utcnow(),
        grade=grade
    )
    db.add(progress)
    await db.flush()
    return progress


def test_criteria_union_is_discriminated_on_kind():
    criteria = parse_criteria({"kind": "streak", "streak_days": 7})
    assert isinstance(criteria, StreakCriteria)
    assert criteria.dedup_key() == "7"

    assert parse_criteria({}) is None
    with pytest.raises(ValidationError):
        parse_criteria({"kind": "unknown"})


def test_rarity_escalation():
    assert course_milestone_rarity(5) == AchievementRarity.UNCOMMON
    assert course_milestone_rarity(25) == AchievementRarity.EPIC
    assert streak_rarity(3) == AchievementRarity.UNCOMMON
    assert streak_rarity(14) == AchievementRarity.RARE
    assert streak_rarity(100) == AchievementRarity.LEGENDARY
    assert time_rarity(250) == AchievementRarity.EPIC


async def test_duplicate_achievement_is_stored_once(db_session, make_user):
    user = await make_user()

    kwargs = dict(
        title="Python Master",
        description="Mastered Python",
        criteria=SkillMasteryCriteria(skill_name="Python"),
        points=75
    )
    first = await create_achievement(db_session, user.id, AchievementType.SKILL_MASTERY, **kwargs)
    second = await create_achievement(db_session, user.id, AchievementType.SKILL_MASTERY, **kwargs)

    assert first is not None
    assert first.share_url == f"/achievements/skill_mastery/{user.id}"
    assert second is None
    assert await count_achievements(db_session, user.id) == 1


async def test_first_course_is_awarded_once(db_session, make_user):
    instructor = await make_user("Instructor", role=UserRole.INSTRUCTOR)
    user = await make_user()
    course = await add_course(db_session, instructor)
    await complete_course(db_session, user, course)

    event = AchievementEvent("course_completion", user.id, course.id)
    awarded = await check_and_award_achievements(db_session, event)
    again = await check_and_award_achievements(db_session, event)

    assert [a.achievement_type for a in awarded] == [AchievementType.FIRST_COURSE]
    assert awarded[0].points == 50
    assert again == []


async def test_fifth_completion_unlocks_milestone(db_session, make_user):
    instructor = await make_user("Instructor", role=UserRole.INSTRUCTOR)
    user = await make_user()
    courses = [await add_course(db_session, instructor, f"Course {i}") for i in range(5)]
    for course in courses:
        await complete_course(db_session, user, course)

    awarded = await check_and_award_achievements(
        db_session, AchievementEvent("course_completion", user.id, courses[-1].id)
    )

    milestone = [a for a in awarded if a.achievement_type == AchievementType.COURSE_COMPLETION]
    assert len(milestone) == 1
    assert milestone[0].points == 50
    assert milestone[0].rarity == AchievementRarity.UNCOMMON


async def test_grade_excellence_once_per_course(db_session, make_user):
    instructor = await make_user("Instructor", role=UserRole.INSTRUCTOR)
    user = await make_user()
    course = await add_course(db_session, instructor)
    await complete_course(db_session, user, course, grade=96.5)

    event = AchievementEvent("course_completion", user.id, course.id)
    awarded = await check_and_award_achievements(db_session, event)
    await check_and_award_achievements(db_session, event)

    assert AchievementType.GRADE_EXCELLENCE in [a.achievement_type for a in awarded]
    assert await count_achievements(db_session, user.id, AchievementType.GRADE_EXCELLENCE) == 1


async def test_streak_awards_only_exact_milestone(db_session, make_user):
    instructor = await make_user("Instructor", role=UserRole.INSTRUCTOR)
    user = await make_user()
    course = await add_course(db_session, instructor)
    today = date(2024, 5, 20)

    for offset in range(3):
        moment = datetime.combine(today - timedelta(days=offset), datetime.min.time()) + timedelta(hours=9)
        db_session.add(LearningSession(
            user_id=user.id,
            course_id=course.id,
            session_date=moment,
            start_time=moment,
            end_time=moment + timedelta(minutes=30),
            duration=30,
            is_active=False
        ))
    await db_session.flush()

    awarded = await check_and_award_achievements(
        db_session, AchievementEvent("learning_session", user.id, course.id), today=today
    )

    assert len(awarded) == 1
    assert awarded[0].criteria == {"kind": "streak", "streak_days": 3}
    assert awarded[0].points == 15

    later = await check_and_award_achievements(
        db_session, AchievementEvent("learning_session", user.id, course.id), today=today + timedelta(days=1)
    )
    assert later == []


async def test_time_milestones_award_each_threshold_reached(db_session, make_user):
    user = await make_user(total_learning_hours=60)

    awarded = await check_and_award_achievements(db_session, AchievementEvent("time_milestone", user.id))

    assert sorted(a.criteria["hours_learned"] for a in awarded) == [10, 25, 50]
    assert await check_and_award_achievements(db_session, AchievementEvent("time_milestone", user.id)) == []


async def test_skill_mastery_without_name_awards_nothing(db_session, make_user):
    user = await make_user()
    assert await check_and_award_achievements(db_session, AchievementEvent("skill_mastery", user.id)) == []


async def test_skill_mastery_awarded_once_per_normalized_skill(db_session, make_user):
    user = await make_user()

    awarded = await check_and_award_achievements(
        db_session, AchievementEvent("skill_mastery", user.id, skill_name="SQL")
    )
    again = await check_and_award_achievements(
        db_session, AchievementEvent("skill_mastery", user.id, skill_name=" sql ")
    )

    assert len(awarded) == 1
    assert awarded[0].points == 75
    assert awarded[0].rarity == AchievementRarity.RARE
    assert awarded[0].criteria == {"kind": "skill_mastery", "skill_name": "SQL"}
    assert awarded[0].criteria_key == "sql"
    assert again == []
    assert await count_achievements(db_session, user.id, AchievementType.SKILL_MASTERY) == 1


async def test_failures_are_reported_not_raised(db_session, make_user, monkeypatch):
    user = await make_user()
    warnings = []

    async def broken(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(db_session, "scalar", broken)

    awarded = await check_and_award_achievements(
        db_session,
        AchievementEvent("time_milestone", user.id),
        on_warning=lambda message, context: warnings.append(context)
    )

    assert awarded == []
    assert warnings[0]["error"] == "database went away"


async def test_certificate_style_criteria_has_empty_key(db_session, make_user):
    user = await make_user()
    instructor = await make_user("Instructor", role=UserRole.INSTRUCTOR)
    course = await add_course(db_session, instructor)

    achievement = await create_achievement(
        db_session, user.id, AchievementType.COURSE_COMPLETION,
        title="Certificate", description="Done", course_id=course.id,
        criteria=CourseCompletionCriteria()
    )

    assert achievement.course_key == str(course.id)
    assert achievement.criteria_key == ""
