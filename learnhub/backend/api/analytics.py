"""
LearnHub Learning Management System
Analytics and reporting API routes
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID

import numpy as np
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, desc
from sqlalchemy.orm import selectinload

from ..database.connection import get_db
from ..database.models import (
    Achievement, Assignment, Course, LearningProgress, LearningSession,
    Submission, SubmissionStatus, User, UserRole
)
from ..dependencies import require_authentication, require_instructor_or_admin, require_admin
from ..services.grade_calculator import class_statistics
from ..services.progress_calculator import (
    bucket_sessions_by_category,
    bucket_sessions_by_day,
    learning_time_window,
    progress_summary,
    total_learning_minutes
)
from ..utils.helpers import enum_value, isoformat_or_none, round_half_up

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()


# Pydantic models
class DashboardResponse(BaseModel):
    summary: Dict[str, Any]
    recent_sessions: List[Dict[str, Any]]
    upcoming_deadlines: List[Dict[str, Any]]
    weekly_learning_time: int
    recent_achievements: List[Dict[str, Any]]
    achievements_this_month: int
    streak: Dict[str, int]


class LearningAnalyticsResponse(BaseModel):
    period: str
    total_learning_time: int
    total_sessions: int
    average_session_length: int
    daily_breakdown: List[Dict[str, Any]]
    category_breakdown: Dict[str, Dict[str, int]]
    performance: Dict[str, Any]
    course_progress: List[Dict[str, Any]]


class InstructorAnalyticsResponse(BaseModel):
    summary: Dict[str, Any]
    courses: List[Dict[str, Any]]
    recent_enrollments: List[Dict[str, Any]]
    pending_grading: List[Dict[str, Any]]


class SystemAnalyticsResponse(BaseModel):
    user_stats: Dict[str, int]
    course_stats: Dict[str, Any]
    category_distribution: Dict[str, int]
    learning_time: Dict[str, int]
    generated_at: datetime


# Helper functions
def serialize_session(session: LearningSession) -> Dict[str, Any]:
    return {
        "id": str(session.id),
        "course_id": str(session.course_id),
        "course_title": session.course.title if session.course else None,
        "session_date": isoformat_or_none(session.session_date),
        "duration": session.duration or 0,
        "module_index": session.module_index,
        "session_quality": enum_value(session.session_quality)
    }


def serialize_achievement(achievement: Achievement) -> Dict[str, Any]:
    return {
        "id": str(achievement.id),
        "achievement_type": enum_value(achievement.achievement_type),
        "title": achievement.title,
        "rarity": enum_value(achievement.rarity),
        "points": achievement.points,
        "unlocked_at": isoformat_or_none(achievement.unlocked_at)
    }


async def load_progress_rows(db: AsyncSession, user_id: Any) -> List[LearningProgress]:
    result = await db.execute(
        select(LearningProgress)
        .options(selectinload(LearningProgress.course))
        .where(
            LearningProgress.user_id == user_id,
            LearningProgress.is_deleted.is_(False)
        )
        .order_by(desc(LearningProgress.last_access_date))
    )
    return list(result.scalars().all())


async def load_sessions(db: AsyncSession, user_id: Any, since: Optional[datetime] = None) -> List[LearningSession]:
    query = (
        select(LearningSession)
        .options(selectinload(LearningSession.course))
        .where(LearningSession.user_id == user_id)
        .order_by(desc(LearningSession.session_date))
    )
    if since is not None:
        query = query.where(LearningSession.session_date >= since)

    result = await db.execute(query)
    return list(result.scalars().all())


def course_statistics(course: Course, progress_rows: List[LearningProgress]) -> Dict[str, Any]:
    """Enrollment and completion figures for one course"""
    completions = [row.completion_percentage for row in progress_rows]
    grades = [row.grade for row in progress_rows if row.grade is not None]

    return {
        "course_id": str(course.id),
        "title": course.title,
        "is_active": course.is_active,
        "enrollment_count": len(progress_rows),
        "completed_count": sum(1 for row in progress_rows if row.is_completed),
        "average_completion": round_half_up(float(np.mean(completions)), 2) if completions else 0,
        "average_grade": round_half_up(float(np.mean(grades)), 2) if grades else None,
        "total_time_spent": sum(row.total_time_spent or 0 for row in progress_rows)
    }


# API Routes
@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Learner dashboard: headline numbers, recent activity and deadlines"""

    now = datetime.utcnow()
    progress_rows = await load_progress_rows(db, current_user.id)

    recent_sessions = (await db.execute(
        select(LearningSession)
        .options(selectinload(LearningSession.course))
        .where(LearningSession.user_id == current_user.id)
        .order_by(desc(LearningSession.session_date))
        .limit(5)
    )).scalars().all()

    upcoming_deadlines = []
    course_ids = [row.course_id for row in progress_rows if not row.is_completed]
    if course_ids:
        assignments = (await db.execute(
            select(Assignment)
            .options(selectinload(Assignment.course))
            .where(
                Assignment.course_id.in_(course_ids),
                Assignment.is_active.is_(True),
                Assignment.is_deleted.is_(False),
                Assignment.due_date.is_not(None),
                Assignment.due_date >= now
            )
            .order_by(Assignment.due_date)
            .limit(5)
        )).scalars().all()

        upcoming_deadlines = [
            {
                "assignment_id": str(assignment.id),
                "title": assignment.title,
                "course_title": assignment.course.title,
                "assignment_type": enum_value(assignment.assignment_type),
                "due_date": isoformat_or_none(assignment.due_date)
            }
            for assignment in assignments
        ]

    weekly_sessions = await load_sessions(db, current_user.id, learning_time_window("week", now))

    recent_achievements = (await db.execute(
        select(Achievement)
        .where(
            Achievement.user_id == current_user.id,
            Achievement.is_visible.is_(True),
            Achievement.unlocked_at >= learning_time_window("month", now)
        )
        .order_by(desc(Achievement.unlocked_at))
    )).scalars().all()

    return DashboardResponse(
        summary=progress_summary(progress_rows).to_dict(),
        recent_sessions=[serialize_session(session) for session in recent_sessions],
        upcoming_deadlines=upcoming_deadlines,
        weekly_learning_time=total_learning_minutes(weekly_sessions),
        recent_achievements=[serialize_achievement(achievement) for achievement in recent_achievements[:5]],
        achievements_this_month=len(recent_achievements),
        streak={
            "current_streak": current_user.current_streak or 0,
            "longest_streak": current_user.longest_streak or 0
        }
    )


@router.get("/learning", response_model=LearningAnalyticsResponse)
async def get_learning_analytics(
    period: str = Query("month", pattern="^(week|month|year)$"),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Learning time and performance over a period"""

    since = learning_time_window(period)
    sessions = await load_sessions(db, current_user.id, since)
    total_time = total_learning_minutes(sessions)

    submissions = (await db.execute(
        select(Submission).where(
            Submission.user_id == current_user.id,
            Submission.status == SubmissionStatus.GRADED,
            Submission.graded_at >= since
        )
    )).scalars().all()

    statistics = class_statistics(submissions)
    performance = {
        "graded_submissions": statistics.total_submissions,
        "average_score": statistics.mean,
        "best_score": statistics.max,
        "passed": sum(1 for submission in submissions if submission.passed),
        "pass_rate": round_half_up(
            sum(1 for submission in submissions if submission.passed) / len(submissions) * 100, 2
        ) if submissions else 0
    }

    progress_rows = await load_progress_rows(db, current_user.id)

    return LearningAnalyticsResponse(
        period=period,
        total_learning_time=total_time,
        total_sessions=len(sessions),
        average_session_length=round_half_up(total_time / len(sessions)) if sessions else 0,
        daily_breakdown=[bucket.to_dict() for bucket in bucket_sessions_by_day(sessions)],
        category_breakdown={
            category: bucket.to_dict()
            for category, bucket in bucket_sessions_by_category(sessions).items()
        },
        performance=performance,
        course_progress=[
            {
                "course_id": str(row.course_id),
                "course_title": row.course.title,
                "completion_percentage": row.completion_percentage,
                "total_time_spent": row.total_time_spent,
                "grade": row.grade,
                "is_completed": row.is_completed,
                "last_access_date": isoformat_or_none(row.last_access_date)
            }
            for row in progress_rows
        ]
    )


@router.get("/instructor", response_model=InstructorAnalyticsResponse)
async def get_instructor_analytics(
    current_user: User = Depends(require_instructor_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Per-course statistics for the courses the current user teaches"""

    query = select(Course).where(Course.is_deleted.is_(False)).order_by(Course.created_at)
    if current_user.role != UserRole.ADMIN:
        query = query.where(Course.instructor_id == current_user.id)
    courses = (await db.execute(query)).scalars().all()
    course_ids = [course.id for course in courses]

    progress_by_course: Dict[UUID, List[LearningProgress]] = {course_id: [] for course_id in course_ids}
    recent_enrollments = []
    pending_grading = []

    if course_ids:
        progress_rows = (await db.execute(
            select(LearningProgress)
            .options(selectinload(LearningProgress.user), selectinload(LearningProgress.course))
            .where(
                LearningProgress.course_id.in_(course_ids),
                LearningProgress.is_deleted.is_(False)
            )
            .order_by(desc(LearningProgress.enrollment_date))
        )).scalars().all()

        for row in progress_rows:
            progress_by_course[row.course_id].append(row)

        recent_enrollments = [
            {
                "student_name": row.user.name,
                "student_email": row.user.email,
                "course_title": row.course.title,
                "enrollment_date": isoformat_or_none(row.enrollment_date),
                "completion_percentage": row.completion_percentage
            }
            for row in progress_rows[:10]
        ]

        pending = (await db.execute(
            select(Submission)
            .join(Assignment, Submission.assignment_id == Assignment.id)
            .options(selectinload(Submission.user), selectinload(Submission.assignment))
            .where(
                Assignment.course_id.in_(course_ids),
                Submission.status == SubmissionStatus.SUBMITTED
            )
            .order_by(Submission.submitted_at)
            .limit(10)
        )).scalars().all()

        pending_grading = [
            {
                "submission_id": str(submission.id),
                "assignment_id": str(submission.assignment_id),
                "assignment_title": submission.assignment.title,
                "student_name": submission.user.name,
                "attempt_number": submission.attempt_number,
                "submitted_at": isoformat_or_none(submission.submitted_at)
            }
            for submission in pending
        ]

    course_stats = [course_statistics(course, progress_by_course[course.id]) for course in courses]
    total_students = sum(stats["enrollment_count"] for stats in course_stats)

    return InstructorAnalyticsResponse(
        summary={
            "total_courses": len(courses),
            "active_courses": sum(1 for course in courses if course.is_active),
            "total_students": total_students,
            "total_completions": sum(stats["completed_count"] for stats in course_stats),
            "pending_grading": len(pending_grading)
        },
        courses=course_stats,
        recent_enrollments=recent_enrollments,
        pending_grading=pending_grading
    )


@router.get("/system", response_model=SystemAnalyticsResponse)
async def get_system_analytics(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """System-wide counts for administrators"""

    role_rows = (await db.execute(
        select(User.role, func.count(User.id))
        .where(User.is_deleted.is_(False))
        .group_by(User.role)
    )).all()
    user_stats = {role.value: 0 for role in UserRole}
    for role, count in role_rows:
        user_stats[role.value] = count
    user_stats["total"] = sum(user_stats.values())

    courses = (await db.execute(
        select(Course).where(Course.is_deleted.is_(False))
    )).scalars().all()

    category_distribution: Dict[str, int] = {}
    difficulty_distribution: Dict[str, int] = {}
    for course in courses:
        category = enum_value(course.category)
        difficulty = enum_value(course.difficulty)
        category_distribution[category] = category_distribution.get(category, 0) + 1
        difficulty_distribution[difficulty] = difficulty_distribution.get(difficulty, 0) + 1

    total_enrollments = await db.scalar(
        select(func.count(LearningProgress.id)).where(LearningProgress.is_deleted.is_(False))
    ) or 0

    since = learning_time_window("month")
    time_row = (await db.execute(
        select(func.coalesce(func.sum(LearningSession.duration), 0), func.count(LearningSession.id))
        .where(LearningSession.session_date >= since)
    )).one()

    logger.info(f"System analytics generated for {current_user.email}")

    return SystemAnalyticsResponse(
        user_stats=user_stats,
        course_stats={
            "total_courses": len(courses),
            "active_courses": sum(1 for course in courses if course.is_active),
            "total_enrollments": total_enrollments,
            "difficulty_distribution": difficulty_distribution
        },
        category_distribution=category_distribution,
        learning_time={
            "total_minutes_last_30_days": int(time_row[0] or 0),
            "sessions_last_30_days": int(time_row[1] or 0)
        },
        generated_at=datetime.utcnow()
    )
