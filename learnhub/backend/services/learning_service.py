"""
LearnHub Learning Management System
Enrollment, progress, submission and certificate workflows

These functions mutate ORM objects and flush. Committing is left to the
calling route so one request maps to one transaction.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.models import (
    Achievement, AchievementRarity, AchievementType, Assignment, AssignmentType,
    Course, DeviceType, LearningProgress, LearningSession, SessionQuality,
    Submission, SubmissionStatus, Task, User, UserRole
)
from ..exceptions import (
    AlreadyEnrolledException,
    BusinessLogicException,
    CertificateAlreadyIssuedException,
    ConflictException,
    CourseNotCompletedException,
    MaxAttemptsExceededException,
    NotFoundException,
    ResourceNotFoundByIdException,
    ResourceOwnershipException,
    ValidationException
)
from ..utils.helpers import (
    generate_certificate_id,
    generate_verification_code,
    round_half_up
)
from .achievement_engine import (
    AchievementEvent,
    CourseCompletionCriteria,
    award_for_events,
    create_achievement
)
from .grade_calculator import course_grade, score_quiz, score_rubric
from .progress_calculator import (
    calculate_streaks,
    completion_percentage,
    learning_time_window,
    total_learning_minutes
)
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)


# Enrollment
async def get_enrollment(db: AsyncSession, user_id: Any, course_id: Any) -> Optional[LearningProgress]:
    result = await db.execute(
        select(LearningProgress).where(
            LearningProgress.user_id == user_id,
            LearningProgress.course_id == course_id,
            LearningProgress.is_deleted.is_(False)
        )
    )
    return result.scalar_one_or_none()


async def require_enrollment(db: AsyncSession, user_id: Any, course_id: Any) -> LearningProgress:
    progress = await get_enrollment(db, user_id, course_id)
    if progress is None:
        raise NotFoundException(
            "No enrollment found for this course",
            resource_type="learning_progress",
            resource_id=str(course_id)
        )
    return progress


async def enroll(db: AsyncSession, user: User, course: Course) -> LearningProgress:
    """Create the progress record for a new enrollment"""
    if await get_enrollment(db, user.id, course.id) is not None:
        raise AlreadyEnrolledException(str(course.id))

    now = datetime.utcnow()
    progress = LearningProgress(
        user_id=user.id,
        course_id=course.id,
        enrollment_date=now,
        completion_percentage=0,
        current_module=0,
        modules_completed=[],
        total_time_spent=0,
        last_access_date=now,
        is_completed=False,
        certificate_issued=False,
        bookmarks=[]
    )

    try:
        async with db.begin_nested():
            db.add(progress)
            course.enrollment_count = (course.enrollment_count or 0) + 1
            await db.flush()
    except IntegrityError:
        raise AlreadyEnrolledException(str(course.id))

    logger.info(f"User {user.id} enrolled in course {course.id}")
    return progress


# Module progress
async def complete_module(
    db: AsyncSession,
    progress: LearningProgress,
    course: Course,
    user: User,
    module_index: int,
    time_spent: int = 0
) -> Tuple[LearningProgress, List[Achievement]]:
    """Record a finished module and advance the enrollment"""
    total_modules = course.module_count
    if module_index < 0 or (total_modules and module_index >= total_modules):
        raise ValidationException(
            "Module index out of range",
            field="module_index",
            value=module_index
        )

    time_spent = max(0, time_spent or 0)
    now = datetime.utcnow()

    modules = list(progress.modules_completed or [])
    if not any(entry.get("module_index") == module_index for entry in modules):
        modules.append({
            "module_index": module_index,
            "completed_at": now.isoformat(),
            "time_spent": time_spent
        })
    progress.modules_completed = modules

    progress.current_module = max(progress.current_module or 0, module_index + 1)
    progress.completion_percentage = completion_percentage(modules, total_modules)
    progress.total_time_spent = (progress.total_time_spent or 0) + time_spent
    progress.last_access_date = now

    events = []
    if progress.completion_percentage >= 100 and not progress.is_completed:
        progress.is_completed = True
        progress.completion_date = now
        events.append(AchievementEvent("course_completion", user.id, course.id))
        logger.info(f"User {user.id} completed course {course.id}")

    hours = user.total_learning_hours or 0
    user.total_learning_hours = round_half_up((hours * 60 + time_spent) / 60)
    events.append(AchievementEvent("time_milestone", user.id))

    await db.flush()

    awarded = await award_for_events(db, events)
    return progress, awarded


# Assignments
async def count_attempts(db: AsyncSession, assignment_id: Any, user_id: Any) -> int:
    return await db.scalar(
        select(func.count(Submission.id)).where(
            Submission.assignment_id == assignment_id,
            Submission.user_id == user_id
        )
    ) or 0


def passing_threshold(assignment: Assignment) -> float:
    return (assignment.passing_score or 0) / 100 * assignment.total_points


async def submit_assignment(
    db: AsyncSession,
    assignment: Assignment,
    user: User,
    answers: Optional[Sequence[Dict[str, Any]]] = None,
    content: Optional[str] = None,
    attachments: Optional[List[Any]] = None,
    time_spent: int = 0
) -> Submission:
    """Store a new attempt, auto-grading quizzes when configured"""
    attempts = await count_attempts(db, assignment.id, user.id)
    max_attempts = assignment.max_attempts or get_settings().DEFAULT_MAX_ATTEMPTS
    if attempts >= max_attempts:
        raise MaxAttemptsExceededException(str(assignment.id), max_attempts, attempts)

    now = datetime.utcnow()
    submission = Submission(
        assignment_id=assignment.id,
        user_id=user.id,
        attempt_number=attempts + 1,
        submitted_at=now,
        content=content,
        attachments=attachments or [],
        max_score=assignment.total_points,
        time_spent=time_spent or 0
    )

    if assignment.assignment_type == AssignmentType.QUIZ and assignment.auto_grade:
        result = score_quiz(assignment.questions or [], answers or [])
        submission.answers = [
            {
                "question_index": graded.question_index,
                "answer": graded.answer,
                "is_correct": graded.is_correct,
                "points_earned": graded.points_earned
            }
            for graded in result.graded_answers
        ]
        submission.score = result.score
        submission.status = SubmissionStatus.GRADED
        submission.graded_at = now
    else:
        submission.answers = list(answers or [])
        submission.score = 0.0
        submission.status = SubmissionStatus.SUBMITTED

    submission.passed = submission.score >= passing_threshold(assignment)
    submission.refresh_percentage()

    try:
        async with db.begin_nested():
            db.add(submission)
            await db.flush()
    except IntegrityError:
        raise ConflictException(
            "Submission attempt already recorded",
            details={"assignment_id": str(assignment.id), "attempt_number": attempts + 1}
        )

    if submission.status == SubmissionStatus.GRADED:
        await refresh_course_grade(db, user.id, assignment.course_id)

    logger.info(
        f"Submission {submission.id} attempt {submission.attempt_number} "
        f"for assignment {assignment.id} ({submission.status.value})"
    )
    return submission


async def grade_submission(
    db: AsyncSession,
    submission: Submission,
    assignment: Assignment,
    grader: User,
    score: Optional[float] = None,
    feedback: Optional[str] = None,
    rubric_scores: Optional[List[Dict[str, Any]]] = None
) -> Submission:
    """Apply a manual grade; the rubric total stands in when no score is given"""
    if score is None:
        if not rubric_scores:
            raise ValidationException("Score or rubric scores are required", field="score")
        score = score_rubric(rubric_scores).score

    if score < 0 or score > submission.max_score:
        raise ValidationException(
            f"Score must be between 0 and {submission.max_score}",
            field="score",
            value=score
        )

    now = datetime.utcnow()
    submission.score = score
    submission.feedback = feedback
    submission.rubric_scores = list(rubric_scores or [])
    submission.status = SubmissionStatus.GRADED
    submission.graded_at = now
    submission.graded_by_id = grader.id
    submission.passed = score >= passing_threshold(assignment)
    submission.refresh_percentage()

    await db.flush()

    await refresh_course_grade(db, submission.user_id, assignment.course_id)

    logger.info(f"Submission {submission.id} graded by {grader.id}: {submission.percentage}%")
    return submission


async def refresh_course_grade(db: AsyncSession, user_id: Any, course_id: Any) -> Optional[LearningProgress]:
    """Store the learner's current weighted grade on their enrollment"""
    progress = await get_enrollment(db, user_id, course_id)
    if progress is None:
        return None

    grade = await course_grade_for_user(db, user_id, course_id)
    progress.grade = grade.grade.percentage
    await db.flush()

    if progress.is_completed:
        await award_for_events(db, [AchievementEvent("course_completion", user_id, course_id)])
    return progress


async def course_grade_for_user(db: AsyncSession, user_id: Any, course_id: Any):
    assignments = (await db.execute(
        select(Assignment).where(
            Assignment.course_id == course_id,
            Assignment.is_active.is_(True),
            Assignment.is_deleted.is_(False)
        ).order_by(Assignment.module_index, Assignment.created_at)
    )).scalars().all()

    submissions = (await db.execute(
        select(Submission).where(
            Submission.user_id == user_id,
            Submission.assignment_id.in_([assignment.id for assignment in assignments]),
            Submission.status == SubmissionStatus.GRADED
        ).order_by(desc(Submission.graded_at))
    )).scalars().all() if assignments else []

    return course_grade(submissions, assignments)


# Learning sessions
async def start_session(
    db: AsyncSession,
    user: User,
    course: Course,
    module_index: Optional[int] = None,
    device_type: Optional[DeviceType] = None,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None
) -> LearningSession:
    now = datetime.utcnow()
    session = LearningSession(
        user_id=user.id,
        course_id=course.id,
        session_date=now,
        start_time=now,
        duration=0,
        module_index=module_index,
        activities=[],
        is_active=True,
        device_type=device_type or DeviceType.DESKTOP,
        user_agent=user_agent,
        ip_address=ip_address
    )
    db.add(session)
    await db.flush()

    logger.info(f"Learning session {session.id} started by user {user.id}")
    return session


async def end_session(
    db: AsyncSession,
    session_id: Any,
    user: User,
    quality: Optional[SessionQuality] = None,
    notes: Optional[str] = None,
    activities: Optional[List[Dict[str, Any]]] = None,
    now: Optional[datetime] = None
) -> Tuple[LearningSession, List[Achievement]]:
    """Close a session, fold its time into progress and refresh the learner's stats"""
    session = await db.get(LearningSession, session_id)
    if session is None:
        raise ResourceNotFoundByIdException("session", str(session_id))

    if session.user_id != user.id:
        raise ResourceOwnershipException("session", str(session_id), action="end")

    if not session.is_active:
        raise BusinessLogicException("Session already ended", rule="session_closed")

    now = now or datetime.utcnow()
    session.end_time = now
    session.duration = max(0, round_half_up((now - session.start_time).total_seconds() / 60))
    session.session_quality = quality
    session.session_notes = notes
    session.activities = list(activities or [])
    session.is_active = False

    if session.duration > 0:
        progress = await get_enrollment(db, user.id, session.course_id)
        if progress is not None:
            progress.total_time_spent = (progress.total_time_spent or 0) + session.duration
            progress.last_access_date = now

    await db.flush()
    await update_user_learning_stats(db, user)

    awarded = await award_for_events(db, [
        AchievementEvent("learning_session", user.id, session.course_id),
        AchievementEvent("time_milestone", user.id)
    ])

    logger.info(f"Learning session {session.id} ended after {session.duration} minutes")
    return session, awarded


async def update_user_learning_stats(db: AsyncSession, user: User, today=None) -> User:
    """Recompute total hours, streaks and last learning date from the session log"""
    sessions = (await db.execute(
        select(LearningSession).where(LearningSession.user_id == user.id)
    )).scalars().all()

    streak = calculate_streaks(sessions, today=today)

    user.total_learning_hours = round_half_up(total_learning_minutes(sessions) / 60)
    user.current_streak = streak.current_streak
    user.longest_streak = streak.longest_streak
    if sessions:
        user.last_learning_date = max(session.session_date for session in sessions)

    await db.flush()
    return user


# Certificates
async def issue_certificate(db: AsyncSession, user: User, course_id: Any) -> Dict[str, Any]:
    """Issue the completion certificate for a finished course"""
    result = await db.execute(
        select(LearningProgress)
        .options(selectinload(LearningProgress.course))
        .where(
            LearningProgress.user_id == user.id,
            LearningProgress.course_id == course_id,
            LearningProgress.is_completed.is_(True),
            LearningProgress.is_deleted.is_(False)
        )
    )
    progress = result.scalar_one_or_none()
    if progress is None:
        raise CourseNotCompletedException(str(course_id))

    if progress.certificate_issued:
        raise CertificateAlreadyIssuedException(progress.certificate_id)

    settings = get_settings()
    certificate_id = generate_certificate_id()
    verification_code = generate_verification_code()
    course = progress.course

    certificate = {
        "certificate_id": certificate_id,
        "certificate_url": f"{settings.CERTIFICATE_BASE_URL}/{certificate_id}",
        "issue_date": datetime.utcnow().isoformat(),
        "verification_code": verification_code
    }

    achievement = await create_achievement(
        db, user.id, AchievementType.COURSE_COMPLETION,
        title=f"Certificate: {course.title}",
        description=f"Successfully completed {course.title}",
        icon="📜",
        course_id=course.id,
        criteria=CourseCompletionCriteria(),
        rarity=AchievementRarity.UNCOMMON,
        points=100,
        certificate=certificate
    )
    if achievement is None:
        raise CertificateAlreadyIssuedException(progress.certificate_id)

    progress.certificate_issued = True
    progress.certificate_id = certificate_id
    await db.flush()

    logger.info(f"Certificate {certificate_id} issued to user {user.id} for course {course.id}")

    return {
        "message": "Certificate generated successfully",
        "achievement": achievement,
        "certificate_id": certificate_id,
        "verification_code": verification_code,
        "download_url": f"{settings.CERTIFICATE_BASE_URL}/{certificate_id}/download"
    }


async def verify_certificate(db: AsyncSession, certificate_id: str, verification_code: str) -> Dict[str, Any]:
    not_found = NotFoundException(
        "Certificate not found or invalid verification code",
        resource_type="certificate",
        resource_id=certificate_id
    )

    progress = (await db.execute(
        select(LearningProgress)
        .options(
            selectinload(LearningProgress.user),
            selectinload(LearningProgress.course).selectinload(Course.instructor)
        )
        .where(LearningProgress.certificate_id == certificate_id)
    )).scalar_one_or_none()
    if progress is None:
        raise not_found

    achievement = (await db.execute(
        select(Achievement).where(
            Achievement.user_id == progress.user_id,
            Achievement.achievement_type == AchievementType.COURSE_COMPLETION,
            Achievement.course_key == str(progress.course_id),
            Achievement.criteria_key == ""
        )
    )).scalar_one_or_none()

    certificate = (achievement.certificate or {}) if achievement else {}
    if certificate.get("verification_code") != verification_code:
        raise not_found

    return {
        "valid": True,
        "certificate": {
            "id": certificate_id,
            "student": {"name": progress.user.name, "email": progress.user.email},
            "course": {
                "title": progress.course.title,
                "instructor": progress.course.instructor.name if progress.course.instructor else None
            },
            "issue_date": certificate.get("issue_date"),
            "verification_code": verification_code
        }
    }


# Achievements
async def list_achievements(db: AsyncSession, user_id: Any) -> List[Achievement]:
    result = await db.execute(
        select(Achievement)
        .options(selectinload(Achievement.course))
        .where(Achievement.user_id == user_id, Achievement.is_visible.is_(True))
        .order_by(desc(Achievement.unlocked_at))
    )
    return list(result.scalars().all())


async def share_achievement(db: AsyncSession, user: User, achievement_id: Any) -> Achievement:
    achievement = await db.get(Achievement, achievement_id)
    if achievement is None:
        raise ResourceNotFoundByIdException("achievement", str(achievement_id))

    if achievement.user_id != user.id:
        raise ResourceOwnershipException("achievement", str(achievement_id), action="share")

    achievement.shared_at = datetime.utcnow()
    await db.flush()
    return achievement


async def leaderboard(
    db: AsyncSession,
    board_type: str = "points",
    period: str = "all",
    limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Top learners by achievement points or by current streak"""
    limit = limit or get_settings().LEADERBOARD_SIZE

    if board_type == "streak":
        result = await db.execute(
            select(User)
            .where(User.is_deleted.is_(False))
            .order_by(desc(User.current_streak), User.name)
            .limit(limit)
        )
        return [
            {
                "rank": rank,
                "user_id": str(user.id),
                "name": user.name,
                "current_streak": user.current_streak,
                "total_learning_hours": user.total_learning_hours
            }
            for rank, user in enumerate(result.scalars().all(), 1)
        ]

    if board_type != "points":
        raise ValidationException("Leaderboard type must be points or streak", field="type", value=board_type)

    total_points = func.sum(Achievement.points).label("total_points")
    query = (
        select(
            User.id,
            User.name,
            User.total_learning_hours,
            User.current_streak,
            total_points
        )
        .join(Achievement, Achievement.user_id == User.id)
        .where(User.is_deleted.is_(False))
        .group_by(User.id, User.name, User.total_learning_hours, User.current_streak)
        .order_by(desc("total_points"))
        .limit(limit)
    )

    since = learning_time_window(period) if period != "all" else None
    if since is not None:
        query = query.where(Achievement.unlocked_at >= since)

    result = await db.execute(query)
    return [
        {
            "rank": rank,
            "user_id": str(row.id),
            "name": row.name,
            "total_points": int(row.total_points or 0),
            "total_learning_hours": row.total_learning_hours,
            "current_streak": row.current_streak
        }
        for rank, row in enumerate(result, 1)
    ]


# Learning tasks
TASK_FIELDS = (
    "title", "description", "completed", "deadline", "category", "difficulty",
    "progress", "estimated_time", "resources", "notes", "skills_learned"
)


async def update_task(
    db: AsyncSession,
    task: Task,
    user: User,
    updates: Dict[str, Any]
) -> Tuple[Task, List[Achievement]]:
    """Apply a task update.

    Provided fields replace stored ones, except ``time_spent`` which is added
    to the running total. Reaching 100% progress completes the task, and a
    completed task awards mastery of each of its learned skills.
    """
    now = datetime.utcnow()

    for field_name in TASK_FIELDS:
        value = updates.get(field_name)
        if value is not None:
            setattr(task, field_name, value)

    time_spent = updates.get("time_spent")
    if time_spent is not None:
        task.time_spent = (task.time_spent or 0) + time_spent

    if updates.get("progress") is not None or time_spent is not None:
        task.last_studied = now

    if (task.progress or 0) >= 100:
        task.completed = True

    await db.flush()

    awarded = []
    if task.completed:
        awarded = await award_for_events(db, [
            AchievementEvent("skill_mastery", user.id, skill_name=skill)
            for skill in task.skills_learned or []
        ])

    logger.info(f"Task {task.id} updated by user {user.id} ({task.progress}%)")
    return task, awarded


def can_manage_course(user: User, course: Course) -> bool:
    return user.role == UserRole.ADMIN or course.instructor_id == user.id


__all__ = [
    "get_enrollment",
    "require_enrollment",
    "enroll",
    "complete_module",
    "count_attempts",
    "submit_assignment",
    "grade_submission",
    "refresh_course_grade",
    "course_grade_for_user",
    "start_session",
    "end_session",
    "update_user_learning_stats",
    "issue_certificate",
    "verify_certificate",
    "list_achievements",
    "share_achievement",
    "leaderboard",
    "update_task",
    "can_manage_course"
]
