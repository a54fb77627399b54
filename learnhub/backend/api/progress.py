"""
LearnHub Learning Management System
Learning progress, bookmark and session API routes
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Path, Request, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.orm import selectinload

from ..database.connection import get_db
from ..database.models import (
    Bookmark, Course, DeviceType, LearningProgress, LearningSession,
    SessionQuality, User
)
from ..dependencies import require_authentication, require_student
from ..exceptions import CourseNotFoundException, NotFoundException, ResourceNotFoundByIdException
from ..services import learning_service
from ..services.progress_calculator import (
    bucket_sessions_by_day,
    learning_time_window,
    total_learning_minutes
)
from ..utils.helpers import round_half_up
from ...config import get_settings
from .achievements import AchievementResponse, to_achievement_responses

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()

ACTIVITY_TYPES = {"reading", "video", "quiz", "assignment", "discussion"}


# Pydantic models
class BookmarkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    module_index: int
    topic: str
    note: Optional[str] = None
    created_at: datetime


class ProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    course_id: UUID
    enrollment_date: datetime
    completion_percentage: int
    current_module: int
    modules_completed: List[Dict[str, Any]] = []
    total_time_spent: int
    last_access_date: Optional[datetime] = None
    is_completed: bool
    completion_date: Optional[datetime] = None
    grade: Optional[float] = None
    certificate_issued: bool
    certificate_id: Optional[str] = None
    bookmarks: List[BookmarkResponse] = []


class CourseProgressResponse(ProgressResponse):
    course_title: str
    syllabus: List[Dict[str, Any]] = []


class ModuleProgressResponse(BaseModel):
    progress: ProgressResponse
    new_achievements: List[AchievementResponse] = []


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    course_id: UUID
    session_date: datetime
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: int
    module_index: Optional[int] = None
    activities: List[Dict[str, Any]] = []
    is_active: bool
    session_quality: Optional[SessionQuality] = None
    session_notes: Optional[str] = None
    device_type: Optional[DeviceType] = None


class EndSessionResponse(BaseModel):
    session: SessionResponse
    new_achievements: List[AchievementResponse] = []


class ModuleCompletionRequest(BaseModel):
    module_index: int = Field(..., ge=0)
    time_spent: int = Field(0, ge=0)


class BookmarkRequest(BaseModel):
    module_index: int = Field(..., ge=0)
    topic: str
    note: Optional[str] = None

    @field_validator('topic')
    @classmethod
    def validate_topic(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Bookmark topic is required')
        return v.strip()


class StartSessionRequest(BaseModel):
    module_index: Optional[int] = Field(None, ge=0)
    device_type: DeviceType = DeviceType.DESKTOP
    user_agent: Optional[str] = None


class EndSessionRequest(BaseModel):
    session_quality: Optional[SessionQuality] = None
    session_notes: Optional[str] = None
    activities: List[Dict[str, Any]] = []

    @field_validator('activities')
    @classmethod
    def validate_activities(cls, v):
        for activity in v:
            if activity.get("type") not in ACTIVITY_TYPES:
                raise ValueError(f"Activity type must be one of: {', '.join(sorted(ACTIVITY_TYPES))}")
        return v


# Helper functions
async def get_active_course(db: AsyncSession, course_id: UUID) -> Course:
    course = await db.get(Course, course_id)
    if course is None or course.is_deleted:
        raise CourseNotFoundException(str(course_id))
    return course


# API Routes
@router.get("/course/{course_id}", response_model=CourseProgressResponse)
async def get_course_progress(
    course_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Current user's progress in one course"""

    result = await db.execute(
        select(LearningProgress)
        .options(selectinload(LearningProgress.course))
        .where(
            LearningProgress.user_id == current_user.id,
            LearningProgress.course_id == course_id,
            LearningProgress.is_deleted.is_(False)
        )
    )
    progress = result.scalar_one_or_none()

    if not progress:
        raise NotFoundException(
            "No progress found for this course",
            resource_type="learning_progress",
            resource_id=str(course_id)
        )

    return CourseProgressResponse(
        **ProgressResponse.model_validate(progress).model_dump(),
        course_title=progress.course.title,
        syllabus=progress.course.syllabus or []
    )


@router.put("/course/{course_id}/module", response_model=ModuleProgressResponse)
async def update_module_progress(
    request: ModuleCompletionRequest,
    course_id: UUID = Path(...),
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Record completion of a course module"""

    progress = await learning_service.require_enrollment(db, current_user.id, course_id)
    course = await get_active_course(db, course_id)

    progress, awarded = await learning_service.complete_module(
        db, progress, course, current_user, request.module_index, request.time_spent
    )
    await db.commit()

    return ModuleProgressResponse(
        progress=ProgressResponse.model_validate(progress),
        new_achievements=to_achievement_responses(awarded)
    )


@router.post("/course/{course_id}/bookmark", response_model=ProgressResponse, status_code=status.HTTP_201_CREATED)
async def add_bookmark(
    request: BookmarkRequest,
    course_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Bookmark a topic within an enrolled course"""

    progress = await learning_service.require_enrollment(db, current_user.id, course_id)

    progress.bookmarks.append(Bookmark(
        module_index=request.module_index,
        topic=request.topic,
        note=request.note,
        created_at=datetime.utcnow()
    ))
    await db.commit()

    return progress


@router.delete("/course/{course_id}/bookmark/{bookmark_id}", response_model=ProgressResponse)
async def remove_bookmark(
    course_id: UUID = Path(...),
    bookmark_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Remove a bookmark from an enrolled course"""

    progress = await learning_service.require_enrollment(db, current_user.id, course_id)

    bookmark = next((item for item in progress.bookmarks if item.id == bookmark_id), None)
    if bookmark is None:
        raise ResourceNotFoundByIdException("bookmark", str(bookmark_id))

    progress.bookmarks.remove(bookmark)
    await db.commit()

    return progress


@router.post("/course/{course_id}/session/start", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_learning_session(
    http_request: Request,
    request: StartSessionRequest,
    course_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Open a learning session"""

    course = await get_active_course(db, course_id)

    session = await learning_service.start_session(
        db,
        current_user,
        course,
        module_index=request.module_index,
        device_type=request.device_type,
        user_agent=request.user_agent or http_request.headers.get("user-agent"),
        ip_address=http_request.client.host if http_request.client else None
    )
    await db.commit()

    return session


@router.put("/session/{session_id}/end", response_model=EndSessionResponse)
async def end_learning_session(
    request: EndSessionRequest,
    session_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Close a learning session owned by the current user"""

    session, awarded = await learning_service.end_session(
        db,
        session_id,
        current_user,
        quality=request.session_quality,
        notes=request.session_notes,
        activities=request.activities
    )
    await db.commit()

    return EndSessionResponse(
        session=SessionResponse.model_validate(session),
        new_achievements=to_achievement_responses(awarded)
    )


@router.get("/analytics")
async def get_learning_analytics(
    period: str = Query("7days", pattern="^(7days|30days|90days)$"),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Per-day session analytics for the requested period"""

    since = learning_time_window(period)

    sessions = (await db.execute(
        select(LearningSession)
        .options(selectinload(LearningSession.course))
        .where(
            LearningSession.user_id == current_user.id,
            LearningSession.session_date >= since
        )
        .order_by(desc(LearningSession.session_date))
    )).scalars().all()

    progress_rows = (await db.execute(
        select(LearningProgress).where(
            LearningProgress.user_id == current_user.id,
            LearningProgress.is_deleted.is_(False)
        )
    )).scalars().all()

    completed = sum(1 for progress in progress_rows if progress.is_completed)
    average_completion = (
        sum(progress.completion_percentage for progress in progress_rows) / len(progress_rows)
        if progress_rows else 0
    )

    return {
        "period": period,
        "summary": {
            "total_time_spent": total_learning_minutes(sessions),
            "courses_enrolled": len(progress_rows),
            "courses_completed": completed,
            "average_completion": round_half_up(average_completion)
        },
        "daily_activity": [bucket.to_dict() for bucket in bucket_sessions_by_day(sessions)],
        "progress_data": [ProgressResponse.model_validate(progress) for progress in progress_rows],
        "sessions": [SessionResponse.model_validate(session) for session in sessions[:get_settings().RECENT_SESSIONS_LIMIT]]
    }
