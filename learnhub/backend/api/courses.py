"""
LearnHub Learning Management System
Course catalog and enrollment API routes
"""

import logging
import math
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Path, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_, asc, desc
from sqlalchemy.orm import selectinload

from ..database.connection import get_db
from ..database.models import (
    Course, CourseCategory, CourseDifficulty, LearningProgress, User
)
from ..dependencies import (
    require_authentication,
    require_student,
    require_instructor_or_admin,
    require_admin,
    course_cache,
    standard_rate_limit
)
from ..exceptions import CourseNotFoundException, ResourceOwnershipException
from ..services import learning_service
from .progress import ProgressResponse
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()

SORTABLE_FIELDS = {
    "created_at": Course.created_at,
    "title": Course.title,
    "rating": Course.rating,
    "enrollment_count": Course.enrollment_count,
    "duration_weeks": Course.duration_weeks,
}


# Pydantic models
class SyllabusModule(BaseModel):
    module_title: str
    topics: List[str] = []
    estimated_hours: float = Field(0, ge=0)

    @field_validator('module_title')
    @classmethod
    def validate_module_title(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Module title is required')
        return v.strip()


class CreateCourseRequest(BaseModel):
    title: str
    description: str
    category: CourseCategory
    difficulty: CourseDifficulty
    duration_weeks: int = Field(1, ge=1)
    hours_per_week: float = Field(1.0, gt=0)
    estimated_completion_time: Optional[float] = Field(None, ge=0)
    prerequisites: List[str] = []
    learning_objectives: List[str] = []
    syllabus: List[SyllabusModule] = []

    @field_validator('title', 'description')
    @classmethod
    def validate_content(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Title and description are required')
        return v.strip()


class UpdateCourseRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[CourseCategory] = None
    difficulty: Optional[CourseDifficulty] = None
    duration_weeks: Optional[int] = Field(None, ge=1)
    hours_per_week: Optional[float] = Field(None, gt=0)
    estimated_completion_time: Optional[float] = Field(None, ge=0)
    prerequisites: Optional[List[str]] = None
    learning_objectives: Optional[List[str]] = None
    syllabus: Optional[List[SyllabusModule]] = None
    is_active: Optional[bool] = None

    @field_validator('title', 'description')
    @classmethod
    def validate_content(cls, v):
        if v is not None and len(v.strip()) == 0:
            raise ValueError('Title and description cannot be empty')
        return v.strip() if v else v


class InstructorSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str


class CourseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str
    category: CourseCategory
    difficulty: CourseDifficulty
    duration_weeks: int
    hours_per_week: float
    estimated_completion_time: float
    prerequisites: List[str] = []
    learning_objectives: List[str] = []
    syllabus: List[Dict[str, Any]] = []
    is_active: bool
    enrollment_count: int
    rating: Optional[float] = None
    instructor_id: UUID
    instructor: Optional[InstructorSummary] = None
    created_at: datetime
    updated_at: datetime


class CourseListResponse(BaseModel):
    courses: List[CourseResponse]
    total_pages: int
    current_page: int
    total: int


class EnrollmentResponse(BaseModel):
    message: str
    progress: ProgressResponse


class EnrolledCourseResponse(BaseModel):
    course: CourseResponse
    progress: ProgressResponse


# Helper functions
async def get_course_or_404(db: AsyncSession, course_id: UUID) -> Course:
    result = await db.execute(
        select(Course)
        .options(selectinload(Course.instructor))
        .where(Course.id == course_id, Course.is_deleted.is_(False))
    )
    course = result.scalar_one_or_none()
    if not course:
        raise CourseNotFoundException(str(course_id))
    return course


def estimate_completion_time(request: CreateCourseRequest) -> float:
    if request.estimated_completion_time is not None:
        return request.estimated_completion_time
    syllabus_hours = sum(module.estimated_hours for module in request.syllabus)
    return syllabus_hours or request.duration_weeks * request.hours_per_week


# API Routes
@router.get("", response_model=CourseListResponse)
async def list_courses(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    category: Optional[CourseCategory] = Query(None),
    difficulty: Optional[CourseDifficulty] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    rate_limit: bool = Depends(standard_rate_limit)
):
    """List active courses with filtering, sorting and pagination"""

    settings = get_settings()
    limit = min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)

    filters = [Course.is_active.is_(True), Course.is_deleted.is_(False)]
    if category:
        filters.append(Course.category == category)
    if difficulty:
        filters.append(Course.difficulty == difficulty)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        filters.append(or_(Course.title.ilike(pattern), Course.description.ilike(pattern)))

    sort_column = SORTABLE_FIELDS.get(sort_by, Course.created_at)
    ordering = asc(sort_column) if sort_order == "asc" else desc(sort_column)

    total = await db.scalar(select(func.count(Course.id)).where(*filters)) or 0

    result = await db.execute(
        select(Course)
        .options(selectinload(Course.instructor))
        .where(*filters)
        .order_by(ordering)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    courses = result.scalars().all()

    return CourseListResponse(
        courses=[CourseResponse.model_validate(course) for course in courses],
        total_pages=math.ceil(total / limit),
        current_page=page,
        total=total
    )


@router.get("/enrolled/my", response_model=List[EnrolledCourseResponse])
async def get_enrolled_courses(
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Current user's enrollments with progress, newest first"""

    result = await db.execute(
        select(LearningProgress)
        .options(selectinload(LearningProgress.course).selectinload(Course.instructor))
        .where(
            LearningProgress.user_id == current_user.id,
            LearningProgress.is_deleted.is_(False)
        )
        .order_by(desc(LearningProgress.enrollment_date))
    )

    return [
        EnrolledCourseResponse(
            course=CourseResponse.model_validate(progress.course),
            progress=ProgressResponse.model_validate(progress)
        )
        for progress in result.scalars().all()
        if not progress.course.is_deleted
    ]


@router.get("/{course_id}", response_model=CourseResponse)
async def get_course(
    course_id: UUID = Path(...),
    db: AsyncSession = Depends(get_db)
):
    """Course detail"""

    cached = await course_cache.get(f"course:{course_id}")
    if cached:
        return cached

    course = await get_course_or_404(db, course_id)
    response = CourseResponse.model_validate(course)

    await course_cache.set(f"course:{course_id}", response.model_dump(mode="json"))

    return response


@router.post("", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(
    request: CreateCourseRequest,
    current_user: User = Depends(require_instructor_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create a course taught by the current user"""

    course = Course(
        title=request.title,
        description=request.description,
        category=request.category,
        difficulty=request.difficulty,
        duration_weeks=request.duration_weeks,
        hours_per_week=request.hours_per_week,
        estimated_completion_time=estimate_completion_time(request),
        prerequisites=request.prerequisites,
        learning_objectives=request.learning_objectives,
        syllabus=[module.model_dump() for module in request.syllabus],
        is_active=True,
        enrollment_count=0,
        rating=0.0,
        rating_count=0,
        instructor=current_user
    )

    db.add(course)
    await db.commit()

    logger.info(f"Course '{course.title}' created by {current_user.email}")

    return course


@router.put("/{course_id}", response_model=CourseResponse)
async def update_course(
    request: UpdateCourseRequest,
    course_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Update a course; only its instructor or an admin may do so"""

    course = await get_course_or_404(db, course_id)

    if not learning_service.can_manage_course(current_user, course):
        raise ResourceOwnershipException("course", str(course_id), action="update")

    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    if "syllabus" in updates:
        updates["syllabus"] = [module.model_dump() for module in request.syllabus]

    for field, value in updates.items():
        setattr(course, field, value)

    await db.commit()
    await course_cache.delete(f"course:{course_id}")

    logger.info(f"Course {course_id} updated by {current_user.email}")

    return course


@router.delete("/{course_id}")
async def delete_course(
    course_id: UUID = Path(...),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Remove a course from the catalog"""

    course = await get_course_or_404(db, course_id)

    course.is_deleted = True
    course.is_active = False
    await db.commit()
    await course_cache.delete(f"course:{course_id}")

    logger.info(f"Course {course_id} deleted by {current_user.email}")

    return {"message": "Course deleted successfully"}


@router.post("/{course_id}/enroll", response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
async def enroll_in_course(
    course_id: UUID = Path(...),
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Enroll the current student in a course"""

    course = await get_course_or_404(db, course_id)
    if not course.is_active:
        raise CourseNotFoundException(str(course_id))

    progress = await learning_service.enroll(db, current_user, course)
    await db.commit()
    await course_cache.delete(f"course:{course_id}")

    return EnrollmentResponse(
        message="Successfully enrolled in course",
        progress=ProgressResponse.model_validate(progress)
    )
