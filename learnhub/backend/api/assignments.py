"""
LearnHub Learning Management System
Assignment, submission and grading API routes
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.orm import selectinload

from ..database.connection import get_db
from ..database.models import (
    Assignment, AssignmentType, Course, QuestionType, Submission,
    SubmissionStatus, User, UserRole
)
from ..dependencies import (
    require_authentication,
    require_student,
    require_instructor_or_admin,
    require_admin
)
from ..exceptions import (
    AssignmentNotFoundException,
    CourseNotFoundException,
    ResourceNotFoundByIdException,
    ResourceOwnershipException,
    ValidationException
)
from ..services import learning_service
from ..services.grade_calculator import class_statistics

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()

ANSWER_KEY_FIELDS = ("correct_answer", "explanation")


# Pydantic models
class QuestionModel(BaseModel):
    question: str
    type: QuestionType
    options: List[str] = []
    correct_answer: Optional[str] = None
    points: float = Field(1, ge=0)
    explanation: Optional[str] = None

    @field_validator('question')
    @classmethod
    def validate_question(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Question text is required')
        return v.strip()

    @model_validator(mode='after')
    def validate_options(self):
        if self.type == QuestionType.MULTIPLE_CHOICE and len(self.options) < 2:
            raise ValueError('Multiple-choice questions need at least two options')
        return self


class RubricCriterion(BaseModel):
    criterion: str
    max_points: float = Field(..., ge=0)
    description: Optional[str] = None


class CreateAssignmentRequest(BaseModel):
    course_id: UUID
    title: str
    description: str
    type: AssignmentType
    module_index: int = Field(..., ge=0)
    due_date: Optional[datetime] = None
    max_attempts: Optional[int] = Field(None, ge=1)
    time_limit: Optional[int] = Field(None, ge=1)
    total_points: Optional[float] = Field(None, gt=0)
    passing_score: float = Field(..., ge=0, le=100)
    weight: float = Field(1.0, gt=0)
    instructions: Optional[str] = None
    questions: List[QuestionModel] = []
    rubric: List[RubricCriterion] = []
    auto_grade: bool = False
    show_correct_answers: bool = True
    shuffle_questions: bool = False

    @field_validator('title', 'description')
    @classmethod
    def validate_content(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Title and description are required')
        return v.strip()


class UpdateAssignmentRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    max_attempts: Optional[int] = Field(None, ge=1)
    time_limit: Optional[int] = Field(None, ge=1)
    total_points: Optional[float] = Field(None, gt=0)
    passing_score: Optional[float] = Field(None, ge=0, le=100)
    weight: Optional[float] = Field(None, gt=0)
    instructions: Optional[str] = None
    questions: Optional[List[QuestionModel]] = None
    rubric: Optional[List[RubricCriterion]] = None
    auto_grade: Optional[bool] = None
    show_correct_answers: Optional[bool] = None
    shuffle_questions: Optional[bool] = None
    is_active: Optional[bool] = None


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    course_id: UUID
    title: str
    description: str
    assignment_type: AssignmentType
    module_index: int
    due_date: Optional[datetime] = None
    max_attempts: int
    time_limit: Optional[int] = None
    total_points: float
    passing_score: float
    weight: Optional[float] = None
    instructions: Optional[str] = None
    questions: List[Dict[str, Any]] = []
    rubric: List[Dict[str, Any]] = []
    is_active: bool
    auto_grade: bool
    show_correct_answers: bool
    shuffle_questions: bool
    created_by_id: UUID
    created_at: datetime


class AnswerModel(BaseModel):
    answer: Any = None


class SubmitAssignmentRequest(BaseModel):
    answers: List[AnswerModel] = []
    content: Optional[str] = None
    attachments: List[Dict[str, Any]] = []
    time_spent: int = Field(0, ge=0)


class RubricScore(BaseModel):
    criterion: str
    points_earned: float = Field(..., ge=0)
    max_points: float = Field(..., ge=0)
    feedback: Optional[str] = None


class GradeSubmissionRequest(BaseModel):
    score: Optional[float] = Field(None, ge=0)
    feedback: Optional[str] = None
    rubric_scores: List[RubricScore] = []


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    assignment_id: UUID
    user_id: UUID
    attempt_number: int
    status: SubmissionStatus
    submitted_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None
    graded_by_id: Optional[UUID] = None
    answers: List[Dict[str, Any]] = []
    content: Optional[str] = None
    score: float
    max_score: float
    percentage: int
    passed: bool
    feedback: Optional[str] = None
    rubric_scores: List[Dict[str, Any]] = []
    time_spent: Optional[int] = None


class SubmissionWithStudentResponse(SubmissionResponse):
    student_name: Optional[str] = None
    student_email: Optional[str] = None


# Helper functions
async def get_assignment_or_404(db: AsyncSession, assignment_id: UUID, with_course: bool = False) -> Assignment:
    query = select(Assignment).where(
        Assignment.id == assignment_id,
        Assignment.is_deleted.is_(False)
    )
    if with_course:
        query = query.options(selectinload(Assignment.course))

    assignment = (await db.execute(query)).scalar_one_or_none()
    if not assignment:
        raise AssignmentNotFoundException(str(assignment_id))
    return assignment


def ensure_course_access(user: User, course: Course, action: str) -> None:
    if not learning_service.can_manage_course(user, course):
        raise ResourceOwnershipException("course", str(course.id), action=action)


def redact_answer_key(questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {key: value for key, value in question.items() if key not in ANSWER_KEY_FIELDS}
        for question in questions
    ]


async def has_graded_submission(db: AsyncSession, assignment_id: Any, user_id: Any) -> bool:
    result = await db.execute(
        select(Submission.id).where(
            Submission.assignment_id == assignment_id,
            Submission.user_id == user_id,
            Submission.status == SubmissionStatus.GRADED
        ).limit(1)
    )
    return result.first() is not None


async def assignment_view(db: AsyncSession, assignment: Assignment, user: User) -> AssignmentResponse:
    """Students see the answer key only once graded or when the assignment allows it"""
    response = AssignmentResponse.model_validate(assignment)

    if user.role == UserRole.STUDENT and not assignment.show_correct_answers:
        if not await has_graded_submission(db, assignment.id, user.id):
            response.questions = redact_answer_key(response.questions)

    return response


def resolve_total_points(total_points: Optional[float], questions: List[QuestionModel], rubric: List[RubricCriterion]) -> float:
    if total_points:
        return total_points
    derived = sum(question.points for question in questions) or sum(item.max_points for item in rubric)
    if derived <= 0:
        raise ValidationException("Total points must be greater than zero", field="total_points")
    return derived


# API Routes
@router.get("/course/{course_id}", response_model=List[AssignmentResponse])
async def get_course_assignments(
    course_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Active assignments of a course in module order"""

    result = await db.execute(
        select(Assignment).where(
            Assignment.course_id == course_id,
            Assignment.is_active.is_(True),
            Assignment.is_deleted.is_(False)
        ).order_by(Assignment.module_index, Assignment.created_at)
    )

    return [await assignment_view(db, assignment, current_user) for assignment in result.scalars().all()]


@router.get("/course/{course_id}/grade")
async def get_my_course_grade(
    course_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Current user's weighted grade for a course"""

    course = await db.get(Course, course_id)
    if course is None or course.is_deleted:
        raise CourseNotFoundException(str(course_id))

    grade = await learning_service.course_grade_for_user(db, current_user.id, course_id)

    return {"course_id": str(course_id), **grade.to_dict()}


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Assignment detail"""

    assignment = await get_assignment_or_404(db, assignment_id)
    return await assignment_view(db, assignment, current_user)


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    request: CreateAssignmentRequest,
    current_user: User = Depends(require_instructor_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create an assignment in a course the current user teaches"""

    course = await db.get(Course, request.course_id)
    if course is None or course.is_deleted:
        raise CourseNotFoundException(str(request.course_id))

    ensure_course_access(current_user, course, "create assignments for")

    if course.module_count and request.module_index >= course.module_count:
        raise ValidationException("Module index out of range", field="module_index", value=request.module_index)

    assignment = Assignment(
        course_id=course.id,
        title=request.title,
        description=request.description,
        assignment_type=request.type,
        module_index=request.module_index,
        due_date=request.due_date,
        max_attempts=request.max_attempts or 1,
        time_limit=request.time_limit,
        total_points=resolve_total_points(request.total_points, request.questions, request.rubric),
        passing_score=request.passing_score,
        weight=request.weight,
        instructions=request.instructions,
        attachments=[],
        questions=[question.model_dump(mode="json") for question in request.questions],
        rubric=[item.model_dump() for item in request.rubric],
        is_active=True,
        auto_grade=request.auto_grade,
        show_correct_answers=request.show_correct_answers,
        shuffle_questions=request.shuffle_questions,
        created_by_id=current_user.id
    )

    db.add(assignment)
    await db.commit()

    logger.info(f"Assignment '{assignment.title}' created in course {course.id}")

    return assignment


@router.put("/{assignment_id}", response_model=AssignmentResponse)
async def update_assignment(
    request: UpdateAssignmentRequest,
    assignment_id: UUID = Path(...),
    current_user: User = Depends(require_instructor_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update an assignment; only the course instructor or an admin may do so"""

    assignment = await get_assignment_or_404(db, assignment_id, with_course=True)
    ensure_course_access(current_user, assignment.course, "update")

    updates = request.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    if "due_date" in updates:
        updates["due_date"] = request.due_date

    for field, value in updates.items():
        setattr(assignment, field, value)

    await db.commit()

    logger.info(f"Assignment {assignment_id} updated by {current_user.email}")

    return assignment


@router.delete("/{assignment_id}")
async def delete_assignment(
    assignment_id: UUID = Path(...),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Remove an assignment"""

    assignment = await get_assignment_or_404(db, assignment_id)

    assignment.is_deleted = True
    assignment.is_active = False
    await db.commit()

    logger.info(f"Assignment {assignment_id} deleted by {current_user.email}")

    return {"message": "Assignment deleted successfully"}


@router.post("/{assignment_id}/submit", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_assignment(
    request: SubmitAssignmentRequest,
    assignment_id: UUID = Path(...),
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Submit an attempt; auto-graded quizzes come back graded"""

    assignment = await get_assignment_or_404(db, assignment_id)
    if not assignment.is_active:
        raise AssignmentNotFoundException(str(assignment_id))

    await learning_service.require_enrollment(db, current_user.id, assignment.course_id)

    submission = await learning_service.submit_assignment(
        db,
        assignment,
        current_user,
        answers=[answer.model_dump() for answer in request.answers],
        content=request.content,
        attachments=request.attachments,
        time_spent=request.time_spent
    )
    await db.commit()

    return submission


@router.get("/{assignment_id}/submissions/my", response_model=List[SubmissionResponse])
async def get_my_submissions(
    assignment_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Current user's attempts, latest first"""

    result = await db.execute(
        select(Submission).where(
            Submission.assignment_id == assignment_id,
            Submission.user_id == current_user.id
        ).order_by(desc(Submission.attempt_number))
    )
    return result.scalars().all()


@router.get("/{assignment_id}/submissions", response_model=List[SubmissionWithStudentResponse])
async def get_assignment_submissions(
    assignment_id: UUID = Path(...),
    current_user: User = Depends(require_instructor_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """All submissions for an assignment"""

    assignment = await get_assignment_or_404(db, assignment_id, with_course=True)
    ensure_course_access(current_user, assignment.course, "view submissions for")

    result = await db.execute(
        select(Submission)
        .options(selectinload(Submission.user))
        .where(Submission.assignment_id == assignment_id)
        .order_by(desc(Submission.submitted_at))
    )

    return [
        SubmissionWithStudentResponse(
            **SubmissionResponse.model_validate(submission).model_dump(),
            student_name=submission.user.name,
            student_email=submission.user.email
        )
        for submission in result.scalars().all()
    ]


@router.get("/{assignment_id}/statistics")
async def get_assignment_statistics(
    assignment_id: UUID = Path(...),
    current_user: User = Depends(require_instructor_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Class statistics over graded submissions"""

    assignment = await get_assignment_or_404(db, assignment_id, with_course=True)
    ensure_course_access(current_user, assignment.course, "view statistics for")

    result = await db.execute(
        select(Submission).where(
            Submission.assignment_id == assignment_id,
            Submission.status == SubmissionStatus.GRADED
        )
    )

    return {
        "assignment_id": str(assignment_id),
        **class_statistics(result.scalars().all()).to_dict()
    }


@router.put("/submissions/{submission_id}/grade", response_model=SubmissionResponse)
async def grade_submission(
    request: GradeSubmissionRequest,
    submission_id: UUID = Path(...),
    current_user: User = Depends(require_instructor_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Manually grade a submission"""

    submission = await db.get(Submission, submission_id)
    if submission is None:
        raise ResourceNotFoundByIdException("submission", str(submission_id))

    assignment = await get_assignment_or_404(db, submission.assignment_id, with_course=True)
    ensure_course_access(current_user, assignment.course, "grade submissions for")

    submission = await learning_service.grade_submission(
        db,
        submission,
        assignment,
        current_user,
        score=request.score,
        feedback=request.feedback,
        rubric_scores=[score.model_dump() for score in request.rubric_scores]
    )
    await db.commit()

    return submission
