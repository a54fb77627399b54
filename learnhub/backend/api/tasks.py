"""
LearnHub Learning Management System
Personal learning task API routes
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from ..database.connection import get_db
from ..database.models import CourseDifficulty, Task, User
from ..dependencies import require_authentication
from ..exceptions import ResourceNotFoundByIdException, ResourceOwnershipException
from ..services import learning_service
from ..services.progress_calculator import summarize_tasks
from .achievements import AchievementResponse, to_achievement_responses

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()


# Pydantic models
class CreateTaskRequest(BaseModel):
    title: str
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    category: str = "General"
    difficulty: CourseDifficulty = CourseDifficulty.BEGINNER
    estimated_time: int = Field(60, ge=0)
    resources: List[Dict[str, Any]] = []
    notes: Optional[str] = None
    skills_learned: List[str] = []

    @field_validator('title', 'category')
    @classmethod
    def validate_required_text(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Field cannot be empty')
        return v.strip()


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None
    deadline: Optional[datetime] = None
    category: Optional[str] = None
    difficulty: Optional[CourseDifficulty] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    time_spent: Optional[int] = Field(None, ge=0)
    estimated_time: Optional[int] = Field(None, ge=0)
    resources: Optional[List[Dict[str, Any]]] = None
    notes: Optional[str] = None
    skills_learned: Optional[List[str]] = None

    @field_validator('title', 'category')
    @classmethod
    def validate_text(cls, v):
        if v is not None and len(v.strip()) == 0:
            raise ValueError('Field cannot be empty')
        return v.strip() if v else v


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    title: str
    description: Optional[str] = None
    completed: bool
    deadline: Optional[datetime] = None
    category: str
    difficulty: CourseDifficulty
    progress: int
    time_spent: int
    estimated_time: int
    resources: List[Dict[str, Any]] = []
    notes: Optional[str] = None
    skills_learned: List[str] = []
    last_studied: Optional[datetime] = None
    created_at: datetime


class TaskUpdateResponse(BaseModel):
    task: TaskResponse
    new_achievements: List[AchievementResponse] = []


# Helper functions
def user_tasks_query(user: User):
    return (
        select(Task)
        .where(Task.user_id == user.id, Task.is_deleted.is_(False))
        .order_by(desc(Task.created_at))
    )


async def get_owned_task(db: AsyncSession, task_id: UUID, user: User, action: str) -> Task:
    result = await db.execute(
        select(Task).where(Task.id == task_id, Task.is_deleted.is_(False))
    )
    task = result.scalar_one_or_none()
    if not task:
        raise ResourceNotFoundByIdException("task", str(task_id))
    if task.user_id != user.id:
        raise ResourceOwnershipException("task", str(task_id), action=action)
    return task


# API Routes
@router.get("", response_model=List[TaskResponse])
async def list_tasks(
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """List the current user's learning tasks, newest first"""
    result = await db.execute(user_tasks_query(current_user))
    return result.scalars().all()


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    request: CreateTaskRequest,
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    task = Task(
        user_id=current_user.id,
        progress=0,
        time_spent=0,
        completed=False,
        last_studied=datetime.utcnow(),
        **request.model_dump()
    )

    db.add(task)
    await db.commit()

    logger.info(f"Task '{task.title}' created by {current_user.email}")

    return task


@router.get("/analytics")
async def get_task_analytics(
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Totals, per-category breakdown and recent study activity"""
    result = await db.execute(user_tasks_query(current_user))
    return summarize_tasks(result.scalars().all()).to_dict()


@router.get("/category/{category}", response_model=List[TaskResponse])
async def list_tasks_by_category(
    category: str = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        user_tasks_query(current_user).where(Task.category == category)
    )
    return result.scalars().all()


@router.put("/{task_id}", response_model=TaskUpdateResponse)
async def update_task(
    request: UpdateTaskRequest,
    task_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Update a task; time spent is added to the running total"""

    task = await get_owned_task(db, task_id, current_user, "update")

    task, awarded = await learning_service.update_task(
        db, task, current_user, request.model_dump(exclude_unset=True, exclude_none=True)
    )
    await db.commit()

    return TaskUpdateResponse(
        task=TaskResponse.model_validate(task),
        new_achievements=to_achievement_responses(awarded)
    )


@router.delete("/{task_id}")
async def delete_task(
    task_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    task = await get_owned_task(db, task_id, current_user, "delete")

    task.is_deleted = True
    await db.commit()

    logger.info(f"Task {task_id} deleted by {current_user.email}")

    return {"message": "Task deleted successfully"}
