"""
LearnHub Learning Management System
Achievement, certificate and leaderboard API routes
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Path
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.connection import get_db
from ..database.models import Achievement, AchievementType, AchievementRarity, User
from ..dependencies import require_authentication, require_student
from ..services import learning_service

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()


# Pydantic models
class AchievementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    achievement_type: AchievementType
    title: str
    description: str
    icon: Optional[str] = None
    course_id: Optional[UUID] = None
    criteria: Dict[str, Any] = {}
    unlocked_at: datetime
    certificate: Optional[Dict[str, Any]] = None
    rarity: AchievementRarity
    points: int
    share_url: Optional[str] = None
    shared_at: Optional[datetime] = None


class MyAchievementResponse(AchievementResponse):
    course_title: Optional[str] = None


class ShareResponse(BaseModel):
    message: str
    share_url: Optional[str]
    shared_at: datetime


class CertificateResponse(BaseModel):
    message: str
    achievement: AchievementResponse
    certificate_id: str
    verification_code: str
    download_url: str


class LeaderboardResponse(BaseModel):
    leaderboard_type: str
    period: str
    entries: List[Dict[str, Any]]
    last_updated: datetime


# Helper functions
def to_achievement_responses(achievements: List[Achievement]) -> List[AchievementResponse]:
    return [AchievementResponse.model_validate(achievement) for achievement in achievements]


# API Routes
@router.get("/my", response_model=List[MyAchievementResponse])
async def get_my_achievements(
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Visible achievements of the current learner, newest first"""

    achievements = await learning_service.list_achievements(db, current_user.id)

    return [
        MyAchievementResponse(
            **AchievementResponse.model_validate(achievement).model_dump(),
            course_title=achievement.course.title if achievement.course else None
        )
        for achievement in achievements
    ]


@router.get("/verify")
async def verify_certificate(
    certificate_id: str = Query(..., alias="certificateId", min_length=1),
    verification_code: str = Query(..., alias="verificationCode", min_length=1),
    db: AsyncSession = Depends(get_db)
):
    """Check a certificate's authenticity"""
    return await learning_service.verify_certificate(db, certificate_id, verification_code)


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    board_type: str = Query("points", alias="type", pattern="^(points|streak)$"),
    period: str = Query("all", pattern="^(week|month|all)$"),
    db: AsyncSession = Depends(get_db)
):
    """Top learners by achievement points or current streak"""

    entries = await learning_service.leaderboard(db, board_type, period)

    return LeaderboardResponse(
        leaderboard_type=board_type,
        period=period,
        entries=entries,
        last_updated=datetime.utcnow()
    )


@router.post("/{achievement_id}/share", response_model=ShareResponse)
async def share_achievement(
    achievement_id: UUID = Path(...),
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Mark an achievement as shared"""

    achievement = await learning_service.share_achievement(db, current_user, achievement_id)
    await db.commit()

    return ShareResponse(
        message="Achievement shared successfully",
        share_url=achievement.share_url,
        shared_at=achievement.shared_at
    )


@router.post("/certificates/course/{course_id}", response_model=CertificateResponse)
async def generate_certificate(
    course_id: UUID = Path(...),
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Issue the completion certificate for a finished course"""

    result = await learning_service.issue_certificate(db, current_user, course_id)
    await db.commit()

    return CertificateResponse(
        message=result["message"],
        achievement=AchievementResponse.model_validate(result["achievement"]),
        certificate_id=result["certificate_id"],
        verification_code=result["verification_code"],
        download_url=result["download_url"]
    )
