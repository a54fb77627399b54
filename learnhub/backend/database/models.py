"""
LearnHub Learning Management System
SQLAlchemy Database Models
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, Column, DateTime, Integer, String, Text, Float,
    ForeignKey, JSON, Enum, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship, validates
from sqlalchemy.types import TypeDecorator, CHAR

from ..utils.helpers import round_half_up

# Base class for all models
Base = declarative_base()


class GUID(TypeDecorator):
    """Platform-independent GUID type"""
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(UUID())
        else:
            return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return str(value)
        else:
            if not isinstance(value, uuid.UUID):
                return "%.32x" % uuid.UUID(value).int
            else:
                return "%.32x" % value.int

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        else:
            if not isinstance(value, uuid.UUID):
                return uuid.UUID(value)
            return value


# Enums
class UserRole(enum.Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class CourseCategory(enum.Enum):
    PROGRAMMING = "Programming"
    DESIGN = "Design"
    BUSINESS = "Business"
    MARKETING = "Marketing"
    DATA_SCIENCE = "Data Science"
    DEVOPS = "DevOps"
    MOBILE_DEVELOPMENT = "Mobile Development"
    WEB_DEVELOPMENT = "Web Development"
    OTHER = "Other"


class CourseDifficulty(enum.Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"


class AssignmentType(enum.Enum):
    QUIZ = "quiz"
    ASSIGNMENT = "assignment"
    PROJECT = "project"


class QuestionType(enum.Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    ESSAY = "essay"


class SubmissionStatus(enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    GRADED = "graded"


class AchievementType(enum.Enum):
    COURSE_COMPLETION = "course_completion"
    STREAK = "streak"
    TIME_MILESTONE = "time_milestone"
    GRADE_EXCELLENCE = "grade_excellence"
    FIRST_COURSE = "first_course"
    SKILL_MASTERY = "skill_mastery"


class AchievementRarity(enum.Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class SessionQuality(enum.Enum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


class DeviceType(enum.Enum):
    DESKTOP = "desktop"
    TABLET = "tablet"
    MOBILE = "mobile"


# Base model with common fields
class BaseModel(Base):
    __abstract__ = True

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)


# User Management Models
class User(BaseModel):
    __tablename__ = "users"

    name = Column(String(150), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), default=UserRole.STUDENT, nullable=False, index=True)
    university = Column(String(255))
    learning_goals = Column(JSON, default=list)
    skill_tags = Column(JSON, default=list)
    preferences = Column(JSON, default=dict)

    # Derived learning statistics
    total_learning_hours = Column(Integer, default=0, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    last_learning_date = Column(DateTime)
    last_login = Column(DateTime)

    # Relationships
    courses_taught = relationship("Course", back_populates="instructor")
    progress_records = relationship("LearningProgress", back_populates="user")
    learning_sessions = relationship("LearningSession", back_populates="user")
    submissions = relationship("Submission", back_populates="user", foreign_keys="Submission.user_id")
    achievements = relationship("Achievement", back_populates="user")
    tasks = relationship("Task", back_populates="user")

    @validates('email')
    def validate_email(self, key, address):
        return address.strip().lower()


# Catalog Models
class Course(BaseModel):
    __tablename__ = "courses"

    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=False)
    category = Column(Enum(CourseCategory), nullable=False, index=True)
    difficulty = Column(Enum(CourseDifficulty), nullable=False, index=True)
    duration_weeks = Column(Integer, default=1, nullable=False)
    hours_per_week = Column(Float, default=1.0, nullable=False)
    estimated_completion_time = Column(Float, default=0.0, nullable=False)  # hours
    prerequisites = Column(JSON, default=list)
    learning_objectives = Column(JSON, default=list)
    syllabus = Column(JSON, default=list)  # [{"module_title", "topics", "estimated_hours"}]
    is_active = Column(Boolean, default=True, nullable=False)
    enrollment_count = Column(Integer, default=0, nullable=False)
    rating = Column(Float, default=0.0)
    rating_count = Column(Integer, default=0)

    # Foreign Keys
    instructor_id = Column(GUID(), ForeignKey('users.id'), nullable=False)

    # Relationships
    instructor = relationship("User", back_populates="courses_taught")
    assignments = relationship("Assignment", back_populates="course", cascade="all, delete-orphan")
    progress_records = relationship("LearningProgress", back_populates="course", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint('rating >= 0 AND rating <= 5', name='valid_course_rating'),
    )

    @property
    def module_count(self) -> int:
        return len(self.syllabus or [])


# Progress Models
class LearningProgress(BaseModel):
    __tablename__ = "learning_progress"

    user_id = Column(GUID(), ForeignKey('users.id'), nullable=False)
    course_id = Column(GUID(), ForeignKey('courses.id'), nullable=False)
    enrollment_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    completion_percentage = Column(Integer, default=0, nullable=False)
    current_module = Column(Integer, default=0, nullable=False)
    modules_completed = Column(JSON, default=list)  # [{"module_index", "completed_at", "time_spent"}]
    total_time_spent = Column(Integer, default=0, nullable=False)  # minutes
    last_access_date = Column(DateTime, default=datetime.utcnow)
    is_completed = Column(Boolean, default=False, nullable=False)
    completion_date = Column(DateTime)
    grade = Column(Float)
    certificate_issued = Column(Boolean, default=False, nullable=False)
    certificate_id = Column(String(64))
    notes = Column(Text)

    # Relationships
    user = relationship("User", back_populates="progress_records")
    course = relationship("Course", back_populates="progress_records")
    bookmarks = relationship(
        "Bookmark",
        back_populates="progress",
        cascade="all, delete-orphan",
        order_by="Bookmark.created_at",
        lazy="selectin"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint('user_id', 'course_id', name='_user_course_progress_uc'),
        CheckConstraint(
            'completion_percentage >= 0 AND completion_percentage <= 100',
            name='valid_completion_percentage'
        ),
        CheckConstraint('grade IS NULL OR (grade >= 0 AND grade <= 100)', name='valid_progress_grade'),
    )


class Bookmark(BaseModel):
    __tablename__ = "bookmarks"

    progress_id = Column(GUID(), ForeignKey('learning_progress.id'), nullable=False, index=True)
    module_index = Column(Integer, nullable=False)
    topic = Column(String(255), nullable=False)
    note = Column(Text)

    progress = relationship("LearningProgress", back_populates="bookmarks")


class LearningSession(BaseModel):
    __tablename__ = "learning_sessions"

    user_id = Column(GUID(), ForeignKey('users.id'), nullable=False)
    course_id = Column(GUID(), ForeignKey('courses.id'), nullable=False)
    session_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime)
    duration = Column(Integer, default=0, nullable=False)  # minutes
    module_index = Column(Integer)
    activities = Column(JSON, default=list)
    notes_added = Column(Integer, default=0)
    bookmarks_added = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    session_quality = Column(Enum(SessionQuality))
    session_notes = Column(Text)
    device_type = Column(Enum(DeviceType), default=DeviceType.DESKTOP)
    ip_address = Column(String(45))
    user_agent = Column(String(500))

    # Relationships
    user = relationship("User", back_populates="learning_sessions")
    course = relationship("Course")

    __table_args__ = (
        Index('idx_session_user_date', 'user_id', 'session_date'),
        Index('idx_session_course_date', 'course_id', 'session_date'),
    )


# Learning task tracker
class Task(BaseModel):
    __tablename__ = "learning_tasks"

    user_id = Column(GUID(), ForeignKey('users.id'), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    completed = Column(Boolean, default=False, nullable=False)
    deadline = Column(DateTime)
    category = Column(String(100), default="General", nullable=False)
    difficulty = Column(Enum(CourseDifficulty), default=CourseDifficulty.BEGINNER, nullable=False)
    progress = Column(Integer, default=0, nullable=False)  # percentage
    time_spent = Column(Integer, default=0, nullable=False)  # minutes
    estimated_time = Column(Integer, default=60, nullable=False)  # minutes
    resources = Column(JSON, default=list)
    notes = Column(Text)
    skills_learned = Column(JSON, default=list)
    last_studied = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="tasks")

    __table_args__ = (
        CheckConstraint('progress >= 0 AND progress <= 100', name='valid_task_progress'),
        Index('idx_task_user_category', 'user_id', 'category'),
    )


# Assessment Models
class Assignment(BaseModel):
    __tablename__ = "assignments"

    course_id = Column(GUID(), ForeignKey('courses.id'), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    assignment_type = Column(Enum(AssignmentType), nullable=False)
    module_index = Column(Integer, nullable=False)
    due_date = Column(DateTime)
    max_attempts = Column(Integer, default=1, nullable=False)
    time_limit = Column(Integer)  # minutes
    total_points = Column(Float, nullable=False)
    passing_score = Column(Float, nullable=False)  # percentage
    weight = Column(Float, default=1.0)  # weight in final course grade
    instructions = Column(Text)
    attachments = Column(JSON, default=list)
    questions = Column(JSON, default=list)  # [{"question", "type", "options", "correct_answer", "points", "explanation"}]
    rubric = Column(JSON, default=list)  # [{"criterion", "max_points", "description"}]
    is_active = Column(Boolean, default=True, nullable=False)
    auto_grade = Column(Boolean, default=False, nullable=False)
    show_correct_answers = Column(Boolean, default=True, nullable=False)
    shuffle_questions = Column(Boolean, default=False, nullable=False)

    created_by_id = Column(GUID(), ForeignKey('users.id'), nullable=False)

    # Relationships
    course = relationship("Course", back_populates="assignments")
    created_by = relationship("User")
    submissions = relationship("Submission", back_populates="assignment", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint('passing_score >= 0 AND passing_score <= 100', name='valid_passing_score'),
        CheckConstraint('total_points > 0', name='positive_total_points'),
        CheckConstraint('max_attempts >= 1', name='positive_max_attempts'),
    )


class Submission(BaseModel):
    __tablename__ = "submissions"

    assignment_id = Column(GUID(), ForeignKey('assignments.id'), nullable=False)
    user_id = Column(GUID(), ForeignKey('users.id'), nullable=False)
    attempt_number = Column(Integer, default=1, nullable=False)
    status = Column(Enum(SubmissionStatus), default=SubmissionStatus.DRAFT, nullable=False)
    submitted_at = Column(DateTime)
    graded_at = Column(DateTime)
    graded_by_id = Column(GUID(), ForeignKey('users.id'))
    answers = Column(JSON, default=list)  # [{"question_index", "answer", "is_correct", "points_earned"}]
    content = Column(Text)
    attachments = Column(JSON, default=list)
    score = Column(Float, default=0.0, nullable=False)
    max_score = Column(Float, nullable=False)
    percentage = Column(Integer, default=0, nullable=False)
    passed = Column(Boolean, default=False, nullable=False)
    feedback = Column(Text)
    rubric_scores = Column(JSON, default=list)
    time_spent = Column(Integer, default=0)  # minutes

    # Relationships
    assignment = relationship("Assignment", back_populates="submissions")
    user = relationship("User", back_populates="submissions", foreign_keys=[user_id])
    graded_by = relationship("User", foreign_keys=[graded_by_id])

    # Constraints
    __table_args__ = (
        UniqueConstraint('user_id', 'assignment_id', 'attempt_number', name='_user_assignment_attempt_uc'),
        Index('idx_submission_status_date', 'status', 'submitted_at'),
    )

    def refresh_percentage(self) -> None:
        """Keep percentage in step with score on every save"""
        if self.max_score and self.max_score > 0:
            self.percentage = round_half_up((self.score or 0) / self.max_score * 100)
        else:
            self.percentage = 0


# Achievement Models
class Achievement(BaseModel):
    __tablename__ = "achievements"

    user_id = Column(GUID(), ForeignKey('users.id'), nullable=False, index=True)
    achievement_type = Column(Enum(AchievementType), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    icon = Column(String(255))
    course_id = Column(GUID(), ForeignKey('courses.id'), nullable=True)
    criteria = Column(JSON, default=dict)

    # Identity columns backing the uniqueness constraint
    course_key = Column(String(36), default="", nullable=False)
    criteria_key = Column(String(255), default="", nullable=False)

    unlocked_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    certificate = Column(JSON)
    rarity = Column(Enum(AchievementRarity), default=AchievementRarity.COMMON, nullable=False)
    points = Column(Integer, default=0, nullable=False)
    share_url = Column(String(500))
    shared_at = Column(DateTime)

    # Relationships
    user = relationship("User", back_populates="achievements")
    course = relationship("Course")

    __table_args__ = (
        UniqueConstraint(
            'user_id', 'achievement_type', 'course_key', 'criteria_key',
            name='_user_achievement_identity_uc'
        ),
        Index('idx_achievement_unlocked', 'user_id', 'unlocked_at'),
    )


__all__ = [
    "Base",
    "GUID",
    "UserRole",
    "CourseCategory",
    "CourseDifficulty",
    "AssignmentType",
    "QuestionType",
    "SubmissionStatus",
    "AchievementType",
    "AchievementRarity",
    "SessionQuality",
    "DeviceType",
    "User",
    "Course",
    "LearningProgress",
    "Bookmark",
    "Task",
    "LearningSession",
    "Assignment",
    "Submission",
    "Achievement"
]
