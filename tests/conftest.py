import os
import uuid

os.environ["ENVIRONMENT"] = "testing"

import pytest
from fastapi.testclient import TestClient

from learnhub.backend.database.connection import (
    init_database,
    get_async_session,
    close_database_connections
)
from learnhub.backend.database.models import User, UserRole
from learnhub.main import create_main_app

PASSWORD = "password123"


@pytest.fixture
def app():
    return create_main_app()


@pytest.fixture
def client(app):
    # the lifespan builds a fresh in-memory database and disposes it on exit
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def db_session():
    await init_database()
    async with get_async_session() as session:
        yield session
    await close_database_connections()


@pytest.fixture
async def make_user(db_session):
    async def _make_user(name="Learner", role=UserRole.STUDENT, **fields):
        values = dict(
            learning_goals=[],
            skill_tags=[],
            preferences={},
            total_learning_hours=0,
            current_streak=0,
            longest_streak=0
        )
        values.update(fields)
        user = User(
            name=name,
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            hashed_password="not-a-real-hash",
            role=role,
            **values
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _make_user


def register(client, role="student", name=None):
    email = f"{role}-{uuid.uuid4().hex[:8]}@example.com"
    response = client.post("/api/auth/register", json={
        "name": name or role.capitalize(),
        "email": email,
        "password": PASSWORD,
        "role": role
    })
    assert response.status_code == 201, response.text
    body = response.json()
    return {"Authorization": f"Bearer {body['access_token']}"}, body["user"]


def create_course(client, headers, modules=2, **overrides):
    payload = {
        "title": "Intro to Python",
        "description": "Variables, functions and modules",
        "category": "Programming",
        "difficulty": "Beginner",
        "duration_weeks": 4,
        "hours_per_week": 3,
        "syllabus": [
            {"module_title": f"Module {index + 1}", "topics": ["basics"], "estimated_hours": 2}
            for index in range(modules)
        ]
    }
    payload.update(overrides)
    response = client.post("/api/courses", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def instructor(client):
    return register(client, "instructor", name="Ada Instructor")


@pytest.fixture
def student(client):
    return register(client, "student", name="Sam Student")


@pytest.fixture
def course(client, instructor):
    headers, _ = instructor
    return create_course(client, headers)


async def _promote_to_admin(user_id):
    async with get_async_session() as session:
        user = await session.get(User, uuid.UUID(user_id))
        user.role = UserRole.ADMIN
        await session.commit()


@pytest.fixture
def admin(client):
    headers, user = register(client, "instructor", name="Root Admin")
    client.portal.call(_promote_to_admin, user["id"])
    return headers, user
