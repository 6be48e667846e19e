"""
Test configuration and fixtures.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
from faker import Faker
from httpx import AsyncClient, ASGITransport
from jose import jwt
from sqlalchemy import text

# Set testing environment before the app modules read it
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test.db'
os.environ['JWT_SECRET'] = 'test-jwt-secret-for-testing-only'
os.environ['JWT_ALGORITHM'] = 'HS256'
os.environ['PROFESSOR_ROLES'] = 'professor'

import config
from database import Database
from main import create_app
from utils.notifier import EventHub

fake = Faker()

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
COURSE_ID = 1
ENROLLED_STUDENT = 1
OTHER_STUDENT = 2


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


def make_token(claims: dict) -> str:
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def build_questions(correct=("B", "A", "C", "D", "A"), marks=None) -> list:
    questions = []
    for i, answer in enumerate(correct):
        questions.append({
            "question_text": f"Question {i + 1}: {fake.sentence()}",
            "marks": marks[i] if marks else 1,
            "options": [
                {"label": label, "text": f"Option {label}", "is_correct": label == answer}
                for label in ("A", "B", "C", "D")
            ],
        })
    return questions


def build_payload(deadline: datetime = NOW + timedelta(hours=1), **overrides) -> dict:
    payload = {
        "course_id": COURSE_ID,
        "title": "Week 3 quiz",
        "description": "Relational algebra",
        "deadline": deadline.isoformat(),
        "questions": build_questions(),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def hub() -> EventHub:
    return EventHub()


async def seed_database(db: Database) -> None:
    """Tables plus one course, two students and their enrollment answers"""
    await db.create_all()
    async with db.transaction() as session:
        await session.execute(
            text("INSERT INTO courses (course_id, code, title) VALUES (:id, :code, :title)"),
            {"id": COURSE_ID, "code": "CS101", "title": "Databases"},
        )
        await session.execute(
            text("INSERT INTO students (student_id, name, email) VALUES (:id, :name, :email)"),
            [
                {"id": ENROLLED_STUDENT, "name": fake.name(), "email": fake.email()},
                {"id": OTHER_STUDENT, "name": fake.name(), "email": fake.email()},
            ],
        )
        await session.execute(
            text("INSERT INTO course_responses (student_id, course_id, response_status) VALUES (:sid, :cid, :st)"),
            [
                {"sid": ENROLLED_STUDENT, "cid": COURSE_ID, "st": "selected"},
                {"sid": OTHER_STUDENT, "cid": COURSE_ID, "st": "pending"},
            ],
        )


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """Fresh SQLite database per test"""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await seed_database(db)
    yield db
    await db.dispose()


@pytest.fixture
def app(database: Database, hub: EventHub, clock: FixedClock):
    return create_app(database=database, notifier=hub, clock=clock)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac


@pytest.fixture
def professor_headers() -> dict:
    token = make_token({"sub": "prof-1", "role": "professor", "username": "turing"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers() -> dict:
    return {"x-student-id": str(ENROLLED_STUDENT)}


@pytest.fixture
def create_assignment(client: AsyncClient, professor_headers: dict):
    """Create an assignment through the API and return its id and question ids by position"""
    async def _create(**overrides):
        response = await client.post("/assignments", json=build_payload(**overrides), headers=professor_headers)
        assert response.status_code == 201, response.text
        assignment_id = response.json()["assignment_id"]

        detail = await client.get(f"/assignments/{assignment_id}", headers=professor_headers)
        questions = {q["position"]: q["id"] for q in detail.json()["assignment"]["questions"]}
        return assignment_id, questions

    return _create


async def count_rows(db: Database, table: str) -> int:
    async with db.transaction() as session:
        res = await session.execute(text(f"SELECT COUNT(*) FROM {table}"))
        return res.scalar_one()
