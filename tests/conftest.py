"""
Shared pytest fixtures for the QuizUp API tests.

Every test gets a fresh in-memory SQLite database wired into the app through
`dependency_overrides`, and AI calls are disabled so quiz generation uses the
static fallback bank.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from quizup.db import Base, get_db
from quizup.main import app
from quizup.settings import settings


@pytest.fixture(autouse=True)
def offline_settings(monkeypatch):
    """Keep tests away from Gemini and OpenRouter."""
    monkeypatch.setattr(settings, "gemini_api_key", None)
    monkeypatch.setattr(settings, "openrouter_api_key", None)
    monkeypatch.setattr(settings, "practice_question_count", 5)
    monkeypatch.setattr(settings, "seed_admin_username", None)
    monkeypatch.setattr(settings, "seed_admin_password", None)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: startup hooks would touch the real database
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, username, password="secret123"):
    resp = client.post("/auth/token", data={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def make_user(client):
    """
    Register a user and log in.

    Returns:
        callable: make_user(username, role="STUDENT", **fields) -> (user_json, headers)
    """

    def _make(username, role="STUDENT", password="secret123", **fields):
        body = {"username": username, "password": password, "role": role, **fields}
        resp = client.post("/auth/register", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json(), login(client, username, password)

    return _make


@pytest.fixture
def teacher(make_user):
    return make_user("ms_frizzle", role="TEACHER", first_name="Valerie", last_name="Frizzle")


@pytest.fixture
def student(make_user):
    return make_user("arnold", first_name="Arnold", last_name="Perlstein")


@pytest.fixture
def linked_student(client, teacher, student):
    _, teacher_headers = teacher
    resp = client.post("/teacher/students", json={"username": student[0]["username"]}, headers=teacher_headers)
    assert resp.status_code == 201, resp.text
    return student


@pytest.fixture
def math_quiz(client, teacher, linked_student):
    """A five-question Mathematics quiz built from the fallback bank, assigned to `linked_student`."""
    _, teacher_headers = teacher
    resp = client.post(
        "/teacher/quizzes",
        json={
            "title": "Arithmetic warm-up",
            "subject": "Mathematics",
            "level": "Easy",
            "duration": 15,
            "num_questions": 5,
        },
        headers=teacher_headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["quiz"]
