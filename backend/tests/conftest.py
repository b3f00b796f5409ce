import os
import sys
from datetime import datetime, timezone

# Ensure backend dir on sys.path for flat imports like `from database import Base`
BACKEND = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)

# Single shared in-memory database; must be set before config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient

import models  # noqa: F401
from auth import create_token
from database import Base, SessionLocal, engine, get_db
from models.track import Track, Lesson
from models.user import User

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db):
    from main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(is_admin=False, **kwargs):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            username=kwargs.pop("username", f"user{n}"),
            email=kwargs.pop("email", f"user{n}@example.com"),
            name=kwargs.pop("name", f"User {n}"),
            is_admin=is_admin,
            **kwargs,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_track(db):
    counter = {"n": 0}

    def _make(lessons=3, published_at=NOW, **kwargs):
        counter["n"] += 1
        n = counter["n"]
        track = Track(
            slug=kwargs.pop("slug", f"track-{n}"),
            title=kwargs.pop("title", f"Track {n}"),
            published_at=published_at,
            **kwargs,
        )
        db.add(track)
        db.flush()
        for i in range(lessons):
            db.add(Lesson(
                track_id=track.id,
                slug=f"lesson-{n}-{i}",
                title=f"Lesson {i + 1}",
                position=i,
                duration_min=10,
                published_at=published_at,
            ))
        db.commit()
        db.refresh(track)
        return track

    return _make


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_token({'user_id': user.id, 'username': user.username})}"}
