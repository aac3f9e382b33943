"""
Pytest configuration and fixtures for the quiz attempt service tests.
"""
import sys
import os
from types import SimpleNamespace

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from core.config import settings
from core.security import Identity
from models import Base, User
from models.user import ROLE_ADMIN, ROLE_USER
from tests.factories import make_quiz


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "ATTEMPT_RETRY_BASE_SECONDS", 0.0)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'quiz.db'}")

    # SQLite leaves foreign keys unenforced unless asked
    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sample_questions():
    """One single-correct and one multiple-correct question"""
    return [
        ("Which link is safe to click?", [("The one you typed yourself", True), ("The one in the urgent email", False)]),
        ("Which are signs of phishing?", [("Urgent tone", True), ("Mismatched sender", True), ("Company logo", False)]),
    ]


@pytest.fixture
async def seed(db, sample_questions):
    users = [
        User(external_id="alice", username="alice", email="alice@example.com", role=ROLE_USER),
        User(external_id="bob", username="bob", email="bob@example.com", role=ROLE_USER),
        User(external_id="root", username="root", email="root@example.com", role=ROLE_ADMIN),
    ]
    db.add_all(users)
    await db.commit()

    quiz_id = await make_quiz(db, "Phishing Basics", sample_questions, job_role="Finance")

    return SimpleNamespace(
        alice=Identity("alice"),
        bob=Identity("bob"),
        admin=Identity("root"),
        alice_id=users[0].id,
        bob_id=users[1].id,
        admin_id=users[2].id,
        quiz_id=quiz_id,
    )
