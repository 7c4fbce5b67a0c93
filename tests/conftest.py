import asyncio
import sys
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, text


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

import httpx
from sqlalchemy.pool import StaticPool

from training_center.auth_utils import hash_password
from training_center.errors import SuggestionFailure
from training_center.models import User
from training_center.schemas import GeneratedNote, QuizIn
from training_center.services import quiz_service

# StaticPool shares the same in-memory DB across threads (runners use the threadpool)
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

ADMIN_PASSWORD = "admin123"
STUDENT_PASSWORD = "testpass123"


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield

    # Clean up in FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM quizresultrecord"))
        session.exec(text("DELETE FROM quizsessionrecord"))
        session.exec(text("DELETE FROM finalevaluation"))
        session.exec(text("DELETE FROM evaluation"))
        session.exec(text("DELETE FROM quiz"))
        session.exec(text("DELETE FROM user"))
        session.commit()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# FAKE AI CLIENT
# ============================================================================


class FakeAIClient:
    """Stands in for GeminiClient; records calls and answers deterministically."""

    def __init__(self):
        self.note_calls = []
        self.quiz_calls = []
        self.fail = False
        self.questions = []

    async def generate_evaluation_notes(self, criteria):
        self.note_calls.append(list(criteria))
        if self.fail:
            raise SuggestionFailure("AI service is unreachable")
        return [GeneratedNote(id=c.id, note=f"AI note {c.score}/5") for c in criteria]

    async def generate_quiz_questions(self, topic, num_questions, pdf_bytes):
        self.quiz_calls.append((topic, num_questions, pdf_bytes))
        if self.fail:
            raise SuggestionFailure("The AI model returned an unexpected result.")
        return self.questions[:num_questions]


@pytest.fixture
def fake_ai():
    return FakeAIClient()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from training_center.database import get_session
from training_center.deps import get_ai_client, get_engine
from training_center.engine.registry import DraftRegistry, RunnerRegistry
from training_center.main import app
from training_center.services.evaluation_service import close_draft
from training_center.settings import settings


class SyncClientWrapper:
    def __init__(self, async_client, loop):
        self.async_client = async_client
        self.loop = loop

    def get(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

    def post(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

    def put(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.put(*args, **kwargs))

    def patch(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.patch(*args, **kwargs))

    def delete(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.delete(*args, **kwargs))

    def run(self, coro):
        """Run a coroutine on the client's loop (lets background tasks progress)."""
        return self.loop.run_until_complete(coro)

    def login(self, email, password):
        resp = self.post("/auth/login", data={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp


@pytest.fixture
def client(fake_ai):
    """Create test client using httpx AsyncClient with sync wrapper."""

    def override_get_session():
        # Must use the same test_engine instance that has tables
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_engine] = lambda: test_engine
    app.dependency_overrides[get_ai_client] = lambda: fake_ai

    # fresh registries per test; they hold asyncio objects tied to this loop
    app.state.runners = RunnerRegistry(idle_seconds=settings.runner_idle_minutes * 60)
    app.state.drafts = DraftRegistry(close=close_draft, idle_seconds=settings.draft_idle_minutes * 60)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    yield SyncClientWrapper(async_client, loop)

    # Cleanup
    loop.run_until_complete(app.state.runners.aclose())
    loop.run_until_complete(app.state.drafts.aclose())
    loop.run_until_complete(async_client.aclose())
    loop.run_until_complete(asyncio.sleep(0))
    loop.close()
    asyncio.set_event_loop(None)
    app.dependency_overrides.clear()


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create_user(name, email, password, role):
    with Session(test_engine) as session:
        user = User(name=name, email=email, password_hash=hash_password(password), role=role)
        session.add(user)
        session.commit()
        session.refresh(user)
        user_id = user.id

    with Session(test_engine) as session:
        return session.get(User, user_id)


@pytest.fixture
def admin_user():
    return _create_user("Admin User", "admin@example.com", ADMIN_PASSWORD, "admin")


@pytest.fixture
def student_user():
    return _create_user("Alice Student", "alice@example.com", STUDENT_PASSWORD, "student")


@pytest.fixture
def admin_client(client, admin_user):
    client.login(admin_user.email, ADMIN_PASSWORD)
    return client


@pytest.fixture
def student_client(client, student_user):
    client.login(student_user.email, STUDENT_PASSWORD)
    return client


SCENARIO_QUESTIONS = [
    {
        "id": "q1",
        "type": "multiple-choice",
        "question": "Which layer does a router operate on?",
        "options": ["A", "B", "C"],
        "answer": "B",
    },
    {
        "id": "q2",
        "type": "checkbox",
        "question": "Pick the secure protocols",
        "options": ["A", "B", "C"],
        "answer": ["A", "C"],
    },
    {
        "id": "q3",
        "type": "short-answer",
        "question": "What filters traffic between networks?",
        "answer": "firewall",
    },
]


def make_quiz(time_limit=None, status="Published", questions=None, **kwargs):
    data = QuizIn.model_validate(
        {
            "title": "Network Security Basics",
            "description": "Routers, protocols and firewalls",
            "questions": questions if questions is not None else SCENARIO_QUESTIONS,
            "time_limit": time_limit,
            "status": status,
            **kwargs,
        }
    )
    with Session(test_engine) as session:
        row = quiz_service.create_quiz(session, data)
        return row.id


@pytest.fixture
def quiz_id():
    """Published, untimed quiz with one question of each type."""
    return make_quiz()


@pytest.fixture
def timed_quiz_id():
    return make_quiz(time_limit=10)
