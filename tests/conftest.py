import asyncio
from datetime import timedelta
from typing import List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select, text

from village_exam.auth_utils import hash_password
from village_exam.core.ports import StudentSession
from village_exam.core.sql_store import SqlExamStore
from village_exam.errors import CameraUnavailableError, StoreUnavailableError
from village_exam.models import AttemptStatus, Exam, ExamAttempt, ExamQuestion, ExamStatus, User
from village_exam.utils import utcnow

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool shares the same in-memory DB across connections and threads
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


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

    # FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM examanswer"))
        session.exec(text("DELETE FROM examattempt"))
        session.exec(text("DELETE FROM examquestion"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text('DELETE FROM "user"'))
        session.commit()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from fastapi.testclient import TestClient  # noqa: E402

from village_exam.database import get_session  # noqa: E402
from village_exam.main import app  # noqa: E402


def override_get_session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def client():
    """TestClient bound to the in-memory database."""
    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def asgi_app():
    """The app with its session dependency overridden, for httpx.ASGITransport."""
    app.dependency_overrides[get_session] = override_get_session
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


def _login(client, email: str, password: str):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def login():
    return _login


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create_user(full_name: str, email: str, password: str, role: str, standard: Optional[str] = None) -> User:
    with Session(test_engine) as session:
        user = User(
            full_name=full_name,
            email=email,
            password_hash=hash_password(password),
            role=role,
            standard=standard,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        user_id = user.id

    with Session(test_engine) as session:
        return session.get(User, user_id)


@pytest.fixture
def admin_user():
    """Create a sample admin user."""
    return _create_user("Admin User", "admin@example.com", "admin123", "admin")


@pytest.fixture
def student_user():
    """Create a 7th standard student."""
    return _create_user("Asha Patil", "asha@example.com", "student123", "student", standard="7th")


@pytest.fixture
def other_student():
    return _create_user("Ravi Jadhav", "ravi@example.com", "student123", "student", standard="7th")


CORRECT_OPTIONS = ["A", "B", "C", "D", "A"]


def create_exam(
    total_questions: int = 5,
    question_count: int = 5,
    status: str = ExamStatus.ACTIVE,
    starts_in: timedelta = timedelta(hours=-1),
    ends_in: timedelta = timedelta(hours=1),
    **fields,
) -> Exam:
    now = utcnow()
    fields.setdefault("from_standard", "5th")
    fields.setdefault("to_standard", "8th")
    with Session(test_engine) as session:
        exam = Exam(
            title="General Knowledge",
            subject="GK",
            total_questions=total_questions,
            duration_minutes=30,
            scheduled_at=now + starts_in,
            ends_at=now + ends_in,
            status=status,
            **fields,
        )
        session.add(exam)
        session.commit()
        session.refresh(exam)
        exam_id = exam.id

        for i in range(question_count):
            session.add(
                ExamQuestion(
                    exam_id=exam_id,
                    question=f"Question {i + 1}?",
                    option_a=f"Alpha {i + 1}",
                    option_b=f"Beta {i + 1}",
                    option_c=f"Gamma {i + 1}",
                    option_d=f"Delta {i + 1}",
                    correct_option=CORRECT_OPTIONS[i % len(CORRECT_OPTIONS)],
                    explanation=f"Explanation {i + 1}",
                )
            )
        session.commit()

    with Session(test_engine) as session:
        return session.get(Exam, exam_id)


@pytest.fixture
def exam():
    """An active exam for standards 5th to 8th with five questions."""
    return create_exam()


@pytest.fixture
def make_exam():
    """Factory for exams with custom schedule, status or standard range."""
    return create_exam


def question_ids(exam_id: int) -> List[int]:
    with Session(test_engine) as session:
        stmt = select(ExamQuestion.id).where(ExamQuestion.exam_id == exam_id).order_by(ExamQuestion.id)
        return list(session.exec(stmt).all())


def create_attempt_row(exam: Exam, user: User, **fields) -> ExamAttempt:
    """Insert an attempt directly, bypassing the service checks."""
    fields.setdefault("status", AttemptStatus.IN_PROGRESS)
    fields.setdefault("shuffled_question_order", question_ids(exam.id)[: exam.total_questions])
    fields.setdefault("remaining_time_seconds", exam.duration_minutes * 60)
    with Session(test_engine) as session:
        attempt = ExamAttempt(
            exam_id=exam.id,
            user_id=user.id,
            student_name=user.full_name,
            total_questions=exam.total_questions,
            **fields,
        )
        session.add(attempt)
        session.commit()
        session.refresh(attempt)
        attempt_id = attempt.id

    with Session(test_engine) as session:
        return session.get(ExamAttempt, attempt_id)


@pytest.fixture
def make_attempt():
    """Factory inserting an attempt row directly, e.g. to stage a resume."""
    return create_attempt_row


@pytest.fixture
def exam_question_ids():
    return question_ids


@pytest.fixture
def student_session(student_user):
    return StudentSession(
        user_id=student_user.id,
        student_name=student_user.full_name,
        standard=student_user.standard,
    )


# ============================================================================
# FAKES
# ============================================================================


class FakeCamera:
    """Scripted camera: can refuse to open or return an empty frame."""

    def __init__(self, frame: Optional[bytes] = b"\xff\xd8jpeg-bytes", fail_open: bool = False):
        self.frame = frame
        self.fail_open = fail_open
        self.is_open = False
        self.open_calls = 0
        self.closed = 0

    async def open(self) -> None:
        self.open_calls += 1
        if self.fail_open:
            raise CameraUnavailableError()
        self.is_open = True

    async def grab_frame(self) -> Optional[bytes]:
        return self.frame

    def close(self) -> None:
        self.is_open = False
        self.closed += 1


class RecordingStore(SqlExamStore):
    """SQL store that records writes and can be told to fail them."""

    def __init__(self, engine=test_engine):
        super().__init__(engine)
        self.updates = []
        self.saves = []
        self.fail_updates = False
        self.fail_saves = False
        self.save_delay = 0

    async def update_attempt(self, attempt_id, user_id, fields):
        self.updates.append(fields.model_dump(exclude_unset=True))
        if self.fail_updates:
            raise StoreUnavailableError()
        return await super().update_attempt(attempt_id, user_id, fields)

    async def save_answer(self, attempt_id, user_id, question_id, selected_option, time_taken_seconds):
        self.saves.append((question_id, selected_option))
        if self.save_delay:
            await asyncio.sleep(self.save_delay)
        if self.fail_saves:
            raise StoreUnavailableError()
        return await super().save_answer(attempt_id, user_id, question_id, selected_option, time_taken_seconds)


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def store():
    return RecordingStore()
