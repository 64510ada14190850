import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from smartprep import models
from smartprep.crypto_utils import PhoneCipher, StaticSecretProvider
from smartprep.services.notifications import MessageDeliveryError, MessageSender
from smartprep.services.question_bank import QuestionBank

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool keeps every connection on the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TEST_KEY = Fernet.generate_key()


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
        session.exec(text("DELETE FROM notification"))
        session.exec(text("DELETE FROM testattempt"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM test"))
        session.exec(text("DELETE FROM student"))
        session.commit()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def cipher():
    return PhoneCipher(StaticSecretProvider(TEST_KEY))


class FakeSender(MessageSender):
    """Records sends; fails for numbers listed in `failing`."""

    def __init__(self):
        self.sent = []
        self.failing = set()

    def send(self, sender_id, to, body):
        if to in self.failing:
            raise MessageDeliveryError(f"provider rejected {to}")
        self.sent.append((sender_id, to, body))
        return f"msg-{len(self.sent)}"


@pytest.fixture
def sender():
    return FakeSender()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from smartprep.database import get_session  # noqa: E402
from smartprep.deps import get_message_sender, get_phone_cipher  # noqa: E402
from smartprep.main import app  # noqa: E402


@pytest.fixture
def client(cipher, sender):
    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_phone_cipher] = lambda: cipher
    app.dependency_overrides[get_message_sender] = lambda: sender
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def make_student(session, cipher=None, email="ali@example.com", number=None, consent=False):
    student = models.Student(
        full_name="Ali Khan",
        email=email,
        school_name="City School",
        age=16,
        class_grade="10",
        whatsapp_number=cipher.encrypt(number) if number else None,
        consent_whatsapp=consent,
        profile_completed=True,
    )
    session.add(student)
    session.commit()
    session.refresh(student)
    return student


@pytest.fixture
def student(session):
    """Student without WhatsApp consent."""
    return make_student(session)


@pytest.fixture
def notified_student(session, cipher):
    """Student who consented and has a stored number."""
    return make_student(session, cipher, email="sara@example.com", number="+923001234567", consent=True)


SAMPLE_QUESTIONS = [
    {"text": "2 + 2 = ?", "options": ["3", "4", "5"], "correct_answer": "B", "marks": 1},
    {"text": "Capital of France?", "options": ["Paris", "Rome"], "correct_answer": "A", "marks": 1},
    {
        "text": "Largest planet?",
        "options": ["Mars", "Earth", "Jupiter", "Venus"],
        "correct_answer": "C",
        "marks": 2,
        "explanation": "Jupiter is the largest planet.",
    },
]


@pytest.fixture
def sample_test(session):
    """Active test with marks 1, 1 and 2 (total 4)."""
    return QuestionBank(session).create_test("General Knowledge", SAMPLE_QUESTIONS, description="Warm-up")


def question_ids(session, test_id):
    return [q.id for q in QuestionBank(session).list_questions(test_id)]
