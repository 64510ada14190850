"""SQLModel models for the SmartPrep test-preparation platform."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class NotificationType(str, Enum):
    TEST_RESULT = "TEST_RESULT"
    SYSTEM_UPDATE = "SYSTEM_UPDATE"
    REMINDER = "REMINDER"


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Student(SQLModel, table=True):
    """Student profile. Identity comes from the authentication collaborator."""

    __table_args__ = (UniqueConstraint("email", name="uq_student_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str
    email: str
    # Only set for accounts created through the admin CSV import
    password_hash: Optional[str] = None
    school_name: Optional[str] = None
    age: Optional[int] = None
    class_grade: Optional[str] = None
    # Fernet token, never the plain number
    whatsapp_number: Optional[str] = None
    consent_whatsapp: bool = Field(default=False)
    profile_completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Test(SQLModel, table=True):
    """A multiple-choice test. total_marks is always derived from its questions."""

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    total_marks: int = Field(default=0)
    time_limit: int = Field(default=1800)  # seconds
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Questions are loaded with explicit queries on test_id


class Question(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    test_id: int = Field(foreign_key="test.id", index=True)
    position: int = Field(default=0)
    text: str
    # [{"id": "A", "text": "..."}, ...]
    options: List[Dict[str, str]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    correct_answer: str
    marks: int = Field(default=1)
    explanation: Optional[str] = None


class TestAttempt(SQLModel, table=True):
    """One student's attempt at one test.

    At most one IN_PROGRESS row may exist per (student, test); the partial
    unique index enforces it in storage.
    """

    __table_args__ = (
        Index(
            "uq_attempt_in_progress",
            "student_id",
            "test_id",
            unique=True,
            sqlite_where=text("status = 'IN_PROGRESS'"),
            postgresql_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="student.id", index=True)
    test_id: int = Field(foreign_key="test.id", index=True)
    # Frozen copy of Test.total_marks at start time
    total_marks: int
    score: Optional[int] = None
    percentage: Optional[float] = None
    status: AttemptStatus = Field(default=AttemptStatus.IN_PROGRESS)
    # {"<question_id>": "<option id>"}
    answers: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None


class Notification(SQLModel, table=True):
    """Outbound message record; delivery happens out of band."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="student.id", index=True)
    attempt_id: Optional[int] = Field(default=None, foreign_key="testattempt.id")
    type: NotificationType = Field(default=NotificationType.SYSTEM_UPDATE)
    message: str
    status: NotificationStatus = Field(default=NotificationStatus.PENDING, index=True)
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
