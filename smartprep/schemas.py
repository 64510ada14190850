"""Request and response schemas validated at the HTTP boundary."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smartprep.models import NotificationStatus, NotificationType
from smartprep.utils import OPTION_LABELS

QUESTION_MAX_LENGTH = 5000
OPTION_MAX_LENGTH = 1000


# --- Question bank ---


class OptionIn(BaseModel):
    # Ignored on input: ids are reassigned by position
    id: Optional[str] = None
    text: str = Field(max_length=OPTION_MAX_LENGTH)


class QuestionIn(BaseModel):
    text: str = Field(min_length=1, max_length=QUESTION_MAX_LENGTH)
    # Either ["Paris", "Rome"] or [{"id": "A", "text": "Paris"}, ...]
    options: List[Union[str, OptionIn]] = Field(min_length=2, max_length=len(OPTION_LABELS))
    correct_answer: str = Field(min_length=1, max_length=1)
    marks: int = Field(default=1, ge=1)
    explanation: Optional[str] = None

    def as_payload(self) -> dict:
        data = self.model_dump()
        data["options"] = [o if isinstance(o, str) else o.model_dump() for o in self.options]
        return data


class TestCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    time_limit: int = Field(default=1800, ge=60)
    is_active: bool = True
    # Accepted for compatibility, always recalculated from the questions
    total_marks: Optional[int] = None
    questions: List[QuestionIn] = Field(min_length=1)


class TestUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    time_limit: Optional[int] = Field(default=None, ge=60)
    is_active: Optional[bool] = None
    total_marks: Optional[int] = None
    questions: Optional[List[QuestionIn]] = Field(default=None, min_length=1)


class TestImportIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    time_limit: int = Field(default=1800, ge=60)
    is_active: bool = True
    rows: List[Dict[str, Any]] = Field(min_length=1)


class QuestionOut(BaseModel):
    """Question as shown to a student: no answer key."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    text: str
    options: List[Dict[str, str]]
    marks: int


class QuestionAdminOut(QuestionOut):
    correct_answer: str
    explanation: Optional[str] = None


class TestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    total_marks: int
    time_limit: int
    is_active: bool
    created_at: datetime


class TestDetailOut(TestOut):
    questions: List[QuestionOut]


class TestAdminOut(TestOut):
    questions: List[QuestionAdminOut]


# --- Attempts ---


class AnswerIn(BaseModel):
    question_id: int
    answer: str = Field(min_length=1, max_length=10)


class SubmitIn(BaseModel):
    attempt_id: int
    answers: List[AnswerIn]

    @field_validator("answers")
    @classmethod
    def unique_questions(cls, answers: List[AnswerIn]) -> List[AnswerIn]:
        seen = set()
        for a in answers:
            if a.question_id in seen:
                raise ValueError(f"Question {a.question_id} answered more than once")
            seen.add(a.question_id)
        return answers

    def answer_map(self) -> Dict[int, str]:
        return {a.question_id: a.answer for a in self.answers}


class StartOut(BaseModel):
    attempt_id: int
    resumed: bool
    started_at: datetime
    test: TestDetailOut


# --- Students ---


class ProfileComplete(BaseModel):
    school_name: str = Field(min_length=1, max_length=200)
    age: int = Field(ge=5, le=100)
    class_grade: str = Field(min_length=1, max_length=50)
    whatsapp_number: Optional[str] = Field(default=None, max_length=20)
    consent_whatsapp: bool


class ProfileUpdate(BaseModel):
    school_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    age: Optional[int] = Field(default=None, ge=5, le=100)
    class_grade: Optional[str] = Field(default=None, min_length=1, max_length=50)
    whatsapp_number: Optional[str] = Field(default=None, max_length=20)
    consent_whatsapp: Optional[bool] = None


class StudentImportIn(BaseModel):
    rows: List[Dict[str, Any]] = Field(min_length=1)


# --- Notifications ---


class SendMessageIn(BaseModel):
    student_id: int
    message: str = Field(min_length=1, max_length=1600)
    type: NotificationType = NotificationType.SYSTEM_UPDATE


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int
    attempt_id: Optional[int] = None
    type: NotificationType
    message: str
    status: NotificationStatus
    sent_at: Optional[datetime] = None
    created_at: datetime


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }
