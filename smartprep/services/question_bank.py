import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, func
from sqlmodel import Session, select

from smartprep.errors import ConflictError, InvalidStateError, NotFoundError, PayloadValidationError
from smartprep.models import Question, Test, TestAttempt
from smartprep.utils import label_options, sanitize_text, validate_question, validate_time_limit

logger = logging.getLogger(__name__)


def build_questions(questions: Iterable[dict]) -> List[Question]:
    """Validate raw question payloads and return unsaved Question rows.

    Option ids are assigned by position; test_id is filled in by the caller.
    """
    built = []
    for position, q in enumerate(questions):
        text = sanitize_text(q.get("text"))
        if not text:
            raise PayloadValidationError(f"Question {position + 1}: text is required")
        correct = str(q.get("correct_answer") or "").strip().upper()
        marks = q.get("marks")
        try:
            options = label_options(q.get("options") or [])
            marks = 1 if marks is None else int(marks)
            validate_question(options, correct, marks)
        except ValueError as e:
            raise PayloadValidationError(f"Question {position + 1}: {e}")
        built.append(
            Question(
                position=position,
                text=text,
                options=options,
                correct_answer=correct,
                marks=marks,
                explanation=sanitize_text(q.get("explanation")) or None,
            )
        )
    if not built:
        raise PayloadValidationError("At least one question is required")
    return built


def clean_title(title: str) -> str:
    title_clean = sanitize_text(title)
    if not title_clean:
        raise PayloadValidationError("Test title is required")
    return title_clean


def check_time_limit(time_limit: int) -> None:
    try:
        validate_time_limit(time_limit)
    except ValueError as e:
        raise PayloadValidationError(str(e))


class QuestionBank:
    """Create, edit and read tests together with their embedded questions."""

    def __init__(self, session: Session):
        self.session = session

    def create_test(
        self,
        title: str,
        questions: List[dict],
        description: Optional[str] = None,
        time_limit: int = 1800,
        is_active: bool = True,
    ) -> Test:
        """Create a test; total_marks is the sum of the question marks."""
        title_clean = clean_title(title)
        check_time_limit(time_limit)
        built = build_questions(questions)
        return self.save_new_test(title_clean, description, time_limit, is_active, built)

    def save_new_test(
        self,
        title: str,
        description: Optional[str],
        time_limit: int,
        is_active: bool,
        questions: List[Question],
    ) -> Test:
        """Persist a test and already-validated questions in one transaction."""
        test = Test(
            title=title,
            description=sanitize_text(description) or None,
            time_limit=time_limit,
            is_active=is_active,
            total_marks=sum(q.marks for q in questions),
        )
        self.session.add(test)
        self.session.flush()
        for q in questions:
            q.test_id = test.id
        self.session.add_all(questions)
        self.session.commit()
        self.session.refresh(test)
        logger.info("Created test %s with %d questions (%d marks)", test.id, len(questions), test.total_marks)
        return test

    def get_test(self, test_id: int) -> Test:
        test = self.session.get(Test, test_id)
        if not test:
            raise NotFoundError("Test not found")
        return test

    def get_active_test(self, test_id: int) -> Test:
        test = self.get_test(test_id)
        if not test.is_active:
            raise InvalidStateError("Test is not active")
        return test

    def list_questions(self, test_id: int) -> List[Question]:
        return self.session.exec(
            select(Question).where(Question.test_id == test_id).order_by(Question.position, Question.id)
        ).all()

    def list_tests(self, active_only: bool = False) -> List[Tuple[Test, int, int]]:
        """Return (test, question_count, attempt_count) tuples, newest first."""
        stmt = select(Test).order_by(Test.created_at.desc(), Test.id.desc())
        if active_only:
            stmt = stmt.where(Test.is_active == True)  # noqa: E712
        tests = self.session.exec(stmt).all()

        question_counts = dict(
            self.session.exec(select(Question.test_id, func.count(Question.id)).group_by(Question.test_id)).all()
        )
        attempt_counts = dict(
            self.session.exec(
                select(TestAttempt.test_id, func.count(TestAttempt.id)).group_by(TestAttempt.test_id)
            ).all()
        )
        return [(t, question_counts.get(t.id, 0), attempt_counts.get(t.id, 0)) for t in tests]

    def update_test(
        self,
        test_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        time_limit: Optional[int] = None,
        is_active: Optional[bool] = None,
        questions: Optional[List[dict]] = None,
    ) -> Test:
        """Partially update a test.

        When questions are given they replace the stored ones. total_marks is
        recalculated from whatever questions are stored afterwards; a client
        supplied total is never trusted.
        """
        test = self.get_test(test_id)

        # Validate everything before touching the row
        title_clean = clean_title(title) if title is not None else None
        if time_limit is not None:
            check_time_limit(time_limit)
        built = build_questions(questions) if questions is not None else None

        if title_clean is not None:
            test.title = title_clean
        if description is not None:
            test.description = sanitize_text(description) or None
        if time_limit is not None:
            test.time_limit = time_limit
        if is_active is not None:
            test.is_active = is_active

        if built is not None:
            self.session.exec(delete(Question).where(Question.test_id == test.id))
            for q in built:
                q.test_id = test.id
            self.session.add_all(built)
            self.session.flush()

        test.total_marks = self._sum_marks(test.id)
        test.updated_at = datetime.utcnow()
        self.session.add(test)
        self.session.commit()
        self.session.refresh(test)
        return test

    def _sum_marks(self, test_id: int) -> int:
        total = self.session.exec(
            select(func.coalesce(func.sum(Question.marks), 0)).where(Question.test_id == test_id)
        ).one()
        return int(total)

    def delete_test(self, test_id: int) -> None:
        """Delete a test that nobody has attempted yet."""
        test = self.get_test(test_id)
        attempted = self.session.exec(select(TestAttempt.id).where(TestAttempt.test_id == test_id)).first()
        if attempted is not None:
            raise ConflictError("Test has attempts and cannot be deleted; deactivate it instead")
        self.session.exec(delete(Question).where(Question.test_id == test_id))
        self.session.delete(test)
        self.session.commit()
        logger.info("Deleted test %s", test_id)
