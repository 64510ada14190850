import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from smartprep.errors import ConflictError, InvalidStateError, NotFoundError
from smartprep.models import AttemptStatus, Question, Student, Test, TestAttempt
from smartprep.services.notifications import NotificationTrigger
from smartprep.services.scoring import QuestionResult, score_answers

logger = logging.getLogger(__name__)

RECENT_TESTS_LIMIT = 10
PROGRESS_WINDOW_DAYS = 30


@dataclass
class StartResult:
    attempt: TestAttempt
    test: Test
    questions: List[Question]
    resumed: bool


class SubmissionResult(BaseModel):
    attempt_id: int
    score: int
    total_marks: int
    percentage: float
    finished_at: datetime
    results: List[QuestionResult]


class HistoryEntry(BaseModel):
    id: int
    test_id: int
    test_title: str
    test_description: Optional[str] = None
    score: Optional[int] = None
    total_marks: int
    percentage: Optional[float] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class ProgressPoint(BaseModel):
    date: str
    score: float


class ProgressReport(BaseModel):
    total_tests: int
    completed_tests: int
    average_score: float
    best_score: float
    recent_tests: List[HistoryEntry]
    progress_data: List[ProgressPoint]


class AttemptService:
    """Start, resume and complete a student's attempts at a test."""

    def __init__(self, session: Session, trigger: Optional[NotificationTrigger] = None):
        self.session = session
        self.trigger = trigger or NotificationTrigger(session)

    def _require_student(self, student_id: int) -> Student:
        student = self.session.get(Student, student_id)
        if not student:
            raise NotFoundError("Student profile not found")
        return student

    def _find_in_progress_attempt(self, student_id: int, test_id: int) -> Optional[TestAttempt]:
        stmt = select(TestAttempt).where(
            (TestAttempt.student_id == student_id)
            & (TestAttempt.test_id == test_id)
            & (TestAttempt.status == AttemptStatus.IN_PROGRESS)
        )
        return self.session.exec(stmt).first()

    def _questions(self, test_id: int) -> List[Question]:
        return self.session.exec(
            select(Question).where(Question.test_id == test_id).order_by(Question.position, Question.id)
        ).all()

    def _resume(self, attempt: TestAttempt) -> StartResult:
        test = self.session.get(Test, attempt.test_id)
        logger.info("Resuming attempt %s for student %s", attempt.id, attempt.student_id)
        return StartResult(attempt=attempt, test=test, questions=self._questions(test.id), resumed=True)

    def start(self, student_id: int, test_id: int) -> StartResult:
        """Start an attempt, or resume the open one for the same test.

        Raises:
            NotFoundError: Unknown student or test.
            InvalidStateError: The test is inactive.
        """
        self._require_student(student_id)

        existing = self._find_in_progress_attempt(student_id, test_id)
        if existing:
            return self._resume(existing)

        test = self.session.get(Test, test_id)
        if not test:
            raise NotFoundError("Test not found")
        if not test.is_active:
            raise InvalidStateError("Test is not active")

        attempt = TestAttempt(
            student_id=student_id,
            test_id=test.id,
            total_marks=test.total_marks,
            status=AttemptStatus.IN_PROGRESS,
            answers={},
            started_at=datetime.utcnow(),
        )
        self.session.add(attempt)
        try:
            self.session.commit()
        except IntegrityError:
            # A concurrent start won the partial unique index; resume its row
            self.session.rollback()
            existing = self._find_in_progress_attempt(student_id, test_id)
            if existing is None:
                raise
            return self._resume(existing)

        self.session.refresh(attempt)
        logger.info("Started attempt %s for student %s on test %s", attempt.id, student_id, test.id)
        return StartResult(attempt=attempt, test=test, questions=self._questions(test.id), resumed=False)

    def get_attempt(self, attempt_id: int, student_id: int) -> TestAttempt:
        attempt = self.session.get(TestAttempt, attempt_id)
        if not attempt or attempt.student_id != student_id:
            raise NotFoundError("Test attempt not found")
        return attempt

    def submit(self, attempt_id: int, student_id: int, answers: Mapping[int, str]) -> SubmissionResult:
        """Score the answers and complete the attempt exactly once.

        Completion is a single conditional UPDATE guarded by
        status = IN_PROGRESS; losing that race raises ConflictError and
        writes nothing, including the notification.

        Raises:
            NotFoundError: Unknown attempt, or it belongs to another student.
            ConflictError: The attempt is already completed.
            PayloadValidationError: Answers name questions outside the test.
            InvalidStateError: The attempt's total_marks is zero.
        """
        attempt = self.get_attempt(attempt_id, student_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise ConflictError("Test attempt already completed")

        test = self.session.get(Test, attempt.test_id)
        if not test:
            raise NotFoundError("Test not found")
        student = self._require_student(student_id)

        result = score_answers(self._questions(test.id), answers, attempt.total_marks)
        finished_at = datetime.utcnow()
        stored_answers: Dict[str, str] = {str(qid): option for qid, option in answers.items()}

        completed = self.session.exec(
            update(TestAttempt)
            .where(TestAttempt.id == attempt.id)
            .where(TestAttempt.status == AttemptStatus.IN_PROGRESS)
            .values(
                score=result.score,
                percentage=result.percentage,
                answers=stored_answers,
                finished_at=finished_at,
                status=AttemptStatus.COMPLETED,
            )
            .execution_options(synchronize_session=False)
        )
        if completed.rowcount != 1:
            self.session.rollback()
            logger.warning("Lost completion race for attempt %s", attempt_id)
            raise ConflictError("Test attempt already completed")

        self.trigger.on_attempt_completed(
            student, test, attempt.id, result.score, attempt.total_marks, result.percentage
        )
        self.session.commit()
        logger.info(
            "Completed attempt %s: %d/%d (%.2f%%)",
            attempt_id,
            result.score,
            result.total_marks,
            result.percentage,
        )
        return SubmissionResult(
            attempt_id=attempt_id,
            score=result.score,
            total_marks=result.total_marks,
            percentage=result.percentage,
            finished_at=finished_at,
            results=result.results,
        )

    def _completed_entries(self, student_id: int) -> List[HistoryEntry]:
        rows = self.session.exec(
            select(TestAttempt, Test)
            .where(TestAttempt.test_id == Test.id)
            .where(TestAttempt.student_id == student_id)
            .where(TestAttempt.status == AttemptStatus.COMPLETED)
            .order_by(TestAttempt.finished_at.desc(), TestAttempt.id.desc())
        ).all()
        return [
            HistoryEntry(
                id=attempt.id,
                test_id=test.id,
                test_title=test.title,
                test_description=test.description,
                score=attempt.score,
                total_marks=attempt.total_marks,
                percentage=attempt.percentage,
                started_at=attempt.started_at,
                completed_at=attempt.finished_at,
            )
            for attempt, test in rows
        ]

    def history(self, student_id: int) -> List[HistoryEntry]:
        """Completed attempts, most recently finished first."""
        self._require_student(student_id)
        return self._completed_entries(student_id)

    def progress(self, student_id: int) -> ProgressReport:
        self._require_student(student_id)
        completed = self._completed_entries(student_id)
        total_tests = self.session.exec(
            select(func.count(TestAttempt.id)).where(TestAttempt.student_id == student_id)
        ).one()

        percentages = [e.percentage or 0 for e in completed]
        average = sum(percentages) / len(percentages) if percentages else 0
        best = max(percentages) if percentages else 0

        cutoff = datetime.utcnow() - timedelta(days=PROGRESS_WINDOW_DAYS)
        progress_data = [
            ProgressPoint(date=e.completed_at.date().isoformat(), score=e.percentage or 0)
            for e in completed
            if e.completed_at and e.completed_at >= cutoff
        ]

        return ProgressReport(
            total_tests=total_tests,
            completed_tests=len(completed),
            average_score=round(average, 2),
            best_score=round(best, 2),
            recent_tests=completed[:RECENT_TESTS_LIMIT],
            progress_data=progress_data,
        )
