import pytest
from conftest import question_ids
from sqlmodel import Session, SQLModel, create_engine, select

from smartprep import models
from smartprep.errors import ConflictError, InvalidStateError, NotFoundError, PayloadValidationError
from smartprep.services import attempts as attempts_module
from smartprep.services.attempts import AttemptService
from smartprep.services.question_bank import QuestionBank


def _notifications(session, attempt_id):
    return session.exec(select(models.Notification).where(models.Notification.attempt_id == attempt_id)).all()


def test_start_creates_in_progress_attempt(session, student, sample_test):
    started = AttemptService(session).start(student.id, sample_test.id)
    assert started.resumed is False
    assert started.attempt.status == models.AttemptStatus.IN_PROGRESS
    assert started.attempt.total_marks == 4
    assert len(started.questions) == 3


def test_start_twice_resumes_same_attempt(session, student, sample_test):
    service = AttemptService(session)
    first = service.start(student.id, sample_test.id)
    second = service.start(student.id, sample_test.id)
    assert second.resumed is True
    assert second.attempt.id == first.attempt.id


def test_start_unknown_student_or_test(session, student, sample_test):
    service = AttemptService(session)
    with pytest.raises(NotFoundError):
        service.start(student.id + 100, sample_test.id)
    with pytest.raises(NotFoundError):
        service.start(student.id, sample_test.id + 100)


def test_start_inactive_test_rejected(session, student):
    test = QuestionBank(session).create_test(
        "Hidden", [{"text": "q", "options": ["a", "b"], "correct_answer": "A"}], is_active=False
    )
    with pytest.raises(InvalidStateError):
        AttemptService(session).start(student.id, test.id)
    attempts = session.exec(select(models.TestAttempt).where(models.TestAttempt.test_id == test.id)).all()
    assert attempts == []


def test_start_resumes_when_concurrent_insert_wins(session, student, sample_test, monkeypatch):
    with Session(session.get_bind()) as other:
        other.add(models.TestAttempt(student_id=student.id, test_id=sample_test.id, total_marks=4))
        other.commit()

    service = AttemptService(session)
    real_find = service._find_in_progress_attempt
    calls = []

    def find_missing_first(student_id, test_id):
        calls.append(test_id)
        # The first lookup runs before the other start committed
        return None if len(calls) == 1 else real_find(student_id, test_id)

    monkeypatch.setattr(service, "_find_in_progress_attempt", find_missing_first)
    started = service.start(student.id, sample_test.id)
    assert started.resumed is True
    in_progress = session.exec(
        select(models.TestAttempt).where(models.TestAttempt.status == models.AttemptStatus.IN_PROGRESS)
    ).all()
    assert len(in_progress) == 1


def test_submit_scores_and_completes(session, student, sample_test):
    service = AttemptService(session)
    started = service.start(student.id, sample_test.id)
    q1, q2, q3 = question_ids(session, sample_test.id)

    result = service.submit(started.attempt.id, student.id, {q1: "B", q2: "B", q3: "A"})

    assert result.score == 1
    assert result.total_marks == 4
    assert result.percentage == 25.0
    attempt = service.get_attempt(started.attempt.id, student.id)
    session.refresh(attempt)
    assert attempt.status == models.AttemptStatus.COMPLETED
    assert attempt.score == 1
    assert attempt.finished_at is not None
    assert attempt.answers == {str(q1): "B", str(q2): "B", str(q3): "A"}


def test_submit_twice_conflicts(session, student, sample_test):
    service = AttemptService(session)
    started = service.start(student.id, sample_test.id)
    service.submit(started.attempt.id, student.id, {})
    with pytest.raises(ConflictError):
        service.submit(started.attempt.id, student.id, {})


def test_submit_by_other_student_not_found(session, student, notified_student, sample_test):
    service = AttemptService(session)
    started = service.start(student.id, sample_test.id)
    with pytest.raises(NotFoundError):
        service.submit(started.attempt.id, notified_student.id, {})


def test_submit_unknown_question_leaves_attempt_open(session, student, sample_test):
    service = AttemptService(session)
    started = service.start(student.id, sample_test.id)
    with pytest.raises(PayloadValidationError):
        service.submit(started.attempt.id, student.id, {999999: "A"})
    session.refresh(started.attempt)
    assert started.attempt.status == models.AttemptStatus.IN_PROGRESS


def test_submit_zero_total_marks(session, student, sample_test):
    attempt = models.TestAttempt(student_id=student.id, test_id=sample_test.id, total_marks=0)
    session.add(attempt)
    session.commit()
    with pytest.raises(InvalidStateError):
        AttemptService(session).submit(attempt.id, student.id, {})


def test_percentage_uses_total_frozen_at_start(session, student, sample_test):
    service = AttemptService(session)
    started = service.start(student.id, sample_test.id)
    q1, q2, q3 = question_ids(session, sample_test.id)
    # Raising a question's marks after the start does not change the denominator
    question = session.get(models.Question, q3)
    question.marks = 6
    session.add(question)
    session.commit()

    result = service.submit(started.attempt.id, student.id, {q1: "B"})
    assert result.total_marks == 4
    assert result.percentage == 25.0


def test_submit_queues_notification_only_with_consent(session, student, notified_student, sample_test):
    service = AttemptService(session)
    silent = service.start(student.id, sample_test.id)
    service.submit(silent.attempt.id, student.id, {})
    assert _notifications(session, silent.attempt.id) == []

    loud = service.start(notified_student.id, sample_test.id)
    q1, _, _ = question_ids(session, sample_test.id)
    service.submit(loud.attempt.id, notified_student.id, {q1: "B"})
    (notification,) = _notifications(session, loud.attempt.id)
    assert notification.status == models.NotificationStatus.PENDING
    assert notification.type == models.NotificationType.TEST_RESULT
    assert notification.message == 'Test "General Knowledge" completed! Score: 1/4 (25.0%)'


def test_concurrent_submit_completes_once(tmp_path, monkeypatch, cipher):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    SQLModel.metadata.create_all(engine)
    with Session(engine) as setup:
        student = models.Student(
            full_name="Racer",
            email="racer@example.com",
            whatsapp_number=cipher.encrypt("+923001112223"),
            consent_whatsapp=True,
        )
        setup.add(student)
        setup.commit()
        test = QuestionBank(setup).create_test(
            "Race", [{"text": "q", "options": ["a", "b"], "correct_answer": "A"}]
        )
        attempt_id = AttemptService(setup).start(student.id, test.id).attempt.id
        student_id = student.id

    real_score = attempts_module.score_answers
    calls = []

    def score_while_other_submits(questions, answers, total_marks):
        calls.append(total_marks)
        if len(calls) == 1:
            # A second request completes the same attempt in the meantime
            with Session(engine) as other:
                AttemptService(other).submit(attempt_id, student_id, {})
        return real_score(questions, answers, total_marks)

    monkeypatch.setattr(attempts_module, "score_answers", score_while_other_submits)

    with Session(engine) as session:
        with pytest.raises(ConflictError):
            AttemptService(session).submit(attempt_id, student_id, {})

    with Session(engine) as check:
        attempt = check.get(models.TestAttempt, attempt_id)
        assert attempt.status == models.AttemptStatus.COMPLETED
        # The winner answered nothing
        assert attempt.score == 0
        assert len(_notifications(check, attempt_id)) == 1
    engine.dispose()


def test_history_lists_completed_newest_first(session, student, sample_test):
    bank = QuestionBank(session)
    other_test = bank.create_test("Second", [{"text": "q", "options": ["a", "b"], "correct_answer": "A"}])
    service = AttemptService(session)

    first = service.start(student.id, sample_test.id)
    service.submit(first.attempt.id, student.id, {})
    second = service.start(student.id, other_test.id)
    service.submit(second.attempt.id, student.id, {})
    # Still in progress, so not in history
    service.start(student.id, sample_test.id)

    history = service.history(student.id)
    assert [h.id for h in history] == [second.attempt.id, first.attempt.id]
    assert history[0].test_title == "Second"


def test_progress_summary(session, student, sample_test):
    service = AttemptService(session)
    q1, q2, q3 = question_ids(session, sample_test.id)
    first = service.start(student.id, sample_test.id)
    service.submit(first.attempt.id, student.id, {q1: "B"})
    second = service.start(student.id, sample_test.id)
    service.submit(second.attempt.id, student.id, {q1: "B", q2: "A", q3: "C"})
    service.start(student.id, sample_test.id)

    report = service.progress(student.id)
    assert report.total_tests == 3
    assert report.completed_tests == 2
    assert report.average_score == 62.5
    assert report.best_score == 100.0
    assert len(report.progress_data) == 2


def test_progress_for_new_student(session, student):
    report = AttemptService(session).progress(student.id)
    assert report.completed_tests == 0
    assert report.average_score == 0
    assert report.recent_tests == []
