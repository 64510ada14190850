"""Student-facing test routes: browse active tests, start, submit, history."""

from typing import List

from fastapi import APIRouter, Body, Depends, Query, status

from smartprep.deps import get_attempt_service, get_question_bank
from smartprep.models import Question, Test
from smartprep.schemas import QuestionOut, StartOut, SubmitIn, TestDetailOut, TestOut
from smartprep.services.attempts import AttemptService
from smartprep.services.question_bank import QuestionBank

router = APIRouter()


def _detail(test: Test, questions: List[Question]) -> TestDetailOut:
    return TestDetailOut(
        **TestOut.model_validate(test).model_dump(),
        questions=[QuestionOut.model_validate(q) for q in questions],
    )


@router.get("")
def list_tests(bank: QuestionBank = Depends(get_question_bank)):
    """Active tests, newest first."""
    tests = [
        {**TestOut.model_validate(t).model_dump(), "question_count": question_count}
        for t, question_count, _ in bank.list_tests(active_only=True)
    ]
    return {"tests": tests}


@router.get("/history/all")
def attempt_history(
    student_id: int = Query(...),
    service: AttemptService = Depends(get_attempt_service),
):
    return {"history": service.history(student_id)}


@router.get("/{test_id}", response_model=TestDetailOut)
def get_test(test_id: int, bank: QuestionBank = Depends(get_question_bank)):
    test = bank.get_active_test(test_id)
    return _detail(test, bank.list_questions(test.id))


@router.post("/{test_id}/start", status_code=status.HTTP_201_CREATED, response_model=StartOut)
def start_test(
    test_id: int,
    student_id: int = Query(...),
    service: AttemptService = Depends(get_attempt_service),
):
    started = service.start(student_id, test_id)
    return StartOut(
        attempt_id=started.attempt.id,
        resumed=started.resumed,
        started_at=started.attempt.started_at,
        test=_detail(started.test, started.questions),
    )


@router.post("/submit")
def submit_test(
    student_id: int = Query(...),
    payload: SubmitIn = Body(...),
    service: AttemptService = Depends(get_attempt_service),
):
    result = service.submit(payload.attempt_id, student_id, payload.answer_map())
    return {
        "attempt": {
            "id": result.attempt_id,
            "score": result.score,
            "total_marks": result.total_marks,
            # Stored value is exact; rounded for display only
            "percentage": round(result.percentage, 2),
            "completed_at": result.finished_at,
        },
        "results": result.results,
    }
