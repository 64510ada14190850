"""Scoring of submitted multiple-choice answers.

Pure functions only: no session, no clock. The caller decides what to
persist.
"""

from typing import List, Mapping, Optional, Sequence

from pydantic import BaseModel

from smartprep.errors import InvalidStateError, PayloadValidationError
from smartprep.models import Question


class QuestionResult(BaseModel):
    question_id: int
    question_text: str
    submitted_answer: Optional[str] = None
    correct_answer: str
    is_correct: bool
    marks: int
    explanation: Optional[str] = None


class ScoreResult(BaseModel):
    score: int
    total_marks: int
    # Exact value; round only when displaying
    percentage: float
    results: List[QuestionResult]


def compute_percentage(score: int, total_marks: int) -> float:
    if total_marks <= 0:
        raise InvalidStateError("Cannot score a test with zero total marks")
    return score / total_marks * 100


def score_answers(
    questions: Sequence[Question],
    answers: Mapping[int, str],
    total_marks: int,
) -> ScoreResult:
    """Score answers against the question set.

    Args:
        questions: The test's questions in display order.
        answers: question id -> submitted option id. Missing questions are
            scored as incorrect.
        total_marks: Denominator for the percentage (the attempt's frozen
            total, not the test's current one).

    Raises:
        PayloadValidationError: An answer references a question outside the test.
        InvalidStateError: total_marks is zero or negative.
    """
    known_ids = {q.id for q in questions}
    unknown = sorted(qid for qid in answers if qid not in known_ids)
    if unknown:
        raise PayloadValidationError(f"Answers reference unknown question ids: {unknown}")
    if total_marks <= 0:
        raise InvalidStateError("Cannot score a test with zero total marks")

    score = 0
    results = []
    for question in questions:
        submitted = answers.get(question.id)
        # Exact, case-sensitive comparison against the stored option id
        is_correct = submitted is not None and submitted == question.correct_answer
        if is_correct:
            score += question.marks
        results.append(
            QuestionResult(
                question_id=question.id,
                question_text=question.text,
                submitted_answer=submitted,
                correct_answer=question.correct_answer,
                is_correct=is_correct,
                marks=question.marks,
                explanation=question.explanation,
            )
        )

    return ScoreResult(
        score=score,
        total_marks=total_marks,
        percentage=compute_percentage(score, total_marks),
        results=results,
    )
