import pytest

from smartprep import models
from smartprep.errors import InvalidStateError, PayloadValidationError
from smartprep.services.scoring import compute_percentage, score_answers


def _questions():
    return [
        models.Question(id=1, test_id=1, position=0, text="Q1", options=[], correct_answer="B", marks=1),
        models.Question(id=2, test_id=1, position=1, text="Q2", options=[], correct_answer="A", marks=1),
        models.Question(
            id=3, test_id=1, position=2, text="Q3", options=[], correct_answer="C", marks=2, explanation="Why"
        ),
    ]


def test_partial_score_uses_question_marks():
    result = score_answers(_questions(), {1: "B", 2: "B", 3: "A"}, 4)
    assert result.score == 1
    assert result.total_marks == 4
    assert result.percentage == 25.0
    assert [r.is_correct for r in result.results] == [True, False, False]


def test_unanswered_questions_count_as_incorrect():
    result = score_answers(_questions(), {3: "C"}, 4)
    assert result.score == 2
    assert result.percentage == 50.0
    first = result.results[0]
    assert first.submitted_answer is None
    assert first.is_correct is False
    assert result.results[2].explanation == "Why"


def test_empty_answers_score_zero():
    result = score_answers(_questions(), {}, 4)
    assert result.score == 0
    assert result.percentage == 0.0


def test_comparison_is_case_sensitive():
    result = score_answers(_questions(), {1: "b"}, 4)
    assert result.score == 0


def test_unknown_question_id_rejected():
    with pytest.raises(PayloadValidationError):
        score_answers(_questions(), {99: "A"}, 4)


def test_zero_total_marks_rejected():
    with pytest.raises(InvalidStateError):
        score_answers(_questions(), {1: "B"}, 0)


def test_percentage_is_not_rounded():
    assert compute_percentage(1, 3) == pytest.approx(33.333333, rel=1e-6)
