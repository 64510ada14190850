"""Build a test from spreadsheet rows that the upload layer already decoded.

Rows use the column names of the downloadable template: ``question``,
``option1``..``option6``, ``correctAnswer``, ``marks`` and ``explanation``.
"""

import logging
from typing import Iterable, List, Mapping, Optional

from sqlmodel import Session

from smartprep.errors import PayloadValidationError
from smartprep.models import Question, Test
from smartprep.services.question_bank import QuestionBank, check_time_limit, clean_title
from smartprep.utils import MIN_OPTIONS, option_label, sanitize_text

logger = logging.getLogger(__name__)

MAX_OPTION_COLUMNS = 6

TEMPLATE_ROWS = [
    {
        "question": "What is the capital of Pakistan?",
        "option1": "Lahore",
        "option2": "Karachi",
        "option3": "Islamabad",
        "option4": "Peshawar",
        "correctAnswer": "C",
        "marks": "1",
        "explanation": "Islamabad has been the capital since 1963.",
    },
    {
        "question": "Which is the largest ocean?",
        "option1": "Atlantic Ocean",
        "option2": "Indian Ocean",
        "option3": "Arctic Ocean",
        "option4": "Pacific Ocean",
        "correctAnswer": "D",
        "marks": "1",
        "explanation": "The Pacific Ocean covers about 46% of Earth's water surface.",
    },
]


def _parse_marks(value) -> int:
    try:
        marks = int(str(value).strip())
    except (TypeError, ValueError):
        return 1
    return marks if marks > 0 else 1


def row_to_question(row: Mapping, position: int) -> Optional[Question]:
    """Map one row to an unsaved Question, or None when the row is unusable.

    Option ids follow the column number, so a blank ``option2`` leaves a gap
    and ``option3`` is still ``C``.
    """
    text = sanitize_text(row.get("question"))
    correct = sanitize_text(row.get("correctAnswer")).upper()
    if not text or not correct:
        return None

    options = []
    for column in range(1, MAX_OPTION_COLUMNS + 1):
        option_text = sanitize_text(row.get(f"option{column}"))
        if option_text:
            options.append({"id": option_label(column - 1), "text": option_text})
    if len(options) < MIN_OPTIONS:
        return None
    if correct not in {o["id"] for o in options}:
        return None

    return Question(
        position=position,
        text=text,
        options=options,
        correct_answer=correct,
        marks=_parse_marks(row.get("marks")),
        explanation=sanitize_text(row.get("explanation")) or None,
    )


def import_test_from_rows(
    session: Session,
    title: str,
    rows: Iterable[Mapping],
    description: Optional[str] = None,
    time_limit: int = 1800,
    is_active: bool = True,
) -> Test:
    """Create a test from spreadsheet rows, skipping rows that cannot be used.

    Raises:
        PayloadValidationError: Missing title, short time limit, or no usable rows.
    """
    title_clean = clean_title(title)
    check_time_limit(time_limit)

    questions: List[Question] = []
    skipped = 0
    for index, row in enumerate(rows):
        question = row_to_question(row, len(questions))
        if question is None:
            skipped += 1
            logger.warning("Skipping import row %d: missing text, answer or options", index + 1)
            continue
        questions.append(question)

    if not questions:
        raise PayloadValidationError("No valid questions found in the uploaded rows")

    test = QuestionBank(session).save_new_test(title_clean, description, time_limit, is_active, questions)
    logger.info("Imported test %s: %d questions, %d rows skipped", test.id, len(questions), skipped)
    return test
