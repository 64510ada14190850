"""Utility functions for sanitization and question validation."""

import string
from typing import Iterable, List, Optional, Union

import bleach

MIN_TIME_LIMIT_SECONDS = 60
MIN_OPTIONS = 2
OPTION_LABELS = string.ascii_uppercase


def sanitize_text(text: Optional[str]) -> str:
    """Strip all HTML from user supplied text (question, option, explanation)."""
    if text is None:
        return ""
    return bleach.clean(str(text), tags=[], strip=True).strip()


def option_label(index: int) -> str:
    """Return the single-letter option id for a zero-based position."""
    if index < 0 or index >= len(OPTION_LABELS):
        raise ValueError(f"Option position {index} out of range")
    return OPTION_LABELS[index]


def label_options(options: Iterable[Union[str, dict]]) -> List[dict]:
    """Assign option ids by position and drop blank options.

    Accepts plain strings or ``{"id", "text"}`` mappings; any incoming id is
    ignored because ids are always derived from position.
    """
    labelled = []
    for index, option in enumerate(options):
        raw = option.get("text") if isinstance(option, dict) else option
        text = sanitize_text(raw)
        if text:
            labelled.append({"id": option_label(index), "text": text})
    return labelled


def validate_question(options: List[dict], correct_answer: str, marks: int) -> None:
    """Validate a labelled question.

    Raises:
        ValueError: If fewer than two options remain, the correct answer does
            not name a non-blank option, or marks are not positive.
    """
    if len(options) < MIN_OPTIONS:
        raise ValueError("At least 2 options with text are required")
    if correct_answer not in {o["id"] for o in options}:
        raise ValueError(f"Correct answer '{correct_answer}' does not match any option")
    if marks < 1:
        raise ValueError("Question marks must be a positive integer")


def validate_time_limit(seconds: int) -> None:
    if seconds < MIN_TIME_LIMIT_SECONDS:
        raise ValueError(f"Time limit must be at least {MIN_TIME_LIMIT_SECONDS} seconds")
