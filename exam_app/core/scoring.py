"""Score computation with negative marking."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from exam_app.core.models import OptionLabel, Question


def compute_score(
    questions: Iterable[Question],
    answers: Mapping[str, OptionLabel | None],
) -> float:
    """Return the raw (possibly negative) total for the given answers.

    Questions missing from ``answers`` count as unanswered. Answers for
    question ids that are not in ``questions`` are ignored.
    """
    total = 0.0
    for question in questions:
        selected = answers.get(question.id)
        if selected is None:
            continue
        if selected == question.correct_option:
            total += question.marks
        elif question.negative_marks > 0:
            total -= question.negative_marks
    return total


def final_score(raw_score: float) -> float:
    """Floor a raw total at zero; this is the value that gets persisted."""
    return max(0.0, raw_score)
