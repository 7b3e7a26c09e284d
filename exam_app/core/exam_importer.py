"""Utilities for importing exam questions from a human-friendly text file.

File format (repeat blocks separated by blank lines or '---'):

    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question.
    A: First option text
    B: Second option text
    C: Third option text
    D: Fourth option text
    CORRECT: A|B|C|D
    MARKS: number      (optional, defaults to 1)
    NEGATIVE: number   (optional, defaults to 0 - no penalty for wrong picks)

Example:

    Q: What is $2 + 2$?
    A: 3
    B: 4
    C: 5
    D: 22
    CORRECT: B
    MARKS: 2
    NEGATIVE: 0.5
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from exam_app.constants.exam_constants import DEFAULT_NEGATIVE_MARKS, DEFAULT_QUESTION_MARKS
from exam_app.core.models import OPTION_LABELS, OptionLabel, Question


class ExamImportError(Exception):
    """Raised when a question bank cannot be parsed."""


@dataclass(slots=True)
class ImportedExam:
    """Container for imported question-bank metadata and questions."""

    source_path: Path
    questions: list[Question]

    @property
    def title(self) -> str:
        return self.source_path.stem.replace("_", " ").strip() or "Untitled exam"

    @property
    def total_marks(self) -> float:
        return sum(question.marks for question in self.questions)


_LETTERS = [label.value for label in OPTION_LABELS]


def load_exam_from_file(file_path: Path) -> ImportedExam:
    text = file_path.read_text(encoding="utf-8")
    questions = parse_exam_text(text)
    if not questions:
        raise ExamImportError("Question bank did not contain any questions.")
    return ImportedExam(source_path=file_path, questions=questions)


def parse_exam_text(text: str) -> list[Question]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())

    return [
        _parse_block(block, order)
        for order, block in enumerate((b for b in blocks if b), start=1)
    ]


def _parse_block(block: str, order: int) -> Question:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    correct_letter: str | None = None
    marks = DEFAULT_QUESTION_MARKS
    negative_marks = DEFAULT_NEGATIVE_MARKS
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        upper = line.upper()
        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if upper.startswith("CORRECT:"):
            correct_letter = line.split(":", 1)[1].strip().upper()
            current_section = None
            continue

        if upper.startswith("MARKS:"):
            marks = _parse_marks("MARKS", line.split(":", 1)[1])
            current_section = None
            continue

        if upper.startswith("NEGATIVE:"):
            negative_marks = _parse_marks("NEGATIVE", line.split(":", 1)[1])
            current_section = None
            continue

        if len(line) > 2 and line[0].upper() in _LETTERS and line[1] == ":":
            letter = line[0].upper()
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section in _LETTERS:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise ExamImportError(f"Encountered text outside of a known section: '{line}'.")

    if not question_lines:
        raise ExamImportError("Question text missing (Q: ...)")
    if len(options) != 4:
        raise ExamImportError("Each question must define exactly four options (A-D).")

    option_texts = tuple(options[letter].strip() for letter in _LETTERS)
    if any(not text for text in option_texts):
        raise ExamImportError("Option text cannot be empty.")

    if correct_letter is None:
        raise ExamImportError("CORRECT is required for every question.")
    if correct_letter not in _LETTERS:
        raise ExamImportError("CORRECT must be one of A, B, C, or D.")

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise ExamImportError("Question text cannot be empty.")

    return Question(
        id="",  # assigned by the store when the questions are added
        exam_id="",
        question_text=question_text,
        options=option_texts,
        correct_option=OptionLabel(correct_letter),
        marks=marks,
        negative_marks=negative_marks,
        question_order=order,
    )


def _parse_marks(key: str, raw_value: str) -> float:
    raw_value = raw_value.strip()
    if not raw_value:
        raise ExamImportError(f"{key} must include a numeric value.")
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise ExamImportError(f"{key} must be a number.") from exc
    if value < 0:
        raise ExamImportError(f"{key} must not be negative.")
    return value
