"""Domain models for the examination platform."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class OptionLabel(str, Enum):
    """The four answer labels every multiple-choice question offers."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"


OPTION_LABELS: tuple[OptionLabel, ...] = tuple(OptionLabel)


class ExamStatus(str, Enum):
    DRAFT = "draft"
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    RESULTS_ANNOUNCED = "results_announced"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(slots=True, frozen=True)
class Question:
    """Multiple-choice question with exactly four options (A-D)."""

    id: str
    exam_id: str
    question_text: str
    options: tuple[str, str, str, str]
    correct_option: OptionLabel
    marks: float = 1.0
    negative_marks: float = 0.0
    question_order: int = 0

    def option_text(self, label: OptionLabel) -> str:
        return self.options[OPTION_LABELS.index(label)]

    def options_by_label(self) -> dict[OptionLabel, str]:
        return dict(zip(OPTION_LABELS, self.options))


@dataclass(slots=True)
class Exam:
    id: str
    title: str
    duration_minutes: int
    description: str = ""
    total_marks: float = 0.0
    status: ExamStatus = ExamStatus.DRAFT


@dataclass(slots=True)
class ExamAttempt:
    """One student's run through one exam."""

    id: str
    exam_id: str
    user_id: str
    start_time: datetime
    end_time: datetime | None = None
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    total_score: float | None = None
    rank: int | None = None


@dataclass(slots=True, frozen=True)
class AnswerRecord:
    """Persisted answer for one question of a submitted attempt."""

    attempt_id: str
    question_id: str
    selected_option: OptionLabel | None
    is_marked_for_review: bool
    answered_at: datetime


@dataclass(slots=True)
class AnswerState:
    """In-memory answer state held by a running exam session."""

    selected_option: OptionLabel | None = None
    is_marked_for_review: bool = False
