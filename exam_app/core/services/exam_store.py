"""Persistence boundary for exams, questions, attempts and answers."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime
from threading import Lock
from typing import Protocol
from uuid import uuid4

from exam_app.core.models import (
    AnswerRecord,
    AttemptStatus,
    Exam,
    ExamAttempt,
    ExamStatus,
    Question,
)


class StoreError(RuntimeError):
    """Raised when a record cannot be read or written."""


class ExamStore(Protocol):
    """Record operations the exam core needs from the persistent store."""

    def add_exam(self, exam: Exam) -> Exam: ...

    def add_questions(self, exam_id: str, questions: Iterable[Question]) -> list[Question]: ...

    def get_exam(self, exam_id: str) -> Exam | None: ...

    def list_exams(self) -> list[Exam]: ...

    def update_exam_status(self, exam_id: str, status: ExamStatus) -> None: ...

    def get_questions(self, exam_id: str) -> list[Question]: ...

    def create_attempt(self, exam_id: str, user_id: str, start_time: datetime) -> str: ...

    def get_attempt(self, attempt_id: str) -> ExamAttempt | None: ...

    def update_attempt(
        self,
        attempt_id: str,
        *,
        end_time: datetime | None = None,
        total_score: float | None = None,
        status: AttemptStatus | None = None,
        rank: int | None = None,
    ) -> None: ...

    def insert_answers(self, records: list[AnswerRecord]) -> None: ...

    def get_completed_attempts(self, exam_id: str) -> list[ExamAttempt]: ...

    def get_answers_for_attempt(self, attempt_id: str) -> list[AnswerRecord]: ...

    def current_user_identity(self) -> str | None: ...


class InMemoryExamStore:
    """Thread-safe, process-local implementation of :class:`ExamStore`.

    Records are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self, user_provider: Callable[[], str | None] | None = None) -> None:
        self._lock = Lock()
        self._exams: dict[str, Exam] = {}
        self._questions: dict[str, list[Question]] = {}
        self._attempts: dict[str, ExamAttempt] = {}
        self._answers: dict[str, list[AnswerRecord]] = {}
        self._user_provider = user_provider
        self._current_user: str | None = None

    # --- Identity ---

    def set_current_user(self, user_id: str | None) -> None:
        self._current_user = user_id

    def current_user_identity(self) -> str | None:
        if self._user_provider is not None:
            return self._user_provider()
        return self._current_user

    # --- Exams ---

    def add_exam(self, exam: Exam) -> Exam:
        """Store an exam, assigning an id when the given one is empty."""
        if not exam.title.strip():
            raise ValueError("Exam title must not be empty.")
        if exam.duration_minutes <= 0:
            raise ValueError("Exam duration must be a positive number of minutes.")
        stored = replace(exam, id=exam.id or uuid4().hex, title=exam.title.strip())
        with self._lock:
            self._exams[stored.id] = stored
            self._questions.setdefault(stored.id, [])
        return replace(stored)

    def get_exam(self, exam_id: str) -> Exam | None:
        with self._lock:
            exam = self._exams.get(exam_id)
            return replace(exam) if exam else None

    def list_exams(self) -> list[Exam]:
        with self._lock:
            return [replace(exam) for exam in self._exams.values()]

    def update_exam_status(self, exam_id: str, status: ExamStatus) -> None:
        with self._lock:
            exam = self._require_exam(exam_id)
            exam.status = status

    # --- Questions ---

    def add_questions(self, exam_id: str, questions: Iterable[Question]) -> list[Question]:
        """Validate and append questions to an exam, assigning ids and order."""
        with self._lock:
            self._require_exam(exam_id)
            existing = self._questions.setdefault(exam_id, [])
            prepared = [
                self._prepare_question(exam_id, question, len(existing) + offset + 1)
                for offset, question in enumerate(questions)
            ]
            existing.extend(prepared)
            existing.sort(key=lambda q: q.question_order)
            return list(prepared)

    def get_questions(self, exam_id: str) -> list[Question]:
        with self._lock:
            return sorted(self._questions.get(exam_id, []), key=lambda q: q.question_order)

    # --- Attempts ---

    def create_attempt(self, exam_id: str, user_id: str, start_time: datetime) -> str:
        with self._lock:
            self._require_exam(exam_id)
            attempt = ExamAttempt(
                id=uuid4().hex,
                exam_id=exam_id,
                user_id=user_id,
                start_time=start_time,
            )
            self._attempts[attempt.id] = attempt
            return attempt.id

    def get_attempt(self, attempt_id: str) -> ExamAttempt | None:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            return replace(attempt) if attempt else None

    def update_attempt(
        self,
        attempt_id: str,
        *,
        end_time: datetime | None = None,
        total_score: float | None = None,
        status: AttemptStatus | None = None,
        rank: int | None = None,
    ) -> None:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            if attempt is None:
                raise StoreError(f"Attempt {attempt_id} does not exist.")
            if status is not None:
                # in_progress -> completed is the only transition
                if attempt.status is not AttemptStatus.IN_PROGRESS or status is not AttemptStatus.COMPLETED:
                    raise StoreError(
                        f"Attempt {attempt_id} cannot move from {attempt.status.value} to {status.value}."
                    )
                attempt.status = status
            if end_time is not None:
                attempt.end_time = end_time
            if total_score is not None:
                attempt.total_score = total_score
            if rank is not None:
                attempt.rank = rank

    def get_completed_attempts(self, exam_id: str) -> list[ExamAttempt]:
        with self._lock:
            return [
                replace(attempt)
                for attempt in self._attempts.values()
                if attempt.exam_id == exam_id and attempt.status is AttemptStatus.COMPLETED
            ]

    # --- Answers ---

    def insert_answers(self, records: list[AnswerRecord]) -> None:
        with self._lock:
            by_attempt: dict[str, list[AnswerRecord]] = {}
            for record in records:
                if record.attempt_id not in self._attempts:
                    raise StoreError(f"Attempt {record.attempt_id} does not exist.")
                batch = by_attempt.setdefault(record.attempt_id, [])
                if any(r.question_id == record.question_id for r in batch):
                    raise StoreError(
                        f"Duplicate answer for question {record.question_id} in attempt {record.attempt_id}."
                    )
                batch.append(record)
            for attempt_id in by_attempt:
                if self._answers.get(attempt_id):
                    raise StoreError(f"Answers for attempt {attempt_id} were already recorded.")
            for attempt_id, batch in by_attempt.items():
                self._answers[attempt_id] = batch

    def get_answers_for_attempt(self, attempt_id: str) -> list[AnswerRecord]:
        with self._lock:
            return list(self._answers.get(attempt_id, []))

    # --- Helpers ---

    def _require_exam(self, exam_id: str) -> Exam:
        exam = self._exams.get(exam_id)
        if exam is None:
            raise StoreError(f"Exam {exam_id} does not exist.")
        return exam

    @staticmethod
    def _prepare_question(exam_id: str, question: Question, fallback_order: int) -> Question:
        """Validate and normalize a question before storage."""
        if len(question.options) != 4:
            raise ValueError("Each question must have exactly four options.")
        options = tuple(option.strip() for option in question.options)
        if any(not option for option in options):
            raise ValueError("Option text cannot be empty.")

        cleaned_text = question.question_text.strip()
        if not cleaned_text:
            raise ValueError("Question text must not be empty.")
        if question.marks < 0 or question.negative_marks < 0:
            raise ValueError("Marks and negative marks must not be negative.")

        return replace(
            question,
            id=question.id or uuid4().hex,
            exam_id=exam_id,
            question_text=cleaned_text,
            options=options,
            question_order=question.question_order or fallback_order,
        )
