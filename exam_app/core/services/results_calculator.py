"""Batch scoring and ranking of every completed attempt of an exam."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from exam_app.core.models import ExamStatus
from exam_app.core.ranking import assign_ranks
from exam_app.core.scoring import compute_score, final_score
from exam_app.core.services.exam_store import ExamStore, StoreError

logger = logging.getLogger(__name__)

_CALCULABLE_STATUSES = (ExamStatus.COMPLETED, ExamStatus.RESULTS_ANNOUNCED)


class ResultsCalculationError(RuntimeError):
    """Raised when a results run cannot start or a step fails mid-run."""


class NoCompletedAttemptsError(ResultsCalculationError):
    pass


@dataclass(slots=True, frozen=True)
class ResultsSummary:
    exam_id: str
    count: int


def compute_results(store: ExamStore, exam_id: str) -> ResultsSummary:
    """Score and rank all completed attempts, then announce the results.

    Attempts are processed one at a time and every write is independent, so
    a failure leaves earlier attempts updated. Re-running with unchanged
    answers produces the same scores and ranks.
    """
    try:
        exam = store.get_exam(exam_id)
        if exam is None:
            raise ResultsCalculationError(f"Exam {exam_id} does not exist.")
        if exam.status not in _CALCULABLE_STATUSES:
            raise ResultsCalculationError(
                f"Results can only be calculated for completed exams (status is {exam.status.value})."
            )

        attempts = store.get_completed_attempts(exam_id)
        if not attempts:
            raise NoCompletedAttemptsError("No completed attempts found.")
        questions = store.get_questions(exam_id)

        logger.info("Calculating results for exam %s (%d attempts)", exam_id, len(attempts))
        for attempt in attempts:
            answers = store.get_answers_for_attempt(attempt.id)
            selections = {answer.question_id: answer.selected_option for answer in answers}
            score = final_score(compute_score(questions, selections))
            store.update_attempt(attempt.id, total_score=score)

        scored = sorted(
            store.get_completed_attempts(exam_id),
            key=lambda attempt: (-(attempt.total_score or 0.0), attempt.id),
        )
        ranks = assign_ranks((attempt.id, attempt.total_score or 0.0) for attempt in scored)
        for attempt_id, rank in ranks.items():
            store.update_attempt(attempt_id, rank=rank)

        store.update_exam_status(exam_id, ExamStatus.RESULTS_ANNOUNCED)
    except StoreError as exc:
        logger.error("Results calculation for exam %s aborted: %s", exam_id, exc)
        raise ResultsCalculationError("Failed to calculate results.") from exc

    logger.info("Results announced for exam %s", exam_id)
    return ResultsSummary(exam_id=exam_id, count=len(attempts))
