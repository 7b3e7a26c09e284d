"""Service for listing announced results across exams."""

from __future__ import annotations

from dataclasses import dataclass

from exam_app.constants.exam_constants import LEADERBOARD_LIMIT
from exam_app.core.models import ExamAttempt, ExamStatus
from exam_app.core.ranking import assign_ranks
from exam_app.core.services.exam_store import ExamStore


@dataclass(slots=True, frozen=True)
class LeaderboardRow:
    """Immutable snapshot returned to consumers."""

    rank: int
    user_id: str
    exam_id: str
    exam_title: str
    total_score: float


class Leaderboard:
    """Top scored attempts of exams whose results have been announced."""

    def __init__(self, store: ExamStore) -> None:
        self._store = store

    def top_entries(self, limit: int = LEADERBOARD_LIMIT) -> list[LeaderboardRow]:
        """Return the top ``limit`` attempts sorted by score, highest first.

        The rank stored by the results job is used when present; otherwise a
        tie-aware rank over the listed attempts is filled in.
        """
        if limit <= 0:
            return []
        titles: dict[str, str] = {}
        scored: list[ExamAttempt] = []
        for exam in self._store.list_exams():
            if exam.status is not ExamStatus.RESULTS_ANNOUNCED:
                continue
            titles[exam.id] = exam.title
            scored.extend(
                attempt
                for attempt in self._store.get_completed_attempts(exam.id)
                if attempt.total_score is not None
            )

        top = sorted(scored, key=lambda a: (-a.total_score, a.exam_id, a.id))[:limit]
        fallback_ranks = assign_ranks((attempt.id, attempt.total_score) for attempt in top)
        return [
            LeaderboardRow(
                rank=attempt.rank or fallback_ranks[attempt.id],
                user_id=attempt.user_id,
                exam_id=attempt.exam_id,
                exam_title=titles.get(attempt.exam_id, "Unknown Exam"),
                total_score=attempt.total_score,
            )
            for attempt in top
        ]
