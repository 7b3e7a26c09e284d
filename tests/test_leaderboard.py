from datetime import datetime, timezone

from exam_app.core.models import AttemptStatus, ExamStatus
from exam_app.core.services.exam_store import InMemoryExamStore
from exam_app.core.services.leaderboard import Leaderboard

from conftest import seed_exam

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _scored(store, exam_id, user_id, score, rank=None):
    attempt_id = store.create_attempt(exam_id, user_id, NOW)
    store.update_attempt(attempt_id, status=AttemptStatus.COMPLETED, total_score=score, rank=rank)
    return attempt_id


def test_only_announced_exams_are_listed():
    store = InMemoryExamStore()
    seed_exam(store, "announced", status=ExamStatus.RESULTS_ANNOUNCED)
    seed_exam(store, "pending", status=ExamStatus.COMPLETED)
    _scored(store, "announced", "alice", 8, rank=1)
    _scored(store, "pending", "bob", 10, rank=1)

    rows = Leaderboard(store).top_entries()

    assert [(row.user_id, row.exam_title) for row in rows] == [("alice", "Exam announced")]


def test_stored_rank_wins_and_missing_rank_is_computed():
    store = InMemoryExamStore()
    seed_exam(store, "e1", status=ExamStatus.RESULTS_ANNOUNCED)
    _scored(store, "e1", "alice", 9, rank=1)
    _scored(store, "e1", "bob", 9)
    _scored(store, "e1", "carol", 4)

    rows = Leaderboard(store).top_entries()

    assert sorted((row.user_id, row.rank) for row in rows) == [("alice", 1), ("bob", 1), ("carol", 3)]
    assert rows[-1].user_id == "carol"


def test_unscored_attempts_are_skipped_and_limit_applies():
    store = InMemoryExamStore()
    seed_exam(store, "e1", status=ExamStatus.RESULTS_ANNOUNCED)
    store.create_attempt("e1", "in-progress", NOW)
    for index in range(5):
        _scored(store, "e1", f"user-{index}", float(index))

    rows = Leaderboard(store).top_entries(limit=3)

    assert [row.user_id for row in rows] == ["user-4", "user-3", "user-2"]
    assert Leaderboard(store).top_entries(limit=0) == []
