from dataclasses import replace
from datetime import datetime, timezone

import pytest

from exam_app.core.models import AnswerRecord, AttemptStatus, Exam, ExamStatus
from exam_app.core.services.exam_store import InMemoryExamStore, StoreError

from conftest import make_question, seed_exam

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _record(attempt_id, question_id):
    return AnswerRecord(
        attempt_id=attempt_id,
        question_id=question_id,
        selected_option=None,
        is_marked_for_review=False,
        answered_at=NOW,
    )


def test_questions_come_back_in_order():
    store = InMemoryExamStore()
    seed_exam(
        store,
        questions=[
            make_question("late", order=5),
            make_question("early", order=1),
            make_question("middle", order=3),
        ],
    )

    assert [q.id for q in store.get_questions("exam-1")] == ["early", "middle", "late"]


def test_add_questions_assigns_ids_and_exam():
    store = InMemoryExamStore()
    seed_exam(store, questions=[])

    added = store.add_questions("exam-1", [make_question("", exam_id="")])

    assert added[0].id
    assert added[0].exam_id == "exam-1"
    assert added[0].question_order == 1


@pytest.mark.parametrize(
    "changes",
    [
        {"options": ("a", "b", "c")},
        {"options": ("a", "b", " ", "d")},
        {"question_text": "  "},
        {"marks": -1},
        {"negative_marks": -0.5},
    ],
)
def test_invalid_questions_are_rejected(changes):
    store = InMemoryExamStore()
    seed_exam(store, questions=[])

    with pytest.raises(ValueError):
        store.add_questions("exam-1", [replace(make_question("q1"), **changes)])


def test_exam_validation():
    store = InMemoryExamStore()

    with pytest.raises(ValueError):
        store.add_exam(Exam(id="", title=" ", duration_minutes=10))
    with pytest.raises(ValueError):
        store.add_exam(Exam(id="", title="Physics", duration_minutes=0))


def test_records_are_copied():
    store = InMemoryExamStore()
    seed_exam(store)

    exam = store.get_exam("exam-1")
    exam.status = ExamStatus.DRAFT

    assert store.get_exam("exam-1").status is ExamStatus.ACTIVE


def test_attempt_completes_only_once():
    store = InMemoryExamStore()
    seed_exam(store)
    attempt_id = store.create_attempt("exam-1", "student-1", NOW)

    store.update_attempt(attempt_id, status=AttemptStatus.COMPLETED, total_score=3)

    with pytest.raises(StoreError):
        store.update_attempt(attempt_id, status=AttemptStatus.COMPLETED)
    with pytest.raises(StoreError):
        store.update_attempt(attempt_id, status=AttemptStatus.IN_PROGRESS)
    store.update_attempt(attempt_id, rank=1)
    attempt = store.get_attempt(attempt_id)
    assert attempt.total_score == 3
    assert attempt.rank == 1


def test_answers_written_once_per_attempt():
    store = InMemoryExamStore()
    seed_exam(store)
    attempt_id = store.create_attempt("exam-1", "student-1", NOW)

    with pytest.raises(StoreError):
        store.insert_answers([_record(attempt_id, "q1"), _record(attempt_id, "q1")])
    assert store.get_answers_for_attempt(attempt_id) == []

    store.insert_answers([_record(attempt_id, "q1"), _record(attempt_id, "q2")])
    with pytest.raises(StoreError):
        store.insert_answers([_record(attempt_id, "q3")])
    assert len(store.get_answers_for_attempt(attempt_id)) == 2


def test_unknown_records_raise_store_errors():
    store = InMemoryExamStore()

    with pytest.raises(StoreError):
        store.create_attempt("missing", "student-1", NOW)
    with pytest.raises(StoreError):
        store.update_attempt("missing", rank=1)
    with pytest.raises(StoreError):
        store.update_exam_status("missing", ExamStatus.ACTIVE)
    with pytest.raises(StoreError):
        store.insert_answers([_record("missing", "q1")])


def test_identity_comes_from_provider_when_given():
    store = InMemoryExamStore(user_provider=lambda: "from-provider")
    store.set_current_user("ignored")

    assert store.current_user_identity() == "from-provider"
    assert InMemoryExamStore().current_user_identity() is None
