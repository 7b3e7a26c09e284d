import pytest

from exam_app.core.exam_manager import (
    AttemptClosedError,
    ExamManager,
    ExamStateError,
    SubmissionConfirmationRequired,
)
from exam_app.core.models import AttemptStatus, ExamStatus
from exam_app.core.services.exam_session import (
    ExamNotActiveError,
    LoginRequiredError,
    NavigationDirection,
    SessionNotActiveError,
    SessionState,
    SubmissionReason,
)


@pytest.fixture
def manager(store, ticker_factory, clock):
    return ExamManager(store, ticker_factory=ticker_factory, clock=clock)


def test_second_start_resumes_running_attempt(manager, tickers):
    first = manager.start_exam("exam-1", user_id="student-1")
    second = manager.start_exam("exam-1", user_id="student-1")

    assert second is first
    assert len(tickers) == 1


def test_new_attempt_after_submission(manager):
    first = manager.start_exam("exam-1", user_id="student-1")
    manager.submit(first.attempt_id, confirmed=True)

    second = manager.start_exam("exam-1", user_id="student-1")

    assert second.attempt_id != first.attempt_id


def test_identity_falls_back_to_store(manager):
    session = manager.start_exam("exam-1")

    assert session.user_id == "student-1"


def test_missing_identity_is_rejected(manager, store):
    store.set_current_user(None)

    with pytest.raises(LoginRequiredError):
        manager.start_exam("exam-1")


def test_other_users_cannot_touch_attempt(manager):
    session = manager.start_exam("exam-1", user_id="student-1")

    with pytest.raises(PermissionError):
        manager.select_answer(session.attempt_id, "q1", "A", user_id="student-2")
    with pytest.raises(KeyError):
        manager.get_session("unknown")


def test_unanswered_submission_needs_confirmation(manager, store):
    session = manager.start_exam("exam-1", user_id="student-1")
    manager.select_answer(session.attempt_id, "q1", "A")

    with pytest.raises(SubmissionConfirmationRequired) as excinfo:
        manager.submit(session.attempt_id)
    assert excinfo.value.unanswered == 2
    assert session.state is SessionState.ACTIVE

    outcome = manager.submit(session.attempt_id, confirmed=True)
    assert outcome.score == 2
    assert store.get_attempt(session.attempt_id).status is AttemptStatus.COMPLETED


def test_fully_answered_submission_needs_no_confirmation(manager):
    session = manager.start_exam("exam-1", user_id="student-1")
    for question_id, option in (("q1", "A"), ("q2", "B"), ("q3", "C")):
        manager.select_answer(session.attempt_id, question_id, option)

    outcome = manager.submit(session.attempt_id)

    assert outcome.score == 5


def test_repeat_submit_returns_original_outcome(manager):
    session = manager.start_exam("exam-1", user_id="student-1")

    first = manager.submit(session.attempt_id, confirmed=True)
    second = manager.submit(session.attempt_id)

    assert second is first


def test_navigation_and_review_delegate(manager):
    session = manager.start_exam("exam-1", user_id="student-1")

    assert manager.navigate(session.attempt_id, NavigationDirection.NEXT) == 1
    assert manager.toggle_review(session.attempt_id, "q2").is_marked_for_review


def test_results_and_leaderboard(manager, store):
    for user_id, picks in (("alice", ("A", "B", "C")), ("bob", ("A", "C", "C"))):
        session = manager.start_exam("exam-1", user_id=user_id)
        for question_id, option in zip(("q1", "q2", "q3"), picks):
            manager.select_answer(session.attempt_id, question_id, option)
        manager.submit(session.attempt_id)
    manager.close_exam("exam-1")

    summary = manager.calculate_results("exam-1")
    rows = manager.get_leaderboard()

    assert summary.count == 2
    assert [(row.user_id, row.rank, row.total_score) for row in rows] == [
        ("alice", 1, 5),
        ("bob", 2, 2.5),
    ]


def test_shutdown_cancels_countdowns(manager, tickers):
    session = manager.start_exam("exam-1", user_id="student-1")

    manager.shutdown()

    assert tickers[0].cancelled
    assert session.state is SessionState.TERMINATED
    assert manager.live_session_count == 0
    with pytest.raises(AttemptClosedError):
        manager.submit(session.attempt_id, confirmed=True)


def test_submitted_session_leaves_live_map(manager):
    session = manager.start_exam("exam-1", user_id="student-1")
    assert manager.live_session_count == 1

    outcome = manager.submit(session.attempt_id, confirmed=True)

    assert manager.live_session_count == 0
    assert manager.submit(session.attempt_id) is outcome
    assert manager.get_finished_attempt(session.attempt_id).outcome is outcome
    with pytest.raises(SessionNotActiveError):
        manager.get_session(session.attempt_id)
    with pytest.raises(PermissionError):
        manager.submit(session.attempt_id, user_id="student-2")


def test_timed_out_session_leaves_live_map(manager, tickers):
    session = manager.start_exam("exam-1", user_id="student-1")

    tickers[0].fire(60)

    assert manager.live_session_count == 0
    assert manager.submit(session.attempt_id).reason is SubmissionReason.TIMEOUT


def test_close_exam_submits_running_attempts(manager, store, tickers):
    alice = manager.start_exam("exam-1", user_id="alice")
    bob = manager.start_exam("exam-1", user_id="bob")
    manager.select_answer(alice.attempt_id, "q1", "A")

    closure = manager.close_exam("exam-1")

    assert closure.submitted == 2
    assert store.get_exam("exam-1").status is ExamStatus.COMPLETED
    assert all(ticker.cancelled for ticker in tickers)
    assert manager.live_session_count == 0
    assert manager.submit(alice.attempt_id).reason is SubmissionReason.EXAM_CLOSED
    assert manager.submit(bob.attempt_id).score == 0
    with pytest.raises(ExamNotActiveError):
        manager.start_exam("exam-1", user_id="carol")


def test_close_exam_requires_active_exam(manager):
    manager.close_exam("exam-1")

    with pytest.raises(ExamStateError):
        manager.close_exam("exam-1")
    with pytest.raises(KeyError):
        manager.close_exam("missing")
