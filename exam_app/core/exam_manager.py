"""Business logic shared between the API layer and the exam services."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from threading import Lock

from exam_app.constants.exam_constants import LEADERBOARD_LIMIT
from exam_app.core.models import AnswerState, ExamStatus, OptionLabel
from exam_app.core.services.countdown import CountdownTimer, TickerFactory
from exam_app.core.services.exam_session import (
    Clock,
    ExamSession,
    LoginRequiredError,
    NavigationDirection,
    SessionNotActiveError,
    SessionState,
    SubmissionOutcome,
    SubmissionReason,
    start_exam_session,
    utcnow,
)
from exam_app.core.services.exam_store import ExamStore
from exam_app.core.services.leaderboard import Leaderboard, LeaderboardRow
from exam_app.core.services.results_calculator import ResultsSummary, compute_results

logger = logging.getLogger(__name__)


class SubmissionConfirmationRequired(RuntimeError):
    """Raised for a manual submission with unanswered questions that was not confirmed."""

    def __init__(self, unanswered: int) -> None:
        super().__init__(
            f"You have {unanswered} unanswered questions. Are you sure you want to submit?"
        )
        self.unanswered = unanswered


class AttemptClosedError(RuntimeError):
    """Raised when submitting an attempt that was closed without being submitted."""


class ExamStateError(RuntimeError):
    """Raised when an exam is not in the status an operation requires."""


@dataclass(slots=True, frozen=True)
class FinishedAttempt:
    """What is kept of a session once it has left memory."""

    attempt_id: str
    exam_id: str
    user_id: str
    outcome: SubmissionOutcome | None


@dataclass(slots=True, frozen=True)
class ExamClosure:
    exam_id: str
    submitted: int


class ExamManager:
    """Facade for exam services: store, live sessions, results and leaderboard.

    Live sessions are indexed by attempt id and by ``(exam_id, user_id)``.
    A session is moved out of both indexes as soon as it terminates; only a
    :class:`FinishedAttempt` with its outcome is kept.
    """

    def __init__(
        self,
        store: ExamStore,
        *,
        ticker_factory: TickerFactory = CountdownTimer,
        clock: Clock = utcnow,
    ) -> None:
        self._lock = Lock()
        self._store = store
        self._ticker_factory = ticker_factory
        self._clock = clock
        self._sessions: dict[str, ExamSession] = {}
        self._live_attempts: dict[tuple[str, str], str] = {}
        self._finished: dict[str, FinishedAttempt] = {}
        self._leaderboard = Leaderboard(store)

    @property
    def store(self) -> ExamStore:
        return self._store

    @property
    def live_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    # --- Session lifecycle ---

    def start_exam(self, exam_id: str, user_id: str | None = None) -> ExamSession:
        """Start an attempt, or resume the student's running attempt at this exam."""
        with self._lock:
            if user_id is None:
                user_id = self._store.current_user_identity()
            if not user_id:
                raise LoginRequiredError("Login required.")

            existing = self._find_active_session(exam_id, user_id)
            if existing is not None:
                logger.info("Resuming attempt %s for user %s", existing.attempt_id, user_id)
                return existing

            session = start_exam_session(
                self._store,
                exam_id,
                user_id=user_id,
                ticker_factory=self._ticker_factory,
                clock=self._clock,
                on_terminated=self._retire,
            )
            self._sessions[session.attempt_id] = session
            self._live_attempts[(exam_id, user_id)] = session.attempt_id
            return session

    def get_session(self, attempt_id: str, user_id: str | None = None) -> ExamSession:
        """Return the live session for ``attempt_id``.

        Raises ``KeyError`` for unknown attempts, ``PermissionError`` for
        another user's attempt and :class:`SessionNotActiveError` once the
        attempt has finished.
        """
        with self._lock:
            session = self._sessions.get(attempt_id)
            finished = self._finished.get(attempt_id)
        if session is not None:
            _check_owner(session.user_id, user_id)
            return session
        if finished is not None:
            _check_owner(finished.user_id, user_id)
            raise SessionNotActiveError("Exam session is terminated.")
        raise KeyError(attempt_id)

    def get_finished_attempt(self, attempt_id: str, user_id: str | None = None) -> FinishedAttempt:
        with self._lock:
            finished = self._finished.get(attempt_id)
        if finished is None:
            raise KeyError(attempt_id)
        _check_owner(finished.user_id, user_id)
        return finished

    def shutdown(self) -> None:
        """Stop every running countdown without submitting."""
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            session.close()

    # --- Session delegation ---

    def select_answer(
        self,
        attempt_id: str,
        question_id: str,
        option: OptionLabel | str,
        user_id: str | None = None,
    ) -> AnswerState:
        return self.get_session(attempt_id, user_id).select_answer(question_id, option)

    def toggle_review(self, attempt_id: str, question_id: str, user_id: str | None = None) -> AnswerState:
        return self.get_session(attempt_id, user_id).toggle_review(question_id)

    def navigate(
        self,
        attempt_id: str,
        direction: NavigationDirection | None = None,
        index: int | None = None,
        user_id: str | None = None,
    ) -> int:
        return self.get_session(attempt_id, user_id).navigate(direction=direction, index=index)

    def submit(
        self,
        attempt_id: str,
        confirmed: bool = False,
        user_id: str | None = None,
    ) -> SubmissionOutcome | None:
        """Submit manually. Unanswered questions require ``confirmed=True``.

        An attempt that has already been submitted returns its original
        outcome without persisting anything again. ``None`` means another
        submission of the same attempt is still being written.
        """
        try:
            session = self.get_session(attempt_id, user_id)
        except SessionNotActiveError:
            return _submitted_outcome(self.get_finished_attempt(attempt_id, user_id).outcome, attempt_id)

        if session.state is SessionState.SUBMITTING:
            return None
        if session.state is not SessionState.ACTIVE:
            return _submitted_outcome(session.outcome, attempt_id)
        unanswered = session.remaining_count
        if unanswered and not confirmed:
            raise SubmissionConfirmationRequired(unanswered)
        outcome = session.submit(SubmissionReason.MANUAL)
        if outcome is None:
            return _submitted_outcome(session.outcome, attempt_id)
        return outcome

    # --- Exam status ---

    def close_exam(self, exam_id: str) -> ExamClosure:
        """Move an active exam to completed and submit every running attempt.

        Raises ``KeyError`` for an unknown exam and :class:`ExamStateError`
        when the exam is not active.
        """
        with self._lock:
            exam = self._store.get_exam(exam_id)
            if exam is None:
                raise KeyError(exam_id)
            if exam.status is not ExamStatus.ACTIVE:
                raise ExamStateError(f"Only active exams can be closed (status is {exam.status.value}).")
            self._store.update_exam_status(exam_id, ExamStatus.COMPLETED)
            running = [
                self._sessions[attempt_id]
                for (live_exam_id, _), attempt_id in self._live_attempts.items()
                if live_exam_id == exam_id
            ]

        submitted = 0
        for session in running:
            if session.submit(SubmissionReason.EXAM_CLOSED) is not None:
                submitted += 1
        logger.info("Exam %s closed; %d running attempts submitted", exam_id, submitted)
        return ExamClosure(exam_id=exam_id, submitted=submitted)

    # --- Results ---

    def calculate_results(self, exam_id: str) -> ResultsSummary:
        return compute_results(self._store, exam_id)

    def get_leaderboard(self, limit: int = LEADERBOARD_LIMIT) -> list[LeaderboardRow]:
        return self._leaderboard.top_entries(limit)

    # --- Helpers ---

    def _find_active_session(self, exam_id: str, user_id: str) -> ExamSession | None:
        attempt_id = self._live_attempts.get((exam_id, user_id))
        if attempt_id is None:
            return None
        session = self._sessions[attempt_id]
        return session if session.state is SessionState.ACTIVE else None

    def _retire(self, session: ExamSession) -> None:
        key = (session.exam.id, session.user_id)
        with self._lock:
            self._sessions.pop(session.attempt_id, None)
            if self._live_attempts.get(key) == session.attempt_id:
                del self._live_attempts[key]
            self._finished[session.attempt_id] = FinishedAttempt(
                attempt_id=session.attempt_id,
                exam_id=key[0],
                user_id=session.user_id,
                outcome=session.outcome,
            )


def _check_owner(owner: str, user_id: str | None) -> None:
    if user_id is not None and owner != user_id:
        raise PermissionError("This attempt belongs to another user.")


def _submitted_outcome(outcome: SubmissionOutcome | None, attempt_id: str) -> SubmissionOutcome:
    if outcome is None:
        raise AttemptClosedError(f"Attempt {attempt_id} was closed without being submitted.")
    return outcome
