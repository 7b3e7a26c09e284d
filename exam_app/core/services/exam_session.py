"""Service for running one student's timed attempt at an exam."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum, auto
import logging
from threading import RLock

from exam_app.constants.exam_constants import LOW_TIME_WARNING_SECONDS, TICK_INTERVAL_SECONDS
from exam_app.core.models import (
    AnswerRecord,
    AnswerState,
    AttemptStatus,
    Exam,
    ExamStatus,
    OptionLabel,
    Question,
)
from exam_app.core.scoring import compute_score, final_score
from exam_app.core.services.countdown import CountdownTimer, Ticker, TickerFactory
from exam_app.core.services.exam_store import ExamStore, StoreError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(Enum):
    LOADING = auto()
    ACTIVE = auto()
    SUBMITTING = auto()
    TERMINATED = auto()


class SubmissionReason(str, Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"
    EXAM_CLOSED = "exam_closed"


class NavigationDirection(Enum):
    PREVIOUS = -1
    NEXT = 1


class SessionStartError(RuntimeError):
    """Raised when an exam session cannot be started. No attempt is kept."""


class ExamNotFoundError(SessionStartError):
    pass


class ExamNotActiveError(SessionStartError):
    pass


class LoginRequiredError(SessionStartError):
    pass


class SessionNotActiveError(RuntimeError):
    """Raised when an answer or navigation action arrives outside the active state."""


@dataclass(slots=True, frozen=True)
class SubmissionOutcome:
    """Result of the single submission of an exam session."""

    attempt_id: str
    reason: SubmissionReason
    score: float
    submitted_at: datetime
    persisted: bool
    error: str | None = None

    @property
    def message(self) -> str:
        if not self.persisted:
            return "Your answers could not be saved. Please contact the exam administrator."
        if self.reason is SubmissionReason.TIMEOUT:
            return "Time's up! Exam submitted automatically."
        if self.reason is SubmissionReason.EXAM_CLOSED:
            return "The exam was closed. Your answers were submitted automatically."
        return "Exam submitted successfully!"


class ExamSession:
    """State machine for a single exam attempt.

    The session moves ``LOADING -> ACTIVE -> SUBMITTING -> TERMINATED``.
    Answer, review and navigation actions are only accepted while ``ACTIVE``.
    The countdown ticker is started on :meth:`begin` and cancelled on every
    path out of ``ACTIVE``. Submission happens at most once, either by an
    explicit :meth:`submit` call or when the countdown reaches zero.
    ``on_terminated`` is called with the session once it reaches
    ``TERMINATED``, whether it was submitted or closed.
    """

    def __init__(
        self,
        exam: Exam,
        attempt_id: str,
        user_id: str,
        questions: Sequence[Question],
        store: ExamStore,
        *,
        ticker_factory: TickerFactory = CountdownTimer,
        clock: Clock = utcnow,
        on_terminated: Callable[[ExamSession], None] | None = None,
    ) -> None:
        if not questions:
            raise ValueError("An exam session needs at least one question.")
        self._lock = RLock()
        self._exam = exam
        self._attempt_id = attempt_id
        self._user_id = user_id
        self._questions: tuple[Question, ...] = tuple(questions)
        self._question_ids = {question.id for question in self._questions}
        self._store = store
        self._ticker_factory = ticker_factory
        self._clock = clock
        self._on_terminated = on_terminated

        self._state = SessionState.LOADING
        self._answers: dict[str, AnswerState] = {}
        self._current_index: int = 0
        self._remaining_seconds: int = exam.duration_minutes * 60
        self._ticker: Ticker | None = None
        self._outcome: SubmissionOutcome | None = None

    # --- Lifecycle ---

    def begin(self) -> None:
        """Enter the active state and start the countdown."""
        with self._lock:
            if self._state is not SessionState.LOADING:
                raise RuntimeError("Exam session has already been started.")
            self._state = SessionState.ACTIVE
            self._ticker = self._ticker_factory(TICK_INTERVAL_SECONDS, self.tick)
            self._ticker.start()
        logger.info(
            "Attempt %s started for exam %s (%d questions, %d seconds)",
            self._attempt_id,
            self._exam.id,
            len(self._questions),
            self._remaining_seconds,
        )

    def tick(self) -> None:
        """Advance the countdown by one second, submitting when time runs out."""
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._remaining_seconds -= 1
            expired = self._remaining_seconds <= 0
        if expired:
            logger.info("Time is up for attempt %s", self._attempt_id)
            self.submit(SubmissionReason.TIMEOUT)

    def submit(self, reason: SubmissionReason = SubmissionReason.MANUAL) -> SubmissionOutcome | None:
        """Score and persist the attempt. Returns ``None`` if already submitted."""
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return None
            self._state = SessionState.SUBMITTING
            self._stop_ticker()
            answers = {question_id: replace(state) for question_id, state in self._answers.items()}

        outcome: SubmissionOutcome | None = None
        try:
            outcome = self._persist_submission(answers, reason)
        finally:
            with self._lock:
                self._outcome = outcome
                self._state = SessionState.TERMINATED
            self._notify_terminated()
        return outcome

    def close(self) -> None:
        """Stop the session without submitting (used on shutdown)."""
        with self._lock:
            if self._state not in (SessionState.LOADING, SessionState.ACTIVE):
                return
            self._stop_ticker()
            self._state = SessionState.TERMINATED
        logger.info("Attempt %s closed without submission", self._attempt_id)
        self._notify_terminated()

    # --- Student actions ---

    def select_answer(self, question_id: str, option: OptionLabel | str) -> AnswerState:
        """Select ``option``; selecting the already-selected option clears it."""
        label = OptionLabel(option)
        with self._lock:
            self._require_active()
            state = self._answer_state_for_update(question_id)
            state.selected_option = None if state.selected_option is label else label
            return replace(state)

    def toggle_review(self, question_id: str) -> AnswerState:
        with self._lock:
            self._require_active()
            state = self._answer_state_for_update(question_id)
            state.is_marked_for_review = not state.is_marked_for_review
            return replace(state)

    def navigate(
        self,
        direction: NavigationDirection | None = None,
        index: int | None = None,
    ) -> int:
        """Move to the next/previous question or to ``index``.

        Moves outside the question range are ignored. Returns the current index.
        """
        if (direction is None) == (index is None):
            raise ValueError("Provide either a direction or an index.")
        with self._lock:
            self._require_active()
            target = index if index is not None else self._current_index + direction.value
            if 0 <= target < len(self._questions):
                self._current_index = target
            return self._current_index

    # --- Read-only views ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def attempt_id(self) -> str:
        return self._attempt_id

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def exam(self) -> Exam:
        return replace(self._exam)

    @property
    def questions(self) -> list[Question]:
        return list(self._questions)

    @property
    def outcome(self) -> SubmissionOutcome | None:
        return self._outcome

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question(self) -> Question:
        return self._questions[self._current_index]

    @property
    def remaining_seconds(self) -> int:
        return max(0, self._remaining_seconds)

    @property
    def remaining_time_label(self) -> str:
        minutes, seconds = divmod(self.remaining_seconds, 60)
        return f"{minutes}:{seconds:02d}"

    @property
    def is_time_low(self) -> bool:
        return self.remaining_seconds < LOW_TIME_WARNING_SECONDS

    def answer_state(self, question_id: str) -> AnswerState:
        with self._lock:
            if question_id not in self._question_ids:
                raise KeyError(question_id)
            return replace(self._answers.get(question_id, AnswerState()))

    @property
    def answered_count(self) -> int:
        with self._lock:
            return sum(1 for state in self._answers.values() if state.selected_option is not None)

    @property
    def marked_count(self) -> int:
        with self._lock:
            return sum(1 for state in self._answers.values() if state.is_marked_for_review)

    @property
    def remaining_count(self) -> int:
        return len(self._questions) - self.answered_count

    @property
    def completion_fraction(self) -> float:
        return self.answered_count / len(self._questions)

    # --- Internals ---

    def _require_active(self) -> None:
        if self._state is not SessionState.ACTIVE:
            raise SessionNotActiveError(f"Exam session is {self._state.name.lower()}.")

    def _answer_state_for_update(self, question_id: str) -> AnswerState:
        if question_id not in self._question_ids:
            raise KeyError(question_id)
        return self._answers.setdefault(question_id, AnswerState())

    def _notify_terminated(self) -> None:
        if self._on_terminated is not None:
            self._on_terminated(self)

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _persist_submission(
        self,
        answers: dict[str, AnswerState],
        reason: SubmissionReason,
    ) -> SubmissionOutcome:
        submitted_at = self._clock()
        selections = {question_id: state.selected_option for question_id, state in answers.items()}
        score = final_score(compute_score(self._questions, selections))
        try:
            self._store.update_attempt(
                self._attempt_id,
                end_time=submitted_at,
                total_score=score,
                status=AttemptStatus.COMPLETED,
            )
            self._store.insert_answers(
                [
                    AnswerRecord(
                        attempt_id=self._attempt_id,
                        question_id=question.id,
                        selected_option=answers.get(question.id, AnswerState()).selected_option,
                        is_marked_for_review=answers.get(question.id, AnswerState()).is_marked_for_review,
                        answered_at=submitted_at,
                    )
                    for question in self._questions
                ]
            )
        except StoreError as exc:
            logger.exception("Failed to persist submission for attempt %s", self._attempt_id)
            return SubmissionOutcome(
                attempt_id=self._attempt_id,
                reason=reason,
                score=score,
                submitted_at=submitted_at,
                persisted=False,
                error=str(exc),
            )

        logger.info(
            "Attempt %s submitted (%s) with score %s",
            self._attempt_id,
            reason.value,
            score,
        )
        return SubmissionOutcome(
            attempt_id=self._attempt_id,
            reason=reason,
            score=score,
            submitted_at=submitted_at,
            persisted=True,
        )


def start_exam_session(
    store: ExamStore,
    exam_id: str,
    *,
    user_id: str | None = None,
    ticker_factory: TickerFactory = CountdownTimer,
    clock: Clock = utcnow,
    on_terminated: Callable[[ExamSession], None] | None = None,
) -> ExamSession:
    """Load the exam, create the attempt, and return an active session.

    Any failure raises :class:`SessionStartError` before a session exists and
    before the countdown starts.
    """
    try:
        exam = store.get_exam(exam_id)
        if exam is None:
            raise ExamNotFoundError("Failed to load exam.")
        if exam.status is not ExamStatus.ACTIVE:
            raise ExamNotActiveError("This exam is not currently active.")

        questions = store.get_questions(exam_id)
        if not questions:
            raise SessionStartError("Failed to load questions.")

        if user_id is None:
            user_id = store.current_user_identity()
        if not user_id:
            raise LoginRequiredError("Login required.")

        attempt_id = store.create_attempt(exam_id, user_id, clock())
    except StoreError as exc:
        raise SessionStartError("An error occurred while loading the exam.") from exc

    session = ExamSession(
        exam,
        attempt_id,
        user_id,
        questions,
        store,
        ticker_factory=ticker_factory,
        clock=clock,
        on_terminated=on_terminated,
    )
    session.begin()
    return session
