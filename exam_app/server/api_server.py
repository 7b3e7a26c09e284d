"""FastAPI server that exposes exam-taking and results endpoints."""

from __future__ import annotations

from datetime import timezone
from typing import Literal

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from pydantic import BaseModel
import uvicorn

from exam_app.constants.exam_constants import LEADERBOARD_LIMIT
from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, USER_ID_HEADER
from exam_app.core.exam_manager import (
    AttemptClosedError,
    ExamManager,
    ExamStateError,
    FinishedAttempt,
    SubmissionConfirmationRequired,
)
from exam_app.core.markdown_math_renderer import renderer
from exam_app.core.models import ExamStatus, OptionLabel
from exam_app.core.services.exam_session import (
    ExamNotFoundError,
    ExamSession,
    LoginRequiredError,
    NavigationDirection,
    SessionNotActiveError,
    SessionStartError,
    SessionState,
    SubmissionOutcome,
)
from exam_app.core.services.results_calculator import (
    NoCompletedAttemptsError,
    ResultsCalculationError,
)


class AnswerPayload(BaseModel):
    """Payload schema for selecting (or clearing) an option."""

    question_id: str
    option: OptionLabel


class ReviewPayload(BaseModel):
    """Payload schema for toggling the review flag."""

    question_id: str


class NavigatePayload(BaseModel):
    """Payload schema for moving between questions."""

    direction: Literal["next", "previous"] | None = None
    index: int | None = None


class SubmitPayload(BaseModel):
    """Payload schema for a manual submission."""

    confirmed: bool = False


_DIRECTIONS = {
    "next": NavigationDirection.NEXT,
    "previous": NavigationDirection.PREVIOUS,
}


def _require_user(x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Login required.")
    return x_user_id.strip()


def _get_exam_manager_dependency(exam_manager: ExamManager):
    def dependency() -> ExamManager:
        return exam_manager

    return dependency


def _isoformat(value) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _outcome_view(outcome: SubmissionOutcome | None) -> dict[str, object] | None:
    if outcome is None:
        return None
    return {
        "attempt_id": outcome.attempt_id,
        "reason": outcome.reason.value,
        "score": outcome.score,
        "submitted_at": _isoformat(outcome.submitted_at),
        "persisted": outcome.persisted,
        "message": outcome.message,
        "error": outcome.error,
    }


def _session_view(session: ExamSession) -> dict[str, object]:
    exam = session.exam
    question = session.current_question
    answer = session.answer_state(question.id)
    palette = []
    for index, item in enumerate(session.questions):
        state = session.answer_state(item.id)
        palette.append(
            {
                "index": index,
                "question_id": item.id,
                "answered": state.selected_option is not None,
                "marked_for_review": state.is_marked_for_review,
            }
        )
    return {
        "attempt_id": session.attempt_id,
        "exam_id": exam.id,
        "exam_title": exam.title,
        "exam_description": exam.description,
        "total_marks": exam.total_marks,
        "state": session.state.name.lower(),
        "current_index": session.current_index,
        "question_count": len(palette),
        "question_id": question.id,
        "marks": question.marks,
        **renderer.render_question(question),
        "selected_option": answer.selected_option.value if answer.selected_option else None,
        "is_marked_for_review": answer.is_marked_for_review,
        "palette": palette,
        "answered_count": session.answered_count,
        "marked_count": session.marked_count,
        "remaining_count": session.remaining_count,
        "progress_percent": round(session.completion_fraction * 100),
        "remaining_seconds": session.remaining_seconds,
        "remaining_time": session.remaining_time_label,
        "time_low": session.is_time_low,
        "outcome": _outcome_view(session.outcome),
    }


def _finished_view(finished: FinishedAttempt) -> dict[str, object]:
    return {
        "attempt_id": finished.attempt_id,
        "exam_id": finished.exam_id,
        "state": SessionState.TERMINATED.name.lower(),
        "outcome": _outcome_view(finished.outcome),
    }


def _lookup_session(manager: ExamManager, attempt_id: str, user_id: str) -> ExamSession:
    try:
        return manager.get_session(attempt_id, user_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Attempt not found.") from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except SessionNotActiveError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def create_api_app(exam_manager: ExamManager) -> FastAPI:
    """Create a FastAPI application wired to the provided exam manager."""
    app = FastAPI(title="Exam API", version="0.1.0")
    exam_manager_dep = _get_exam_manager_dependency(exam_manager)

    @app.post("/exams/{exam_id}/attempts", status_code=201)
    def start_attempt(
        exam_id: str,
        user_id: str = Depends(_require_user),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        try:
            session = manager.start_exam(exam_id, user_id=user_id)
        except ExamNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except LoginRequiredError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        except SessionStartError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_view(session)

    @app.get("/attempts/{attempt_id}")
    def get_attempt(
        attempt_id: str,
        user_id: str = Depends(_require_user),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        try:
            return _session_view(manager.get_session(attempt_id, user_id))
        except SessionNotActiveError:
            return _finished_view(manager.get_finished_attempt(attempt_id, user_id))
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Attempt not found.") from exc
        except PermissionError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc

    @app.post("/attempts/{attempt_id}/answer")
    def select_answer(
        attempt_id: str,
        payload: AnswerPayload,
        user_id: str = Depends(_require_user),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        session = _lookup_session(manager, attempt_id, user_id)
        try:
            state = session.select_answer(payload.question_id, payload.option)
        except KeyError as exc:
            raise HTTPException(status_code=422, detail="Unknown question.") from exc
        except SessionNotActiveError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {
            "question_id": payload.question_id,
            "selected_option": state.selected_option.value if state.selected_option else None,
            "is_marked_for_review": state.is_marked_for_review,
            "answered_count": session.answered_count,
        }

    @app.post("/attempts/{attempt_id}/review")
    def toggle_review(
        attempt_id: str,
        payload: ReviewPayload,
        user_id: str = Depends(_require_user),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        session = _lookup_session(manager, attempt_id, user_id)
        try:
            state = session.toggle_review(payload.question_id)
        except KeyError as exc:
            raise HTTPException(status_code=422, detail="Unknown question.") from exc
        except SessionNotActiveError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {
            "question_id": payload.question_id,
            "selected_option": state.selected_option.value if state.selected_option else None,
            "is_marked_for_review": state.is_marked_for_review,
            "marked_count": session.marked_count,
        }

    @app.post("/attempts/{attempt_id}/navigate")
    def navigate(
        attempt_id: str,
        payload: NavigatePayload,
        user_id: str = Depends(_require_user),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        session = _lookup_session(manager, attempt_id, user_id)
        direction = _DIRECTIONS[payload.direction] if payload.direction else None
        try:
            session.navigate(direction=direction, index=payload.index)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except SessionNotActiveError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_view(session)

    @app.post("/attempts/{attempt_id}/submit")
    def submit_attempt(
        attempt_id: str,
        payload: SubmitPayload,
        user_id: str = Depends(_require_user),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        try:
            outcome = manager.submit(attempt_id, confirmed=payload.confirmed, user_id=user_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Attempt not found.") from exc
        except PermissionError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        except SubmissionConfirmationRequired as exc:
            raise HTTPException(
                status_code=409,
                detail={"message": str(exc), "unanswered": exc.unanswered},
            ) from exc
        except AttemptClosedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if outcome is None:
            raise HTTPException(status_code=409, detail="Submission already in progress.")
        view = _outcome_view(outcome)
        if not outcome.persisted:
            raise HTTPException(status_code=502, detail=view)
        return view

    @app.post("/exams/{exam_id}/close")
    def close_exam(
        exam_id: str,
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        try:
            closure = manager.close_exam(exam_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Exam not found.") from exc
        except ExamStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {
            "exam_id": closure.exam_id,
            "status": ExamStatus.COMPLETED.value,
            "submitted": closure.submitted,
        }

    @app.post("/exams/{exam_id}/results")
    def calculate_results(
        exam_id: str,
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        try:
            summary = manager.calculate_results(exam_id)
        except NoCompletedAttemptsError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ResultsCalculationError as exc:
            status_code = 502 if exc.__cause__ is not None else 409
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
        return {
            "exam_id": summary.exam_id,
            "count": summary.count,
            "message": f"Results calculated for {summary.count} submissions!",
        }

    @app.get("/leaderboard")
    def get_leaderboard(
        limit: int = Query(default=LEADERBOARD_LIMIT, ge=1, le=500),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [
            {
                "rank": row.rank,
                "user_id": row.user_id,
                "exam_id": row.exam_id,
                "exam_title": row.exam_title,
                "total_score": row.total_score,
            }
            for row in manager.get_leaderboard(limit)
        ]

    return app


def run_api_server(
    exam_manager: ExamManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve the API in the current thread until interrupted."""
    app = create_api_app(exam_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    server.run()
