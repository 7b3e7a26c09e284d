"""Application entry point for the exam server."""

from __future__ import annotations

from pathlib import Path
import sys

from exam_app.constants.exam_constants import DEFAULT_DURATION_MINUTES
from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from exam_app.core.exam_importer import ExamImportError, load_exam_from_file
from exam_app.core.exam_manager import ExamManager
from exam_app.core.models import Exam, ExamStatus
from exam_app.core.services.exam_store import InMemoryExamStore
from exam_app.server.api_server import run_api_server
from exam_app.utils.logging_config import configure_logging


def main() -> None:
    """Initialize logging, optionally seed an exam from a file, and serve the API."""
    logger = configure_logging()
    logger.info("Starting exam server...")

    store = InMemoryExamStore()
    for raw_path in sys.argv[1:]:
        try:
            imported = load_exam_from_file(Path(raw_path))
        except (OSError, ExamImportError) as exc:
            logger.error("Could not import %s: %s", raw_path, exc)
            sys.exit(1)
        exam = store.add_exam(
            Exam(
                id="",
                title=imported.title,
                duration_minutes=DEFAULT_DURATION_MINUTES,
                total_marks=imported.total_marks,
                status=ExamStatus.ACTIVE,
            )
        )
        store.add_questions(exam.id, imported.questions)
        logger.info("Loaded exam %s (%s) with %d questions", exam.id, exam.title, len(imported.questions))

    manager = ExamManager(store)
    logger.info("API available at http://%s:%d/", DEFAULT_HOST, DEFAULT_PORT)
    try:
        run_api_server(manager, host=DEFAULT_HOST, port=DEFAULT_PORT)
    finally:
        manager.shutdown()


if __name__ == "__main__":
    main()
