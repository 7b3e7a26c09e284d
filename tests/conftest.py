from datetime import datetime, timezone

import pytest

from exam_app.core.models import Exam, ExamStatus, OptionLabel, Question
from exam_app.core.services.exam_store import InMemoryExamStore

FIXED_NOW = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


class FakeTicker:
    """Stands in for the countdown thread; ticks are fired by hand."""

    def __init__(self, interval, on_tick):
        self.interval = interval
        self.on_tick = on_tick
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self, times=1):
        for _ in range(times):
            if self.cancelled:
                break
            self.on_tick()


def make_question(qid, correct="A", marks=1.0, negative=0.0, order=0, exam_id="exam-1"):
    return Question(
        id=qid,
        exam_id=exam_id,
        question_text=f"Question {qid}",
        options=("one", "two", "three", "four"),
        correct_option=OptionLabel(correct),
        marks=marks,
        negative_marks=negative,
        question_order=order,
    )


def seed_exam(store, exam_id="exam-1", status=ExamStatus.ACTIVE, duration_minutes=1, questions=None):
    store.add_exam(
        Exam(
            id=exam_id,
            title=f"Exam {exam_id}",
            duration_minutes=duration_minutes,
            total_marks=5,
            status=status,
        )
    )
    if questions is None:
        questions = [
            make_question("q1", "A", marks=2, negative=0.5, order=1, exam_id=exam_id),
            make_question("q2", "B", marks=2, negative=0.5, order=2, exam_id=exam_id),
            make_question("q3", "C", marks=1, negative=0, order=3, exam_id=exam_id),
        ]
    store.add_questions(exam_id, questions)
    return exam_id


@pytest.fixture
def tickers():
    return []


@pytest.fixture
def ticker_factory(tickers):
    def factory(interval, on_tick):
        ticker = FakeTicker(interval, on_tick)
        tickers.append(ticker)
        return ticker

    return factory


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def store():
    store = InMemoryExamStore()
    store.set_current_user("student-1")
    seed_exam(store)
    return store
