"""Exam-related constants shared across the core and server layers."""

TICK_INTERVAL_SECONDS: float = 1.0
LOW_TIME_WARNING_SECONDS: int = 300
DEFAULT_DURATION_MINUTES: int = 60
DEFAULT_QUESTION_MARKS: float = 1.0
DEFAULT_NEGATIVE_MARKS: float = 0.0
LEADERBOARD_LIMIT: int = 50
