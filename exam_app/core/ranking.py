"""Tie-aware competition ranking."""

from __future__ import annotations

from collections.abc import Hashable, Iterable
from typing import TypeVar

EntryId = TypeVar("EntryId", bound=Hashable)


def assign_ranks(entries: Iterable[tuple[EntryId, float]]) -> dict[EntryId, int]:
    """Rank entries already sorted by score, highest first.

    Equal scores share a rank and the next distinct score resumes at its
    1-based position, so ``[100, 100, 90]`` ranks as ``[1, 1, 3]``. Scores are
    compared exactly.
    """
    ranks: dict[EntryId, int] = {}
    previous_score: float | None = None
    current_rank = 0
    for position, (entry_id, score) in enumerate(entries, start=1):
        if previous_score is not None and score > previous_score:
            raise ValueError("Entries must be sorted by score in descending order.")
        if score != previous_score:
            current_rank = position
            previous_score = score
        ranks[entry_id] = current_rank
    return ranks
