from __future__ import annotations

from typing import Any, Iterable, Mapping


def brier_score(bets: Iterable[Mapping[str, Any]]) -> float:
    """Mean squared error between stated probability and realised outcome.

    Only bets with a non-null outcome count. With no resolved bets the score is
    exactly 0.0, so callers must use the resolved count to tell "no data" apart
    from a perfect score.
    """
    total = 0.0
    resolved = 0
    for bet in bets:
        outcome = bet.get("outcome")
        if outcome is None:
            continue
        target = 1.0 if outcome else 0.0
        total += (float(bet.get("probability", 0.0)) - target) ** 2
        resolved += 1
    if resolved == 0:
        return 0.0
    return total / resolved


def count_bets(bets: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    counts = {"open": 0, "resolved": 0}
    for bet in bets:
        status = bet.get("status")
        if status in counts:
            counts[status] += 1
    return counts
