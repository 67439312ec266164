"""
Trust score calculator.

A student's score starts at the base score (50.0) and moves multiplicatively
with every closed loan, oldest return first:

    on time  (returned_at <= due_at)   score = min(100, score * 1.5)
    late                               score = score * 0.5
    lost / damaged                     score = score * 0.5 (penalty, replaces the time verdict)

The running value is kept unrounded so that applying verdicts one at a time
(the hot path used on every return) produces exactly the same number as
replaying the whole history (batch repair). Only the displayed score is
rounded to one decimal place.
"""

import math
from datetime import datetime
from typing import Any, Iterable, Iterator, List, Optional

from . import config
from .errors import ValidationError

ON_TIME = 'on_time'
LATE = 'late'
PENALTY = 'penalty'

PENALTY_OUTCOMES = ('lost', 'damaged')


def _clamp(score: float) -> float:
    return max(0.0, min(config.MAX_TRUST_SCORE, score))


def round_score(score: float) -> float:
    """Floor at 0 and round half-up to one decimal place."""
    return max(0.0, math.floor(score * 10 + 0.5) / 10)


def apply_outcome(current_score: float, on_time: bool) -> float:
    """Apply one on-time/late step to a score."""
    if on_time:
        return _clamp(current_score * config.ON_TIME_FACTOR)
    return _clamp(current_score * config.LATE_FACTOR)


def apply_penalty(current_score: float) -> float:
    """Flat lost/damaged penalty, independent of lateness."""
    return _clamp(current_score * config.LOSS_PENALTY_FACTOR)


def apply_verdict(current_score: float, verdict: str) -> float:
    if verdict == ON_TIME:
        return apply_outcome(current_score, True)
    if verdict == LATE:
        return apply_outcome(current_score, False)
    if verdict == PENALTY:
        return apply_penalty(current_score)
    raise ValidationError(f"Unknown trust verdict: {verdict}")


def _field(entry: Any, name: str):
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


def _as_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return config.as_local(value)
    try:
        return config.as_local(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def verdict_for(returned_at: Optional[datetime], due_at: Optional[datetime]) -> Optional[str]:
    """On-time/late verdict for a return, or None when either date is missing or unusable."""
    returned_at = _as_datetime(returned_at)
    due_at = _as_datetime(due_at)
    if returned_at is None or due_at is None:
        return None
    return ON_TIME if returned_at <= due_at else LATE


def history_verdict(entry: Any) -> Optional[str]:
    """Verdict contributed by one history entry, None when it is excluded."""
    if _as_datetime(_field(entry, 'returned_at')) is None:
        return None
    if _field(entry, 'outcome') in PENALTY_OUTCOMES:
        return PENALTY
    return verdict_for(_field(entry, 'returned_at'), _field(entry, 'due_at'))


def chronological_verdicts(history: Iterable[Any]) -> List[str]:
    """Verdicts of the counted entries, ordered by return date (oldest first)."""
    counted = []
    for entry in history:
        verdict = history_verdict(entry)
        if verdict is not None:
            counted.append((_as_datetime(_field(entry, 'returned_at')), verdict))
    counted.sort(key=lambda item: item[0])
    return [verdict for _, verdict in counted]


def replay(history: Iterable[Any], base: float = None) -> Iterator[float]:
    """Yield the unrounded score after each counted return."""
    score = config.BASE_TRUST_SCORE if base is None else base
    for verdict in chronological_verdicts(history):
        score = apply_verdict(score, verdict)
        yield score


def fold_verdicts(verdicts: Iterable[str], base: float = None) -> float:
    """Unrounded score after applying verdicts in order."""
    score = config.BASE_TRUST_SCORE if base is None else base
    for verdict in verdicts:
        score = apply_verdict(score, verdict)
    return score


def compute_raw_trust_score(history: Iterable[Any], base: float = None) -> float:
    return fold_verdicts(chronological_verdicts(history), base)


def compute_trust_score(history: Iterable[Any], base: float = None) -> float:
    """Full recompute of a trust score from a student's returned loans."""
    return round_score(compute_raw_trust_score(history, base))
