"""
Watcher-level zombie confidence.

Primary signal is the average candidate zombie score, nudged upward by up to
10 points when a large share of candidates have zero callers. Before any
candidate has been scored, the watcher's qualitative risk descriptor is
mapped onto a fixed bucket.
"""

from __future__ import annotations

import json
import math
from typing import Any, Iterable, Optional

ZERO_CALLER_MAX_BOOST = 10.0

# Keyword buckets for the qualitative fallback, checked in order.
RISK_BUCKETS = (
    (("high", "critical"), 75),
    (("medium", "moderate"), 45),
    (("low", "minimal"), 15),
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int, lower: int = 0, upper: int = 100) -> int:
    return max(lower, min(upper, value))


def score_from_risk_descriptor(descriptor: Any) -> int:
    """Map a qualitative risk descriptor (text or JSON object) onto a bucket."""
    if not descriptor:
        return 0

    if isinstance(descriptor, str):
        text = descriptor
    else:
        text = json.dumps(descriptor, default=str)
    text = text.lower()

    for keywords, score in RISK_BUCKETS:
        if any(keyword in text for keyword in keywords):
            return score
    return 0


def aggregate_confidence(
    average_score: Optional[float],
    zero_caller_count: int,
    total_candidates: int,
    risk_descriptor: Any = None,
) -> int:
    """Compute watcher confidence in [0, 100].

    Args:
        average_score: Mean candidate zombie score, or None if no candidate
            has been scored yet
        zero_caller_count: Number of candidates with no known callers
        total_candidates: Number of candidates under the watcher
        risk_descriptor: Watcher-level qualitative risk, used only when
            ``average_score`` is None

    Returns:
        Confidence score, always within [0, 100]
    """
    if average_score is not None and not math.isnan(float(average_score)):
        ratio = 0.0
        if total_candidates > 0:
            ratio = max(0.0, min(1.0, zero_caller_count / total_candidates))
        boost = ratio * ZERO_CALLER_MAX_BOOST
        return _clamp(_round_half_up(float(average_score) + boost))

    return score_from_risk_descriptor(risk_descriptor)


def confidence_from_scores(
    scores: Iterable[Optional[float]],
    caller_counts: Iterable[Optional[int]],
    risk_descriptor: Any = None,
) -> int:
    """Convenience wrapper computing the aggregates from raw candidate values."""
    score_list = [float(s) for s in scores if s is not None]
    callers = list(caller_counts)
    average = sum(score_list) / len(score_list) if score_list else None
    zero_callers = sum(1 for c in callers if (c or 0) == 0)
    return aggregate_confidence(average, zero_callers, len(callers), risk_descriptor)
