"""
Observation schedule arithmetic.

Turns a scan frequency and an analysis period (both in minutes) into the
absolute timestamps stored on a candidate. This is a pure module: callers
pass the current time in, nothing is read from the clock or the database.

Bounds:
- scan frequency: [5, 1440] minutes (5 minutes to 24 hours)
- analysis period: [10, 525600] minutes (10 minutes to 365 days)
- the analysis period must be strictly greater than the scan frequency

Resume policy: resuming a paused candidate only moves ``next_observation_at``
forward from the resume time. ``observation_end_at`` is never extended, so
time spent paused still counts against the observation window.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from numbers import Real
from typing import Any, Dict, Optional

from ..errors import ValidationError
from ..primitives import ensure_utc

MIN_SCAN_FREQUENCY_MINUTES = 5
MAX_SCAN_FREQUENCY_MINUTES = 1440
MIN_ANALYSIS_PERIOD_MINUTES = 10
MAX_ANALYSIS_PERIOD_MINUTES = 525600


@dataclass(frozen=True)
class ScheduleResult:
    """Absolute schedule computed for one scheduling request."""

    scan_frequency_minutes: float
    analysis_period_minutes: float
    analysis_period_hours: int
    next_observation_at: datetime
    observation_end_at: datetime
    computed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_frequency_minutes": self.scan_frequency_minutes,
            "analysis_period_hours": self.analysis_period_hours,
            "next_observation_at": self.next_observation_at.isoformat(),
            "observation_end_at": self.observation_end_at.isoformat(),
        }


def _require_number(name: str, value: Any) -> float:
    if value is None:
        raise ValidationError(f"{name} is required", details={"field": name})
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationError(
            f"{name} must be a number", details={"field": name, "value": repr(value)}
        )
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{name} must be finite", details={"field": name})
    return value


def _check_bounds(name: str, value: float, minimum: int, maximum: int) -> None:
    if value < minimum or value > maximum:
        raise ValidationError(
            f"{name} must be between {minimum} and {maximum} minutes",
            details={"field": name, "value": value, "minimum": minimum, "maximum": maximum},
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def validate_schedule(scan_frequency_minutes: Any, analysis_period_minutes: Any) -> tuple:
    """Validate a (frequency, period) pair and return them as floats.

    Raises:
        ValidationError: naming the violated bound
    """
    frequency = _require_number("scan_frequency_minutes", scan_frequency_minutes)
    period = _require_number("analysis_period_minutes", analysis_period_minutes)

    _check_bounds(
        "scan_frequency_minutes",
        frequency,
        MIN_SCAN_FREQUENCY_MINUTES,
        MAX_SCAN_FREQUENCY_MINUTES,
    )
    _check_bounds(
        "analysis_period_minutes",
        period,
        MIN_ANALYSIS_PERIOD_MINUTES,
        MAX_ANALYSIS_PERIOD_MINUTES,
    )

    if period <= frequency:
        raise ValidationError(
            "analysis_period_minutes must be greater than scan_frequency_minutes",
            details={
                "field": "analysis_period_minutes",
                "scan_frequency_minutes": frequency,
                "analysis_period_minutes": period,
            },
        )
    return frequency, period


def compute_schedule(
    scan_frequency_minutes: Any,
    analysis_period_minutes: Any,
    now: datetime,
) -> ScheduleResult:
    """Compute the absolute schedule for a fresh observation window."""
    frequency, period = validate_schedule(scan_frequency_minutes, analysis_period_minutes)
    now = ensure_utc(now)

    return ScheduleResult(
        scan_frequency_minutes=frequency,
        analysis_period_minutes=period,
        analysis_period_hours=max(1, _round_half_up(period / 60)),
        next_observation_at=now + timedelta(minutes=frequency),
        observation_end_at=now + timedelta(minutes=period),
        computed_at=now,
    )


def compute_resume(
    scan_frequency_minutes: Optional[float],
    now: datetime,
) -> datetime:
    """Return the next observation time for a resumed candidate.

    Only ``next_observation_at`` is recomputed; the stored window end is left
    as it was.
    """
    frequency = _require_number("scan_frequency_minutes", scan_frequency_minutes)
    _check_bounds(
        "scan_frequency_minutes",
        frequency,
        MIN_SCAN_FREQUENCY_MINUTES,
        MAX_SCAN_FREQUENCY_MINUTES,
    )
    return ensure_utc(now) + timedelta(minutes=frequency)
