"""
Shared scoring arithmetic

The effectiveness formula and the half-up rounding used by the validator
and the usage tracker.
"""

import math
from collections.abc import Sequence

from .models import ResolutionSample

EFFECTIVENESS_WINDOW = 10
SUCCESS_WEIGHT = 70
SPEED_WEIGHT = 30
SPEED_CEILING_MINUTES = 120


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values, as score displays expect"""
    return math.floor(value + 0.5)


def clamp_score(value: float) -> int:
    return max(0, min(100, int(value)))


def calculate_effectiveness(
    samples: Sequence[ResolutionSample], window: int = EFFECTIVENESS_WINDOW
) -> int:
    """
    Rolling effectiveness score for an article

    Uses only the most recent `window` samples:
    round(success_rate * 70 + (120 - min(avg_minutes, 120)) / 120 * 30)
    """
    recent = list(samples)[-window:]
    if not recent:
        return 0
    success_rate = sum(1 for s in recent if s.successful) / len(recent)
    avg_time = sum(s.resolution_time for s in recent) / len(recent)
    speed = (SPEED_CEILING_MINUTES - min(avg_time, SPEED_CEILING_MINUTES)) / SPEED_CEILING_MINUTES
    return clamp_score(round_half_up(success_rate * SUCCESS_WEIGHT + speed * SPEED_WEIGHT))


def success_rate_percent(samples: Sequence[ResolutionSample]) -> int:
    if not samples:
        return 0
    successful = sum(1 for s in samples if s.successful)
    return round_half_up(successful / len(samples) * 100)


def average_resolution_minutes(samples: Sequence[ResolutionSample]) -> int:
    if not samples:
        return 0
    return round_half_up(sum(s.resolution_time for s in samples) / len(samples))
