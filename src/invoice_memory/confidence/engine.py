"""
Confidence engine implementation.

All confidence arithmetic in the system lives here. Every function is pure:
it takes a confidence value (and optionally the settings to use) and returns
a new value, always clamped to [min_confidence, max_confidence].
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class ConfidenceSettings:
    """Tuning inputs for the confidence lifecycle."""

    initial: float = 0.3  # Plausible, but below auto-apply
    max_confidence: float = 0.95  # A memory is never fully certain
    min_confidence: float = 0.0

    reinforce_delta: float = 0.15  # Scaled by remaining headroom
    min_reinforce_step: float = 0.01  # Guaranteed progress near the ceiling
    penalize_delta: float = 0.2

    deactivation_threshold: float = 0.1

    # Decay: no loss inside the grace window, exponential afterwards
    decay_grace_period_days: float = 7
    memory_decay_rate: float = 0.02  # Fraction of confidence lost per day

    # Trust gates for auto-applying a memory
    min_reinforcement_count: int = 3
    max_contradiction_ratio: float = 0.3


DEFAULT_SETTINGS = ConfidenceSettings()


def clamp(confidence: float, settings: Optional[ConfidenceSettings] = None) -> float:
    """Clamp a confidence value into the configured bounds."""
    s = settings or DEFAULT_SETTINGS
    return min(max(confidence, s.min_confidence), s.max_confidence)


def initial(settings: Optional[ConfidenceSettings] = None) -> float:
    """Starting confidence for a memory created without human approval."""
    s = settings or DEFAULT_SETTINGS
    return s.initial


def reinforce(confidence: float, settings: Optional[ConfidenceSettings] = None) -> float:
    """
    Increase confidence with diminishing returns.

    The increment is proportional to the headroom left below the maximum,
    with a small floor so repeated reinforcement always makes progress.
    The result never exceeds max_confidence.
    """
    s = settings or DEFAULT_SETTINGS
    headroom = s.max_confidence - confidence
    effective_delta = s.reinforce_delta * (headroom / s.max_confidence)
    new_confidence = confidence + max(effective_delta, s.min_reinforce_step)
    return clamp(new_confidence, s)


def penalize(confidence: float, settings: Optional[ConfidenceSettings] = None) -> float:
    """Decrease confidence by a fixed delta, floored at min_confidence."""
    s = settings or DEFAULT_SETTINGS
    return clamp(confidence - s.penalize_delta, s)


def should_deactivate(confidence: float, settings: Optional[ConfidenceSettings] = None) -> bool:
    """True when a memory has become too unreliable to recall."""
    s = settings or DEFAULT_SETTINGS
    return confidence < s.deactivation_threshold


def _days_beyond_grace(
    last_updated: datetime,
    moment: datetime,
    grace_days: float,
) -> float:
    elapsed_days = (moment - last_updated).total_seconds() / SECONDS_PER_DAY
    return max(0.0, elapsed_days - grace_days)


def apply_decay(
    confidence: float,
    last_updated: datetime,
    now: datetime,
    settings: Optional[ConfidenceSettings] = None,
    decayed_through: Optional[datetime] = None,
) -> float:
    """
    Apply time-based decay to a confidence value.

    No decay happens while now - last_updated is inside the grace period.
    Beyond it: confidence * (1 - rate) ** days_beyond_grace.

    Args:
        confidence: Current confidence
        last_updated: When the memory was last reinforced/penalized/created
        now: Reference time
        settings: Confidence settings (defaults if omitted)
        decayed_through: When decay was last applied to this value; the
            interval already decayed is not decayed again

    Returns:
        Decayed confidence, clamped to min_confidence
    """
    s = settings or DEFAULT_SETTINGS
    grace = s.decay_grace_period_days

    days = _days_beyond_grace(last_updated, now, grace)
    if decayed_through is not None and decayed_through > last_updated:
        days -= _days_beyond_grace(last_updated, min(decayed_through, now), grace)

    if days <= 0:
        return confidence

    decay_factor = (1 - s.memory_decay_rate) ** days
    return max(confidence * decay_factor, s.min_confidence)


def contradiction_ratio(reinforcements: int, contradictions: int) -> float:
    """Share of contradictions among all feedback events (0 with no events)."""
    total = reinforcements + contradictions
    if total == 0:
        return 0.0
    return contradictions / total


def weighted(
    base: float,
    reinforcements: int,
    contradictions: int,
    settings: Optional[ConfidenceSettings] = None,
) -> float:
    """
    Rescale a confidence by the reinforcement ratio.

    Zero interactions count as fully reinforced (ratio 1), which leaves the
    base value unchanged. A ratio of 0 halves it.
    """
    total = reinforcements + contradictions
    ratio = 1.0 if total == 0 else reinforcements / total
    return clamp(base * (0.5 + ratio * 0.5), settings)


def is_trusted(
    confidence: float,
    reinforcements: int,
    contradictions: int,
    threshold: float,
    settings: Optional[ConfidenceSettings] = None,
    require_reinforcements: bool = True,
) -> bool:
    """
    Decide whether a memory may be applied without human review.

    Rules:
    - confidence at or above the auto-apply threshold
    - contradiction ratio not above max_contradiction_ratio
    - at least min_reinforcement_count reinforcements (if required)
    """
    s = settings or DEFAULT_SETTINGS
    if confidence < threshold:
        return False
    if contradiction_ratio(reinforcements, contradictions) > s.max_contradiction_ratio:
        return False
    if require_reinforcements and reinforcements < s.min_reinforcement_count:
        return False
    return True
