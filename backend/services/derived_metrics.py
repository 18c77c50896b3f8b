"""
Derived metrics: ratios computed from aggregated counts.

Every percentage on the dashboards is rounded to one decimal place.
A zero denominator yields 0 rather than NaN or an error. A 0% over an empty
denominator means "nothing to measure", not "no opportunity".
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

RATIO_PRECISION = 1


def _round(value: float, precision: int) -> float:
    if precision == 0:
        return int(round(value))
    return round(value, precision)


def safe_ratio(numerator: float, denominator: float) -> float:
    """Plain quotient, 0 when the denominator is 0."""
    if not denominator:
        return 0
    return numerator / denominator


def percentage(numerator: float, denominator: float, precision: int = RATIO_PRECISION) -> float:
    """numerator / denominator as a rounded percentage (0 for a zero denominator)."""
    if not denominator:
        return 0
    return _round(numerator / denominator * 100, precision)


def percent_change(current: float, previous: float, precision: int = RATIO_PRECISION) -> float:
    """Period-over-period change in percent; 0 when the previous period is empty."""
    if not previous:
        return 0
    return _round((current - previous) / previous * 100, precision)


def average(values: Iterable[float], precision: int = RATIO_PRECISION) -> float:
    """Mean of the values, 0 for an empty sequence."""
    values = list(values)
    if not values:
        return 0
    return _round(sum(values) / len(values), precision)


@dataclass(frozen=True)
class DerivedMetric:
    """A named ratio together with the counts it came from."""
    name: str
    numerator: float
    denominator: float
    ratio: float

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "numerator": self.numerator,
            "denominator": self.denominator,
            "ratio": self.ratio,
        }


def derive(name: str, numerator: float, denominator: float, precision: int = RATIO_PRECISION) -> DerivedMetric:
    """Build a percentage DerivedMetric."""
    return DerivedMetric(
        name=name,
        numerator=numerator,
        denominator=denominator,
        ratio=percentage(numerator, denominator, precision),
    )


def is_non_increasing(counts: Sequence[float]) -> bool:
    """True when every funnel stage is no larger than the one before it."""
    return all(later <= earlier for earlier, later in zip(counts, counts[1:]))


def conversion_rate(
    current_count: float,
    next_count: float,
    monotonic: bool = False,
    precision: int = RATIO_PRECISION,
) -> float:
    """
    Share of the current stage that reached the next stage, in percent.

    Clamped to [0, 100] only when the caller guarantees the funnel is
    non-increasing; otherwise a later stage larger than an earlier one shows
    up as more than 100%.
    """
    rate = percentage(next_count, current_count, precision)
    if monotonic:
        rate = min(max(rate, 0), 100)
    return rate


def drop_off_rate(
    current_count: float,
    next_count: float,
    monotonic: bool = False,
    precision: int = RATIO_PRECISION,
) -> float:
    """100 - conversion rate; 0 when the current stage is empty."""
    if not current_count:
        return 0
    return _round(100 - conversion_rate(current_count, next_count, monotonic, precision), precision)


def engagement_rate(likes: float, comments: float, posts: float, precision: int = RATIO_PRECISION) -> float:
    """
    Interactions per post: (likes + comments) / posts.

    A unitless ratio, not a percentage.
    """
    return _round(safe_ratio(likes + comments, posts), precision)


@dataclass(frozen=True)
class StageTransition:
    """Movement between two consecutive funnel stages."""
    source: str
    target: str
    source_count: float
    target_count: float
    conversion_rate: float
    drop_off_rate: float

    @property
    def label(self) -> str:
        return f"{self.source} → {self.target}"

    @property
    def dropped(self) -> float:
        return self.source_count - self.target_count

    def as_dict(self) -> dict:
        return {
            "transition": self.label,
            "from": self.source,
            "to": self.target,
            "converted": self.target_count,
            "dropped": self.dropped,
            "conversion_rate": self.conversion_rate,
            "drop_off_rate": self.drop_off_rate,
        }


def stage_transitions(stages: Sequence[tuple[str, float]], precision: int = RATIO_PRECISION) -> list[StageTransition]:
    """
    Build the transition list for an ordered funnel of (name, count) stages.

    Rates are clamped only when the counts are non-increasing.
    """
    counts = [count for _, count in stages]
    monotonic = is_non_increasing(counts)

    transitions = []
    for (source, source_count), (target, target_count) in zip(stages, stages[1:]):
        transitions.append(StageTransition(
            source=source,
            target=target,
            source_count=source_count,
            target_count=target_count,
            conversion_rate=conversion_rate(source_count, target_count, monotonic, precision),
            drop_off_rate=drop_off_rate(source_count, target_count, monotonic, precision),
        ))
    return transitions


def biggest_drop_off(transitions: Iterable[StageTransition]) -> Optional[StageTransition]:
    """
    The transition with the highest drop-off rate.

    Ties go to the earliest transition in stage order. None when no
    transition lost anyone (an empty or flat funnel).
    """
    biggest = None
    for transition in transitions:
        if transition.drop_off_rate > (biggest.drop_off_rate if biggest else 0):
            biggest = transition
    return biggest


def health_label(value: float, healthy: float, okay: float) -> str:
    """Bucket a metric into healthy / okay / needs-attention."""
    if value >= healthy:
        return "healthy"
    if value >= okay:
        return "okay"
    return "needs-attention"
