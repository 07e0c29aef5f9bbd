"""Funnel value model.

Turns a chain of step conversion rates plus the organisation's business
metrics into a monetary value per funnel event.  Everything here is pure:
no I/O and no shared state, so it is safe to call concurrently.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from leadsignal.core.constants import VOLUME_MINIMUM, VOLUME_RECOMMENDED
from leadsignal.core.exceptions import ConfigurationError
from leadsignal.schemas.common import VolumeStatus
from leadsignal.schemas.funnel import BusinessMetricsInput, FunnelStep


@dataclass(frozen=True)
class StepValue:
    step_id: str
    step_name: str
    event_name: str
    order: int
    monthly_volume: float
    conversion_rate: float
    cumulative_probability: float
    base_value: float
    volume_status: VolumeStatus


def calculate_target_cac(metrics: BusinessMetricsInput) -> float:
    """Target CAC = LTV / (LTV:CAC ratio) × gross margin %."""
    return metrics.ltv / metrics.ltv_cac_ratio * (metrics.gross_margin / 100)


def fallback_value(metrics: BusinessMetricsInput) -> float:
    """Value used for events that are not part of the funnel."""
    return metrics.ltv / metrics.ltv_cac_ratio


def volume_status(monthly_volume: float) -> VolumeStatus:
    """Classify monthly volume against the platform guidance thresholds.

    Advisory only; it never gates dispatch.
    """
    if monthly_volume >= VOLUME_RECOMMENDED:
        return VolumeStatus.sufficient
    if monthly_volume >= VOLUME_MINIMUM:
        return VolumeStatus.borderline
    return VolumeStatus.insufficient


def calculate_funnel_values(
    steps: Sequence[FunnelStep],
    metrics: BusinessMetricsInput,
) -> List[StepValue]:
    """Value every step of the funnel.

    Steps are sorted by ``order``.  The terminal (highest-order) step has
    completion probability 1; each earlier step's probability is its own
    conversion rate times the probability of the step after it.

    Raises:
        ConfigurationError: If two steps share an ``order`` value.
    """
    if not steps:
        return []

    orders = [s.order for s in steps]
    if len(set(orders)) != len(orders):
        raise ConfigurationError("Funnel steps must have unique order values")

    target_cac = calculate_target_cac(metrics)
    ordered = sorted(steps, key=lambda s: s.order)

    probabilities = [0.0] * len(ordered)
    probabilities[-1] = 1.0
    for i in range(len(ordered) - 2, -1, -1):
        probabilities[i] = (ordered[i].conversion_rate / 100) * probabilities[i + 1]

    return [
        StepValue(
            step_id=step.id,
            step_name=step.name,
            event_name=step.event_name,
            order=step.order,
            monthly_volume=step.monthly_volume,
            conversion_rate=step.conversion_rate,
            cumulative_probability=probability,
            base_value=target_cac * probability,
            volume_status=volume_status(step.monthly_volume),
        )
        for step, probability in zip(ordered, probabilities)
    ]


def get_event_value(
    event_name: str,
    steps: Sequence[FunnelStep],
    metrics: BusinessMetricsInput,
) -> Optional[StepValue]:
    """Return the valued step for *event_name*, or ``None`` if no step
    emits that event (callers then use :func:`fallback_value`)."""
    for value in calculate_funnel_values(steps, metrics):
        if value.event_name == event_name:
            return value
    return None
