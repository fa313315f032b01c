"""Flexible customers and capacity expansion payback.

Two questions are answered from the saturation grid:

1. Which customers habitually visit at peak times but have already shown
   they will come at a quiet time? They are the cheapest to shift with a
   targeted incentive.
2. What would one additional machine per class earn, and how long would it
   take to pay for itself?

The ROI projection is a deliberately simple linear model. It gives a
directional business estimate and makes no claim of predictive accuracy.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Optional, Sequence

from laundromat_audit.analyses.profiles import (
    CURRENCY_PRECISION,
    CustomerProfile,
    summarise_customer_base,
)
from laundromat_audit.analyses.saturation import SaturationGrid
from laundromat_audit.foundation.config import AnalyticsConfig
from laundromat_audit.foundation.visits import Visit

logger = logging.getLogger(__name__)

ROI_METHODOLOGY_NOTE = (
    "Directional linear estimate: monthly lost cycles in saturated slots x "
    "capture rate x average ticket. Not a predictive forecast."
)

Slot = tuple[int, int]


@dataclass(frozen=True)
class FlexibleCustomerRecord:
    """A peak-habit customer with evidence of off-peak visits.

    Attributes
    ----------
    customer_key:
        Customer identifier.
    preferred_peak_slot:
        Most frequent (weekday, hour) slot among the customer's peak slots.
    peak_visit_count:
        Visits in ``preferred_peak_slot``.
    preferred_off_peak_slot:
        Most frequent off-peak slot among the remaining visits.
    off_peak_visit_count:
        Visits in ``preferred_off_peak_slot``.
    total_spent:
        Customer's total spend, used for ranking.
    total_visits:
        All visits of the customer.
    phone:
        Contact phone from the profile, if known.
    """

    customer_key: str
    preferred_peak_slot: Slot
    peak_visit_count: int
    preferred_off_peak_slot: Slot
    off_peak_visit_count: int
    total_spent: Decimal = Decimal("0")
    total_visits: int = 0
    phone: str | None = None


@dataclass(frozen=True)
class ExpansionROIEstimate:
    """Linear projection of adding one machine per class.

    Attributes
    ----------
    average_ticket:
        Average visit value across the profiled customer base.
    captured_cycles_per_month:
        Repressed monthly cycles the new capacity would capture.
    monthly_revenue_increase:
        ``captured_cycles_per_month × average_ticket``.
    estimated_payback_months:
        ``equipment_cost / monthly_revenue_increase``; None when there is
        no increase to pay the equipment back.
    lost_cycles_per_month:
        Monthly cycles observed in saturated slots: the average count per
        occurrence of each slot times ``weeks_per_month``.
    saturated_slot_count:
        Number of slots above the repressed-demand threshold.
    equipment_cost:
        Cost used for the payback.
    capacity_increase_pct:
        Capacity added relative to the machines observed; None when no
        machine was observed.
    methodology_note:
        Caveat to surface alongside the figures.
    """

    average_ticket: Decimal
    captured_cycles_per_month: Decimal
    monthly_revenue_increase: Decimal
    estimated_payback_months: Decimal | None
    lost_cycles_per_month: Decimal = Decimal("0")
    saturated_slot_count: int = 0
    equipment_cost: Decimal = Decimal("0")
    capacity_increase_pct: Decimal | None = None
    methodology_note: str = ROI_METHODOLOGY_NOTE


def _pick_slot(
    counts: Mapping[Slot, int], grid: SaturationGrid, prefer_busier: bool
) -> Slot:
    """Most frequent slot; ties by saturation, then earliest in the week."""

    def rank(slot: Slot) -> tuple[int, float, int, int]:
        ratio = grid.ratio(slot)
        return counts[slot], ratio if prefer_busier else -ratio, -slot[0], -slot[1]

    return max(counts, key=rank)


def _match_customer(
    visits: Sequence[Visit], grid: SaturationGrid, config: AnalyticsConfig
) -> tuple[Slot, int, Slot, int] | None:
    slot_counts = Counter(visit.slot for visit in visits)

    peak_counts = {
        slot: count
        for slot, count in slot_counts.items()
        if grid.ratio(slot) > config.peak_saturation_threshold
    }
    if not peak_counts:
        return None
    peak_slot = _pick_slot(peak_counts, grid, prefer_busier=True)

    off_peak_counts = {
        slot: count
        for slot, count in slot_counts.items()
        if slot != peak_slot and grid.ratio(slot) < config.off_peak_saturation_threshold
    }
    if not off_peak_counts:
        return None
    off_peak_slot = _pick_slot(off_peak_counts, grid, prefer_busier=False)

    return peak_slot, peak_counts[peak_slot], off_peak_slot, off_peak_counts[off_peak_slot]


def find_flexible_customers(
    visits_by_customer: Mapping[str, Sequence[Visit]],
    profiles: Sequence[CustomerProfile],
    grid: SaturationGrid,
    config: Optional[AnalyticsConfig] = None,
) -> list[FlexibleCustomerRecord]:
    """Find peak-habit customers who have also visited off-peak.

    For each profiled customer the most frequent visit slot with saturation
    above ``peak_saturation_threshold`` is the peak habit. The customer
    qualifies when another of their visits falls in a slot below
    ``off_peak_saturation_threshold``. A visit's slot is the weekday and
    hour of its start.

    Returns
    -------
    list[FlexibleCustomerRecord]
        Highest total spend first (ties by customer key), truncated to
        ``flexible_customer_limit`` when configured.
    """
    config = config or AnalyticsConfig()
    profiles_by_key = {profile.name: profile for profile in profiles}

    records: list[FlexibleCustomerRecord] = []
    for customer_key, visits in visits_by_customer.items():
        profile = profiles_by_key.get(customer_key)
        if profile is None or not visits:
            continue
        match = _match_customer(visits, grid, config)
        if match is None:
            continue
        peak_slot, peak_count, off_peak_slot, off_peak_count = match
        records.append(
            FlexibleCustomerRecord(
                customer_key=customer_key,
                preferred_peak_slot=peak_slot,
                peak_visit_count=peak_count,
                preferred_off_peak_slot=off_peak_slot,
                off_peak_visit_count=off_peak_count,
                total_spent=profile.total_spent,
                total_visits=profile.visit_count,
                phone=profile.phone,
            )
        )

    records.sort(key=lambda record: (-record.total_spent, record.customer_key))
    if config.flexible_customer_limit is not None:
        records = records[: config.flexible_customer_limit]
    logger.info(f"Found {len(records)} flexible customers")
    return records


def estimate_expansion_roi(
    grid: SaturationGrid,
    profiles: Sequence[CustomerProfile],
    config: Optional[AnalyticsConfig] = None,
) -> ExpansionROIEstimate:
    """Project revenue and payback of one additional machine per class.

    Monthly lost cycles are the average cycles per occurrence (one week) of
    every slot above ``repressed_demand_threshold`` times
    ``weeks_per_month``, so a longer history with the same weekly load
    projects the same figure. The added
    capacity is assumed to capture ``capture_rate`` of them, each worth the
    customer base's average ticket.

    Examples
    --------
    With no saturated slot the estimate is zero and no payback exists:

    >>> from laundromat_audit.analyses.saturation import build_saturation_grid
    >>> roi = estimate_expansion_roi(build_saturation_grid([]), [])
    >>> roi.monthly_revenue_increase, roi.estimated_payback_months
    (Decimal('0.00'), None)
    """
    config = config or AnalyticsConfig()

    saturated = [
        cell
        for cell in grid.cells
        if cell.saturation_ratio > config.repressed_demand_threshold
    ]
    lost_cycles = sum(
        (
            Decimal(cell.observed_cycle_count)
            / Decimal(cell.slot_occurrences)
            * config.weeks_per_month
            for cell in saturated
        ),
        Decimal("0"),
    ).quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)
    captured = (lost_cycles * Decimal(str(config.capture_rate))).quantize(
        CURRENCY_PRECISION, rounding=ROUND_HALF_UP
    )

    average_ticket = summarise_customer_base(profiles).average_ticket
    monthly_increase = (captured * average_ticket).quantize(
        CURRENCY_PRECISION, rounding=ROUND_HALF_UP
    )
    payback = (
        (config.equipment_cost / monthly_increase).quantize(
            Decimal("0.1"), rounding=ROUND_HALF_UP
        )
        if monthly_increase > 0
        else None
    )

    machines = sum(grid.capacity.values())
    capacity_increase = (
        (Decimal(len(grid.capacity)) / Decimal(machines) * 100).quantize(
            CURRENCY_PRECISION, rounding=ROUND_HALF_UP
        )
        if machines
        else None
    )

    return ExpansionROIEstimate(
        average_ticket=average_ticket,
        captured_cycles_per_month=captured,
        monthly_revenue_increase=monthly_increase,
        estimated_payback_months=payback,
        lost_cycles_per_month=lost_cycles,
        saturated_slot_count=len(saturated),
        equipment_cost=config.equipment_cost,
        capacity_increase_pct=capacity_increase,
    )
