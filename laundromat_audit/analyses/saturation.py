"""Demand saturation grid: machine load per weekday × hour slot.

Every service order is resolved to a machine class (wash or dry) and
bucketed into its (weekday, hour) slot. Capacity is estimated structurally
as the number of distinct machines of a class observed anywhere in the
history, since no equipment inventory is guaranteed to be available.
Each of the 168 cells reports its bottleneck class, the class with the
higher load. Counts are spread over the dates on which each weekday was
observed, so a ratio describes an average day rather than the whole history.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional, Sequence

from laundromat_audit.foundation.config import AnalyticsConfig
from laundromat_audit.foundation.machine_class import (
    DEFAULT_RULES,
    ClassificationRule,
    MachineClass,
    classify_order,
)
from laundromat_audit.foundation.records import ServiceOrderRecord

logger = logging.getLogger(__name__)

DAYS_PER_WEEK = 7
HOURS_PER_DAY = 24
WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

#: Saturation from which a slot is listed as a peak hour.
DEFAULT_PEAK_HOUR_THRESHOLD = 0.7


@dataclass(frozen=True)
class SaturationCell:
    """Load of one weekday × hour slot.

    Attributes
    ----------
    weekday:
        0 = Monday … 6 = Sunday.
    hour:
        0–23.
    observed_cycle_count:
        Orders of ``machine_class`` observed in this slot.
    capacity_estimate:
        Distinct machines of ``machine_class`` observed anywhere.
    saturation_ratio:
        Fraction of capacity consumed, clamped to [0, 1].
    machine_class:
        Bottleneck class the cell reports.
    total_cycle_count:
        Orders of any class (including unclassified) in this slot.
    slot_occurrences:
        Distinct dates the counts were spread over (1 for cumulative counts).
    """

    weekday: int
    hour: int
    observed_cycle_count: int
    capacity_estimate: int
    saturation_ratio: float
    machine_class: MachineClass = MachineClass.WASH
    total_cycle_count: int = 0
    slot_occurrences: int = 1

    def __post_init__(self) -> None:
        if not 0 <= self.weekday < DAYS_PER_WEEK:
            raise ValueError(f"weekday must be 0-6: {self.weekday}")
        if not 0 <= self.hour < HOURS_PER_DAY:
            raise ValueError(f"hour must be 0-23: {self.hour}")
        if self.observed_cycle_count < 0 or self.capacity_estimate < 0:
            raise ValueError(
                f"Counts cannot be negative: observed={self.observed_cycle_count}, "
                f"capacity={self.capacity_estimate}"
            )
        if not 0.0 <= self.saturation_ratio <= 1.0:
            raise ValueError(f"saturation_ratio must be 0-1: {self.saturation_ratio}")
        if self.slot_occurrences < 1:
            raise ValueError(f"slot_occurrences must be positive: {self.slot_occurrences}")

    @property
    def slot(self) -> tuple[int, int]:
        return self.weekday, self.hour

    @property
    def average_cycle_count(self) -> float:
        """Observed cycles per occurrence of the slot (a weekly figure)."""
        return self.observed_cycle_count / self.slot_occurrences

    @property
    def label(self) -> str:
        return f"{WEEKDAY_LABELS[self.weekday]} {self.hour:02d}h"


@dataclass(frozen=True)
class SaturationGrid:
    """The 168 saturation cells of a run plus the inputs behind them."""

    cells: tuple[SaturationCell, ...]
    capacity: dict[str, int] = field(default_factory=dict)
    total_cycles: int = 0
    unclassified_orders: int = 0

    def __post_init__(self) -> None:
        if len(self.cells) != DAYS_PER_WEEK * HOURS_PER_DAY:
            raise ValueError(
                f"Saturation grid must have {DAYS_PER_WEEK * HOURS_PER_DAY} cells, "
                f"got {len(self.cells)}"
            )

    def cell(self, weekday: int, hour: int) -> SaturationCell:
        return self.cells[weekday * HOURS_PER_DAY + hour]

    def ratio(self, slot: tuple[int, int]) -> float:
        return self.cell(*slot).saturation_ratio

    @property
    def is_empty(self) -> bool:
        return self.total_cycles == 0


def compute_saturation_ratio(
    observed_cycles: int,
    capacity: int,
    cycles_per_machine_per_hour: float,
    slot_occurrences: int = 1,
) -> float:
    """Fraction of capacity consumed in a slot, clamped to [0, 1].

    A slot without cycles is 0, whatever the capacity. A capacity of zero is
    floored at one machine so that demand on unlabelled machines still
    registers.

    >>> compute_saturation_ratio(0, 0, 1.0)
    0.0
    >>> compute_saturation_ratio(3, 4, 1.0)
    0.75
    """
    if cycles_per_machine_per_hour <= 0:
        raise ValueError(
            f"cycles_per_machine_per_hour must be positive: {cycles_per_machine_per_hour}"
        )
    if observed_cycles <= 0:
        return 0.0
    denominator = max(capacity, 1) * cycles_per_machine_per_hour * max(slot_occurrences, 1)
    return min(1.0, observed_cycles / denominator)


def build_saturation_grid(
    orders: Iterable[ServiceOrderRecord],
    config: Optional[AnalyticsConfig] = None,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> SaturationGrid:
    """Aggregate service orders into the 7 × 24 saturation grid.

    Parameters
    ----------
    orders:
        Service orders of the full history.
    config:
        Run configuration (cycles per machine per hour, weekday
        normalisation).
    rules:
        Ordered machine-class rules.

    Returns
    -------
    SaturationGrid
        168 cells ordered by (weekday, hour). With no orders every cell is
        zero.
    """
    config = config or AnalyticsConfig()

    class_counts: Counter[tuple[MachineClass, int, int]] = Counter()
    total_counts: Counter[tuple[int, int]] = Counter()
    machines: dict[MachineClass, set[str]] = {cls: set() for cls in MachineClass}
    dates_by_weekday: dict[int, set[date]] = {day: set() for day in range(DAYS_PER_WEEK)}
    unclassified = 0
    total_cycles = 0

    for order in orders:
        weekday, hour = order.timestamp.weekday(), order.timestamp.hour
        total_counts[(weekday, hour)] += 1
        total_cycles += 1
        dates_by_weekday[weekday].add(order.timestamp.date())

        machine_class = classify_order(order, rules)
        if machine_class is None:
            unclassified += 1
            continue
        class_counts[(machine_class, weekday, hour)] += 1
        if order.machine:
            machines[machine_class].add(f"{order.store}|{order.machine}")

    capacity = {cls: len(machines[cls]) for cls in MachineClass}

    cells: list[SaturationCell] = []
    for weekday in range(DAYS_PER_WEEK):
        occurrences = (
            max(1, len(dates_by_weekday[weekday]))
            if config.normalise_by_weekday_occurrences
            else 1
        )
        for hour in range(HOURS_PER_DAY):
            candidates = []
            for cls in MachineClass:
                observed = class_counts[(cls, weekday, hour)]
                ratio = compute_saturation_ratio(
                    observed,
                    capacity[cls],
                    config.expected_cycles_per_machine_per_hour,
                    occurrences,
                )
                candidates.append((ratio, observed, cls))
            # Full ties resolve to wash.
            ratio, observed, cls = max(
                candidates, key=lambda item: (item[0], item[1], item[2] is MachineClass.WASH)
            )
            cells.append(
                SaturationCell(
                    weekday=weekday,
                    hour=hour,
                    observed_cycle_count=observed,
                    capacity_estimate=capacity[cls],
                    saturation_ratio=ratio,
                    machine_class=cls,
                    total_cycle_count=total_counts[(weekday, hour)],
                    slot_occurrences=occurrences,
                )
            )

    if unclassified:
        logger.warning(f"{unclassified} service orders matched no machine-class rule")
    logger.info(
        f"Built saturation grid from {total_cycles} orders "
        f"(wash machines={capacity[MachineClass.WASH]}, "
        f"dry machines={capacity[MachineClass.DRY]})"
    )
    return SaturationGrid(
        cells=tuple(cells),
        capacity={cls.value: count for cls, count in capacity.items()},
        total_cycles=total_cycles,
        unclassified_orders=unclassified,
    )


def find_peak_slots(
    grid: SaturationGrid,
    threshold: float = DEFAULT_PEAK_HOUR_THRESHOLD,
    limit: int | None = 5,
) -> list[SaturationCell]:
    """Cells above ``threshold``, most saturated first."""
    peaks = sorted(
        (cell for cell in grid.cells if cell.saturation_ratio > threshold),
        key=lambda cell: (-cell.saturation_ratio, cell.weekday, cell.hour),
    )
    return peaks if limit is None else peaks[:limit]


def capacity_recommendations(
    grid: SaturationGrid, threshold: float = DEFAULT_PEAK_HOUR_THRESHOLD
) -> list[str]:
    """Plain-text capacity hints derived from the grid."""
    recommendations: list[str] = []
    peaks = find_peak_slots(grid, threshold, limit=None)
    if len(peaks) > 5:
        recommendations.append(
            f"High demand detected in {len(peaks)} slots. "
            "Consider off-peak promotions to spread the load."
        )
    if any(cell.saturation_ratio >= 1.0 for cell in peaks):
        recommendations.append(
            "Some slots reach full capacity; customers are likely queueing or leaving."
        )
    return recommendations
