"""Batch pipeline tying the analyses together.

A run recomputes everything from the full historical record set:

raw records → visits and saturation grid (independent) → customer profiles
→ flexible customers and expansion ROI.

Nothing is patched incrementally and no state survives between runs, so
running twice on the same input yields identical output.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from laundromat_audit.analyses.expansion import (
    ExpansionROIEstimate,
    FlexibleCustomerRecord,
    estimate_expansion_roi,
    find_flexible_customers,
)
from laundromat_audit.analyses.profiles import (
    CustomerBaseSummary,
    CustomerDirectoryEntry,
    CustomerProfile,
    build_customer_profiles,
    determine_as_of,
    summarise_customer_base,
)
from laundromat_audit.analyses.saturation import (
    SaturationGrid,
    build_saturation_grid,
    capacity_recommendations,
    find_peak_slots,
)
from laundromat_audit.foundation.config import AnalyticsConfig, ConfigurationError
from laundromat_audit.foundation.records import (
    RecordLoadReport,
    ServiceOrderRecord,
    SkippedRecord,
    TransactionRecord,
    is_anonymous_customer,
    load_service_orders,
    load_transactions,
)
from laundromat_audit.foundation.visits import Visit, reconstruct_all_visits

logger = logging.getLogger(__name__)


class MissingInputError(ValueError):
    """Raised when a whole input collection is missing (not merely empty)."""


@dataclass
class PipelineResult:
    """Everything a run emits.

    Attributes
    ----------
    as_of:
        Latest transaction timestamp; None when there were no transactions.
    profiles:
        Customer profiles sorted by customer key.
    visits_by_customer:
        Reconstructed visits per profiled customer.
    saturation_grid:
        The 168-cell demand grid.
    flexible_customers:
        Peak-habit customers with off-peak evidence, highest spend first.
    expansion_roi:
        Capacity expansion projection.
    summary:
        Aggregate view of the profile set.
    anonymous_transactions:
        Sale lines excluded from profiling because of a walk-in key.
    skipped_transactions, skipped_orders:
        Malformed raw rows rejected while loading.
    """

    as_of: datetime | None
    profiles: list[CustomerProfile]
    visits_by_customer: dict[str, list[Visit]]
    saturation_grid: SaturationGrid
    flexible_customers: list[FlexibleCustomerRecord]
    expansion_roi: ExpansionROIEstimate
    summary: CustomerBaseSummary
    anonymous_transactions: int = 0
    skipped_transactions: list[SkippedRecord] = field(default_factory=list)
    skipped_orders: list[SkippedRecord] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_transactions) + len(self.skipped_orders)

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation of the run."""

        def money(value: Decimal | None) -> str | None:
            return None if value is None else str(value)

        def timestamp(value: datetime | None) -> str | None:
            return None if value is None else value.isoformat()

        def serialise_profile(profile: CustomerProfile) -> dict[str, object]:
            return {
                "name": profile.name,
                "phone": profile.phone,
                "recency_days": profile.recency_days,
                "visit_count": profile.visit_count,
                "average_ticket": money(profile.average_ticket),
                "average_interval_days": profile.average_interval_days,
                "total_spent": money(profile.total_spent),
                "churn_risk": profile.churn_risk.value,
                "preferred_store": profile.preferred_store,
                "first_visit_ts": timestamp(profile.first_visit_ts),
                "last_visit_ts": timestamp(profile.last_visit_ts),
                "next_predicted_visit": timestamp(profile.next_predicted_visit),
                "spent_last_30d": money(profile.spent_last_30d),
                "spent_last_90d": money(profile.spent_last_90d),
                "gender": profile.gender,
                "spent_last_180d": money(profile.spent_last_180d),
                "total_washes": profile.total_washes,
                "total_dries": profile.total_dries,
                "cycle_mix": profile.cycle_mix.value,
                "top_day": profile.top_day,
                "top_shift": profile.top_shift.value if profile.top_shift else None,
                "top_slots": [
                    {"weekday": slot.weekday, "shift": slot.shift.value, "count": slot.count}
                    for slot in profile.top_slots
                ],
                "last_visits": [
                    {
                        "start_time": timestamp(visit.start_time),
                        "shift": visit.shift.value,
                        "total_value": money(visit.total_value),
                        "wash_count": visit.wash_count,
                        "dry_count": visit.dry_count,
                    }
                    for visit in profile.last_visits
                ],
                "visits_per_month": profile.visits_per_month,
            }

        def serialise_flexible(record: FlexibleCustomerRecord) -> dict[str, object]:
            return {
                "customer_key": record.customer_key,
                "preferred_peak_slot": list(record.preferred_peak_slot),
                "peak_visit_count": record.peak_visit_count,
                "preferred_off_peak_slot": list(record.preferred_off_peak_slot),
                "off_peak_visit_count": record.off_peak_visit_count,
                "total_spent": money(record.total_spent),
                "total_visits": record.total_visits,
                "phone": record.phone,
            }

        grid = self.saturation_grid
        roi = self.expansion_roi
        summary = self.summary
        return {
            "as_of": timestamp(self.as_of),
            "profiles": [serialise_profile(profile) for profile in self.profiles],
            "saturation_grid": {
                "capacity": dict(grid.capacity),
                "total_cycles": grid.total_cycles,
                "unclassified_orders": grid.unclassified_orders,
                "cells": [
                    {
                        "weekday": cell.weekday,
                        "hour": cell.hour,
                        "observed_cycle_count": cell.observed_cycle_count,
                        "capacity_estimate": cell.capacity_estimate,
                        "saturation_ratio": cell.saturation_ratio,
                        "machine_class": cell.machine_class.value,
                        "total_cycle_count": cell.total_cycle_count,
                        "slot_occurrences": cell.slot_occurrences,
                    }
                    for cell in grid.cells
                ],
                "peak_slots": [cell.label for cell in find_peak_slots(grid)],
                "recommendations": capacity_recommendations(grid),
            },
            "flexible_customers": [
                serialise_flexible(record) for record in self.flexible_customers
            ],
            "expansion_roi": {
                "average_ticket": money(roi.average_ticket),
                "captured_cycles_per_month": money(roi.captured_cycles_per_month),
                "monthly_revenue_increase": money(roi.monthly_revenue_increase),
                "estimated_payback_months": money(roi.estimated_payback_months),
                "lost_cycles_per_month": money(roi.lost_cycles_per_month),
                "saturated_slot_count": roi.saturated_slot_count,
                "equipment_cost": money(roi.equipment_cost),
                "capacity_increase_pct": money(roi.capacity_increase_pct),
                "methodology_note": roi.methodology_note,
            },
            "summary": {
                "total_customers": summary.total_customers,
                "total_revenue": money(summary.total_revenue),
                "total_visits": summary.total_visits,
                "average_ticket": money(summary.average_ticket),
                "recurring_customers": summary.recurring_customers,
                "retention_rate": money(summary.retention_rate),
                "churn_risk_counts": dict(summary.churn_risk_counts),
                "inactivity_counts": dict(summary.inactivity_counts),
                "gender_counts": dict(summary.gender_counts),
                "active_30d": summary.active_30d,
                "new_customers": summary.new_customers,
                "average_ltv": money(summary.average_ltv),
                "churn_rate": money(summary.churn_rate),
                "average_visits_per_month": summary.average_visits_per_month,
                "wash_count": summary.wash_count,
                "dry_count": summary.dry_count,
                "cycle_mix_counts": dict(summary.cycle_mix_counts),
                "balanced_wash_and_dry": summary.balanced_wash_and_dry,
            },
            "anonymous_transactions": self.anonymous_transactions,
            "skipped_records": {
                "count": self.skipped_count,
                "transactions": [
                    {"index": item.index, "reason": item.reason}
                    for item in self.skipped_transactions
                ],
                "orders": [
                    {"index": item.index, "reason": item.reason}
                    for item in self.skipped_orders
                ],
            },
        }


def run_pipeline(
    transactions: Optional[Sequence[TransactionRecord]],
    orders: Optional[Sequence[ServiceOrderRecord]],
    config: Optional[AnalyticsConfig] = None,
    customer_directory: Optional[Mapping[str, CustomerDirectoryEntry]] = None,
    parallel: bool = False,
) -> PipelineResult:
    """Run the full batch over already-validated records.

    Parameters
    ----------
    transactions:
        Every sale line of the tenant's history. Must not be None; an empty
        sequence yields an empty but well-formed result.
    orders:
        Every machine service order of the history. Must not be None.
    config:
        Run configuration; validated before any work starts.
    customer_directory:
        Optional registry lookup table keyed by customer key.
    parallel:
        Build visits and the saturation grid concurrently.

    Raises
    ------
    MissingInputError
        If ``transactions`` or ``orders`` is None.
    ConfigurationError
        If ``config`` is not an :class:`AnalyticsConfig`.
    """
    if transactions is None:
        raise MissingInputError("Transaction records are required")
    if orders is None:
        raise MissingInputError("Service order records are required")
    config = config if config is not None else AnalyticsConfig()
    if not isinstance(config, AnalyticsConfig):
        raise ConfigurationError(
            f"config must be an AnalyticsConfig, got {type(config).__name__}"
        )

    as_of = determine_as_of(transactions)
    identified = [
        txn
        for txn in transactions
        if not is_anonymous_customer(txn.customer_key, config.anonymous_customer_keys)
    ]
    anonymous = len(transactions) - len(identified)
    logger.info(
        f"Running pipeline over {len(transactions)} transactions "
        f"({anonymous} anonymous) and {len(orders)} service orders"
    )

    if parallel:
        with ThreadPoolExecutor(max_workers=2) as executor:
            visits_future = executor.submit(
                reconstruct_all_visits, identified, config.visit_gap_minutes
            )
            grid_future = executor.submit(build_saturation_grid, orders, config)
            visits_by_customer = visits_future.result()
            grid = grid_future.result()
    else:
        visits_by_customer = reconstruct_all_visits(identified, config.visit_gap_minutes)
        grid = build_saturation_grid(orders, config)

    profiles: list[CustomerProfile] = []
    if as_of is not None:
        profiles = build_customer_profiles(
            visits_by_customer, as_of, config, customer_directory
        )

    flexible = find_flexible_customers(visits_by_customer, profiles, grid, config)
    roi = estimate_expansion_roi(grid, profiles, config)

    return PipelineResult(
        as_of=as_of,
        profiles=profiles,
        visits_by_customer=visits_by_customer,
        saturation_grid=grid,
        flexible_customers=flexible,
        expansion_roi=roi,
        summary=summarise_customer_base(profiles, as_of),
        anonymous_transactions=anonymous,
    )


def run_pipeline_from_raw(
    raw_transactions: Optional[Iterable[Mapping[str, Any]]],
    raw_orders: Optional[Iterable[Mapping[str, Any]]],
    config: Optional[AnalyticsConfig] = None,
    customer_directory: Optional[Mapping[str, CustomerDirectoryEntry]] = None,
    parallel: bool = False,
) -> PipelineResult:
    """Load raw mappings with skip-and-count, then run the pipeline."""
    if raw_transactions is None:
        raise MissingInputError("Transaction records are required")
    if raw_orders is None:
        raise MissingInputError("Service order records are required")

    transaction_report: RecordLoadReport[TransactionRecord] = load_transactions(
        raw_transactions
    )
    order_report: RecordLoadReport[ServiceOrderRecord] = load_service_orders(raw_orders)

    result = run_pipeline(
        transaction_report.records,
        order_report.records,
        config=config,
        customer_directory=customer_directory,
        parallel=parallel,
    )
    result.skipped_transactions = list(transaction_report.skipped)
    result.skipped_orders = list(order_report.skipped)
    return result
