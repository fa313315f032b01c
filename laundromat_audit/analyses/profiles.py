"""Customer profiles and rhythm-relative churn risk.

Profiles summarise each customer's reconstructed visits: recency, visit
count, spend, and the average interval between visits. Churn risk is judged
against the customer's own rhythm rather than fixed calendar buckets: a
customer who usually returns every 3 days and has been away for 10 is more
at risk than one who returns every 60 days and has been away for 50.

The fixed 30/60/90-day inactivity buckets used in legacy reporting are
provided separately by :func:`bucket_inactivity`. Both read
``CustomerProfile.recency_days`` but must not be conflated.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence

from laundromat_audit.foundation.config import AnalyticsConfig
from laundromat_audit.foundation.machine_class import (
    DEFAULT_RULES,
    ClassificationRule,
    MachineClass,
    classify_sale,
)
from laundromat_audit.foundation.records import TransactionRecord
from laundromat_audit.foundation.visits import Visit

logger = logging.getLogger(__name__)

CURRENCY_PRECISION = Decimal("0.01")
PERCENTAGE_PRECISION = Decimal("0.01")

TOP_SLOTS_LIMIT = 3
LAST_VISITS_LIMIT = 5
DAYS_PER_MONTH = 30


class ChurnRisk(str, Enum):
    """Rhythm-relative churn risk levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class InactivityBucket(str, Enum):
    """Fixed-window inactivity buckets used by legacy reports."""

    ACTIVE = "active"
    INACTIVE_30 = "inactive_30"
    INACTIVE_60 = "inactive_60"
    INACTIVE_90 = "inactive_90"


class Shift(str, Enum):
    """Parts of the day, in chronological order."""

    NIGHT = "night"
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class CycleMix(str, Enum):
    """Which machine classes a customer uses."""

    WASH_ONLY = "wash_only"
    DRY_ONLY = "dry_only"
    WASH_AND_DRY = "wash_and_dry"
    UNCLASSIFIED = "unclassified"


def shift_of(hour: int) -> Shift:
    """Night 0-5, morning 6-11, afternoon 12-17, evening 18-23."""
    if hour < 6:
        return Shift.NIGHT
    if hour < 12:
        return Shift.MORNING
    if hour < 18:
        return Shift.AFTERNOON
    return Shift.EVENING


@dataclass(frozen=True)
class PreferredSlot:
    """A weekday × shift combination and how many sale lines fell in it."""

    weekday: int
    shift: Shift
    count: int


@dataclass(frozen=True)
class VisitSummary:
    """Compact view of one visit for the recent-visits breakdown."""

    start_time: datetime
    shift: Shift
    total_value: Decimal
    wash_count: int = 0
    dry_count: int = 0


@dataclass(frozen=True)
class CustomerDirectoryEntry:
    """Registry data about a customer, supplied by the caller per run.

    The directory is passed explicitly into :func:`build_customer_profiles`
    instead of being looked up from a process-wide cache.
    """

    customer_key: str
    phone: str | None = None
    gender: str | None = None


@dataclass(frozen=True)
class CustomerProfile:
    """Behavioural profile of a single customer.

    Attributes
    ----------
    name:
        Customer key the profile was built for.
    phone:
        Best known phone number, if any.
    recency_days:
        Whole days between the last visit and the run's as-of date.
    visit_count:
        Number of reconstructed visits (always >= 1).
    average_ticket:
        ``total_spent / visit_count``.
    average_interval_days:
        Mean gap in days between consecutive visit starts; None when the
        customer has a single visit.
    total_spent:
        Sum of all visit values.
    churn_risk:
        Rhythm-relative churn risk.
    preferred_store:
        Store on the plurality of the customer's transactions.
    first_visit_ts, last_visit_ts:
        Start of the first visit and end of the last one.
    next_predicted_visit:
        Last visit plus the rounded-up average interval; None for
        single-visit customers.
    spent_last_30d, spent_last_90d:
        Spend in the trailing windows ending at the as-of date.
    gender:
        Gender from the customer directory, ``"U"`` when unknown.
    spent_last_180d:
        Spend in the trailing 180 days.
    total_washes, total_dries:
        Sale lines classified as washer and dryer cycles.
    top_day, top_shift, top_slots:
        Most frequent weekday, shift and weekday × shift combinations.
    last_visits:
        Most recent visits, newest first.
    visits_per_month:
        Visits per 30 days of tenure, tenure floored at one month.
    """

    name: str
    phone: str | None
    recency_days: int
    visit_count: int
    average_ticket: Decimal
    average_interval_days: float | None
    total_spent: Decimal
    churn_risk: ChurnRisk
    preferred_store: str | None
    first_visit_ts: datetime
    last_visit_ts: datetime
    next_predicted_visit: datetime | None = None
    spent_last_30d: Decimal = Decimal("0")
    spent_last_90d: Decimal = Decimal("0")
    gender: str = "U"
    spent_last_180d: Decimal = Decimal("0")
    total_washes: int = 0
    total_dries: int = 0
    top_day: int | None = None
    top_shift: Shift | None = None
    top_slots: tuple[PreferredSlot, ...] = ()
    last_visits: tuple[VisitSummary, ...] = ()
    visits_per_month: float = 0.0

    @property
    def total_cycles(self) -> int:
        return self.total_washes + self.total_dries

    @property
    def cycle_mix(self) -> CycleMix:
        if self.total_washes and self.total_dries:
            return CycleMix.WASH_AND_DRY
        if self.total_washes:
            return CycleMix.WASH_ONLY
        if self.total_dries:
            return CycleMix.DRY_ONLY
        return CycleMix.UNCLASSIFIED

    def __post_init__(self) -> None:
        """Validate profile metrics."""
        if self.recency_days < 0:
            raise ValueError(
                f"Recency cannot be negative: {self.recency_days} (name={self.name})"
            )
        if self.visit_count <= 0:
            raise ValueError(
                f"Visit count must be positive: {self.visit_count} (name={self.name})"
            )
        if self.total_spent < 0:
            raise ValueError(
                f"Total spent cannot be negative: {self.total_spent} (name={self.name})"
            )
        if self.average_interval_days is not None and self.average_interval_days < 0:
            raise ValueError(
                f"Average interval cannot be negative: {self.average_interval_days} "
                f"(name={self.name})"
            )
        if self.total_washes < 0 or self.total_dries < 0:
            raise ValueError(
                f"Cycle counts cannot be negative: washes={self.total_washes}, "
                f"dries={self.total_dries} (name={self.name})"
            )
        if self.top_day is not None and not 0 <= self.top_day <= 6:
            raise ValueError(f"top_day must be 0-6: {self.top_day} (name={self.name})")
        expected_ticket = self.total_spent / self.visit_count
        if abs(self.average_ticket - expected_ticket) > CURRENCY_PRECISION:
            raise ValueError(
                f"Average ticket ({self.average_ticket}) != total_spent / visit_count "
                f"({expected_ticket}) (name={self.name})"
            )


def determine_as_of(transactions: Iterable[TransactionRecord]) -> datetime | None:
    """Return the latest transaction timestamp, the stable "today" of a run.

    Using the data rather than the wall clock keeps historical imports from
    showing every customer as churned.
    """
    latest: datetime | None = None
    for txn in transactions:
        if latest is None or txn.timestamp > latest:
            latest = txn.timestamp
    return latest


def classify_churn_risk(
    recency_days: int,
    average_interval_days: float | None,
    visit_count: int,
    config: AnalyticsConfig | None = None,
) -> ChurnRisk:
    """Classify churn risk relative to the customer's own visiting rhythm.

    ``high`` when recency exceeds ``2 × interval``, ``medium`` when it
    exceeds ``1 × interval`` but not ``2 ×``, ``low`` otherwise. Customers
    below ``min_visits_for_churn_rhythm`` visits are always ``low``.

    >>> classify_churn_risk(12, 5.0, visit_count=4).value
    'high'
    >>> classify_churn_risk(7, 5.0, visit_count=4).value
    'medium'
    >>> classify_churn_risk(4, 5.0, visit_count=4).value
    'low'
    """
    config = config or AnalyticsConfig()
    if visit_count < config.min_visits_for_churn_rhythm or average_interval_days is None:
        return ChurnRisk.LOW

    if recency_days > config.high_risk_interval_multiplier * average_interval_days:
        return ChurnRisk.HIGH
    if recency_days > config.medium_risk_interval_multiplier * average_interval_days:
        return ChurnRisk.MEDIUM
    return ChurnRisk.LOW


def bucket_inactivity(recency_days: int) -> InactivityBucket:
    """Place a customer in the fixed 30/60/90-day inactivity buckets."""
    if recency_days < 30:
        return InactivityBucket.ACTIVE
    if recency_days < 60:
        return InactivityBucket.INACTIVE_30
    if recency_days < 90:
        return InactivityBucket.INACTIVE_60
    return InactivityBucket.INACTIVE_90


def _average_interval_days(visits: Sequence[Visit]) -> float | None:
    if len(visits) < 2:
        return None
    gaps = [
        (later.start_time - earlier.start_time).total_seconds() / 86400
        for earlier, later in zip(visits, visits[1:])
    ]
    return sum(gaps) / len(gaps)


def _preferred_store(transactions: Sequence[TransactionRecord]) -> str | None:
    """Plurality store; ties go to the store used most recently."""
    counts: Counter[str] = Counter()
    last_seen: dict[str, datetime] = {}
    for txn in transactions:
        if not txn.store:
            continue
        counts[txn.store] += 1
        if txn.store not in last_seen or txn.timestamp >= last_seen[txn.store]:
            last_seen[txn.store] = txn.timestamp
    if not counts:
        return None
    return max(counts, key=lambda store: (counts[store], last_seen[store], store))


def _latest_phone(transactions: Sequence[TransactionRecord]) -> str | None:
    for txn in reversed(transactions):
        if txn.phone:
            return txn.phone
    return None


def _spent_since(
    transactions: Sequence[TransactionRecord], cutoff: datetime
) -> Decimal:
    return sum(
        (txn.amount for txn in transactions if txn.timestamp > cutoff), Decimal("0")
    ).quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


def _cycle_counts(
    transactions: Iterable[TransactionRecord],
    rules: Sequence[ClassificationRule],
) -> tuple[int, int]:
    washes = dries = 0
    for txn in transactions:
        machine_class = classify_sale(txn, rules)
        if machine_class is MachineClass.WASH:
            washes += 1
        elif machine_class is MachineClass.DRY:
            dries += 1
    return washes, dries


def _preferences(
    transactions: Sequence[TransactionRecord],
) -> tuple[int | None, Shift | None, tuple[PreferredSlot, ...]]:
    """Most frequent weekday, shift and weekday × shift slots.

    Ties go to the earlier weekday and the earlier shift of the day.
    """
    if not transactions:
        return None, None, ()
    shift_order = {shift: position for position, shift in enumerate(Shift)}
    days: Counter[int] = Counter()
    shifts: Counter[Shift] = Counter()
    slots: Counter[tuple[int, Shift]] = Counter()
    for txn in transactions:
        weekday = txn.timestamp.weekday()
        shift = shift_of(txn.timestamp.hour)
        days[weekday] += 1
        shifts[shift] += 1
        slots[(weekday, shift)] += 1

    top_day = min(days, key=lambda day: (-days[day], day))
    top_shift = min(shifts, key=lambda shift: (-shifts[shift], shift_order[shift]))
    ranked = sorted(
        slots.items(),
        key=lambda item: (-item[1], item[0][0], shift_order[item[0][1]]),
    )
    top_slots = tuple(
        PreferredSlot(weekday=weekday, shift=shift, count=count)
        for (weekday, shift), count in ranked[:TOP_SLOTS_LIMIT]
    )
    return top_day, top_shift, top_slots


def _last_visits(
    visits: Sequence[Visit], rules: Sequence[ClassificationRule]
) -> tuple[VisitSummary, ...]:
    summaries = []
    for visit in sorted(visits, key=lambda v: v.start_time, reverse=True)[
        :LAST_VISITS_LIMIT
    ]:
        washes, dries = _cycle_counts(visit.members, rules)
        summaries.append(
            VisitSummary(
                start_time=visit.start_time,
                shift=shift_of(visit.start_time.hour),
                total_value=visit.total_value,
                wash_count=washes,
                dry_count=dries,
            )
        )
    return tuple(summaries)


def _visits_per_month(visit_count: int, first_visit: datetime, as_of: datetime) -> float:
    months = max((as_of - first_visit).days / DAYS_PER_MONTH, 1.0)
    return visit_count / months


def _build_profile(
    customer_key: str,
    visits: Sequence[Visit],
    as_of: datetime,
    config: AnalyticsConfig,
    directory_entry: CustomerDirectoryEntry | None,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> CustomerProfile:
    ordered = sorted(visits, key=lambda visit: visit.start_time)
    transactions = [txn for visit in ordered for txn in visit.members]
    last_visit = ordered[-1]

    if last_visit.end_time > as_of:
        raise ValueError(
            f"Visit end ({last_visit.end_time}) cannot be after the as-of date "
            f"({as_of}) for customer {customer_key}"
        )
    recency_days = (as_of - last_visit.end_time).days

    visit_count = len(ordered)
    total_spent = sum((visit.total_value for visit in ordered), Decimal("0")).quantize(
        CURRENCY_PRECISION, rounding=ROUND_HALF_UP
    )
    average_ticket = (total_spent / visit_count).quantize(
        CURRENCY_PRECISION, rounding=ROUND_HALF_UP
    )
    average_interval = _average_interval_days(ordered)
    churn_risk = classify_churn_risk(recency_days, average_interval, visit_count, config)

    next_predicted_visit = None
    if average_interval is not None:
        next_predicted_visit = last_visit.end_time + timedelta(
            days=math.ceil(average_interval)
        )

    phone = _latest_phone(transactions)
    gender = "U"
    if directory_entry is not None:
        phone = directory_entry.phone or phone
        gender = directory_entry.gender or gender

    total_washes, total_dries = _cycle_counts(transactions, rules)
    top_day, top_shift, top_slots = _preferences(transactions)

    return CustomerProfile(
        name=customer_key,
        phone=phone,
        recency_days=recency_days,
        visit_count=visit_count,
        average_ticket=average_ticket,
        average_interval_days=average_interval,
        total_spent=total_spent,
        churn_risk=churn_risk,
        preferred_store=_preferred_store(transactions),
        first_visit_ts=ordered[0].start_time,
        last_visit_ts=last_visit.end_time,
        next_predicted_visit=next_predicted_visit,
        spent_last_30d=_spent_since(transactions, as_of - timedelta(days=30)),
        spent_last_90d=_spent_since(transactions, as_of - timedelta(days=90)),
        gender=gender,
        spent_last_180d=_spent_since(transactions, as_of - timedelta(days=180)),
        total_washes=total_washes,
        total_dries=total_dries,
        top_day=top_day,
        top_shift=top_shift,
        top_slots=top_slots,
        last_visits=_last_visits(ordered, rules),
        visits_per_month=_visits_per_month(visit_count, ordered[0].start_time, as_of),
    )


def build_customer_profiles(
    visits_by_customer: Mapping[str, Sequence[Visit]],
    as_of: datetime,
    config: Optional[AnalyticsConfig] = None,
    customer_directory: Optional[Mapping[str, CustomerDirectoryEntry]] = None,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> list[CustomerProfile]:
    """Build one profile per customer with at least one visit.

    Parameters
    ----------
    visits_by_customer:
        Reconstructed visits keyed by customer key.
    as_of:
        Reference date for recency, normally :func:`determine_as_of` over the
        full record set.
    config:
        Run configuration (churn multipliers).
    customer_directory:
        Optional lookup table of registry data keyed by customer key, built
        once per run by the caller.
    rules:
        Machine classification rules used for the wash and dry counts.

    Returns
    -------
    list[CustomerProfile]
        Profiles sorted by customer key. Customers without visits are
        excluded rather than emitted with degenerate metrics.
    """
    config = config or AnalyticsConfig()
    directory = customer_directory or {}

    profiles: list[CustomerProfile] = []
    for customer_key, visits in visits_by_customer.items():
        if not visits:
            continue
        profiles.append(
            _build_profile(
                customer_key, visits, as_of, config, directory.get(customer_key), rules
            )
        )

    profiles.sort(key=lambda profile: profile.name)
    logger.info(f"Built {len(profiles)} customer profiles as of {as_of.isoformat()}")
    return profiles


@dataclass(frozen=True)
class CustomerBaseSummary:
    """Aggregate view of a profile set.

    Attributes
    ----------
    total_customers:
        Number of profiled customers.
    total_revenue:
        Sum of ``total_spent`` across profiles.
    total_visits:
        Sum of ``visit_count`` across profiles.
    average_ticket:
        ``total_revenue / total_visits`` (0 when there are no visits).
    recurring_customers:
        Customers with more than one visit.
    retention_rate:
        Percentage of customers who are recurring.
    churn_risk_counts:
        Customers per churn risk level.
    inactivity_counts:
        Customers per fixed inactivity bucket.
    gender_counts:
        Customers per directory gender.
    active_30d:
        Customers whose last visit is less than 30 days old.
    new_customers:
        Customers whose first visit falls in the 30 days before the as-of date.
    average_ltv:
        ``total_revenue / total_customers``.
    churn_rate:
        Percentage of customers in the 90+ day inactivity bucket.
    average_visits_per_month:
        Mean of ``visits_per_month`` across profiles.
    wash_count, dry_count:
        Classified washer and dryer sale lines across profiles.
    cycle_mix_counts:
        Customers per :class:`CycleMix` segment.
    balanced_wash_and_dry:
        Wash-and-dry customers whose wash and dry counts are equal.
    """

    total_customers: int
    total_revenue: Decimal
    total_visits: int
    average_ticket: Decimal
    recurring_customers: int
    retention_rate: Decimal
    churn_risk_counts: dict[str, int]
    inactivity_counts: dict[str, int]
    gender_counts: dict[str, int]
    active_30d: int = 0
    new_customers: int = 0
    average_ltv: Decimal = Decimal("0.00")
    churn_rate: Decimal = Decimal("0.00")
    average_visits_per_month: float = 0.0
    wash_count: int = 0
    dry_count: int = 0
    cycle_mix_counts: dict[str, int] = field(default_factory=dict)
    balanced_wash_and_dry: int = 0


def _percentage(part: int, whole: int) -> Decimal:
    if not whole:
        return Decimal("0.00")
    return (Decimal(part) / Decimal(whole) * 100).quantize(
        PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
    )


def summarise_customer_base(
    profiles: Sequence[CustomerProfile], as_of: datetime | None = None
) -> CustomerBaseSummary:
    """Summarise a profile set; an empty set yields an all-zero summary.

    ``as_of`` anchors the new-customer window and defaults to the latest
    ``last_visit_ts`` among the profiles.
    """
    total_customers = len(profiles)
    total_revenue = sum((p.total_spent for p in profiles), Decimal("0")).quantize(
        CURRENCY_PRECISION, rounding=ROUND_HALF_UP
    )
    total_visits = sum(p.visit_count for p in profiles)
    average_ticket = (
        (total_revenue / total_visits).quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)
        if total_visits
        else Decimal("0.00")
    )
    average_ltv = (
        (total_revenue / total_customers).quantize(
            CURRENCY_PRECISION, rounding=ROUND_HALF_UP
        )
        if total_customers
        else Decimal("0.00")
    )
    recurring = sum(1 for p in profiles if p.visit_count > 1)

    if as_of is None and profiles:
        as_of = max(p.last_visit_ts for p in profiles)
    new_since = as_of - timedelta(days=30) if as_of is not None else None

    churn_risk_counts = {risk.value: 0 for risk in ChurnRisk}
    inactivity_counts = {bucket.value: 0 for bucket in InactivityBucket}
    cycle_mix_counts = {mix.value: 0 for mix in CycleMix}
    gender_counts: dict[str, int] = {}
    new_customers = 0
    for profile in profiles:
        churn_risk_counts[profile.churn_risk.value] += 1
        inactivity_counts[bucket_inactivity(profile.recency_days).value] += 1
        cycle_mix_counts[profile.cycle_mix.value] += 1
        gender_counts[profile.gender] = gender_counts.get(profile.gender, 0) + 1
        if new_since is not None and profile.first_visit_ts > new_since:
            new_customers += 1

    return CustomerBaseSummary(
        total_customers=total_customers,
        total_revenue=total_revenue,
        total_visits=total_visits,
        average_ticket=average_ticket,
        recurring_customers=recurring,
        retention_rate=_percentage(recurring, total_customers),
        churn_risk_counts=churn_risk_counts,
        inactivity_counts=inactivity_counts,
        gender_counts=dict(sorted(gender_counts.items())),
        active_30d=inactivity_counts[InactivityBucket.ACTIVE.value],
        new_customers=new_customers,
        average_ltv=average_ltv,
        churn_rate=_percentage(
            inactivity_counts[InactivityBucket.INACTIVE_90.value], total_customers
        ),
        average_visits_per_month=(
            sum(p.visits_per_month for p in profiles) / total_customers
            if total_customers
            else 0.0
        ),
        wash_count=sum(p.total_washes for p in profiles),
        dry_count=sum(p.total_dries for p in profiles),
        cycle_mix_counts=cycle_mix_counts,
        balanced_wash_and_dry=sum(
            1
            for p in profiles
            if p.cycle_mix is CycleMix.WASH_AND_DRY and p.total_washes == p.total_dries
        ),
    )
