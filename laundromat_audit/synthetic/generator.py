from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
import random
from typing import List, Optional, Sequence, Tuple

from laundromat_audit.foundation.records import ServiceOrderRecord, TransactionRecord


@dataclass(frozen=True)
class SyntheticCustomer:
    customer_key: str
    first_visit: date
    interval_days: float
    preferred_weekday: int
    preferred_hour: int
    store: str
    phone: str


@dataclass(frozen=True)
class LaundromatScenario:
    """Configuration for synthetic laundromat histories.

    Attributes
    ----------
    wash_machines: Washers installed per store (labelled ``L1``, ``L2``...).
    dry_machines: Dryers installed per store (labelled ``S1``, ``S2``...).
    wash_price: Price of a wash cycle.
    dry_price: Price of a dry cycle.
    dry_probability: Chance a visit includes a dry cycle.
    off_peak_probability: Chance a visit happens at a random slot instead of
        the customer's preferred one.
    churn_probability: Chance a customer stops visiting halfway through
        the history.
    walk_in_sales_per_day: Anonymous sales added per day.
    seed: Optional RNG seed for reproducibility.
    """

    wash_machines: int = 4
    dry_machines: int = 4
    wash_price: float = 18.0
    dry_price: float = 16.0
    dry_probability: float = 0.7
    off_peak_probability: float = 0.2
    churn_probability: float = 0.15
    walk_in_sales_per_day: int = 1
    seed: Optional[int] = None


#: Slots most customers gravitate to (weekday, hour); Monday = 0.
POPULAR_SLOTS: Tuple[Tuple[int, int], ...] = ((5, 10), (5, 11), (6, 10), (2, 19), (4, 18))
QUIET_HOURS = (7, 8, 14, 15, 21)
WALK_IN_KEY = "CONSUMIDOR FINAL"


def generate_customers(
    n: int,
    start: date,
    end: date,
    *,
    stores: Sequence[str] = ("CENTRO",),
    seed: Optional[int] = None,
) -> List[SyntheticCustomer]:
    """Generate ``n`` customers with individual visiting rhythms."""

    if n <= 0:
        return []
    if start > end:
        raise ValueError("start date must be <= end date")

    rng = random.Random(seed)
    total_days = (end - start).days + 1

    customers: List[SyntheticCustomer] = []
    for i in range(n):
        weekday, hour = rng.choice(POPULAR_SLOTS)
        customers.append(
            SyntheticCustomer(
                customer_key=f"CUSTOMER {i + 1:04d}",
                first_visit=start + timedelta(days=rng.randrange(total_days)),
                interval_days=rng.choice((3.0, 7.0, 7.0, 14.0, 21.0, 30.0)),
                preferred_weekday=weekday,
                preferred_hour=hour,
                store=rng.choice(list(stores)),
                phone=f"1199{rng.randrange(10_000_000):07d}",
            )
        )
    return customers


def _visit_start(
    rng: random.Random, customer: SyntheticCustomer, day: date, off_peak: bool
) -> datetime:
    if off_peak:
        hour = rng.choice(QUIET_HOURS)
    else:
        # Shift to the preferred weekday within the same week
        day = day + timedelta(days=(customer.preferred_weekday - day.weekday()) % 7)
        hour = customer.preferred_hour
    return datetime(day.year, day.month, day.day, hour, rng.randrange(0, 40))


def generate_laundromat_records(
    customers: Sequence[SyntheticCustomer],
    start: date,
    end: date,
    *,
    scenario: Optional[LaundromatScenario] = None,
) -> Tuple[List[TransactionRecord], List[ServiceOrderRecord]]:
    """Generate sale lines and machine service orders between ``start`` and ``end``.

    Each visit produces a wash sale and, with ``dry_probability``, a dry sale
    about 40 minutes later. Every sale is mirrored by a service order on a
    randomly picked machine of the right class.
    """

    if start > end:
        raise ValueError("start date must be <= end date")
    scenario = scenario or LaundromatScenario()
    rng = random.Random(scenario.seed)
    washers = [f"L{i + 1}" for i in range(scenario.wash_machines)]
    dryers = [f"S{i + 1}" for i in range(scenario.dry_machines)]
    midpoint = start + (end - start) / 2

    sales: List[TransactionRecord] = []
    orders: List[ServiceOrderRecord] = []

    def record_cycle(
        key: str, ts: datetime, store: str, price: float, dry: bool, phone: Optional[str]
    ) -> None:
        machine = rng.choice(dryers if dry else washers)
        service = "Secagem" if dry else "Lavagem"
        amount = Decimal(str(price))
        sales.append(
            TransactionRecord(
                customer_key=key,
                timestamp=ts,
                amount=amount,
                store=store,
                machine=machine,
                service=service,
                payment_method=rng.choice(("credit", "debit", "pix")),
                phone=phone,
            )
        )
        orders.append(
            ServiceOrderRecord(
                timestamp=ts,
                store=store,
                machine=machine,
                service=service,
                customer_key=key,
                amount=amount,
            )
        )

    for customer in customers:
        last_day = midpoint if rng.random() < scenario.churn_probability else end
        day = customer.first_visit
        while day <= last_day:
            off_peak = rng.random() < scenario.off_peak_probability
            ts = _visit_start(rng, customer, day, off_peak)
            if ts.date() > end:
                break
            record_cycle(
                customer.customer_key, ts, customer.store, scenario.wash_price, False, customer.phone
            )
            if rng.random() < scenario.dry_probability:
                record_cycle(
                    customer.customer_key,
                    ts + timedelta(minutes=35 + rng.randrange(0, 15)),
                    customer.store,
                    scenario.dry_price,
                    True,
                    customer.phone,
                )
            jitter = rng.uniform(-0.2, 0.2) * customer.interval_days
            day = day + timedelta(days=max(1, round(customer.interval_days + jitter)))

    stores = sorted({c.store for c in customers}) or ["CENTRO"]
    day = start
    while day <= end:
        for _ in range(scenario.walk_in_sales_per_day):
            ts = datetime(day.year, day.month, day.day, rng.randrange(7, 22), rng.randrange(60))
            record_cycle(WALK_IN_KEY, ts, rng.choice(stores), scenario.wash_price, False, None)
        day += timedelta(days=1)

    sales.sort(key=lambda t: (t.customer_key, t.timestamp))
    orders.sort(key=lambda o: (o.timestamp, o.store, o.machine or ""))
    return sales, orders
