"""Visit reconstruction from a customer's raw sale lines.

A laundromat visit rarely maps to a single sale: a customer pays for a wash,
comes back to pay for a dryer and perhaps buys detergent in between. Sale
lines are therefore collapsed into sessions with a time-window rule: a line
joins the current visit when it happened at most ``gap_minutes`` after the
visit started.
"""

from __future__ import annotations

import multiprocessing
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from laundromat_audit.foundation.records import TransactionRecord

DEFAULT_VISIT_GAP_MINUTES = 180


@dataclass(frozen=True)
class Visit:
    """A reconstructed visit session.

    Attributes
    ----------
    customer_key:
        Customer the visit belongs to.
    start_time:
        Timestamp of the first member transaction.
    end_time:
        Timestamp of the last member transaction.
    total_value:
        Exact sum of member amounts.
    members:
        Member transactions in chronological order.
    """

    customer_key: str
    start_time: datetime
    end_time: datetime
    total_value: Decimal
    members: tuple[TransactionRecord, ...]

    def __post_init__(self) -> None:
        if not self.members:
            raise ValueError(f"Visit must have members (customer_key={self.customer_key})")
        if self.end_time != self.members[-1].timestamp:
            raise ValueError(
                f"end_time ({self.end_time}) must equal the last member timestamp "
                f"({self.members[-1].timestamp}) (customer_key={self.customer_key})"
            )
        if self.total_value != sum((m.amount for m in self.members), Decimal("0")):
            raise ValueError(
                f"total_value ({self.total_value}) != sum of member amounts "
                f"(customer_key={self.customer_key})"
            )

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def stores(self) -> tuple[str, ...]:
        return tuple(sorted({m.store for m in self.members if m.store}))

    @property
    def slot(self) -> tuple[int, int]:
        """(weekday, hour) of the visit start, Monday = 0."""
        return self.start_time.weekday(), self.start_time.hour


def reconstruct_visits(
    transactions: Iterable[TransactionRecord],
    gap_minutes: int = DEFAULT_VISIT_GAP_MINUTES,
) -> list[Visit]:
    """Collapse one customer's transactions into chronological visits.

    Transactions are sorted by timestamp (stable for ties). A transaction is
    merged into the current visit when ``0 <= timestamp - start_time <=
    gap_minutes``; the boundary is inclusive. The window is anchored at the
    first line of the visit, so a long session cannot chain indefinitely.
    Anything else, including a negative gap, opens a new visit.

    Parameters
    ----------
    transactions:
        Sale lines of a single customer, in any order.
    gap_minutes:
        Merge window in minutes.

    Returns
    -------
    list[Visit]
        Visits ordered by start time. Every input transaction is a member of
        exactly one visit.

    Examples
    --------
    >>> from datetime import datetime
    >>> from decimal import Decimal
    >>> txns = [
    ...     TransactionRecord("ANA", datetime(2024, 3, 1, 10, 0), Decimal("18")),
    ...     TransactionRecord("ANA", datetime(2024, 3, 1, 14, 0), Decimal("18")),
    ... ]
    >>> [v.member_count for v in reconstruct_visits(txns)]
    [1, 1]
    """
    ordered = sorted(transactions, key=lambda txn: txn.timestamp)
    if not ordered:
        return []

    keys = {txn.customer_key for txn in ordered}
    if len(keys) > 1:
        raise ValueError(
            f"reconstruct_visits expects a single customer, got {len(keys)} keys"
        )

    window = timedelta(minutes=gap_minutes)
    visits: list[Visit] = []
    members: list[TransactionRecord] = []
    total = Decimal("0")

    for txn in ordered:
        if members:
            gap = txn.timestamp - members[0].timestamp
            if timedelta(0) <= gap <= window:
                members.append(txn)
                total += txn.amount
                continue
            visits.append(_close_visit(members, total))
        members = [txn]
        total = txn.amount

    visits.append(_close_visit(members, total))
    return visits


def _close_visit(members: Sequence[TransactionRecord], total: Decimal) -> Visit:
    return Visit(
        customer_key=members[0].customer_key,
        start_time=members[0].timestamp,
        end_time=members[-1].timestamp,
        total_value=total,
        members=tuple(members),
    )


def group_by_customer(
    transactions: Iterable[TransactionRecord],
) -> dict[str, list[TransactionRecord]]:
    """Group transactions by customer key, keys in sorted order."""
    grouped: dict[str, list[TransactionRecord]] = {}
    for txn in transactions:
        grouped.setdefault(txn.customer_key, []).append(txn)
    return {key: grouped[key] for key in sorted(grouped)}


def _reconstruct_chunk(
    chunk: dict[str, list[TransactionRecord]], gap_minutes: int
) -> dict[str, list[Visit]]:
    """Worker entry point: reconstruct visits for a subset of customers."""
    return {
        key: reconstruct_visits(txns, gap_minutes) for key, txns in chunk.items()
    }


def reconstruct_all_visits(
    transactions: Iterable[TransactionRecord],
    gap_minutes: int = DEFAULT_VISIT_GAP_MINUTES,
    parallel: bool = True,
    parallel_threshold: int = 1_000_000,
    n_workers: Optional[int] = None,
) -> dict[str, list[Visit]]:
    """Reconstruct visits for every customer in the record set.

    Customers are independent, so for very large inputs the work is split
    into per-customer chunks processed by a ``multiprocessing.Pool``; results
    are merged by plain concatenation. The caller is responsible for keeping
    anonymous/walk-in sales out of the input, since each key is treated as a
    single physical customer.

    Parameters
    ----------
    transactions:
        Sale lines for any number of customers.
    gap_minutes:
        Merge window in minutes.
    parallel:
        Allow parallel processing above ``parallel_threshold`` customers.
    parallel_threshold:
        Number of customers from which the pool is used.
    n_workers:
        Worker processes; defaults to the CPU count.

    Returns
    -------
    dict[str, list[Visit]]
        Visits per customer key, keys sorted.
    """
    grouped = group_by_customer(transactions)
    if not grouped:
        return {}

    num_customers = len(grouped)
    if not (parallel and num_customers >= parallel_threshold):
        return _reconstruct_chunk(grouped, gap_minutes)

    workers = max(1, n_workers) if n_workers is not None else (os.cpu_count() or 1)
    items = list(grouped.items())
    chunk_size = max(1, num_customers // workers)
    chunks = [
        (dict(items[i : i + chunk_size]), gap_minutes)
        for i in range(0, num_customers, chunk_size)
    ]

    with multiprocessing.Pool(processes=workers) as pool:
        chunk_results = pool.starmap(_reconstruct_chunk, chunks)

    merged: dict[str, list[Visit]] = {}
    for chunk_result in chunk_results:
        merged.update(chunk_result)
    return {key: merged[key] for key in sorted(merged)}
