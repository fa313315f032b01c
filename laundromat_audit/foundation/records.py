"""Input record contracts for point-of-sale sales and machine service orders.

Records arrive already parsed by an upstream ingestion step, time-zone
normalised and de-duplicated. This module turns raw mappings into immutable
records. Malformed rows (missing timestamp, negative amount, ...) are skipped
and reported alongside the accepted records so that a single bad line never
aborts a run and never disappears without a trace. A loader also skips rows
whose timestamp carries a UTC offset when the first accepted row did not, or
the other way round, since the two cannot be ordered against each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, Iterable, Mapping, TypeVar

logger = logging.getLogger(__name__)

#: Minimum length for a phone number to be considered usable.
MIN_PHONE_LENGTH = 6


@dataclass(frozen=True)
class TransactionRecord:
    """A single completed sale line.

    Attributes
    ----------
    customer_key:
        Normalised customer identifier (may denote an anonymous sale).
    timestamp:
        Time of the sale in the reference timezone.
    amount:
        Non-negative sale value in currency units.
    store:
        Store that registered the sale.
    machine:
        Optional machine label the sale was linked to.
    service:
        Optional service/product description.
    payment_method:
        Optional payment method label.
    phone:
        Optional customer phone number captured on the sale.
    """

    customer_key: str
    timestamp: datetime
    amount: Decimal
    store: str = ""
    machine: str | None = None
    service: str | None = None
    payment_method: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(
                f"Transaction amount cannot be negative: {self.amount} "
                f"(customer_key={self.customer_key})"
            )


@dataclass(frozen=True)
class ServiceOrderRecord:
    """A machine-level service order (one wash or dry cycle)."""

    timestamp: datetime
    store: str = ""
    machine: str | None = None
    service: str | None = None
    customer_key: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class SkippedRecord:
    """A raw row that was rejected, with the position and reason."""

    index: int
    reason: str


RecordT = TypeVar("RecordT")


@dataclass
class RecordLoadReport(Generic[RecordT]):
    """Accepted records plus the rows skipped while loading them."""

    records: list[RecordT] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def skipped_reasons(self) -> dict[str, int]:
        """Count skipped rows by reason."""
        counts: dict[str, int] = {}
        for item in self.skipped:
            counts[item.reason] = counts.get(item.reason, 0) + 1
        return counts


def normalise_customer_key(raw: object) -> str:
    """Collapse whitespace and upper-case a customer name or identifier.

    >>> normalise_customer_key("  maria   silva ")
    'MARIA SILVA'
    """
    if raw is None:
        return ""
    return " ".join(str(raw).split()).upper()


def is_anonymous_customer(customer_key: str, anonymous_keys: Iterable[str]) -> bool:
    """Return True when the key denotes a walk-in/anonymous sale."""
    if not customer_key:
        return True
    return customer_key in {normalise_customer_key(key) for key in anonymous_keys}


def _parse_timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _parse_amount(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def _is_aware(timestamp: datetime) -> bool:
    return timestamp.utcoffset() is not None


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def load_transactions(
    rows: Iterable[Mapping[str, Any]],
) -> RecordLoadReport[TransactionRecord]:
    """Validate raw sale rows and return accepted records plus skipped rows.

    Expected keys: ``customer`` (or ``customer_key``), ``timestamp``,
    ``amount``, ``store`` and optionally ``machine``, ``service``,
    ``payment_method``, ``phone``.
    """
    report: RecordLoadReport[TransactionRecord] = RecordLoadReport()
    reference_aware: bool | None = None
    for idx, row in enumerate(rows):
        timestamp = _parse_timestamp(row.get("timestamp"))
        if timestamp is None:
            report.skipped.append(SkippedRecord(idx, "missing timestamp"))
            continue
        if reference_aware is not None and _is_aware(timestamp) != reference_aware:
            report.skipped.append(SkippedRecord(idx, "timezone mismatch"))
            continue

        if row.get("amount") is None:
            report.skipped.append(SkippedRecord(idx, "missing amount"))
            continue
        amount = _parse_amount(row["amount"])
        if amount is None:
            report.skipped.append(SkippedRecord(idx, "unparseable amount"))
            continue
        if amount < 0:
            report.skipped.append(SkippedRecord(idx, "negative amount"))
            continue

        customer_key = normalise_customer_key(
            row.get("customer_key", row.get("customer"))
        )
        if not customer_key:
            report.skipped.append(SkippedRecord(idx, "missing customer key"))
            continue

        phone = _optional_text(row.get("phone"))
        if phone is not None and len(phone) < MIN_PHONE_LENGTH:
            phone = None

        reference_aware = _is_aware(timestamp)
        report.records.append(
            TransactionRecord(
                customer_key=customer_key,
                timestamp=timestamp,
                amount=amount,
                store=_optional_text(row.get("store")) or "",
                machine=_optional_text(row.get("machine")),
                service=_optional_text(row.get("service")),
                payment_method=_optional_text(row.get("payment_method")),
                phone=phone,
            )
        )

    if report.skipped:
        logger.warning(
            f"Skipped {report.skipped_count} malformed transaction rows: "
            f"{report.skipped_reasons()}"
        )
    return report


def load_service_orders(
    rows: Iterable[Mapping[str, Any]],
) -> RecordLoadReport[ServiceOrderRecord]:
    """Validate raw machine service orders; same skip-and-count policy."""
    report: RecordLoadReport[ServiceOrderRecord] = RecordLoadReport()
    reference_aware: bool | None = None
    for idx, row in enumerate(rows):
        timestamp = _parse_timestamp(row.get("timestamp"))
        if timestamp is None:
            report.skipped.append(SkippedRecord(idx, "missing timestamp"))
            continue
        if reference_aware is not None and _is_aware(timestamp) != reference_aware:
            report.skipped.append(SkippedRecord(idx, "timezone mismatch"))
            continue

        amount: Decimal | None = None
        if row.get("amount") is not None:
            amount = _parse_amount(row["amount"])
            if amount is None:
                report.skipped.append(SkippedRecord(idx, "unparseable amount"))
                continue
            if amount < 0:
                report.skipped.append(SkippedRecord(idx, "negative amount"))
                continue

        customer_key = normalise_customer_key(
            row.get("customer_key", row.get("customer"))
        )
        reference_aware = _is_aware(timestamp)
        report.records.append(
            ServiceOrderRecord(
                timestamp=timestamp,
                store=_optional_text(row.get("store")) or "",
                machine=_optional_text(row.get("machine")),
                service=_optional_text(row.get("service")),
                customer_key=customer_key or None,
                amount=amount,
            )
        )

    if report.skipped:
        logger.warning(
            f"Skipped {report.skipped_count} malformed service order rows: "
            f"{report.skipped_reasons()}"
        )
    return report
