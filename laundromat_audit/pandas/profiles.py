"""Pandas DataFrame adapters for customer profiles and visits."""

from typing import Mapping, Sequence

import pandas as pd  # type: ignore

from laundromat_audit.analyses.expansion import FlexibleCustomerRecord
from laundromat_audit.analyses.profiles import CustomerProfile
from laundromat_audit.foundation.records import (
    RecordLoadReport,
    TransactionRecord,
    load_transactions,
)
from laundromat_audit.foundation.visits import Visit
from ._utils import decimal_to_float, to_python_datetime

PROFILE_COLUMNS = [
    "name",
    "phone",
    "recency_days",
    "visit_count",
    "average_ticket",
    "average_interval_days",
    "total_spent",
    "churn_risk",
    "preferred_store",
    "first_visit_ts",
    "last_visit_ts",
    "next_predicted_visit",
    "spent_last_30d",
    "spent_last_90d",
    "gender",
    "spent_last_180d",
    "total_washes",
    "total_dries",
    "cycle_mix",
    "top_day",
    "top_shift",
    "visits_per_month",
]

VISIT_COLUMNS = [
    "customer_key",
    "start_time",
    "end_time",
    "total_value",
    "member_count",
]

FLEXIBLE_COLUMNS = [
    "customer_key",
    "peak_weekday",
    "peak_hour",
    "peak_visit_count",
    "off_peak_weekday",
    "off_peak_hour",
    "off_peak_visit_count",
    "total_spent",
    "total_visits",
    "phone",
]


def profiles_to_dataframe(profiles: Sequence[CustomerProfile]) -> pd.DataFrame:
    """Convert customer profiles to a DataFrame sorted by name.

    Decimal amounts become floats; ``churn_risk``, ``cycle_mix`` and
    ``top_shift`` become their string values.

    Example:
        >>> df = profiles_to_dataframe(result.profiles)
        >>> df[df["churn_risk"] == "high"].sort_values("total_spent")
    """
    if not profiles:
        return pd.DataFrame(columns=PROFILE_COLUMNS)

    rows = [
        {
            "name": p.name,
            "phone": p.phone,
            "recency_days": p.recency_days,
            "visit_count": p.visit_count,
            "average_ticket": decimal_to_float(p.average_ticket),
            "average_interval_days": p.average_interval_days,
            "total_spent": decimal_to_float(p.total_spent),
            "churn_risk": p.churn_risk.value,
            "preferred_store": p.preferred_store,
            "first_visit_ts": p.first_visit_ts,
            "last_visit_ts": p.last_visit_ts,
            "next_predicted_visit": p.next_predicted_visit,
            "spent_last_30d": decimal_to_float(p.spent_last_30d),
            "spent_last_90d": decimal_to_float(p.spent_last_90d),
            "gender": p.gender,
            "spent_last_180d": decimal_to_float(p.spent_last_180d),
            "total_washes": p.total_washes,
            "total_dries": p.total_dries,
            "cycle_mix": p.cycle_mix.value,
            "top_day": p.top_day,
            "top_shift": p.top_shift.value if p.top_shift else None,
            "visits_per_month": p.visits_per_month,
        }
        for p in profiles
    ]
    df = pd.DataFrame(rows, columns=PROFILE_COLUMNS)
    return df.sort_values("name").reset_index(drop=True)


def visits_to_dataframe(visits_by_customer: Mapping[str, Sequence[Visit]]) -> pd.DataFrame:
    """One row per visit, ordered by customer key then start time."""
    rows = [
        {
            "customer_key": visit.customer_key,
            "start_time": visit.start_time,
            "end_time": visit.end_time,
            "total_value": decimal_to_float(visit.total_value),
            "member_count": visit.member_count,
        }
        for visits in visits_by_customer.values()
        for visit in visits
    ]
    if not rows:
        return pd.DataFrame(columns=VISIT_COLUMNS)
    df = pd.DataFrame(rows, columns=VISIT_COLUMNS)
    return df.sort_values(["customer_key", "start_time"]).reset_index(drop=True)


def flexible_customers_to_dataframe(
    records: Sequence[FlexibleCustomerRecord],
) -> pd.DataFrame:
    """Convert flexible customers to a DataFrame, keeping the spend ranking."""
    if not records:
        return pd.DataFrame(columns=FLEXIBLE_COLUMNS)
    rows = [
        {
            "customer_key": r.customer_key,
            "peak_weekday": r.preferred_peak_slot[0],
            "peak_hour": r.preferred_peak_slot[1],
            "peak_visit_count": r.peak_visit_count,
            "off_peak_weekday": r.preferred_off_peak_slot[0],
            "off_peak_hour": r.preferred_off_peak_slot[1],
            "off_peak_visit_count": r.off_peak_visit_count,
            "total_spent": decimal_to_float(r.total_spent),
            "total_visits": r.total_visits,
            "phone": r.phone,
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=FLEXIBLE_COLUMNS)


def transactions_from_dataframe(df: pd.DataFrame) -> RecordLoadReport[TransactionRecord]:
    """Load sale rows from a DataFrame with the same skip-and-count policy.

    Args:
        df: DataFrame with at least ``customer``/``customer_key``,
            ``timestamp`` and ``amount`` columns.

    Raises:
        ValueError: If required columns are missing.
    """
    if "timestamp" not in df.columns or "amount" not in df.columns:
        raise ValueError("DataFrame must contain 'timestamp' and 'amount' columns")
    if "customer" not in df.columns and "customer_key" not in df.columns:
        raise ValueError("DataFrame must contain a 'customer' or 'customer_key' column")

    rows = []
    for record in df.to_dict("records"):
        row = {
            key: (None if not isinstance(value, str) and pd.isna(value) else value)
            for key, value in record.items()
        }
        if not isinstance(record["timestamp"], str):
            row["timestamp"] = to_python_datetime(record["timestamp"])
        rows.append(row)
    return load_transactions(rows)
