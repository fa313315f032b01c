"""Shared utilities for pandas conversion operations."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import pandas as pd  # type: ignore


def decimal_to_float(value: Optional[Decimal]) -> Optional[float]:
    """Convert Decimal to float for pandas compatibility, passing None through."""
    return None if value is None else float(value)


def to_python_datetime(value: object) -> Optional[datetime]:
    """Convert a pandas/numpy timestamp cell to ``datetime`` (NaT → None).

    Example:
        >>> to_python_datetime(pd.Timestamp("2024-03-01 10:00"))
        datetime.datetime(2024, 3, 1, 10, 0)
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    return pd.Timestamp(value).to_pydatetime()
