"""Synthetic laundromat data generation.

This package produces realistic-but-fake sales and service orders to
exercise the audit pipeline without accessing production data.
"""

from .generator import (
    WALK_IN_KEY,
    LaundromatScenario,
    SyntheticCustomer,
    generate_customers,
    generate_laundromat_records,
)

__all__ = [
    "WALK_IN_KEY",
    "LaundromatScenario",
    "SyntheticCustomer",
    "generate_customers",
    "generate_laundromat_records",
]
