"""Pandas DataFrame adapters for laundromat audit components."""

from .profiles import (
    flexible_customers_to_dataframe,
    profiles_to_dataframe,
    transactions_from_dataframe,
    visits_to_dataframe,
)
from .saturation import (
    saturation_grid_to_dataframe,
    saturation_matrix,
)

__all__ = [
    # Profile adapters
    "profiles_to_dataframe",
    "visits_to_dataframe",
    "flexible_customers_to_dataframe",
    "transactions_from_dataframe",
    # Saturation adapters
    "saturation_grid_to_dataframe",
    "saturation_matrix",
]
