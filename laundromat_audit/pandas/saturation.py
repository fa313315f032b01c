"""Pandas DataFrame adapters for the saturation grid."""

import pandas as pd  # type: ignore

from laundromat_audit.analyses.saturation import WEEKDAY_LABELS, SaturationGrid

GRID_COLUMNS = [
    "weekday",
    "hour",
    "observed_cycle_count",
    "capacity_estimate",
    "saturation_ratio",
    "machine_class",
    "total_cycle_count",
    "slot_occurrences",
]

MATRIX_VALUES = (
    "observed_cycle_count",
    "capacity_estimate",
    "saturation_ratio",
    "total_cycle_count",
)


def saturation_grid_to_dataframe(grid: SaturationGrid) -> pd.DataFrame:
    """Long format: one row per (weekday, hour) cell, 168 rows."""
    rows = [
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
    ]
    return pd.DataFrame(rows, columns=GRID_COLUMNS)


def saturation_matrix(grid: SaturationGrid, value: str = "saturation_ratio") -> pd.DataFrame:
    """Wide 7 × 24 matrix (weekday labels × hours) of a cell attribute.

    Example:
        >>> matrix = saturation_matrix(result.saturation_grid)
        >>> matrix.loc["Sat", 10]
    """
    if value not in MATRIX_VALUES:
        raise ValueError(f"Unsupported grid value: {value}")
    df = saturation_grid_to_dataframe(grid)
    matrix = df.pivot(index="weekday", columns="hour", values=value)
    matrix.index = [WEEKDAY_LABELS[day] for day in matrix.index]
    matrix.columns.name = "hour"
    return matrix
