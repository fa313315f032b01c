"""Customer behaviour and machine demand analyses.

1. Customer profiles - recency, frequency, spend and rhythm-relative
   churn risk per customer
2. Saturation grid - machine load per weekday × hour slot
3. Expansion - flexible customers and capacity expansion payback
"""

from .expansion import (
    ROI_METHODOLOGY_NOTE,
    ExpansionROIEstimate,
    FlexibleCustomerRecord,
    estimate_expansion_roi,
    find_flexible_customers,
)
from .profiles import (
    ChurnRisk,
    CustomerBaseSummary,
    CustomerDirectoryEntry,
    CustomerProfile,
    CycleMix,
    InactivityBucket,
    PreferredSlot,
    Shift,
    VisitSummary,
    bucket_inactivity,
    build_customer_profiles,
    classify_churn_risk,
    determine_as_of,
    shift_of,
    summarise_customer_base,
)
from .saturation import (
    WEEKDAY_LABELS,
    SaturationCell,
    SaturationGrid,
    build_saturation_grid,
    capacity_recommendations,
    compute_saturation_ratio,
    find_peak_slots,
)

__all__ = [
    # Profiles
    "ChurnRisk",
    "CustomerBaseSummary",
    "CustomerDirectoryEntry",
    "CustomerProfile",
    "CycleMix",
    "InactivityBucket",
    "PreferredSlot",
    "Shift",
    "VisitSummary",
    "bucket_inactivity",
    "build_customer_profiles",
    "classify_churn_risk",
    "determine_as_of",
    "shift_of",
    "summarise_customer_base",
    # Saturation
    "WEEKDAY_LABELS",
    "SaturationCell",
    "SaturationGrid",
    "build_saturation_grid",
    "capacity_recommendations",
    "compute_saturation_ratio",
    "find_peak_slots",
    # Expansion
    "ROI_METHODOLOGY_NOTE",
    "ExpansionROIEstimate",
    "FlexibleCustomerRecord",
    "estimate_expansion_roi",
    "find_flexible_customers",
]
