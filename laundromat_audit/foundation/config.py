"""Run configuration for the laundromat audit pipeline.

Every threshold and constant used by the analyses lives here so that a run
can be tuned without code changes. The values are inferred from observed
behaviour of the point-of-sale system and should be treated as tunable,
not authoritative.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from decimal import Decimal
from typing import Any, Mapping

DEFAULT_ANONYMOUS_CUSTOMER_KEYS = (
    "CONSUMIDOR FINAL",
    "PEDIDO BALCÃO",
    "WALK-IN",
    "ANONYMOUS",
)


class ConfigurationError(ValueError):
    """Raised when run constants would corrupt every downstream figure."""


@dataclass(frozen=True)
class AnalyticsConfig:
    """Constants shared by all pipeline stages.

    Attributes
    ----------
    visit_gap_minutes:
        Maximum time (inclusive) between a transaction and the start of the
        current visit for the transaction to join that visit.
    high_risk_interval_multiplier:
        Recency above ``k × average_interval_days`` is classified ``high``.
    medium_risk_interval_multiplier:
        Recency above ``k × average_interval_days`` (and not high) is
        classified ``medium``.
    min_visits_for_churn_rhythm:
        Customers with fewer visits carry no rhythm and are always ``low``.
    expected_cycles_per_machine_per_hour:
        Nominal cycles a single machine completes within one hour slot.
    peak_saturation_threshold:
        Slots with saturation strictly above this are "peak".
    off_peak_saturation_threshold:
        Slots with saturation strictly below this are "off-peak".
    repressed_demand_threshold:
        Slots with saturation strictly above this are assumed to turn
        customers away (used by the expansion ROI estimate).
    weeks_per_month:
        Multiplier projecting weekly slot counts to a month.
    capture_rate:
        Share of repressed demand one additional machine per class captures.
    equipment_cost:
        Purchase cost of one additional machine per class.
    anonymous_customer_keys:
        Normalised customer keys that denote walk-in sales and are never
        profiled.
    flexible_customer_limit:
        Optional cap on the flexible customer list (None = no cap).
    normalise_by_weekday_occurrences:
        When True (the default), slot capacity is multiplied by the number
        of distinct dates observed for that weekday, so a ratio is the load
        of an average day. When False, counts accumulate over the whole
        history.
    """

    visit_gap_minutes: int = 180
    high_risk_interval_multiplier: float = 2.0
    medium_risk_interval_multiplier: float = 1.0
    min_visits_for_churn_rhythm: int = 2
    expected_cycles_per_machine_per_hour: float = 1.0
    peak_saturation_threshold: float = 0.6
    off_peak_saturation_threshold: float = 0.3
    repressed_demand_threshold: float = 0.75
    weeks_per_month: int = 4
    capture_rate: float = 0.15
    equipment_cost: Decimal = Decimal("35000")
    anonymous_customer_keys: tuple[str, ...] = DEFAULT_ANONYMOUS_CUSTOMER_KEYS
    flexible_customer_limit: int | None = None
    normalise_by_weekday_occurrences: bool = True

    def __post_init__(self) -> None:
        """Validate constants; any violation is fatal for the run."""
        positive = {
            "visit_gap_minutes": self.visit_gap_minutes,
            "high_risk_interval_multiplier": self.high_risk_interval_multiplier,
            "medium_risk_interval_multiplier": self.medium_risk_interval_multiplier,
            "min_visits_for_churn_rhythm": self.min_visits_for_churn_rhythm,
            "expected_cycles_per_machine_per_hour": self.expected_cycles_per_machine_per_hour,
            "weeks_per_month": self.weeks_per_month,
            "capture_rate": self.capture_rate,
            "equipment_cost": self.equipment_cost,
        }
        for name, value in positive.items():
            if value is None or value <= 0:
                raise ConfigurationError(f"{name} must be positive: {value}")

        for name in (
            "peak_saturation_threshold",
            "off_peak_saturation_threshold",
            "repressed_demand_threshold",
            "capture_rate",
        ):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ConfigurationError(f"{name} must be within [0, 1]: {value}")

        if self.off_peak_saturation_threshold >= self.peak_saturation_threshold:
            raise ConfigurationError(
                f"off_peak_saturation_threshold ({self.off_peak_saturation_threshold}) "
                f"must be below peak_saturation_threshold ({self.peak_saturation_threshold})"
            )
        if self.medium_risk_interval_multiplier > self.high_risk_interval_multiplier:
            raise ConfigurationError(
                "medium_risk_interval_multiplier cannot exceed "
                "high_risk_interval_multiplier"
            )
        if self.flexible_customer_limit is not None and self.flexible_customer_limit < 0:
            raise ConfigurationError(
                f"flexible_customer_limit cannot be negative: {self.flexible_customer_limit}"
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "AnalyticsConfig":
        """Build a config from a JSON-like mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")

        values = dict(mapping)
        if "equipment_cost" in values:
            values["equipment_cost"] = Decimal(str(values["equipment_cost"]))
        if "anonymous_customer_keys" in values:
            values["anonymous_customer_keys"] = tuple(
                str(key) for key in values["anonymous_customer_keys"]
            )
        try:
            return cls(**values)
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["equipment_cost"] = str(self.equipment_cost)
        payload["anonymous_customer_keys"] = list(self.anonymous_customer_keys)
        return payload
