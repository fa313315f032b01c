"""Foundational building blocks for the laundromat audit pipeline.

This package exposes the input record contracts, run configuration,
visit reconstruction and machine-class resolution used by the analyses.
"""

from .config import AnalyticsConfig, ConfigurationError
from .machine_class import (
    DEFAULT_RULES,
    ClassificationRule,
    MachineClass,
    RuleKind,
    classify_order,
    classify_sale,
    matching_rule,
)
from .records import (
    RecordLoadReport,
    ServiceOrderRecord,
    SkippedRecord,
    TransactionRecord,
    is_anonymous_customer,
    load_service_orders,
    load_transactions,
    normalise_customer_key,
)
from .visits import (
    Visit,
    group_by_customer,
    reconstruct_all_visits,
    reconstruct_visits,
)

__all__ = [
    "AnalyticsConfig",
    "ConfigurationError",
    "DEFAULT_RULES",
    "ClassificationRule",
    "MachineClass",
    "RuleKind",
    "classify_order",
    "classify_sale",
    "matching_rule",
    "RecordLoadReport",
    "ServiceOrderRecord",
    "SkippedRecord",
    "TransactionRecord",
    "is_anonymous_customer",
    "load_service_orders",
    "load_transactions",
    "normalise_customer_key",
    "Visit",
    "group_by_customer",
    "reconstruct_all_visits",
    "reconstruct_visits",
]
