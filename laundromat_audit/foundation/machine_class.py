"""Ordered classification rules resolving a service order to wash or dry.

The signals have different reliability: the machine name is the best one
when present, service text is sometimes generic, and the numeric parity
of the machine label (even = washer, odd = dryer) is a site wiring
convention used only when no text signal exists. Rules are evaluated in
the order of :data:`DEFAULT_RULES` and the first match wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from laundromat_audit.foundation.records import ServiceOrderRecord, TransactionRecord


class MachineClass(str, Enum):
    """Machine classes tracked by the saturation grid."""

    WASH = "wash"
    DRY = "dry"


class RuleKind(str, Enum):
    """Kinds of classification rule, listed in precedence order."""

    MACHINE_NAME_OVERRIDE = "machine_name_override"
    SERVICE_KEYWORD = "service_keyword"
    NUMERIC_PARITY = "numeric_parity"
    GENERIC_FALLBACK = "generic_fallback"


@dataclass(frozen=True)
class ClassificationRule:
    """A named predicate mapping an order to a machine class."""

    kind: RuleKind
    name: str
    predicate: Callable[[ServiceOrderRecord], bool]
    result: MachineClass | Callable[[ServiceOrderRecord], MachineClass]

    def resolve(self, order: ServiceOrderRecord) -> MachineClass:
        if isinstance(self.result, MachineClass):
            return self.result
        return self.result(order)


_DRY_MACHINE = re.compile(r"sec|\bdry|^s\s*\d", re.IGNORECASE)
_WASH_MACHINE = re.compile(r"lav|wash|^l\s*\d", re.IGNORECASE)
_DRY_SERVICE = re.compile(r"sec|\bdry", re.IGNORECASE)
_WASH_SERVICE = re.compile(r"lav|wash", re.IGNORECASE)
_WASH_DURATION = re.compile(r"\b(30|35)\s*min", re.IGNORECASE)
_DRY_DURATION = re.compile(r"\b(15|45)\s*min", re.IGNORECASE)
_DIGITS = re.compile(r"\d+")


def _machine_number(order: ServiceOrderRecord) -> int | None:
    match = _DIGITS.search(order.machine or "")
    return int(match.group()) if match else None


def _matches(pattern: re.Pattern[str], text: str | None) -> bool:
    return bool(text) and pattern.search(text) is not None


def _parity_class(order: ServiceOrderRecord) -> MachineClass:
    number = _machine_number(order)
    return MachineClass.WASH if number is not None and number % 2 == 0 else MachineClass.DRY


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        kind=RuleKind.MACHINE_NAME_OVERRIDE,
        name="dryer machine name",
        predicate=lambda order: _matches(_DRY_MACHINE, order.machine),
        result=MachineClass.DRY,
    ),
    ClassificationRule(
        kind=RuleKind.MACHINE_NAME_OVERRIDE,
        name="washer machine name",
        predicate=lambda order: _matches(_WASH_MACHINE, order.machine),
        result=MachineClass.WASH,
    ),
    ClassificationRule(
        kind=RuleKind.SERVICE_KEYWORD,
        name="drying service",
        predicate=lambda order: _matches(_DRY_SERVICE, order.service),
        result=MachineClass.DRY,
    ),
    ClassificationRule(
        kind=RuleKind.SERVICE_KEYWORD,
        name="washing service",
        predicate=lambda order: _matches(_WASH_SERVICE, order.service),
        result=MachineClass.WASH,
    ),
    ClassificationRule(
        kind=RuleKind.NUMERIC_PARITY,
        name="machine number parity",
        predicate=lambda order: _machine_number(order) is not None,
        result=_parity_class,
    ),
    ClassificationRule(
        kind=RuleKind.GENERIC_FALLBACK,
        name="wash cycle duration",
        predicate=lambda order: _matches(_WASH_DURATION, order.service),
        result=MachineClass.WASH,
    ),
    ClassificationRule(
        kind=RuleKind.GENERIC_FALLBACK,
        name="dry cycle duration",
        predicate=lambda order: _matches(_DRY_DURATION, order.service),
        result=MachineClass.DRY,
    ),
)


def matching_rule(
    order: ServiceOrderRecord,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> ClassificationRule | None:
    """Return the first rule whose predicate accepts the order."""
    for rule in rules:
        if rule.predicate(order):
            return rule
    return None


def classify_order(
    order: ServiceOrderRecord,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> MachineClass | None:
    """Resolve an order to a machine class, or None when no rule matches.

    >>> from datetime import datetime
    >>> classify_order(ServiceOrderRecord(datetime(2024, 1, 1), machine="Secadora 3"))
    <MachineClass.DRY: 'dry'>
    >>> classify_order(ServiceOrderRecord(datetime(2024, 1, 1), machine="12"))
    <MachineClass.WASH: 'wash'>
    """
    rule = matching_rule(order, rules)
    return rule.resolve(order) if rule is not None else None


def classify_sale(
    transaction: TransactionRecord,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> MachineClass | None:
    """Resolve a sale line through the same rules as a service order."""
    order = ServiceOrderRecord(
        timestamp=transaction.timestamp,
        store=transaction.store,
        machine=transaction.machine,
        service=transaction.service,
        customer_key=transaction.customer_key,
        amount=transaction.amount,
    )
    return classify_order(order, rules)
