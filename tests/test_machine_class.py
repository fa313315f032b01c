"""Tests for the ordered machine-class rules."""

from datetime import datetime

import pytest

from laundromat_audit.foundation.machine_class import (
    DEFAULT_RULES,
    ClassificationRule,
    MachineClass,
    RuleKind,
    classify_order,
    matching_rule,
)
from laundromat_audit.foundation.records import ServiceOrderRecord


def _order(machine=None, service=None):
    return ServiceOrderRecord(datetime(2024, 3, 1, 10), store="CENTRO", machine=machine, service=service)


class TestRuleOrder:
    def test_rule_kinds_follow_precedence(self):
        kinds = [rule.kind for rule in DEFAULT_RULES]
        order = list(RuleKind)
        assert kinds == sorted(kinds, key=order.index)


class TestClassifyOrder:
    @pytest.mark.parametrize(
        "machine,service,expected",
        [
            ("Secadora 3", None, MachineClass.DRY),
            ("Lavadora 2", None, MachineClass.WASH),
            ("S1", None, MachineClass.DRY),
            ("L4", None, MachineClass.WASH),
            ("Dryer 7", None, MachineClass.DRY),
            ("Washer 1", None, MachineClass.WASH),
            (None, "Secagem 45 min", MachineClass.DRY),
            (None, "Lavagem", MachineClass.WASH),
            ("12", None, MachineClass.WASH),
            ("7", None, MachineClass.DRY),
            (None, "Ciclo 35 min", MachineClass.WASH),
            (None, "Ciclo 15 min", MachineClass.DRY),
        ],
    )
    def test_classification(self, machine, service, expected):
        assert classify_order(_order(machine, service)) is expected

    def test_machine_name_overrides_service(self):
        order = _order(machine="Secadora 2", service="Lavagem")
        assert classify_order(order) is MachineClass.DRY
        assert matching_rule(order).kind is RuleKind.MACHINE_NAME_OVERRIDE

    def test_service_keyword_beats_parity(self):
        order = _order(machine="4", service="Secagem")
        assert classify_order(order) is MachineClass.DRY
        assert matching_rule(order).kind is RuleKind.SERVICE_KEYWORD

    def test_parity_beats_duration(self):
        order = _order(machine="3", service="Ciclo 30 min")
        assert classify_order(order) is MachineClass.DRY
        assert matching_rule(order).kind is RuleKind.NUMERIC_PARITY

    def test_laundry_text_is_not_a_dryer(self):
        assert classify_order(_order(service="Laundry bag")) is None

    def test_unmatched_order(self):
        assert classify_order(_order()) is None
        assert matching_rule(_order(service="Sabão")) is None

    def test_custom_rules(self):
        rules = (
            ClassificationRule(
                kind=RuleKind.GENERIC_FALLBACK,
                name="everything is a dryer",
                predicate=lambda order: True,
                result=MachineClass.DRY,
            ),
        )
        assert classify_order(_order(machine="Lavadora 2"), rules) is MachineClass.DRY
