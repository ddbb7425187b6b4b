from __future__ import annotations

import pytest

from domain.services.flag_usage import (
    ConditionOperator,
    FlagCondition,
    collect_flag_usage,
    parse_condition,
    parse_flag_value,
)
from tests.helpers.graph_fixtures import load_graph_fixture


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("$has_pass", [FlagCondition("has_pass", ConditionOperator.IS_SET)]),
        ("not $curious", [FlagCondition("curious", ConditionOperator.IS_NOT_SET)]),
        ("$gold > 10", [FlagCondition("gold", ConditionOperator.GREATER_THAN, 10)]),
        ("$gold >= 2.5", [FlagCondition("gold", ConditionOperator.GREATER_EQUAL, 2.5)]),
        ("$count <= 3", [FlagCondition("count", ConditionOperator.LESS_EQUAL, 3)]),
        ("$quest == \"done\"", [FlagCondition("quest", ConditionOperator.EQUALS, "done")]),
        ("$armed != false", [FlagCondition("armed", ConditionOperator.NOT_EQUALS, False)]),
        (
            "$quest and $count < 5",
            [
                FlagCondition("quest", ConditionOperator.IS_SET),
                FlagCondition("count", ConditionOperator.LESS_THAN, 5),
            ],
        ),
        (
            "$a or $b",
            [
                FlagCondition("a", ConditionOperator.REFERENCED),
                FlagCondition("b", ConditionOperator.REFERENCED),
            ],
        ),
        ("visited(\"Tavern\")", []),
    ],
)
def test_parse_condition(expression: str, expected: list[FlagCondition]) -> None:
    assert parse_condition(expression) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("true", True), ("FALSE", False), ("7", 7), ("-1.5", -1.5), ("'7'", "7"), ("gold", "gold")],
)
def test_parse_flag_value(raw: str, expected: object) -> None:
    assert parse_flag_value(raw) == expected


def test_collect_flag_usage_from_fixture() -> None:
    usage = collect_flag_usage(load_graph_fixture("city_gate.json"))

    assert usage.read == {"has_pass", "gold", "curious"}
    assert usage.written == {"gold", "entered_city"}
    assert usage.never_written() == ["curious", "has_pass"]
