from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from domain.models import GraphDocument, NodeType

FlagValue = Union[bool, int, float, str]

_AND_SPLIT = re.compile(r"\s+and\s+", re.IGNORECASE)
_NEGATED = re.compile(r"^not\s+\$(?P<flag>[A-Za-z_][A-Za-z0-9_]*)$", re.IGNORECASE)
_COMPARISON = re.compile(
    r"^\$(?P<flag>[A-Za-z_][A-Za-z0-9_]*)\s*(?P<operator>==|!=|>=|<=|>|<)\s*(?P<value>.+)$"
)
_BARE_FLAG = re.compile(r"^\$(?P<flag>[A-Za-z_][A-Za-z0-9_]*)$")
_ANY_FLAG = re.compile(r"\$(?P<flag>[A-Za-z_][A-Za-z0-9_]*)")


class ConditionOperator(str, Enum):
    IS_SET = "is_set"
    IS_NOT_SET = "is_not_set"
    EQUALS = "=="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_EQUAL = ">="
    LESS_EQUAL = "<="
    # Flag appears inside an expression that is not a plain comparison.
    REFERENCED = "referenced"


@dataclass(frozen=True)
class FlagCondition:
    flag: str
    operator: ConditionOperator
    value: FlagValue | None = None


@dataclass
class FlagUsage:
    read: set[str] = field(default_factory=set)
    written: set[str] = field(default_factory=set)

    def never_written(self) -> list[str]:
        return sorted(self.read - self.written)


def parse_condition(expression: str) -> list[FlagCondition]:
    """Split a condition on ``and`` and read each part as a flag test.

    ``$flag`` and ``not $flag`` test presence, ``$flag <op> value`` compares.
    Parts in any other form report each ``$flag`` they mention as referenced.
    """
    conditions: list[FlagCondition] = []
    for part in _AND_SPLIT.split(expression.strip()):
        part = part.strip()
        if not part:
            continue
        match = _NEGATED.match(part)
        if match:
            conditions.append(FlagCondition(match.group("flag"), ConditionOperator.IS_NOT_SET))
            continue
        match = _COMPARISON.match(part)
        if match:
            conditions.append(
                FlagCondition(
                    match.group("flag"),
                    ConditionOperator(match.group("operator")),
                    parse_flag_value(match.group("value")),
                )
            )
            continue
        match = _BARE_FLAG.match(part)
        if match:
            conditions.append(FlagCondition(match.group("flag"), ConditionOperator.IS_SET))
            continue
        conditions.extend(
            FlagCondition(flag, ConditionOperator.REFERENCED)
            for flag in dict.fromkeys(_ANY_FLAG.findall(part))
        )
    return conditions


def parse_flag_value(raw: str) -> FlagValue:
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        return text[1:-1]
    lowered = text.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def collect_flag_usage(document: GraphDocument) -> FlagUsage:
    usage = FlagUsage()
    for node in document.nodes:
        expressions: list[str] = []
        if node.type == NodeType.CONDITION:
            expressions = [arm.expression for arm in node.arms if arm.expression]
        elif node.type == NodeType.CHOICE:
            expressions = [option.condition for option in node.options if option.condition]
        elif node.type == NodeType.DIALOGUE:
            usage.written.update(assignment.flag for assignment in node.set_flags)
        for expression in expressions:
            usage.read.update(condition.flag for condition in parse_condition(expression))
    return usage
