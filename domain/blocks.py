from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from domain.models import ArmKind, FlagAssignment


@dataclass(frozen=True)
class ScriptLine:
    node_id: str | None
    text: str
    speaker: str | None = None
    set_flags: tuple[FlagAssignment, ...] = ()


@dataclass(frozen=True)
class LinearBlock:
    lines: tuple[ScriptLine, ...]
    next: Block | None = None


@dataclass(frozen=True)
class ConditionalArm:
    port: str
    kind: ArmKind
    expression: str | None
    body: Block | None
    line: int = 0


@dataclass(frozen=True)
class ConditionalBlock:
    node_id: str | None
    arms: tuple[ConditionalArm, ...]
    else_arm: ConditionalArm | None = None
    continuation: Block | None = None


@dataclass(frozen=True)
class ChoiceArm:
    port: str
    text: str
    condition: str | None
    body: Block | None
    line: int = 0


@dataclass(frozen=True)
class ChoiceBlock:
    node_id: str | None
    options: tuple[ChoiceArm, ...]
    continuation: Block | None = None


@dataclass(frozen=True)
class JumpBlock:
    label: str
    target_id: str | None = None
    line: int = 0


@dataclass(frozen=True)
class TerminalBlock:
    node_id: str | None = None


Block = Union[LinearBlock, ConditionalBlock, ChoiceBlock, JumpBlock, TerminalBlock]


@dataclass(frozen=True)
class ScriptSection:
    label: str
    body: Block | None
    node_id: str | None = None
    line: int = 0


@dataclass(frozen=True)
class ScriptProgram:
    sections: tuple[ScriptSection, ...]

    def labels(self) -> tuple[str, ...]:
        return tuple(section.label for section in self.sections)
