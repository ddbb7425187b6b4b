from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_PORT = "next"
LABEL_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
SPEAKER_PATTERN = re.compile(r"^\w[\w .'-]*$")


class NodeType(str, Enum):
    DIALOGUE = "dialogue"
    CHOICE = "choice"
    CONDITION = "condition"
    JUMP = "jump"
    START = "start"
    END = "end"


class ArmKind(str, Enum):
    IF = "if"
    ELSEIF = "elseif"
    ELSE = "else"


class FlagOperator(str, Enum):
    ASSIGN = "="
    ADD = "+="
    SUBTRACT = "-="
    MULTIPLY = "*="
    DIVIDE = "/="


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Size:
    width: float
    height: float


def _single_line(value: str, field_name: str) -> str:
    if "\n" in value or "\r" in value:
        msg = f"{field_name} must be a single line"
        raise ValueError(msg)
    return value.strip()


class FlagAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    flag: str = Field(..., min_length=1)
    operator: FlagOperator = FlagOperator.ASSIGN
    value: str = "true"

    @model_validator(mode="before")
    @classmethod
    def accept_flag_name(cls, data: object) -> object:
        # Editors store bare flag names for "set to true".
        if isinstance(data, str):
            return {"flag": data}
        return data

    @field_validator("flag", mode="after")
    @classmethod
    def ensure_valid_flag(cls, value: str) -> str:
        value = value.strip().removeprefix("$")
        if not LABEL_PATTERN.match(value):
            msg = f"Invalid flag name: {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("value", mode="after")
    @classmethod
    def normalize_value(cls, value: str) -> str:
        value = _single_line(value, "flag value")
        if not value:
            msg = "flag value must not be blank"
            raise ValueError(msg)
        if "<<" in value or ">>" in value:
            msg = "flag value must not contain command markers"
            raise ValueError(msg)
        return value


class ConditionArm(BaseModel):
    port: str = Field(..., min_length=1)
    kind: ArmKind
    expression: Optional[str] = None

    @field_validator("expression", mode="after")
    @classmethod
    def normalize_expression(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = _single_line(value, "expression")
        if ">>" in value:
            msg = "expression must not contain '>>'"
            raise ValueError(msg)
        return value or None

    @model_validator(mode="after")
    def ensure_expression(self) -> ConditionArm:
        if self.kind == ArmKind.ELSE:
            if self.expression:
                msg = f"else arm '{self.port}' cannot carry an expression"
                raise ValueError(msg)
        elif not self.expression:
            msg = f"{self.kind.value} arm '{self.port}' requires an expression"
            raise ValueError(msg)
        return self


class ChoiceOption(BaseModel):
    port: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    condition: Optional[str] = None

    @field_validator("text", mode="after")
    @classmethod
    def normalize_text(cls, value: str) -> str:
        value = _single_line(value, "option text")
        if not value:
            msg = "option text must not be blank"
            raise ValueError(msg)
        if "<<" in value:
            msg = "option text must not contain commands"
            raise ValueError(msg)
        return value

    @field_validator("condition", mode="after")
    @classmethod
    def normalize_condition(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = _single_line(value, "option condition")
        if ">>" in value:
            msg = "option condition must not contain '>>'"
            raise ValueError(msg)
        return value or None


class GraphNode(BaseModel):
    id: str = Field(..., min_length=1)
    type: NodeType
    label: Optional[str] = None
    speaker: Optional[str] = None
    text: Optional[str] = None
    arms: List[ConditionArm] = Field(default_factory=list)
    options: List[ChoiceOption] = Field(default_factory=list)
    set_flags: List[FlagAssignment] = Field(
        default_factory=list, validation_alias=AliasChoices("set_flags", "setFlags")
    )
    target: Optional[str] = None
    target_label: Optional[str] = None
    position: Point = Field(default_factory=lambda: Point(0.0, 0.0))

    @field_validator("label", "target_label", mode="after")
    @classmethod
    def ensure_valid_label(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not LABEL_PATTERN.match(value):
            msg = f"Invalid label: {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("speaker", mode="after")
    @classmethod
    def normalize_speaker(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if not SPEAKER_PATTERN.match(value):
            msg = f"Invalid speaker name: {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("text", mode="after")
    @classmethod
    def normalize_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _single_line(value, "text") or None

    @model_validator(mode="after")
    def ensure_type_fields(self) -> GraphNode:
        if self.type == NodeType.DIALOGUE and not self.text:
            msg = f"Dialogue node '{self.id}' requires text"
            raise ValueError(msg)
        if self.set_flags and self.type != NodeType.DIALOGUE:
            msg = f"Only dialogue nodes can set flags, got '{self.id}' ({self.type.value})"
            raise ValueError(msg)
        if self.type == NodeType.CONDITION:
            self._check_arms()
        if self.type == NodeType.CHOICE:
            ports = [option.port for option in self.options]
            if len(ports) != len(set(ports)):
                msg = f"Choice node '{self.id}' has duplicate option ports"
                raise ValueError(msg)
        if self.type == NodeType.JUMP and not (self.target or self.target_label):
            msg = f"Jump node '{self.id}' requires a target"
            raise ValueError(msg)
        return self

    def _check_arms(self) -> None:
        ports = [arm.port for arm in self.arms]
        if len(ports) != len(set(ports)):
            msg = f"Condition node '{self.id}' has duplicate arm ports"
            raise ValueError(msg)
        for idx, arm in enumerate(self.arms):
            if idx == 0 and arm.kind != ArmKind.IF:
                msg = f"Condition node '{self.id}' must start with an if arm"
                raise ValueError(msg)
            if idx > 0 and arm.kind == ArmKind.IF:
                msg = f"Condition node '{self.id}' has more than one if arm"
                raise ValueError(msg)
            if arm.kind == ArmKind.ELSE and idx != len(self.arms) - 1:
                msg = f"Condition node '{self.id}' must end with its else arm"
                raise ValueError(msg)

    def ports(self) -> List[str]:
        if self.type == NodeType.CONDITION:
            return [arm.port for arm in self.arms]
        if self.type == NodeType.CHOICE:
            return [option.port for option in self.options]
        if self.type in {NodeType.START, NodeType.DIALOGUE}:
            return [DEFAULT_PORT]
        return []

    def else_arm(self) -> Optional[ConditionArm]:
        for arm in self.arms:
            if arm.kind == ArmKind.ELSE:
                return arm
        return None


class GraphEdge(BaseModel):
    source: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("source", "from_node_id", "fromNodeId")
    )
    source_port: str = Field(
        default=DEFAULT_PORT,
        min_length=1,
        validation_alias=AliasChoices("source_port", "from_port_id", "fromPortId"),
    )
    target: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("target", "to_node_id", "toNodeId")
    )


class GraphDocument(BaseModel):
    title: str = "Untitled dialogue"
    start_node_id: str = Field(..., min_length=1)
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)

    @field_validator("nodes", mode="after")
    @classmethod
    def ensure_unique_node_ids(cls, nodes: List[GraphNode]) -> List[GraphNode]:
        seen: Set[str] = set()
        starts = 0
        for node in nodes:
            if node.id in seen:
                msg = f"Duplicate node id found: {node.id}"
                raise ValueError(msg)
            seen.add(node.id)
            if node.type == NodeType.START:
                starts += 1
        if starts > 1:
            msg = "A graph document can hold only one start node"
            raise ValueError(msg)
        return nodes

    def node_map(self) -> Dict[str, GraphNode]:
        return {node.id: node for node in self.nodes}

    def outgoing(self) -> Dict[str, List[GraphEdge]]:
        result: Dict[str, List[GraphEdge]] = {}
        for edge in self.edges:
            result.setdefault(edge.source, []).append(edge)
        return result

    def with_positions(self, positions: Dict[str, Point]) -> GraphDocument:
        nodes = [
            node.model_copy(update={"position": positions[node.id]})
            if node.id in positions
            else node.model_copy()
            for node in self.nodes
        ]
        return self.model_copy(update={"nodes": nodes})

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
