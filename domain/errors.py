from __future__ import annotations

from typing import Optional


class DialogueConversionError(Exception):
    pass


class MalformedGraphError(DialogueConversionError):
    def __init__(self, reason: str, node_id: Optional[str] = None) -> None:
        self.reason = reason
        self.node_id = node_id
        super().__init__(reason)


class UnstructurableGraphError(DialogueConversionError):
    def __init__(self, node_id: str, reason: str) -> None:
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"Node '{node_id}': {reason}")


class ParseError(DialogueConversionError):
    def __init__(self, line: int, reason: str, column: int = 1) -> None:
        self.line = line
        self.column = column
        self.reason = reason
        super().__init__(f"line {line}, column {column}: {reason}")


class UndefinedJumpTarget(DialogueConversionError):
    """Jump to a title no section defines; recorded on import, never fatal there."""

    def __init__(self, label: str, line: int) -> None:
        self.label = label
        self.line = line
        super().__init__(f"line {line}: jump to undefined title '{label}'")

    def to_dict(self) -> dict:
        return {"kind": "undefined_jump_target", "label": self.label, "line": self.line}
