from __future__ import annotations

import re

TITLE_HEADER = "title"
POSITION_HEADER = "position"
HEADER_SEPARATOR = "---"
SECTION_END = "==="
COMMENT_PREFIX = "//"
ESCAPE_PREFIX = "\\"
COMMAND_PREFIX = "<<"

OPTION_PREFIX = "->"
IF_COMMAND = "if"
ELSEIF_COMMAND = "elseif"
ELSE_COMMAND = "else"
ENDIF_COMMAND = "endif"
CHOICE_COMMAND = "choice"
ENDCHOICE_COMMAND = "endchoice"
JUMP_COMMAND = "jump"
STOP_COMMAND = "stop"
SET_COMMAND = "set"

RESERVED_COMMANDS = frozenset(
    {
        IF_COMMAND,
        ELSEIF_COMMAND,
        ELSE_COMMAND,
        ENDIF_COMMAND,
        CHOICE_COMMAND,
        ENDCHOICE_COMMAND,
        JUMP_COMMAND,
        STOP_COMMAND,
        SET_COMMAND,
    }
)

COMMAND_PATTERN = re.compile(r"^<<\s*(?P<name>[A-Za-z_]+)(?P<args>.*?)>>$")
HEADER_PATTERN = re.compile(r"^(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*:\s*(?P<value>.*)$")
SPEAKER_LINE_PATTERN = re.compile(r"^(?P<speaker>\w[\w .'-]*?)\s*:\s+(?P<text>\S.*)$")
OPTION_PATTERN = re.compile(
    r"^->\s*(?P<text>.*?)(?:\s*<<\s*if\s+(?P<condition>.+?)\s*>>)?\s*$"
)
POSITION_PATTERN = re.compile(r"^\s*(?P<x>-?\d+(?:\.\d+)?)\s*,\s*(?P<y>-?\d+(?:\.\d+)?)\s*$")
# "to" is accepted as a spelling of "=".
SET_PATTERN = re.compile(
    r"^\$(?P<flag>[A-Za-z_][A-Za-z0-9_]*)\s*(?P<operator>[-+*/]?=|\bto\b)\s*(?P<value>[^=\s].*)$"
)


def command(name: str, args: str | None = None) -> str:
    if args:
        return f"<<{name} {args}>>"
    return f"<<{name}>>"


def needs_escape(text: str) -> bool:
    if not text:
        return True
    if text in {HEADER_SEPARATOR, SECTION_END}:
        return True
    if text.startswith((OPTION_PREFIX, COMMENT_PREFIX, ESCAPE_PREFIX, COMMAND_PREFIX)):
        return True
    return SPEAKER_LINE_PATTERN.match(text) is not None
