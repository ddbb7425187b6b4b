from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Union

from domain.blocks import (
    Block,
    ChoiceArm,
    ChoiceBlock,
    ConditionalArm,
    ConditionalBlock,
    JumpBlock,
    LinearBlock,
    ScriptLine,
    ScriptProgram,
    ScriptSection,
    TerminalBlock,
)
from domain.errors import ParseError, UndefinedJumpTarget
from domain.models import (
    DEFAULT_PORT,
    LABEL_PATTERN,
    ArmKind,
    ChoiceOption,
    ConditionArm,
    FlagAssignment,
    FlagOperator,
    GraphDocument,
    GraphEdge,
    GraphNode,
    NodeType,
    Point,
)
from domain.script_syntax import (
    CHOICE_COMMAND,
    COMMAND_PATTERN,
    COMMAND_PREFIX,
    COMMENT_PREFIX,
    ELSE_COMMAND,
    ELSEIF_COMMAND,
    ENDCHOICE_COMMAND,
    ENDIF_COMMAND,
    ESCAPE_PREFIX,
    HEADER_PATTERN,
    HEADER_SEPARATOR,
    IF_COMMAND,
    JUMP_COMMAND,
    OPTION_PATTERN,
    OPTION_PREFIX,
    POSITION_HEADER,
    POSITION_PATTERN,
    RESERVED_COMMANDS,
    SECTION_END,
    SET_COMMAND,
    SET_PATTERN,
    SPEAKER_LINE_PATTERN,
    STOP_COMMAND,
    TITLE_HEADER,
)

logger = logging.getLogger(__name__)


class TokenKind(str, Enum):
    HEADER = "header"
    SEPARATOR = "separator"
    SECTION_END = "section_end"
    LINE = "line"
    OPTION = "option"
    IF = IF_COMMAND
    ELSEIF = ELSEIF_COMMAND
    ELSE = ELSE_COMMAND
    ENDIF = ENDIF_COMMAND
    CHOICE = CHOICE_COMMAND
    ENDCHOICE = ENDCHOICE_COMMAND
    JUMP = JUMP_COMMAND
    STOP = STOP_COMMAND
    SET = SET_COMMAND


_NO_ARGUMENT_COMMANDS = {
    TokenKind.ELSE,
    TokenKind.ENDIF,
    TokenKind.CHOICE,
    TokenKind.ENDCHOICE,
    TokenKind.STOP,
}


@dataclass(frozen=True)
class ScriptToken:
    kind: TokenKind
    line: int
    column: int = 1
    text: str = ""
    speaker: str | None = None
    key: str | None = None
    condition: str | None = None
    assignment: FlagAssignment | None = None


@dataclass
class ParsedScript:
    document: GraphDocument
    layout_hints: dict[str, Point] = field(default_factory=dict)
    undefined_jumps: list[UndefinedJumpTarget] = field(default_factory=list)


@dataclass(frozen=True)
class _Exit:
    node_id: str
    port: str
    implicit_else: bool = False


@dataclass(frozen=True)
class _FlagCommand:
    assignment: FlagAssignment
    line: int
    column: int


_Item = Union[ScriptLine, Block]


def tokenize(text: str) -> list[ScriptToken]:
    tokens: list[ScriptToken] = []
    state = "outside"
    last_line = 0
    for line_no, raw in enumerate(text.splitlines(), start=1):
        last_line = line_no
        stripped = raw.strip()
        column = len(raw) - len(raw.lstrip()) + 1
        if not stripped or stripped.startswith(COMMENT_PREFIX):
            continue
        if state == "body":
            if stripped == SECTION_END:
                tokens.append(ScriptToken(TokenKind.SECTION_END, line_no, column))
                state = "outside"
            else:
                tokens.append(_body_token(stripped, line_no, column))
            continue
        if stripped == HEADER_SEPARATOR:
            if state == "outside":
                msg = "'---' without a preceding 'title:' header"
                raise ParseError(line_no, msg, column)
            tokens.append(ScriptToken(TokenKind.SEPARATOR, line_no, column))
            state = "body"
            continue
        if stripped == SECTION_END:
            msg = "section body must start with '---'"
            raise ParseError(line_no, msg, column)
        match = HEADER_PATTERN.match(stripped)
        if not match:
            if state == "outside":
                msg = "content outside of a section"
            else:
                msg = "expected a 'key: value' header or '---'"
            raise ParseError(line_no, msg, column)
        tokens.append(
            ScriptToken(
                TokenKind.HEADER,
                line_no,
                column,
                text=match.group("value").strip(),
                key=match.group("key"),
            )
        )
        state = "header"
    if state == "header":
        msg = "headers are not followed by '---'"
        raise ParseError(last_line, msg)
    if state == "body":
        msg = "section is not closed with '==='"
        raise ParseError(last_line, msg)
    return tokens


def _body_token(stripped: str, line_no: int, column: int) -> ScriptToken:
    if stripped.startswith(ESCAPE_PREFIX):
        body = stripped[len(ESCAPE_PREFIX) :].strip()
        if not body:
            msg = "escaped line has no text"
            raise ParseError(line_no, msg, column)
        return ScriptToken(TokenKind.LINE, line_no, column, text=body)
    if stripped.startswith(OPTION_PREFIX):
        match = OPTION_PATTERN.match(stripped)
        text = match.group("text").strip() if match else ""
        if not text:
            msg = "option line has no text"
            raise ParseError(line_no, msg, column)
        if "<<" in text:
            msg = "option text may only be followed by '<<if condition>>'"
            raise ParseError(line_no, msg, column)
        condition = match.group("condition") if match else None
        if condition and ">>" in condition:
            msg = f"malformed option condition: {condition}"
            raise ParseError(line_no, msg, column)
        return ScriptToken(TokenKind.OPTION, line_no, column, text=text, condition=condition)
    if stripped.startswith(COMMAND_PREFIX):
        return _command_token(stripped, line_no, column)
    match = SPEAKER_LINE_PATTERN.match(stripped)
    if match:
        return ScriptToken(
            TokenKind.LINE,
            line_no,
            column,
            text=match.group("text").strip(),
            speaker=match.group("speaker").strip(),
        )
    return ScriptToken(TokenKind.LINE, line_no, column, text=stripped)


def _command_token(stripped: str, line_no: int, column: int) -> ScriptToken:
    match = COMMAND_PATTERN.match(stripped)
    if not match:
        msg = f"malformed command: {stripped}"
        raise ParseError(line_no, msg, column)
    name = match.group("name")
    if name not in RESERVED_COMMANDS:
        msg = f"unknown command <<{name}>>"
        raise ParseError(line_no, msg, column)
    kind = TokenKind(name)
    args = match.group("args").strip()
    if ">>" in args or "<<" in args:
        msg = f"malformed command: {stripped}"
        raise ParseError(line_no, msg, column)
    if kind in _NO_ARGUMENT_COMMANDS and args:
        msg = f"<<{kind.value}>> takes no arguments"
        raise ParseError(line_no, msg, column)
    if kind in {TokenKind.IF, TokenKind.ELSEIF} and not args:
        msg = f"<<{kind.value}>> requires an expression"
        raise ParseError(line_no, msg, column)
    if kind == TokenKind.JUMP and not LABEL_PATTERN.match(args):
        msg = f"<<jump>> requires a valid title, got {args!r}"
        raise ParseError(line_no, msg, column)
    if kind == TokenKind.SET:
        return ScriptToken(
            kind, line_no, column, text=args, assignment=_flag_assignment(args, line_no, column)
        )
    return ScriptToken(kind, line_no, column, text=args)


def _flag_assignment(args: str, line_no: int, column: int) -> FlagAssignment:
    match = SET_PATTERN.match(args)
    if not match:
        msg = f"malformed <<set>> command, expected '$flag = value', got {args!r}"
        raise ParseError(line_no, msg, column)
    operator = match.group("operator")
    return FlagAssignment(
        flag=match.group("flag"),
        operator=FlagOperator.ASSIGN if operator == "to" else FlagOperator(operator),
        value=match.group("value").strip(),
    )


class _SectionIds:
    def __init__(self, title: str, is_start: bool) -> None:
        self.title = title
        self.head_taken = is_start
        self.counter = 0

    def next(self) -> str:
        if not self.head_taken:
            self.head_taken = True
            return self.title
        self.counter += 1
        return f"{self.title}.{self.counter}"


class ScriptParser:
    def __init__(self) -> None:
        self._tokens: list[ScriptToken] = []
        self._pos = 0
        self._ids: _SectionIds | None = None
        self._discarding = 0

    def parse(self, text: str, title: str | None = None) -> ParsedScript:
        program, hints, header_lines = self.parse_program(text)
        return _Materializer(program, hints, header_lines).build(title)

    def parse_program(self, text: str) -> tuple[ScriptProgram, dict[str, Point], dict[str, int]]:
        self._tokens = tokenize(text)
        self._pos = 0
        self._discarding = 0
        if not self._tokens:
            msg = "script has no sections"
            raise ParseError(1, msg)

        sections: list[ScriptSection] = []
        hints: dict[str, Point] = {}
        header_lines: dict[str, int] = {}
        while not self._at_end():
            title, position, line = self._parse_headers()
            if title in header_lines:
                msg = f"duplicate title '{title}' (first defined on line {header_lines[title]})"
                raise ParseError(line, msg)
            header_lines[title] = line
            if position is not None:
                hints[title] = position
            self._ids = _SectionIds(title, is_start=not sections)
            body = self._parse_block({TokenKind.SECTION_END}, opener=None)
            self._advance()
            sections.append(ScriptSection(label=title, body=body, node_id=title, line=line))
        return ScriptProgram(sections=tuple(sections)), hints, header_lines

    def _parse_headers(self) -> tuple[str, Point | None, int]:
        first = self._peek()
        title: str | None = None
        position: Point | None = None
        title_line = first.line
        while True:
            token = self._advance()
            if token.kind == TokenKind.SEPARATOR:
                break
            if token.key == TITLE_HEADER:
                if title is not None:
                    msg = "section declares 'title' more than once"
                    raise ParseError(token.line, msg, token.column)
                if not LABEL_PATTERN.match(token.text):
                    msg = f"invalid title {token.text!r}"
                    raise ParseError(token.line, msg, token.column)
                title = token.text
                title_line = token.line
            elif token.key == POSITION_HEADER:
                match = POSITION_PATTERN.match(token.text)
                if not match:
                    msg = f"invalid position {token.text!r}, expected 'x,y'"
                    raise ParseError(token.line, msg, token.column)
                position = Point(float(match.group("x")), float(match.group("y")))
            else:
                logger.debug("Ignoring header '%s' on line %d", token.key, token.line)
        if title is None:
            msg = "section has no 'title' header"
            raise ParseError(first.line, msg, first.column)
        return title, position, title_line

    def _parse_block(self, terminators: set[TokenKind], opener: ScriptToken | None) -> Block | None:
        items: list[_Item | _FlagCommand] = []
        closed_by: ScriptToken | None = None
        while True:
            token = self._peek()
            if token.kind in terminators:
                break
            if token.kind in {
                TokenKind.SECTION_END,
                TokenKind.ELSEIF,
                TokenKind.ELSE,
                TokenKind.ENDIF,
                TokenKind.ENDCHOICE,
                TokenKind.OPTION,
            }:
                raise self._unexpected(token, opener)
            if closed_by is not None and self._discarding == 0:
                logger.warning(
                    "line %d: dropping unreachable content after <<%s>> on line %d",
                    token.line,
                    closed_by.kind.value,
                    closed_by.line,
                )
            if closed_by is not None:
                self._discarding += 1
                try:
                    self._parse_statement()
                finally:
                    self._discarding -= 1
                continue
            item = self._parse_statement()
            items.append(item)
            if isinstance(item, (JumpBlock, TerminalBlock)):
                closed_by = token
        return _fold(_attach_flags(items))

    def _parse_statement(self) -> _Item | _FlagCommand:
        token = self._peek()
        if token.kind == TokenKind.LINE:
            self._advance()
            return ScriptLine(node_id=self._next_id(), text=token.text, speaker=token.speaker)
        if token.kind == TokenKind.IF:
            return self._parse_conditional()
        if token.kind == TokenKind.CHOICE:
            return self._parse_choice()
        if token.kind == TokenKind.JUMP:
            self._advance()
            return JumpBlock(label=token.text, line=token.line)
        if token.kind == TokenKind.STOP:
            self._advance()
            return TerminalBlock(node_id=self._next_id())
        if token.kind == TokenKind.SET and token.assignment is not None:
            self._advance()
            return _FlagCommand(token.assignment, token.line, token.column)
        msg = f"unexpected {token.kind.value} token"
        raise ParseError(token.line, msg, token.column)

    def _parse_conditional(self) -> ConditionalBlock:
        opener = self._advance()
        node_id = self._next_id()
        arms: list[ConditionalArm] = []
        else_arm: ConditionalArm | None = None
        kind, port, expression, line = ArmKind.IF, "if", opener.text, opener.line
        terminators = {TokenKind.ELSEIF, TokenKind.ELSE, TokenKind.ENDIF}
        while True:
            body = self._parse_block(terminators, opener)
            arm = ConditionalArm(port=port, kind=kind, expression=expression, body=body, line=line)
            token = self._advance()
            if kind == ArmKind.ELSE:
                if token.kind != TokenKind.ENDIF:
                    msg = f"<<{token.kind.value}>> after <<else>>; <<else>> must be the last arm"
                    raise ParseError(token.line, msg, token.column)
                else_arm = arm
                break
            arms.append(arm)
            if token.kind == TokenKind.ENDIF:
                break
            if token.kind == TokenKind.ELSEIF:
                kind, expression = ArmKind.ELSEIF, token.text
                port = f"elseif_{sum(1 for a in arms if a.kind == ArmKind.ELSEIF) + 1}"
            else:
                kind, port, expression = ArmKind.ELSE, "else", None
            line = token.line
        return ConditionalBlock(node_id=node_id, arms=tuple(arms), else_arm=else_arm)

    def _parse_choice(self) -> ChoiceBlock:
        opener = self._advance()
        node_id = self._next_id()
        options: list[ChoiceArm] = []
        while True:
            token = self._peek()
            if token.kind == TokenKind.ENDCHOICE:
                self._advance()
                break
            if token.kind != TokenKind.OPTION:
                if token.kind == TokenKind.SECTION_END:
                    raise self._unexpected(token, opener)
                msg = "expected an option line ('->') inside <<choice>>"
                raise ParseError(token.line, msg, token.column)
            self._advance()
            body = self._parse_block({TokenKind.OPTION, TokenKind.ENDCHOICE}, opener)
            options.append(
                ChoiceArm(
                    port=f"option_{len(options) + 1}",
                    text=token.text,
                    condition=token.condition,
                    body=body,
                    line=token.line,
                )
            )
        if not options:
            msg = "<<choice>> has no options"
            raise ParseError(opener.line, msg, opener.column)
        return ChoiceBlock(node_id=node_id, options=tuple(options))

    def _unexpected(self, token: ScriptToken, opener: ScriptToken | None) -> ParseError:
        if opener is not None:
            closer = ENDIF_COMMAND if opener.kind == TokenKind.IF else ENDCHOICE_COMMAND
            msg = f"<<{opener.kind.value}>> opened on line {opener.line} is not closed with <<{closer}>>"
            return ParseError(token.line, msg, token.column)
        if token.kind == TokenKind.OPTION:
            msg = "option line outside of <<choice>>"
        elif token.kind == TokenKind.ENDCHOICE:
            msg = "<<endchoice>> without a matching <<choice>>"
        else:
            msg = f"<<{token.kind.value}>> without a matching <<if>>"
        return ParseError(token.line, msg, token.column)

    def _next_id(self) -> str | None:
        if self._discarding or self._ids is None:
            return None
        return self._ids.next()

    def _at_end(self) -> bool:
        return self._pos >= len(self._tokens)

    def _peek(self) -> ScriptToken:
        if self._at_end():
            line = self._tokens[-1].line if self._tokens else 1
            msg = "unexpected end of script"
            raise ParseError(line, msg)
        return self._tokens[self._pos]

    def _advance(self) -> ScriptToken:
        token = self._peek()
        self._pos += 1
        return token


def _attach_flags(items: list[_Item | _FlagCommand]) -> list[_Item]:
    result: list[_Item] = []
    waiting: list[_FlagCommand] = []
    for item in items:
        if isinstance(item, _FlagCommand):
            previous = result[-1] if result and not waiting else None
            if isinstance(previous, ScriptLine):
                result[-1] = replace(previous, set_flags=(*previous.set_flags, item.assignment))
            else:
                waiting.append(item)
            continue
        if waiting:
            if not isinstance(item, ScriptLine):
                raise _detached_flags(waiting[0])
            leading = tuple(command.assignment for command in waiting)
            item = replace(item, set_flags=leading + item.set_flags)
            waiting = []
        result.append(item)
    if waiting:
        raise _detached_flags(waiting[0])
    return result


def _detached_flags(command: _FlagCommand) -> ParseError:
    msg = "<<set>> must sit next to a dialogue line in the same block"
    return ParseError(command.line, msg, command.column)


def _fold(items: list[_Item]) -> Block | None:
    tail: Block | None = None
    lines: list[ScriptLine] = []
    for item in reversed(items):
        if isinstance(item, ScriptLine):
            lines.append(item)
            continue
        if lines:
            tail = LinearBlock(lines=tuple(reversed(lines)), next=tail)
            lines = []
        if isinstance(item, (ConditionalBlock, ChoiceBlock)):
            tail = replace(item, continuation=tail)
        else:
            tail = item
    if lines:
        tail = LinearBlock(lines=tuple(reversed(lines)), next=tail)
    return tail


class _Materializer:
    def __init__(
        self,
        program: ScriptProgram,
        hints: dict[str, Point],
        header_lines: dict[str, int],
    ) -> None:
        self.program = program
        self.hints = hints
        self.header_lines = header_lines
        self.titles = {section.label for section in program.sections}
        self.nodes: dict[str, dict] = {}
        self.edges: list[GraphEdge] = []
        self.pending_jumps: list[tuple[_Exit, str, int]] = []
        self.diagnostics: list[UndefinedJumpTarget] = []

    def build(self, title: str | None) -> ParsedScript:
        sections = self.program.sections
        start = sections[0]
        self._add_node(start.label, NodeType.START, label=start.label)
        self._materialize(start.body, [_Exit(start.label, DEFAULT_PORT)])

        for section in sections[1:]:
            body = section.body
            if body is None:
                self._add_node(section.label, NodeType.END, label=section.label)
            elif isinstance(body, JumpBlock):
                self._add_alias(section, body)
            else:
                self._materialize(body, [])
                self.nodes[section.label]["label"] = section.label

        for exit_, label, line in self.pending_jumps:
            self._connect([exit_], self._resolve_label(label, line))

        document = GraphDocument(
            title=title or start.label,
            start_node_id=start.label,
            nodes=[GraphNode(**fields) for fields in self.nodes.values()],
            edges=self.edges,
        )
        return ParsedScript(
            document=document,
            layout_hints=dict(self.hints),
            undefined_jumps=list(self.diagnostics),
        )

    def _materialize(self, block: Block | None, entries: list[_Exit]) -> list[_Exit]:
        while block is not None:
            if isinstance(block, LinearBlock):
                for line in block.lines:
                    node_id = self._require_id(line.node_id)
                    self._add_node(
                        node_id,
                        NodeType.DIALOGUE,
                        speaker=line.speaker,
                        text=line.text,
                        set_flags=list(line.set_flags),
                    )
                    self._connect(entries, node_id)
                    entries = [_Exit(node_id, DEFAULT_PORT)]
                block = block.next
            elif isinstance(block, ConditionalBlock):
                node_id = self._require_id(block.node_id)
                arms = [
                    ConditionArm(port=arm.port, kind=arm.kind, expression=arm.expression)
                    for arm in block.arms
                ]
                if block.else_arm is not None:
                    arms.append(ConditionArm(port=block.else_arm.port, kind=ArmKind.ELSE))
                self._add_node(node_id, NodeType.CONDITION, arms=arms)
                self._connect(entries, node_id)
                entries = []
                for arm in block.arms:
                    entries.extend(self._materialize(arm.body, [_Exit(node_id, arm.port)]))
                if block.else_arm is not None:
                    entries.extend(
                        self._materialize(block.else_arm.body, [_Exit(node_id, block.else_arm.port)])
                    )
                else:
                    entries.append(_Exit(node_id, ELSE_COMMAND, implicit_else=True))
                block = block.continuation
            elif isinstance(block, ChoiceBlock):
                node_id = self._require_id(block.node_id)
                options = [
                    ChoiceOption(port=option.port, text=option.text, condition=option.condition)
                    for option in block.options
                ]
                self._add_node(node_id, NodeType.CHOICE, options=options)
                self._connect(entries, node_id)
                entries = []
                for option in block.options:
                    entries.extend(self._materialize(option.body, [_Exit(node_id, option.port)]))
                block = block.continuation
            elif isinstance(block, JumpBlock):
                for exit_ in entries:
                    self.pending_jumps.append((exit_, block.label, block.line))
                return []
            elif isinstance(block, TerminalBlock):
                node_id = self._require_id(block.node_id)
                self._add_node(node_id, NodeType.END)
                self._connect(entries, node_id)
                return []
        return entries

    def _add_alias(self, section: ScriptSection, jump: JumpBlock) -> None:
        if jump.label in self.titles:
            self._add_node(section.label, NodeType.JUMP, label=section.label, target=jump.label)
            return
        self.diagnostics.append(UndefinedJumpTarget(jump.label, jump.line))
        logger.warning("line %d: jump to undefined title '%s'", jump.line, jump.label)
        self._add_node(
            section.label, NodeType.JUMP, label=section.label, target_label=jump.label
        )

    def _resolve_label(self, label: str, line: int) -> str:
        if label in self.titles:
            return label
        if not any(item.label == label and item.line == line for item in self.diagnostics):
            self.diagnostics.append(UndefinedJumpTarget(label, line))
            logger.warning("line %d: jump to undefined title '%s'", line, label)
        placeholder = f"{label}.missing"
        if placeholder not in self.nodes:
            self._add_node(placeholder, NodeType.JUMP, target_label=label)
        return placeholder

    def _connect(self, entries: list[_Exit], target: str) -> None:
        for exit_ in entries:
            if exit_.implicit_else:
                arms = self.nodes[exit_.node_id]["arms"]
                if not any(arm.kind == ArmKind.ELSE for arm in arms):
                    arms.append(ConditionArm(port=exit_.port, kind=ArmKind.ELSE))
            self.edges.append(GraphEdge(source=exit_.node_id, source_port=exit_.port, target=target))

    def _add_node(self, node_id: str, node_type: NodeType, **fields: object) -> None:
        self.nodes[node_id] = {"id": node_id, "type": node_type, **fields}

    @staticmethod
    def _require_id(node_id: str | None) -> str:
        if node_id is None:
            msg = "parsed block is missing a node id"
            raise ValueError(msg)
        return node_id


def parse_script(text: str, title: str | None = None) -> GraphDocument:
    return ScriptParser().parse(text, title=title).document
