from __future__ import annotations

from domain.blocks import (
    Block,
    ChoiceBlock,
    ConditionalBlock,
    JumpBlock,
    LinearBlock,
    ScriptLine,
    ScriptProgram,
    ScriptSection,
    TerminalBlock,
)
from domain.models import FlagAssignment
from domain.script_syntax import (
    CHOICE_COMMAND,
    ELSE_COMMAND,
    ELSEIF_COMMAND,
    ENDCHOICE_COMMAND,
    ENDIF_COMMAND,
    ESCAPE_PREFIX,
    HEADER_SEPARATOR,
    IF_COMMAND,
    JUMP_COMMAND,
    OPTION_PREFIX,
    SECTION_END,
    SET_COMMAND,
    STOP_COMMAND,
    TITLE_HEADER,
    command,
    needs_escape,
)


class ScriptEmitter:
    def __init__(self, indent: int = 4) -> None:
        if indent < 0:
            msg = "indent must be non-negative"
            raise ValueError(msg)
        self.indent = indent

    def emit(self, program: ScriptProgram) -> str:
        chunks = ["\n".join(self._section(section)) for section in program.sections]
        if not chunks:
            return ""
        return "\n\n".join(chunks) + "\n"

    def _section(self, section: ScriptSection) -> list[str]:
        lines = [f"{TITLE_HEADER}: {section.label}", HEADER_SEPARATOR]
        self._block(section.body, 0, lines)
        lines.append(SECTION_END)
        return lines

    def _block(self, block: Block | None, depth: int, out: list[str]) -> None:
        while block is not None:
            pad = " " * (self.indent * depth)
            if isinstance(block, LinearBlock):
                for line in block.lines:
                    out.append(pad + format_line(line))
                    out.extend(pad + format_set_command(flag) for flag in line.set_flags)
                block = block.next
            elif isinstance(block, ConditionalBlock):
                for idx, arm in enumerate(block.arms):
                    keyword = IF_COMMAND if idx == 0 else ELSEIF_COMMAND
                    out.append(pad + command(keyword, arm.expression))
                    self._block(arm.body, depth + 1, out)
                if block.else_arm is not None:
                    out.append(pad + command(ELSE_COMMAND))
                    self._block(block.else_arm.body, depth + 1, out)
                out.append(pad + command(ENDIF_COMMAND))
                block = block.continuation
            elif isinstance(block, ChoiceBlock):
                out.append(pad + command(CHOICE_COMMAND))
                option_pad = " " * (self.indent * (depth + 1))
                for option in block.options:
                    line = f"{OPTION_PREFIX} {option.text}"
                    if option.condition:
                        line = f"{line} {command(IF_COMMAND, option.condition)}"
                    out.append(option_pad + line)
                    self._block(option.body, depth + 2, out)
                out.append(pad + command(ENDCHOICE_COMMAND))
                block = block.continuation
            elif isinstance(block, JumpBlock):
                out.append(pad + command(JUMP_COMMAND, block.label))
                block = None
            elif isinstance(block, TerminalBlock):
                if block.node_id is not None:
                    out.append(pad + command(STOP_COMMAND))
                block = None
            else:
                msg = f"Unsupported block: {type(block).__name__}"
                raise TypeError(msg)


def format_line(line: ScriptLine) -> str:
    if line.speaker:
        return f"{line.speaker}: {line.text}"
    if needs_escape(line.text):
        return f"{ESCAPE_PREFIX}{line.text}"
    return line.text


def format_set_command(assignment: FlagAssignment) -> str:
    return command(
        SET_COMMAND, f"${assignment.flag} {assignment.operator.value} {assignment.value}"
    )


def emit_script(program: ScriptProgram, indent: int = 4) -> str:
    return ScriptEmitter(indent=indent).emit(program)
