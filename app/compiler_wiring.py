from __future__ import annotations

from adapters.filesystem.script_repository import (
    DEFAULT_SCRIPT_SUFFIXES,
    FileSystemScriptRepository,
)
from adapters.layout.layered import LayeredLayoutEngine
from app.config import AppSettings
from domain.ports.repositories import ScriptRepository
from domain.services.compile_dialogue import DialogueCompiler


def build_compiler(settings: AppSettings) -> DialogueCompiler:
    return DialogueCompiler(
        LayeredLayoutEngine(settings.layout.to_layout_config()),
        collision_config=settings.collision.to_collision_config(),
        indent=settings.script.indent,
    )


def build_script_repository(settings: AppSettings) -> ScriptRepository:
    return FileSystemScriptRepository(suffixes=(settings.script.suffix, *DEFAULT_SCRIPT_SUFFIXES))
