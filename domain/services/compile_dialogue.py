from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from domain.models import GraphDocument
from domain.ports.layout import LayoutEngine
from domain.services.emit_script import ScriptEmitter
from domain.services.parse_script import ParsedScript, ScriptParser
from domain.services.resolve_collisions import (
    CollisionConfig,
    CollisionResolver,
    boxes_for_document,
)
from domain.services.structure_graph import structure_graph

logger = logging.getLogger(__name__)


class DialogueCompiler:
    def __init__(
        self,
        layout_engine: LayoutEngine,
        collision_config: CollisionConfig | None = None,
        indent: int = 4,
    ) -> None:
        self.layout_engine = layout_engine
        self.collision_config = collision_config or CollisionConfig()
        self.emitter = ScriptEmitter(indent=indent)

    def export_script(self, document: GraphDocument, start_node_id: str | None = None) -> str:
        program = structure_graph(document, start_node_id)
        logger.debug(
            "Structured '%s' into %d section(s)", document.title, len(program.sections)
        )
        return self.emitter.emit(program)

    def import_parsed(self, text: str, title: str | None = None) -> ParsedScript:
        parsed = ScriptParser().parse(text, title=title)
        positions = self.layout_engine.place(parsed.document, parsed.layout_hints)
        placed = parsed.document.with_positions(positions)
        document = self.resolve_layout(placed, pinned=parsed.layout_hints)
        logger.debug(
            "Imported %d node(s) and %d edge(s) into '%s'",
            len(document.nodes),
            len(document.edges),
            document.title,
        )
        return replace(parsed, document=document)

    def import_script(self, text: str, title: str | None = None) -> GraphDocument:
        return self.import_parsed(text, title=title).document

    def resolve_layout(self, document: GraphDocument, pinned: Iterable[str] = ()) -> GraphDocument:
        boxes = boxes_for_document(document, self.collision_config, pinned)
        result = CollisionResolver(self.collision_config).resolve(boxes)
        logger.debug(
            "Collision pass finished after %d pass(es), converged=%s",
            result.passes,
            result.converged,
        )
        return document.with_positions(result.positions)
