from __future__ import annotations

import logging
import re
from dataclasses import dataclass

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
from domain.errors import MalformedGraphError, UnstructurableGraphError
from domain.models import DEFAULT_PORT, ArmKind, GraphDocument, GraphNode, NodeType
from domain.services.graph_analysis import (
    GraphIndex,
    build_graph_index,
    immediate_post_dominator,
    reachable_nodes,
)

logger = logging.getLogger(__name__)

_INVALID_LABEL_CHARS = re.compile(r"[^A-Za-z0-9_]")


@dataclass(frozen=True)
class _Region:
    block: Block | None
    falls_through: bool = False
    dead_end: bool = False


class BlockStructurer:
    def __init__(self, document: GraphDocument, start_node_id: str | None = None) -> None:
        self.document = document
        self.start_node_id = start_node_id or document.start_node_id

    def structure(self) -> ScriptProgram:
        index = build_graph_index(self.document)
        if self.start_node_id not in index.nodes:
            msg = f"Start node '{self.start_node_id}' does not exist"
            raise MalformedGraphError(msg, node_id=self.start_node_id)

        labels = [self.start_node_id]
        for _ in range(len(index.nodes) + 1):
            run = _StructuringRun(index, labels, allocate_labels(index, labels))
            program = run.build()
            discovered = [node_id for node_id in run.requested if node_id not in labels]
            if not discovered:
                self._warn_unreachable(index)
                return program
            logger.debug("Promoting nodes to labelled sections: %s", ", ".join(discovered))
            labels = labels + discovered
        msg = "label discovery did not settle"
        raise UnstructurableGraphError(self.start_node_id, msg)

    def _warn_unreachable(self, index: GraphIndex) -> None:
        reachable = set(reachable_nodes(self.start_node_id, index.successors))
        skipped = sorted(node_id for node_id in index.nodes if node_id not in reachable)
        if skipped:
            logger.warning(
                "Skipping %d node(s) unreachable from '%s': %s",
                len(skipped),
                self.start_node_id,
                ", ".join(skipped),
            )


def structure_graph(document: GraphDocument, start_node_id: str | None = None) -> ScriptProgram:
    return BlockStructurer(document, start_node_id).structure()


def allocate_labels(index: GraphIndex, labels: list[str]) -> dict[str, str]:
    taken: set[str] = {
        node.target_label
        for node in index.nodes.values()
        if node.type == NodeType.JUMP and not node.target and node.target_label
    }
    names: dict[str, str] = {}
    # Explicit labels win over names derived from ids.
    for node_id in labels:
        label = index.nodes[node_id].label
        if label and label not in taken:
            names[node_id] = label
            taken.add(label)
    for node_id in labels:
        if node_id in names:
            continue
        base = index.nodes[node_id].label or sanitize_label(node_id)
        candidate = base
        suffix = 2
        while candidate in taken:
            candidate = f"{base}_{suffix}"
            suffix += 1
        names[node_id] = candidate
        taken.add(candidate)
    return names


def sanitize_label(value: str) -> str:
    label = _INVALID_LABEL_CHARS.sub("_", value.strip())
    if not label:
        return "node"
    if not (label[0].isalpha() or label[0] == "_"):
        label = f"n_{label}"
    return label


class _StructuringRun:
    def __init__(self, index: GraphIndex, labels: list[str], names: dict[str, str]) -> None:
        self.index = index
        self.labels = labels
        self.label_set = set(labels)
        self.names = names
        self.emitted: set[str] = set()
        self.requested: list[str] = []

    def build(self) -> ScriptProgram:
        sections = []
        for node_id in self.labels:
            region = self._sequence(node_id, stop_at=None, head=node_id)
            sections.append(
                ScriptSection(label=self._name(node_id), body=region.block, node_id=node_id)
            )
        return ScriptProgram(sections=tuple(sections))

    def _sequence(self, node_id: str | None, stop_at: str | None, head: str | None = None) -> _Region:
        lines: list[ScriptLine] = []
        current = node_id
        tail: Block | None = None
        falls_through = False
        dead_end = False
        while True:
            if current is None:
                tail = TerminalBlock()
                dead_end = True
                break
            if current == stop_at:
                falls_through = True
                break
            node = self.index.nodes[current]
            if current in self.label_set and current != head:
                tail = self._jump_to(current)
                break
            head = None
            if node.type == NodeType.JUMP:
                tail = self._explicit_jump(node)
                break
            if current in self.emitted:
                self._request(current)
                tail = self._jump_to(current)
                break
            self.emitted.add(current)

            if node.type == NodeType.START:
                current = self._port_target(node, DEFAULT_PORT)
            elif node.type == NodeType.DIALOGUE:
                lines.append(
                    ScriptLine(
                        node_id=node.id,
                        text=node.text or "",
                        speaker=node.speaker,
                        set_flags=tuple(node.set_flags),
                    )
                )
                current = self._port_target(node, DEFAULT_PORT)
            elif node.type == NodeType.END:
                tail = TerminalBlock(node_id=node.id)
                break
            else:
                region = self._branch(node, stop_at)
                tail = region.block
                falls_through = region.falls_through
                dead_end = region.dead_end
                break

        block: Block | None = LinearBlock(lines=tuple(lines), next=tail) if lines else tail
        return _Region(block=block, falls_through=falls_through, dead_end=dead_end)

    def _branch(self, node: GraphNode, stop_at: str | None) -> _Region:
        if node.type == NodeType.CONDITION and not node.arms:
            raise UnstructurableGraphError(node.id, "condition node has no arms")
        if node.type == NodeType.CHOICE and not node.options:
            raise UnstructurableGraphError(node.id, "choice node has no options")

        continuation = immediate_post_dominator(
            node.id,
            self._region_successors,
            lambda candidate: (
                candidate in self.label_set or candidate in self.emitted or candidate == stop_at
            ),
        )
        arm_stop = continuation if continuation is not None else stop_at
        regions: list[_Region] = []

        if node.type == NodeType.CONDITION:
            arms: list[ConditionalArm] = []
            else_arm: ConditionalArm | None = None
            for arm in node.arms:
                region = self._sequence(self._port_target(node, arm.port), arm_stop)
                regions.append(region)
                built = ConditionalArm(
                    port=arm.port, kind=arm.kind, expression=arm.expression, body=region.block
                )
                if arm.kind == ArmKind.ELSE:
                    else_arm = built
                else:
                    arms.append(built)
            dead_end = else_arm is None or any(region.dead_end for region in regions)
            block: Block = ConditionalBlock(node_id=node.id, arms=tuple(arms), else_arm=else_arm)
        else:
            options: list[ChoiceArm] = []
            for option in node.options:
                region = self._sequence(self._port_target(node, option.port), arm_stop)
                regions.append(region)
                options.append(
                    ChoiceArm(
                        port=option.port,
                        text=option.text,
                        condition=option.condition,
                        body=region.block,
                    )
                )
            dead_end = any(region.dead_end for region in regions)
            block = ChoiceBlock(node_id=node.id, options=tuple(options))

        if continuation is None:
            falls_through = any(region.falls_through for region in regions)
            return _Region(block=block, falls_through=falls_through, dead_end=dead_end)

        if dead_end:
            msg = f"an arm ends before reconverging at '{continuation}'"
            raise UnstructurableGraphError(node.id, msg)
        rest = self._sequence(continuation, stop_at)
        if isinstance(block, ConditionalBlock):
            block = ConditionalBlock(
                node_id=block.node_id,
                arms=block.arms,
                else_arm=block.else_arm,
                continuation=rest.block,
            )
        else:
            block = ChoiceBlock(node_id=block.node_id, options=block.options, continuation=rest.block)
        return _Region(block=block, falls_through=rest.falls_through, dead_end=rest.dead_end)

    def _region_successors(self, node_id: str) -> list[str | None]:
        node = self.index.nodes[node_id]
        if node.type in {NodeType.JUMP, NodeType.END}:
            return []
        successors = self.index.successors(node_id)
        if node.type == NodeType.CONDITION and node.else_arm() is None:
            successors.append(None)
        return successors

    def _port_target(self, node: GraphNode, port: str) -> str | None:
        targets = self.index.targets(node.id, port)
        if len(targets) > 1:
            msg = f"port '{port}' has {len(targets)} outgoing edges"
            raise UnstructurableGraphError(node.id, msg)
        return targets[0] if targets else None

    def _explicit_jump(self, node: GraphNode) -> JumpBlock:
        if node.target:
            self._request(node.target)
            return self._jump_to(node.target)
        return JumpBlock(label=node.target_label or sanitize_label(node.id), target_id=None)

    def _jump_to(self, node_id: str) -> JumpBlock:
        return JumpBlock(label=self._name(node_id), target_id=node_id)

    def _request(self, node_id: str) -> None:
        if node_id not in self.label_set and node_id not in self.requested:
            self.requested.append(node_id)

    def _name(self, node_id: str) -> str:
        return self.names.get(node_id) or sanitize_label(node_id)
