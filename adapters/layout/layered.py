from __future__ import annotations

from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Dict, List

from domain.models import GraphDocument, GraphNode, NodeType, Point
from domain.ports.layout import LayoutEngine


@dataclass(frozen=True)
class LayoutConfig:
    column_width: float = 280.0
    row_height: float = 200.0
    origin: Point = Point(0.0, 0.0)


class LayeredLayoutEngine(LayoutEngine):
    """Places nodes top-down by depth from the start node, arms side by side."""

    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or LayoutConfig()

    def place(
        self, document: GraphDocument, hints: Mapping[str, Point] | None = None
    ) -> dict[str, Point]:
        hints = hints or {}
        levels = self._compute_levels(document)
        level_rows: Dict[int, int] = {}
        positions: dict[str, Point] = {}
        for node_id, level in levels.items():
            row = level_rows.get(level, 0)
            level_rows[level] = row + 1
            if node_id in hints:
                positions[node_id] = hints[node_id]
                continue
            positions[node_id] = Point(
                self.config.origin.x + row * self.config.column_width,
                self.config.origin.y + level * self.config.row_height,
            )
        return positions

    def _compute_levels(self, document: GraphDocument) -> Dict[str, int]:
        nodes = document.node_map()
        adjacency = self._ordered_adjacency(document, nodes)
        levels: Dict[str, int] = {}
        if document.start_node_id in nodes:
            levels[document.start_node_id] = 0
            queue = deque([document.start_node_id])
            while queue:
                node_id = queue.popleft()
                for child in adjacency.get(node_id, []):
                    if child in levels:
                        continue
                    levels[child] = levels[node_id] + 1
                    queue.append(child)

        # Unreachable nodes go into one trailing row, in document order.
        trailing = max(levels.values(), default=-1) + 1
        for node in document.nodes:
            levels.setdefault(node.id, trailing)
        return levels

    def _ordered_adjacency(
        self, document: GraphDocument, nodes: Dict[str, GraphNode]
    ) -> Dict[str, List[str]]:
        adjacency: Dict[str, List[str]] = {}
        for source, edges in document.outgoing().items():
            node = nodes.get(source)
            if node is None:
                continue
            ports = node.ports()

            def port_rank(port: str, ports: List[str] = ports) -> int:
                return ports.index(port) if port in ports else len(ports)

            ordered = sorted(edges, key=lambda edge: port_rank(edge.source_port))
            adjacency[source] = [edge.target for edge in ordered if edge.target in nodes]
        for node in nodes.values():
            if node.type == NodeType.JUMP and node.target in nodes:
                adjacency[node.id] = [node.target]
        return adjacency
