from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from domain.models import GraphDocument, NodeType, Point, Size

logger = logging.getLogger(__name__)

DEFAULT_NODE_SIZES: dict[NodeType, Size] = {
    NodeType.DIALOGUE: Size(220.0, 120.0),
    NodeType.CHOICE: Size(220.0, 160.0),
    NodeType.CONDITION: Size(220.0, 140.0),
    NodeType.JUMP: Size(160.0, 60.0),
    NodeType.START: Size(120.0, 60.0),
    NodeType.END: Size(120.0, 60.0),
}


@dataclass(frozen=True)
class CollisionConfig:
    node_sizes: dict[NodeType, Size] = field(default_factory=lambda: dict(DEFAULT_NODE_SIZES))
    margin: float = 0.0
    # Each correction leaves the pair this far apart beyond the margin.
    slack: float = 1.0
    max_iterations: int = 100
    epsilon: float = 1e-6

    def size_for(self, node_type: NodeType) -> Size:
        return self.node_sizes.get(node_type, DEFAULT_NODE_SIZES[node_type])


@dataclass(frozen=True)
class NodeBox:
    node_id: str
    position: Point
    size: Size
    pinned: bool = False


@dataclass(frozen=True)
class CollisionResult:
    positions: dict[str, Point]
    passes: int
    converged: bool


class CollisionResolver:
    def __init__(self, config: CollisionConfig | None = None) -> None:
        self.config = config or CollisionConfig()

    def resolve(self, boxes: Iterable[NodeBox]) -> CollisionResult:
        by_id = {box.node_id: box for box in boxes}
        positions = {node_id: box.position for node_id, box in by_id.items()}
        if len(by_id) < 2:
            return CollisionResult(positions=positions, passes=0, converged=True)

        order = sorted(by_id)
        for pass_no in range(1, self.config.max_iterations + 1):
            moved = False
            for idx, first in enumerate(order):
                for second in order[idx + 1 :]:
                    if self._separate(by_id[first], by_id[second], positions):
                        moved = True
            if not moved:
                # Only pinned pairs can still overlap here.
                converged = not self._has_overlap(order, by_id, positions)
                return CollisionResult(positions=positions, passes=pass_no, converged=converged)

        converged = not self._has_overlap(order, by_id, positions)
        if not converged:
            logger.warning(
                "Collision resolution stopped after %d passes with overlaps remaining",
                self.config.max_iterations,
            )
        return CollisionResult(
            positions=positions, passes=self.config.max_iterations, converged=converged
        )

    def _overlap(
        self, first: NodeBox, second: NodeBox, positions: dict[str, Point]
    ) -> tuple[float, float]:
        a = positions[first.node_id]
        b = positions[second.node_id]
        margin = self.config.margin
        overlap_x = (
            min(a.x + first.size.width, b.x + second.size.width) - max(a.x, b.x) + margin
        )
        overlap_y = (
            min(a.y + first.size.height, b.y + second.size.height) - max(a.y, b.y) + margin
        )
        return overlap_x, overlap_y

    def _separate(self, first: NodeBox, second: NodeBox, positions: dict[str, Point]) -> bool:
        overlap_x, overlap_y = self._overlap(first, second, positions)
        eps = self.config.epsilon
        if overlap_x <= eps or overlap_y <= eps:
            return False
        if first.pinned and second.pinned:
            return False

        a = positions[first.node_id]
        b = positions[second.node_id]
        if overlap_x <= overlap_y:
            shift = overlap_x + self.config.slack
            center_a = a.x + first.size.width / 2
            center_b = b.x + second.size.width / 2
        else:
            shift = overlap_y + self.config.slack
            center_a = a.y + first.size.height / 2
            center_b = b.y + second.size.height / 2
        # Ties push the lower id (always ``first``) towards negative coordinates.
        direction = 1.0 if center_a > center_b else -1.0

        if first.pinned:
            move_a, move_b = 0.0, shift
        elif second.pinned:
            move_a, move_b = shift, 0.0
        else:
            move_a = move_b = shift / 2

        if overlap_x <= overlap_y:
            positions[first.node_id] = Point(a.x + direction * move_a, a.y)
            positions[second.node_id] = Point(b.x - direction * move_b, b.y)
        else:
            positions[first.node_id] = Point(a.x, a.y + direction * move_a)
            positions[second.node_id] = Point(b.x, b.y - direction * move_b)
        return True

    def _has_overlap(
        self, order: list[str], by_id: dict[str, NodeBox], positions: dict[str, Point]
    ) -> bool:
        eps = self.config.epsilon
        for idx, first in enumerate(order):
            for second in order[idx + 1 :]:
                overlap_x, overlap_y = self._overlap(by_id[first], by_id[second], positions)
                if overlap_x > eps and overlap_y > eps:
                    return True
        return False


def resolve_collisions(
    boxes: Iterable[NodeBox], config: CollisionConfig | None = None
) -> dict[str, Point]:
    return CollisionResolver(config).resolve(boxes).positions


def boxes_for_document(
    document: GraphDocument,
    config: CollisionConfig | None = None,
    pinned: Iterable[str] = (),
) -> list[NodeBox]:
    config = config or CollisionConfig()
    pinned_ids = set(pinned)
    return [
        NodeBox(
            node_id=node.id,
            position=node.position,
            size=config.size_for(node.type),
            pinned=node.id in pinned_ids,
        )
        for node in document.nodes
    ]
