from __future__ import annotations

from collections import deque

from domain.models import DEFAULT_PORT, GraphDocument, GraphNode, NodeType

Reference = int | tuple[str, ...] | None


def graph_signature(document: GraphDocument, start_node_id: str | None = None) -> tuple:
    """Canonical shape of the graph reachable from the start node.

    Ids, labels and positions are ignored. Jump and start nodes are followed
    transparently, so a jump edge and a direct edge compare equal.
    """
    nodes = document.node_map()
    port_targets: dict[tuple[str, str], list[str]] = {}
    for edge in document.edges:
        port_targets.setdefault((edge.source, edge.source_port), []).append(edge.target)

    numbering: dict[str, int] = {}
    queue: deque[str] = deque()

    def follow(node_id: str | None) -> Reference:
        seen: set[str] = set()
        while node_id is not None:
            if node_id in seen:
                return ("jump_cycle",)
            seen.add(node_id)
            node = nodes.get(node_id)
            if node is None:
                return ("missing", node_id)
            if node.type == NodeType.JUMP:
                if node.target is None:
                    return ("dangling", node.target_label or "")
                node_id = node.target
                continue
            if node.type == NodeType.START:
                targets = port_targets.get((node_id, DEFAULT_PORT), [])
                node_id = targets[0] if targets else None
                continue
            if node_id not in numbering:
                numbering[node_id] = len(numbering)
                queue.append(node_id)
            return numbering[node_id]
        return None

    def port(node: GraphNode, name: str) -> tuple[Reference, ...]:
        return tuple(follow(target) for target in port_targets.get((node.id, name), []))

    root = follow(start_node_id or document.start_node_id)
    entries: list[tuple] = []
    while queue:
        node = nodes[queue.popleft()]
        if node.type == NodeType.DIALOGUE:
            flags = tuple((flag.flag, flag.operator.value, flag.value) for flag in node.set_flags)
            entries.append(("dialogue", node.speaker, node.text, flags, port(node, DEFAULT_PORT)))
        elif node.type == NodeType.CONDITION:
            arms = tuple(
                (arm.kind.value, arm.expression, port(node, arm.port)) for arm in node.arms
            )
            entries.append(("condition", arms))
        elif node.type == NodeType.CHOICE:
            options = tuple(
                (option.text, option.condition, port(node, option.port))
                for option in node.options
            )
            entries.append(("choice", options))
        else:
            entries.append((node.type.value,))
    return (root, tuple(entries))


def graphs_equivalent(
    first: GraphDocument,
    second: GraphDocument,
    first_start: str | None = None,
    second_start: str | None = None,
) -> bool:
    return graph_signature(first, first_start) == graph_signature(second, second_start)
