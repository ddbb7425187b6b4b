from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from domain.errors import MalformedGraphError
from domain.models import GraphDocument, GraphNode, NodeType

EXIT = "__exit__"

Successors = Callable[[str], Iterable[str | None]]


@dataclass(frozen=True)
class GraphIndex:
    nodes: dict[str, GraphNode]
    port_targets: dict[str, dict[str, list[str]]]

    def targets(self, node_id: str, port: str) -> list[str]:
        return self.port_targets.get(node_id, {}).get(port, [])

    def successors(self, node_id: str) -> list[str | None]:
        node = self.nodes[node_id]
        if node.type == NodeType.JUMP:
            return [node.target] if node.target else []
        result: list[str | None] = []
        for port in node.ports():
            targets = self.targets(node_id, port)
            if targets:
                result.extend(targets)
            else:
                result.append(None)
        return result


@dataclass(frozen=True)
class GraphSummary:
    nodes: int
    edges: int
    reachable: int
    branch_points: int
    merge_points: int
    cycle_count: int
    node_types: dict[str, int]


def build_graph_index(document: GraphDocument) -> GraphIndex:
    nodes = document.node_map()
    port_targets: dict[str, dict[str, list[str]]] = {node_id: {} for node_id in nodes}
    for edge in document.edges:
        source = nodes.get(edge.source)
        if source is None:
            msg = f"Edge references unknown source node '{edge.source}'"
            raise MalformedGraphError(msg, node_id=edge.source)
        if edge.target not in nodes:
            msg = f"Edge from '{edge.source}' references unknown target node '{edge.target}'"
            raise MalformedGraphError(msg, node_id=edge.source)
        if edge.source_port not in source.ports():
            msg = f"Port '{edge.source_port}' is not declared by node '{edge.source}'"
            raise MalformedGraphError(msg, node_id=edge.source)
        port_targets[edge.source].setdefault(edge.source_port, []).append(edge.target)

    for node in nodes.values():
        if node.type == NodeType.JUMP and node.target and node.target not in nodes:
            msg = f"Jump node '{node.id}' targets unknown node '{node.target}'"
            raise MalformedGraphError(msg, node_id=node.id)
    return GraphIndex(nodes=nodes, port_targets=port_targets)


def reachable_nodes(start: str, successors: Successors) -> list[str]:
    order: list[str] = []
    seen: set[str] = {start}
    stack = [start]
    while stack:
        node = stack.pop()
        order.append(node)
        for succ in reversed(list(successors(node))):
            if succ is None or succ in seen:
                continue
            seen.add(succ)
            stack.append(succ)
    return order


def immediate_post_dominator(
    root: str,
    successors: Successors,
    is_boundary: Callable[[str], bool],
) -> str | None:
    edges: dict[str, set[str]] = {}
    stack = [root]
    seen = {root}
    while stack:
        node = stack.pop()
        targets: set[str] = set()
        for succ in successors(node):
            if succ is None or succ == root or is_boundary(succ):
                targets.add(EXIT)
                continue
            targets.add(succ)
            if succ not in seen:
                seen.add(succ)
                stack.append(succ)
        edges[node] = targets or {EXIT}

    # Nodes trapped in a cycle with no way out are treated as exiting.
    reverse: dict[str, set[str]] = {}
    for source, targets in edges.items():
        for target in targets:
            reverse.setdefault(target, set()).add(source)
    reaching = {EXIT}
    stack = [EXIT]
    while stack:
        node = stack.pop()
        for parent in reverse.get(node, set()):
            if parent not in reaching:
                reaching.add(parent)
                stack.append(parent)
    for node, targets in edges.items():
        if node not in reaching:
            targets.add(EXIT)

    universe = set(edges) | {EXIT}
    pdom: dict[str, set[str]] = {node: set(universe) for node in edges}
    pdom[EXIT] = {EXIT}
    order = sorted(edges)
    changed = True
    while changed:
        changed = False
        for node in order:
            updated = set.intersection(*(pdom[target] for target in edges[node])) | {node}
            if updated != pdom[node]:
                pdom[node] = updated
                changed = True

    candidates = pdom[root] - {root}
    closest = max(candidates, key=lambda node: (len(pdom[node]), node))
    return None if closest == EXIT else closest


def summarize_graph(document: GraphDocument, start_node_id: str | None = None) -> GraphSummary:
    index = build_graph_index(document)
    start = start_node_id or document.start_node_id
    adjacency: dict[str, list[str]] = {
        node_id: [succ for succ in index.successors(node_id) if succ is not None]
        for node_id in index.nodes
    }
    in_degree = {node_id: 0 for node_id in index.nodes}
    for targets in adjacency.values():
        for target in targets:
            in_degree[target] += 1
    node_types: dict[str, int] = {}
    for node in index.nodes.values():
        node_types[node.type.value] = node_types.get(node.type.value, 0) + 1
    reachable = (
        reachable_nodes(start, lambda node_id: adjacency.get(node_id, []))
        if start in index.nodes
        else []
    )
    return GraphSummary(
        nodes=len(index.nodes),
        edges=len(document.edges),
        reachable=len(reachable),
        branch_points=sum(
            1
            for node in index.nodes.values()
            if node.type in {NodeType.CONDITION, NodeType.CHOICE}
        ),
        merge_points=sum(1 for degree in in_degree.values() if degree > 1),
        cycle_count=_count_cycles(adjacency),
        node_types=node_types,
    )


def _count_cycles(adjacency: dict[str, list[str]]) -> int:
    index = 0
    indices: dict[str, int] = {}
    lowlinks: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[list[str]] = []

    def strongconnect(node: str) -> None:
        nonlocal index
        indices[node] = index
        lowlinks[node] = index
        index += 1
        stack.append(node)
        on_stack.add(node)

        for child in adjacency.get(node, []):
            if child not in indices:
                strongconnect(child)
                lowlinks[node] = min(lowlinks[node], lowlinks[child])
            elif child in on_stack:
                lowlinks[node] = min(lowlinks[node], indices[child])

        if lowlinks[node] == indices[node]:
            component: list[str] = []
            while True:
                current = stack.pop()
                on_stack.remove(current)
                component.append(current)
                if current == node:
                    break
            components.append(component)

    for node in sorted(adjacency):
        if node not in indices:
            strongconnect(node)

    cycle_count = 0
    for component in components:
        if len(component) > 1:
            cycle_count += 1
            continue
        node = component[0]
        if node in adjacency.get(node, []):
            cycle_count += 1
    return cycle_count
