from __future__ import annotations

import pytest

from domain.errors import MalformedGraphError
from domain.services.graph_analysis import (
    build_graph_index,
    immediate_post_dominator,
    reachable_nodes,
    summarize_graph,
)
from tests.helpers.graph_fixtures import (
    condition,
    end,
    jump,
    line,
    load_graph_fixture,
    make_document,
    start,
)


def _successors(adjacency: dict[str, list[str | None]]):
    return lambda node_id: adjacency.get(node_id, [])


def test_index_rejects_unknown_edge_target() -> None:
    document = make_document([start(), line("a", "Hi")], [("start", "a"), ("a", "ghost")])

    with pytest.raises(MalformedGraphError) as excinfo:
        build_graph_index(document)

    assert excinfo.value.node_id == "a"
    assert "ghost" in str(excinfo.value)


def test_index_rejects_undeclared_port() -> None:
    document = make_document([start(), line("a", "Hi")], [("start", "option_1", "a")])

    with pytest.raises(MalformedGraphError, match="not declared"):
        build_graph_index(document)


def test_index_rejects_unknown_jump_target() -> None:
    document = make_document([start(), jump("j", target="nowhere")], [("start", "j")])

    with pytest.raises(MalformedGraphError) as excinfo:
        build_graph_index(document)

    assert excinfo.value.node_id == "j"


def test_successors_mark_missing_ports() -> None:
    document = make_document(
        [start(), condition("c", "$x"), line("a", "Hi")],
        [("start", "c"), ("c", "if", "a")],
    )
    index = build_graph_index(document)

    assert index.successors("c") == ["a", None]
    assert index.successors("a") == [None]


def test_post_dominator_of_diamond_is_merge_node() -> None:
    successors = _successors({"c": ["x", "y"], "x": ["m"], "y": ["m"], "m": [None]})

    assert immediate_post_dominator("c", successors, lambda _: False) == "m"


def test_post_dominator_is_none_when_an_arm_exits() -> None:
    successors = _successors({"c": ["x", None], "x": ["m"], "m": [None]})

    assert immediate_post_dominator("c", successors, lambda _: False) is None


def test_post_dominator_respects_boundary_nodes() -> None:
    successors = _successors({"c": ["x", "y"], "x": ["m"], "y": ["m"], "m": [None]})

    assert immediate_post_dominator("c", successors, lambda node: node == "m") is None


def test_post_dominator_picks_nearest_candidate() -> None:
    successors = _successors(
        {"c": ["x", "y"], "x": ["m1"], "y": ["m1"], "m1": ["m2"], "m2": [None]}
    )

    assert immediate_post_dominator("c", successors, lambda _: False) == "m1"


def test_post_dominator_tolerates_inner_cycles_without_exit() -> None:
    successors = _successors({"c": ["x", "y"], "x": ["x2"], "x2": ["x"], "y": ["m"], "m": [None]})

    assert immediate_post_dominator("c", successors, lambda _: False) is None


def test_reachable_nodes_follow_successor_order() -> None:
    successors = _successors({"a": ["b", "c"], "b": ["d"], "c": [None], "d": ["a"]})

    assert reachable_nodes("a", successors) == ["a", "b", "d", "c"]


def test_summary_counts_cycles_and_branches() -> None:
    summary = summarize_graph(load_graph_fixture("potion_shop.json"))

    assert summary.nodes == 6
    assert summary.edges == 6
    assert summary.reachable == 6
    assert summary.branch_points == 1
    assert summary.cycle_count == 1
    assert summary.merge_points == 1
    assert summary.node_types["dialogue"] == 3


def test_summary_reports_unreachable_nodes() -> None:
    document = make_document(
        [start(), line("a", "Hi"), line("orphan", "Nobody hears me"), end()],
        [("start", "a"), ("a", "end")],
    )

    summary = summarize_graph(document)

    assert summary.reachable == 3
    assert summary.cycle_count == 0
