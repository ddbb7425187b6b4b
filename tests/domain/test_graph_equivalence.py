from __future__ import annotations

from domain.models import GraphDocument
from domain.services.graph_equivalence import graph_signature, graphs_equivalent
from tests.helpers.graph_fixtures import choice, condition, end, jump, line, make_document, start


def _branching(prefix: str = "", else_text: str = "No") -> GraphDocument:
    return make_document(
        [
            start(f"{prefix}start"),
            condition(f"{prefix}cond", "$ok"),
            line(f"{prefix}yes", "Yes"),
            line(f"{prefix}no", else_text),
            end(f"{prefix}end"),
        ],
        [
            (f"{prefix}start", f"{prefix}cond"),
            (f"{prefix}cond", "if", f"{prefix}yes"),
            (f"{prefix}cond", "else", f"{prefix}no"),
            (f"{prefix}yes", f"{prefix}end"),
            (f"{prefix}no", f"{prefix}end"),
        ],
        start_node_id=f"{prefix}start",
    )


def test_ids_labels_and_positions_are_ignored() -> None:
    first = _branching()
    second = _branching(prefix="x_")
    second = second.model_copy(
        update={
            "nodes": [
                node.model_copy(update={"label": "Renamed"}) if node.id == "x_yes" else node
                for node in second.nodes
            ]
        }
    )

    assert graphs_equivalent(first, second)


def test_text_change_breaks_equivalence() -> None:
    assert not graphs_equivalent(_branching(), _branching(else_text="Nope"))


def test_shared_target_differs_from_duplicated_target() -> None:
    shared = _branching()
    duplicated = make_document(
        [
            start(),
            condition("cond", "$ok"),
            line("yes", "Yes"),
            line("no", "No"),
            end("end_a"),
            end("end_b"),
        ],
        [
            ("start", "cond"),
            ("cond", "if", "yes"),
            ("cond", "else", "no"),
            ("yes", "end_a"),
            ("no", "end_b"),
        ],
    )

    assert not graphs_equivalent(shared, duplicated)


def test_jump_node_equals_direct_edge() -> None:
    direct = make_document(
        [start(), line("a", "Hi"), line("b", "Bye")],
        [("start", "a"), ("a", "b")],
    )
    via_jump = make_document(
        [start(), line("a", "Hi"), jump("j", target="b"), line("b", "Bye")],
        [("start", "a"), ("a", "j")],
    )

    assert graphs_equivalent(direct, via_jump)


def test_dangling_jumps_compare_by_label() -> None:
    first = make_document(
        [start(), jump("j", target_label="Away")],
        [("start", "j")],
    )
    same = make_document(
        [start(), jump("other", target_label="Away")],
        [("start", "other")],
    )
    different = make_document(
        [start(), jump("j", target_label="Elsewhere")],
        [("start", "j")],
    )

    assert graph_signature(first)[0] == ("dangling", "Away")
    assert graphs_equivalent(first, same)
    assert not graphs_equivalent(first, different)


def test_jump_cycle_is_detected() -> None:
    document = make_document(
        [start(), jump("j1", target="j2"), jump("j2", target="j1")],
        [("start", "j1")],
    )

    assert graph_signature(document)[0] == ("jump_cycle",)


def test_option_order_and_conditions_matter() -> None:
    first = make_document(
        [start(), choice("c", "Left", "Right"), end()],
        [("start", "c"), ("c", "option_1", "end"), ("c", "option_2", "end")],
    )
    swapped = make_document(
        [start(), choice("c", "Right", "Left"), end()],
        [("start", "c"), ("c", "option_1", "end"), ("c", "option_2", "end")],
    )

    assert not graphs_equivalent(first, swapped)


def test_start_override_compares_subgraphs() -> None:
    document = make_document(
        [start(), line("a", "Intro"), line("b", "Body")],
        [("start", "a"), ("a", "b")],
    )
    tail = make_document([line("only", "Body")], [], start_node_id="only")

    assert not graphs_equivalent(document, tail)
    assert graphs_equivalent(document, tail, first_start="b")


def test_unreachable_nodes_are_ignored() -> None:
    base = make_document([start(), line("a", "Hi")], [("start", "a")])
    extra = make_document(
        [start(), line("a", "Hi"), line("orphan", "Nobody hears this")],
        [("start", "a")],
    )

    assert graphs_equivalent(base, extra)


def test_set_flags_are_compared() -> None:
    def document(value: str) -> GraphDocument:
        return make_document(
            [
                start(),
                line("a", "Paid.", set_flags=[{"flag": "gold", "operator": "-=", "value": value}]),
                end(),
            ],
            [("start", "a"), ("a", "end")],
        )

    assert graphs_equivalent(document("10"), document("10"))
    assert not graphs_equivalent(document("10"), document("20"))
