from __future__ import annotations

from functools import cache, lru_cache
from pathlib import Path
from typing import Any

import orjson

from domain.models import GraphDocument


@lru_cache(maxsize=1)
def repo_root() -> Path:
    for parent in Path(__file__).resolve().parents:
        if (parent / "pyproject.toml").exists():
            return parent
    raise RuntimeError("Repository root not found")


def graph_fixture_path(name: str) -> Path:
    return repo_root() / "examples" / "graphs" / name


def script_fixture_path(name: str) -> Path:
    return repo_root() / "examples" / "scripts" / name


@cache
def _load_graph_cached(name: str) -> GraphDocument:
    return GraphDocument.model_validate(orjson.loads(graph_fixture_path(name).read_bytes()))


def load_graph_fixture(name: str) -> GraphDocument:
    return _load_graph_cached(name).model_copy(deep=True)


def load_script_fixture(name: str) -> str:
    return script_fixture_path(name).read_text(encoding="utf-8")


def start(node_id: str = "start") -> dict[str, Any]:
    return {"id": node_id, "type": "start"}


def line(node_id: str, text: str, speaker: str | None = None, **extra: Any) -> dict[str, Any]:
    node: dict[str, Any] = {"id": node_id, "type": "dialogue", "text": text, **extra}
    if speaker:
        node["speaker"] = speaker
    return node


def condition(node_id: str, *expressions: str, with_else: bool = True) -> dict[str, Any]:
    arms: list[dict[str, Any]] = []
    for idx, expression in enumerate(expressions):
        if idx == 0:
            arms.append({"port": "if", "kind": "if", "expression": expression})
        else:
            arms.append({"port": f"elseif_{idx}", "kind": "elseif", "expression": expression})
    if with_else:
        arms.append({"port": "else", "kind": "else"})
    return {"id": node_id, "type": "condition", "arms": arms}


def choice(node_id: str, *texts: str) -> dict[str, Any]:
    options = [{"port": f"option_{idx}", "text": text} for idx, text in enumerate(texts, start=1)]
    return {"id": node_id, "type": "choice", "options": options}


def jump(node_id: str, target: str | None = None, target_label: str | None = None) -> dict[str, Any]:
    node: dict[str, Any] = {"id": node_id, "type": "jump"}
    if target:
        node["target"] = target
    if target_label:
        node["target_label"] = target_label
    return node


def end(node_id: str = "end") -> dict[str, Any]:
    return {"id": node_id, "type": "end"}


def make_document(
    nodes: list[dict[str, Any]],
    edges: list[tuple[str, ...]],
    start_node_id: str = "start",
    title: str = "Test dialogue",
) -> GraphDocument:
    edge_payloads = []
    for edge in edges:
        if len(edge) == 2:
            source, target = edge
            port = "next"
        else:
            source, port, target = edge
        edge_payloads.append({"source": source, "source_port": port, "target": target})
    return GraphDocument.model_validate(
        {
            "title": title,
            "start_node_id": start_node_id,
            "nodes": nodes,
            "edges": edge_payloads,
        }
    )
