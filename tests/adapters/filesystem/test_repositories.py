from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from adapters.filesystem.graph_repository import FileSystemGraphRepository
from adapters.filesystem.json_utils import load_json
from adapters.filesystem.script_repository import FileSystemScriptRepository
from domain.services.graph_equivalence import graphs_equivalent
from tests.helpers.graph_fixtures import graph_fixture_path, load_graph_fixture


def test_graph_repository_saves_and_loads(tmp_path: Path) -> None:
    repo = FileSystemGraphRepository()
    document = load_graph_fixture("city_gate.json")
    target = tmp_path / "nested" / "city_gate.json"

    repo.save(document, target)
    loaded = repo.load_by_path(target)

    assert loaded == document
    assert not target.with_suffix(".json.tmp").exists()
    assert target.read_bytes().endswith(b"\n")


def test_graph_repository_accepts_editor_edge_aliases() -> None:
    document = FileSystemGraphRepository().load_by_path(graph_fixture_path("potion_shop.json"))

    assert ("menu", "option_1", "buy") in {
        (edge.source, edge.source_port, edge.target) for edge in document.edges
    }
    assert graphs_equivalent(document, load_graph_fixture("potion_shop.json"))


def test_graph_repository_lists_json_files_sorted(tmp_path: Path) -> None:
    repo = FileSystemGraphRepository()
    repo.save(load_graph_fixture("potion_shop.json"), tmp_path / "b.json")
    repo.save(load_graph_fixture("city_gate.json"), tmp_path / "a.json")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    pairs = repo.load_all_with_paths(tmp_path)

    assert [path.name for path, _ in pairs] == ["a.json", "b.json"]
    assert pairs[0][1].title == "City gate"


def test_load_json_rejects_non_objects(tmp_path: Path) -> None:
    path = tmp_path / "list.json"
    path.write_bytes(orjson.dumps([1, 2, 3]))

    with pytest.raises(ValueError, match="JSON object"):
        load_json(path)


def test_script_repository_filters_by_suffix(tmp_path: Path) -> None:
    repo = FileSystemScriptRepository(suffixes=(".dlg", ".yarn"))
    repo.save("title: A\n---\n===\n", tmp_path / "one.dlg")
    repo.save("title: B\n---\n===\n", tmp_path / "two.yarn")
    (tmp_path / "three.txt").write_text("title: C\n---\n===\n", encoding="utf-8")

    pairs = repo.load_all_with_paths(tmp_path)

    assert [path.name for path, _ in pairs] == ["one.dlg", "two.yarn"]
    assert repo.load_by_path(tmp_path / "one.dlg") == "title: A\n---\n===\n"
