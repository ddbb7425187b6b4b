from __future__ import annotations

from pathlib import Path
from typing import List

from adapters.filesystem.json_utils import file_lock, load_json, write_json_atomic
from domain.models import GraphDocument
from domain.ports.repositories import GraphRepository


class FileSystemGraphRepository(GraphRepository):
    def load_by_path(self, path: Path) -> GraphDocument:
        return GraphDocument.model_validate(load_json(path))

    def list_paths(self, directory: Path) -> List[Path]:
        return sorted(directory.glob("*.json"))

    def load_all_with_paths(self, directory: Path) -> List[tuple[Path, GraphDocument]]:
        return [(path, self.load_by_path(path)) for path in self.list_paths(directory)]

    def save(self, document: GraphDocument, path: Path) -> None:
        with file_lock(path):
            write_json_atomic(path, document.to_payload())
