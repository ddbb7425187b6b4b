from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from domain.models import GraphDocument


class GraphRepository(Protocol):
    def load_by_path(self, path: Path) -> GraphDocument: ...

    def list_paths(self, directory: Path) -> Sequence[Path]: ...

    def load_all_with_paths(self, directory: Path) -> Sequence[tuple[Path, GraphDocument]]: ...

    def save(self, document: GraphDocument, path: Path) -> None: ...


class ScriptRepository(Protocol):
    def load_by_path(self, path: Path) -> str: ...

    def list_paths(self, directory: Path) -> Sequence[Path]: ...

    def load_all_with_paths(self, directory: Path) -> Sequence[tuple[Path, str]]: ...

    def save(self, script: str, path: Path) -> None: ...
