from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Iterable, List

from adapters.filesystem.json_utils import file_lock, write_bytes_atomic
from domain.ports.repositories import ScriptRepository

DEFAULT_SCRIPT_SUFFIXES = (".yarn", ".txt")


class FileSystemScriptRepository(ScriptRepository):
    def __init__(self, suffixes: Sequence[str] = DEFAULT_SCRIPT_SUFFIXES) -> None:
        self.suffixes = tuple(dict.fromkeys(suffixes))

    def load_by_path(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def list_paths(self, directory: Path) -> List[Path]:
        return sorted(self._iter_paths(directory))

    def load_all_with_paths(self, directory: Path) -> List[tuple[Path, str]]:
        return [(path, self.load_by_path(path)) for path in self.list_paths(directory)]

    def save(self, script: str, path: Path) -> None:
        with file_lock(path):
            write_bytes_atomic(path, script.encode("utf-8"))

    def _iter_paths(self, directory: Path) -> Iterable[Path]:
        for suffix in self.suffixes:
            yield from directory.glob(f"*{suffix}")
