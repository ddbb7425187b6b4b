from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from domain.models import GraphDocument, Point


class LayoutEngine(Protocol):
    def place(
        self, document: GraphDocument, hints: Mapping[str, Point] | None = None
    ) -> dict[str, Point]:
        ...
