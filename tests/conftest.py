from __future__ import annotations

import os
from collections.abc import Callable, Generator

import pytest

from adapters.layout.layered import LayeredLayoutEngine
from app.config import AppSettings, CollisionSettings, LayoutSettings, ScriptSettings
from domain.services.compile_dialogue import DialogueCompiler


def _clear_dgc_env() -> None:
    for key in list(os.environ):
        if key.startswith("DGC_"):
            os.environ.pop(key, None)


_clear_dgc_env()


@pytest.fixture(autouse=True)
def clear_dgc_env() -> Generator[None, None, None]:
    _clear_dgc_env()
    yield
    _clear_dgc_env()


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        log_level="DEBUG",
        layout=LayoutSettings(column_width=280.0, row_height=200.0),
        collision=CollisionSettings(margin=0.0, max_iterations=50),
        script=ScriptSettings(indent=4, suffix=".yarn"),
    )


@pytest.fixture
def app_settings_factory(app_settings: AppSettings) -> Callable[..., AppSettings]:
    def _factory(**overrides: object) -> AppSettings:
        return app_settings.model_copy(update=overrides)

    return _factory


@pytest.fixture
def compiler() -> DialogueCompiler:
    return DialogueCompiler(LayeredLayoutEngine())
