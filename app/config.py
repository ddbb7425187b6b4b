from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource, YamlConfigSettingsSource

from adapters.layout.layered import LayoutConfig
from domain.models import NodeType, Point, Size
from domain.services.resolve_collisions import DEFAULT_NODE_SIZES, CollisionConfig

DEFAULT_CONFIG_PATH = Path("config/convertor/app.yaml")
CONFIG_PATH_ENV = "DGC_CONFIG_PATH"


class SizeSettings(BaseModel):
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class LayoutSettings(BaseModel):
    column_width: float = Field(default=280.0, gt=0)
    row_height: float = Field(default=200.0, gt=0)
    origin_x: float = 0.0
    origin_y: float = 0.0

    def to_layout_config(self) -> LayoutConfig:
        return LayoutConfig(
            column_width=self.column_width,
            row_height=self.row_height,
            origin=Point(self.origin_x, self.origin_y),
        )


class CollisionSettings(BaseModel):
    margin: float = Field(default=0.0, ge=0)
    slack: float = Field(default=1.0, ge=0)
    max_iterations: int = Field(default=100, ge=1)
    node_sizes: dict[NodeType, SizeSettings] = Field(default_factory=dict)

    def to_collision_config(self) -> CollisionConfig:
        sizes = dict(DEFAULT_NODE_SIZES)
        for node_type, size in self.node_sizes.items():
            sizes[node_type] = Size(size.width, size.height)
        return CollisionConfig(
            node_sizes=sizes,
            margin=self.margin,
            slack=self.slack,
            max_iterations=self.max_iterations,
        )


class ScriptSettings(BaseModel):
    indent: int = Field(default=4, ge=0, le=8)
    suffix: str = ".yarn"

    @field_validator("suffix", mode="after")
    @classmethod
    def normalize_suffix(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return ".yarn"
        return value if value.startswith(".") else f".{value}"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DGC_", env_nested_delimiter="__")

    log_level: str = "INFO"
    layout: LayoutSettings = LayoutSettings()
    collision: CollisionSettings = CollisionSettings()
    script: ScriptSettings = ScriptSettings()

    _yaml_path: ClassVar[Path | None] = None

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: object) -> str:
        level = str(value or "INFO").strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            msg = f"Unknown log level: {value}"
            raise ValueError(msg)
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        ]
        if cls._yaml_path:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_path))
        return tuple(sources)


def resolve_config_path(config_path: Path | None = None) -> Path | None:
    """Explicit path first, then $DGC_CONFIG_PATH, then the bundled default file."""
    if config_path is None:
        env_path = os.getenv(CONFIG_PATH_ENV)
        if not env_path:
            return DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None
        config_path = Path(env_path)
    if not config_path.is_file():
        msg = f"Config file not found: {config_path}"
        raise FileNotFoundError(msg)
    return config_path


def load_settings(config_path: Path | None = None) -> AppSettings:
    yaml_path = resolve_config_path(config_path)
    previous = AppSettings._yaml_path
    AppSettings._yaml_path = yaml_path
    try:
        return AppSettings()
    finally:
        AppSettings._yaml_path = previous
