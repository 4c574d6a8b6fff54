from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import load_json

SECTIONS = (
    "segment",
    "fragments",
    "route",
    "index",
    "highlight",
    "bookmarks",
    "replace",
    "debug",
)


@dataclass(frozen=True)
class EngineConfig:
    segment: dict[str, Any] = field(default_factory=dict)
    fragments: dict[str, Any] = field(default_factory=dict)
    route: dict[str, Any] = field(default_factory=dict)
    index: dict[str, Any] = field(default_factory=dict)
    highlight: dict[str, Any] = field(default_factory=dict)
    bookmarks: dict[str, Any] = field(default_factory=dict)
    replace: dict[str, Any] = field(default_factory=dict)
    debug: dict[str, Any] = field(default_factory=dict)

    def with_overrides(self, section: str, **values: Any) -> "EngineConfig":
        """Copy with ``values`` merged into ``section``; None values are ignored."""
        if section not in SECTIONS:
            raise KeyError(section)
        merged = dict(getattr(self, section))
        merged.update({k: v for k, v in values.items() if v is not None})
        data = {name: getattr(self, name) for name in SECTIONS}
        data[section] = merged
        return EngineConfig(**data)


def load_config(config_path: str | Path | None) -> EngineConfig:
    if config_path is None:
        return EngineConfig()
    data = load_json(config_path)
    return EngineConfig(**{name: data.get(name, {}) for name in SECTIONS})
