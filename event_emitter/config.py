"""Emitter configuration loading."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel


def load_yaml(path: Path) -> dict[str, Any]:
    """Read an emitter config file; a missing file counts as empty."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Emitter config must be a YAML mapping: {path}")
    return data


class EmitterConfig(BaseModel):
    """Runtime knobs for an EventEmitter."""

    logger_name: str = "ee.emitter"
    log_listener_errors: bool = True
    capture_waiter_stack: bool = True
    diagnostics_path: Path | None = None

    @classmethod
    def from_yaml(cls, path: Path) -> EmitterConfig:
        """Build config from a YAML file, top-level or under an `emitter:` key."""
        data = load_yaml(path)
        section = data.get("emitter", data)
        if not isinstance(section, dict):
            raise ValueError(f"'emitter' section must be a mapping: {path}")
        return cls.model_validate(section)
