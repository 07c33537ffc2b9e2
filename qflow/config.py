"""Engine configuration (defaults in code, overrides from TOML)."""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class EngineConfig:
    auto_rollback: bool = True
    max_history_size: int = 1000
    strict_mode: bool = True  # adds the dignity protection layer
    max_attempts: int = 3
    timeout_ms: int = 30000
    event_history_size: int = 1000

    def __post_init__(self) -> None:
        if self.max_history_size < 1:
            raise ValueError("max_history_size must be a positive integer")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be a positive integer")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.event_history_size < 0:
            raise ValueError("event_history_size must not be negative")


_BOOL_KEYS = {"auto_rollback", "strict_mode"}


def config_from_dict(data: dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from a mapping; unknown keys are ignored."""
    known = {f.name for f in fields(EngineConfig)}
    values: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            continue
        if key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
        elif isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{key} must be an integer")
        values[key] = value
    return EngineConfig(**values)


def load_config(path: Path) -> EngineConfig:
    """
    Load engine configuration from TOML.

    Settings live under a `[qflow]` table; a missing table yields defaults.
    """
    import tomllib

    data = tomllib.loads(path.read_text(encoding="utf-8"))
    section = data.get("qflow", {})
    if not isinstance(section, dict):
        raise ValueError("[qflow] must be a table")
    return config_from_dict(section)
