from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/repomem/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "memory_dir": "REPOMEM_MEMORY_DIR",
    "similarity_threshold": "REPOMEM_SIMILARITY_THRESHOLD",
    "topic_overlap_threshold": "REPOMEM_TOPIC_OVERLAP_THRESHOLD",
    "consolidate_min_sessions": "REPOMEM_CONSOLIDATE_MIN_SESSIONS",
    "consolidate_window_days": "REPOMEM_CONSOLIDATE_WINDOW_DAYS",
    "auto_consolidate": "REPOMEM_AUTO_CONSOLIDATE",
    "context_token_limit": "REPOMEM_CONTEXT_TOKEN_LIMIT",
    "embedding_model": "REPOMEM_EMBEDDING_MODEL",
    "embedding_disabled": "REPOMEM_EMBEDDING_DISABLED",
}

_INT_KEYS = {"consolidate_min_sessions", "consolidate_window_days", "context_token_limit"}
_FLOAT_KEYS = {"similarity_threshold", "topic_overlap_threshold"}
_BOOL_KEYS = {"auto_consolidate", "embedding_disabled"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("REPOMEM_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class RepomemConfig:
    memory_dir: str = ".repomem"

    # Heuristic cut-offs; strictly-greater-than comparisons.
    similarity_threshold: float = 0.3
    topic_overlap_threshold: float = 0.5

    consolidate_min_sessions: int = 10
    consolidate_window_days: int = 30
    auto_consolidate: bool = True
    context_token_limit: int = 1500
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_disabled: bool = False


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> RepomemConfig:
    cfg = RepomemConfig()
    try:
        data = read_config_file(path)
    except ValueError as exc:
        warnings.warn(
            f"Ignoring config file {get_config_path(path)}: {exc}", RuntimeWarning, stacklevel=2
        )
        data = {}
    cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: RepomemConfig, data: dict[str, Any]) -> RepomemConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if isinstance(value, str) and value.strip():
            setattr(cfg, key, value.strip())
    return cfg
