# src/chorus/config_loader.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict
import yaml

from chorus.core.errors import ChorusError

STORAGE_BACKENDS = ("file", "memory")


class ConfigError(ChorusError, ValueError):
    pass


def _require(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            raise ConfigError(f"Missing config key: {dotted}")
        cur = cur[k]
    if typ is bool and not isinstance(cur, bool):
        raise ConfigError(f"'{dotted}' must be a boolean")
    if typ is str and not isinstance(cur, str):
        raise ConfigError(f"'{dotted}' must be a string")
    return cur


def _optional_section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = raw.get(key)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return section


def load_config(path: Path) -> Dict[str, Any]:
    if not path or not Path(path).exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Config is not valid YAML: {path}: {e}") from e
    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Config is empty or invalid YAML: {path}")

    # Required keys, no defaults
    _require(raw, "model.provider", str)
    _require(raw, "storage.backend", str)
    _require(raw, "storage.sessions_dir", str)
    _require(raw, "runtime.stream", bool)

    backend = raw["storage"]["backend"].strip().lower()
    if backend not in STORAGE_BACKENDS:
        raise ConfigError(f"Unknown storage.backend '{backend}' (expected one of {STORAGE_BACKENDS}).")
    raw["storage"]["backend"] = backend
    # Provider ids are checked against the registry in bootstrap
    raw["model"]["provider"] = raw["model"]["provider"].strip().lower()

    model_name = raw["model"].get("name")
    if model_name is not None and not isinstance(model_name, str):
        raise ConfigError("'model.name' must be a string")

    providers = _optional_section(raw, "providers")
    for pid, pcfg in providers.items():
        if pcfg is None:
            providers[pid] = {}
            continue
        if not isinstance(pcfg, dict):
            raise ConfigError(f"'providers.{pid}' must be a mapping")
        if "params" in pcfg and not isinstance(pcfg["params"] or {}, dict):
            raise ConfigError(f"'providers.{pid}.params' must be a mapping")
        if "timeout" in pcfg and not isinstance(pcfg["timeout"], (int, float)):
            raise ConfigError(f"'providers.{pid}.timeout' must be a number")
    raw["providers"] = {str(k).lower(): v for k, v in providers.items()}

    search = _optional_section(raw, "search")
    if search and not isinstance(search.get("url"), str):
        raise ConfigError("'search.url' must be a string when search is configured")

    context = _optional_section(raw, "context")
    if context and "max_input_tokens" not in context:
        raise ConfigError("Missing config key: context.max_input_tokens")

    for key in ("secrets", "documents", "logging"):
        _optional_section(raw, key)

    # Leave paths as provided; resolve them later in bootstrap
    return raw
