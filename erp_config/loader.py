"""
Settings loader (``erp_config.loader``).

Responsibility
--------------
Reads an optional YAML settings file, applies ``ERP_<FIELD>`` environment
overrides and returns a validated ``ErpSettings``.

Invariants enforced
-------------------
* Unknown keys in the YAML file or in ``ERP_*`` variables naming no
  field are rejected with ``ValueError``; there are no silently ignored
  settings.
* Environment overrides win over the file; the file wins over defaults.
* ``settings_checksum`` is a deterministic SHA-256 over the canonical JSON
  form, for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Non-mapping YAML, unknown key, or value of the wrong type  -> ``ValueError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from erp_config.schema import ErpSettings
from erp_kernel.logging_config import get_logger

logger = get_logger("config.loader")

ENV_PREFIX = "ERP_"

_FIELD_TYPES: dict[str, type] = {
    f.name: type(f.default) for f in dataclasses.fields(ErpSettings)
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: settings file must contain a mapping, got {type(data).__name__}")
    return data


def _coerce(name: str, value: Any) -> Any:
    target = _FIELD_TYPES[name]
    if isinstance(value, target) and not (target is int and isinstance(value, bool)):
        return value
    if target is int:
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                pass
    elif target is float:
        if isinstance(value, (int, str)) and not isinstance(value, bool):
            try:
                return float(value)
            except ValueError:
                pass
    elif target is str:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    raise ValueError(f"Setting {name!r} expects {target.__name__}, got {value!r}")


def _env_overrides(env: Mapping[str, str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name not in _FIELD_TYPES:
            raise ValueError(f"Unknown setting in environment: {key}")
        overrides[name] = value
    return overrides


def load_settings(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> ErpSettings:
    """
    Build ``ErpSettings`` from defaults, an optional YAML file and the environment.

    Args:
        path: YAML settings file.  None means defaults plus environment only.
        env: Environment mapping; defaults to ``os.environ``.
    """
    values: dict[str, Any] = {}
    if path is not None:
        data = load_yaml_file(Path(path))
        unknown = set(data) - set(_FIELD_TYPES)
        if unknown:
            raise ValueError(f"Unknown setting(s) in {path}: {', '.join(sorted(unknown))}")
        values.update(data)

    overrides = _env_overrides(os.environ if env is None else env)
    values.update(overrides)

    settings = ErpSettings(**{name: _coerce(name, value) for name, value in values.items()})
    logger.info(
        "settings_loaded",
        extra={
            "path": str(path) if path is not None else None,
            "env_overrides": sorted(overrides),
            "checksum": settings_checksum(settings),
        },
    )
    return settings


def settings_checksum(settings: ErpSettings) -> str:
    """SHA-256 of the canonical JSON form of ``settings``."""
    canonical = json.dumps(dataclasses.asdict(settings), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
