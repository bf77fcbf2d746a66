"""
Configuration Loader (``quality_config.loader``).

Responsibility
--------------
Loads the packaged ``defaults.yaml``, overlays an optional operator YAML
file and ``QUALITY_*`` environment variables, and parses the result into a
validated ``QualityConfig``.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range or non-numeric values  -> ``ValueError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from quality_config.schema import QualityConfig

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

ENV_PREFIX = "QUALITY_"

# env var suffix -> (section, key) in the YAML document
_ENV_KEYS: dict[str, tuple[str | None, str]] = {
    "DATABASE_URL": (None, "database_url"),
    "APPROVAL_QUORUM": ("approval", "quorum"),
    "MAX_WRITE_ATTEMPTS": ("concurrency", "max_write_attempts"),
    "CAPA_REVIEW_DAYS": ("capa", "review_days"),
    "ATTACHMENT_MAX_BYTES": ("attachments", "max_bytes"),
    "LOG_LEVEL": ("logging", "level"),
    "SQL_ECHO": ("logging", "sql_echo"),
    "DEFAULT_DEPARTMENT_CODE": ("departments", "default_code"),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_documents(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_documents(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    result = dict(data)
    for suffix, (section, key) in _ENV_KEYS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is None:
            continue
        value = yaml.safe_load(raw) if raw.strip() else raw
        if section is None:
            result[key] = raw if key == "database_url" else value
        else:
            result[section] = {**(result.get(section) or {}), key: value}
    return result


def _positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if result < 1:
        raise ValueError(f"{name} must be >= 1, got {result}")
    return result


def parse_config(data: Mapping[str, Any]) -> QualityConfig:
    """Parse a merged configuration document into a ``QualityConfig``."""
    approval = data.get("approval") or {}
    concurrency = data.get("concurrency") or {}
    capa = data.get("capa") or {}
    attachments = data.get("attachments") or {}
    logging_section = data.get("logging") or {}
    departments = data.get("departments") or {}

    codes = {
        str(area).strip().lower(): str(code)
        for area, code in (departments.get("codes") or {}).items()
    }
    default_code = str(departments.get("default_code") or "GEN")

    return QualityConfig(
        database_url=str(data.get("database_url") or "sqlite:///quality.db"),
        approval_quorum=_positive_int("approval.quorum", approval.get("quorum", 2)),
        max_write_attempts=_positive_int(
            "concurrency.max_write_attempts", concurrency.get("max_write_attempts", 3),
        ),
        capa_review_days=_positive_int("capa.review_days", capa.get("review_days", 7)),
        attachment_max_bytes=_positive_int(
            "attachments.max_bytes", attachments.get("max_bytes", 5 * 1024 * 1024),
        ),
        default_department_code=default_code,
        department_codes=MappingProxyType(codes),
        log_level=str(logging_section.get("level") or "INFO").upper(),
        sql_echo=bool(logging_section.get("sql_echo", False)),
    )


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> QualityConfig:
    """
    Build the runtime configuration.

    Layers, lowest precedence first: packaged defaults, the YAML file at
    ``path`` (if given), then ``QUALITY_*`` variables from ``env``
    (``os.environ`` when None).
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = merge_documents(data, load_yaml_file(Path(path)))
    data = apply_env_overrides(data, os.environ if env is None else env)
    return parse_config(data)
