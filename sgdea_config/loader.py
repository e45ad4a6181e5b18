"""
Configuration Loader (``sgdea_config.loader``).

Responsibility
--------------
Loads YAML files, overlays them on the shipped defaults and parses the
result into the frozen dataclasses of ``sgdea_config.schema``.  Runtime
callers go through ``sgdea_config.get_active_config()``.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` with the offending key path.
* Unknown top-level sections and unknown keys inside a section are
  rejected, so a typo never silently falls back to a default.
* ``compute_checksum`` is deterministic for identical merged data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from sgdea_config.schema import (
    INDEXING_MODES,
    PRIORITIES,
    AuditConfig,
    AuthorizationConfig,
    DatabaseConfig,
    DeadlineConfig,
    IndexingConfig,
    NotificationConfig,
    RetentionConfig,
    TwoFactorConfig,
    WorkflowCoreConfig,
)

_SECTIONS: dict[str, type] = {
    "authorization": AuthorizationConfig,
    "audit": AuditConfig,
    "indexing": IndexingConfig,
    "notifications": NotificationConfig,
    "two_factor": TwoFactorConfig,
    "retention": RetentionConfig,
    "deadlines": DeadlineConfig,
    "database": DatabaseConfig,
}

_ENTITY_KINDS = ("document", "case_file", "contract")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``override`` on ``base`` one section deep (lists are replaced)."""
    merged = {key: dict(value) for key, value in base.items()}
    for section, values in override.items():
        if not isinstance(values, dict):
            raise ValueError(f"{section}: section must be a mapping")
        merged.setdefault(section, {}).update(values)
    return merged


def _parse_section(name: str, data: dict[str, Any]):
    cls = _SECTIONS[name]
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"{name}: unknown key(s) {', '.join(sorted(unknown))}")
    kwargs = {}
    for key, value in data.items():
        if isinstance(value, list):
            value = tuple(value)
        kwargs[key] = value
    return cls(**kwargs)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValueError(message)


def _validate(config: WorkflowCoreConfig) -> None:
    auth = config.authorization
    _require(bool(auth.super_admin_role), "authorization.super_admin_role must be set")
    _require(
        all(isinstance(r, str) and r for r in auth.admin_roles),
        "authorization.admin_roles must be non-empty strings",
    )

    _require(
        config.indexing.mode in INDEXING_MODES,
        f"indexing.mode must be one of {', '.join(INDEXING_MODES)}",
    )
    _require(
        all(k in _ENTITY_KINDS for k in config.indexing.governed_kinds),
        f"indexing.governed_kinds entries must be in {', '.join(_ENTITY_KINDS)}",
    )
    _require(
        isinstance(config.indexing.max_attempts, int) and config.indexing.max_attempts >= 1,
        "indexing.max_attempts must be a positive integer",
    )
    _require(
        config.notifications.default_priority in PRIORITIES,
        f"notifications.default_priority must be one of {', '.join(PRIORITIES)}",
    )
    _require(
        isinstance(config.two_factor.session_lifetime_minutes, int)
        and config.two_factor.session_lifetime_minutes > 0,
        "two_factor.session_lifetime_minutes must be a positive integer",
    )
    _require(
        isinstance(config.retention.completed_instance_days, int)
        and config.retention.completed_instance_days >= 1,
        "retention.completed_instance_days must be a positive integer",
    )
    window = config.deadlines.reminder_window_hours
    _require(
        isinstance(window, int) and not isinstance(window, bool) and window >= 1,
        "deadlines.reminder_window_hours must be a positive integer",
    )
    _require(bool(config.database.url), "database.url must be set")


def parse_config(data: dict[str, Any]) -> WorkflowCoreConfig:
    """Parse and validate merged configuration data."""
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"unknown configuration section(s): {', '.join(sorted(unknown))}")

    sections = {name: _parse_section(name, data.get(name) or {}) for name in _SECTIONS}
    config = WorkflowCoreConfig(**sections, checksum=compute_checksum(data))
    _validate(config)
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
