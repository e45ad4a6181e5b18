"""
sgdea_config -- single public entrypoint for workflow core configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  It loads the shipped ``defaults.yaml``, overlays an
    optional override file and returns a validated, frozen
    ``WorkflowCoreConfig``.

Architecture position:
    Configuration layer.  Sits above ``sgdea_kernel`` and below
    ``sgdea_services``.  The kernel and the engines MUST NEVER import from
    here; the services translate config into engine inputs.

Failure modes:
    - ``FileNotFoundError`` -- override path does not exist.
    - ``ValueError`` -- unknown keys or invalid values.
    - ``yaml.YAMLError`` -- malformed YAML.

Every successful call emits a ``config_loaded`` log record with the
source files and the checksum of the merged data.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from sgdea_config.loader import load_yaml_file, merge_config, parse_config
from sgdea_config.schema import (
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

_logger = logging.getLogger("sgdea.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "SGDEA_CONFIG"


def get_active_config(path: Path | str | None = None) -> WorkflowCoreConfig:
    """Load defaults, overlay ``path`` (or $SGDEA_CONFIG) and validate."""
    data = load_yaml_file(DEFAULTS_PATH)
    sources = [str(DEFAULTS_PATH)]

    override = path if path is not None else os.environ.get(CONFIG_ENV_VAR)
    if override:
        override_path = Path(override)
        if not override_path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {override_path}")
        data = merge_config(data, load_yaml_file(override_path))
        sources.append(str(override_path))

    config = parse_config(data)

    _logger.info(
        "config_loaded",
        extra={
            "sources": sources,
            "checksum": config.checksum,
            "indexing_mode": config.indexing.mode,
            "two_factor_enforced": config.two_factor.enforce,
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULTS_PATH",
    "AuditConfig",
    "AuthorizationConfig",
    "DatabaseConfig",
    "DeadlineConfig",
    "IndexingConfig",
    "NotificationConfig",
    "RetentionConfig",
    "TwoFactorConfig",
    "WorkflowCoreConfig",
    "get_active_config",
]
