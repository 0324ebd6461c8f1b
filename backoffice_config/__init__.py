"""
backoffice_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain configuration at
    runtime.  It reads a YAML set (``sets/default.yaml`` unless a path is
    given), applies the BACKOFFICE_* environment overrides, validates every
    section, and returns a frozen ``BackofficeConfig``.

Architecture position:
    Configuration -- sits above ``backoffice_kernel`` and below
    ``backoffice_services`` / ``backoffice_modules``.  The kernel never
    imports from here; services receive plain values.

Failure modes:
    - ``FileNotFoundError`` -- the requested YAML file does not exist.
    - ``ConfigurationError`` -- malformed YAML, missing sections, unknown
      keys, or invalid values.

Audit relevance:
    Every successful call logs ``BACKOFFICE_CONFIG_TRACE`` with the
    configuration name and checksum (secrets excluded from the checksum).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from backoffice_config.loader import apply_env_overrides, load_yaml_file, parse_config
from backoffice_config.schema import (
    BackofficeConfig,
    CodeConfig,
    DatabaseConfig,
    IdentityConfig,
    LoggingConfig,
    WorkflowConfig,
)
from backoffice_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> BackofficeConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to sets/default.yaml.
        environ: Environment mapping for overrides.  Defaults to os.environ.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    data = apply_env_overrides(
        load_yaml_file(path), os.environ if environ is None else environ
    )
    config = parse_config(data)
    logger.info(
        "BACKOFFICE_CONFIG_TRACE",
        extra={"config_name": config.name, "checksum": config.checksum, "path": str(path)},
    )
    return config


__all__ = [
    "BackofficeConfig",
    "CodeConfig",
    "DatabaseConfig",
    "IdentityConfig",
    "LoggingConfig",
    "WorkflowConfig",
    "get_active_config",
]
