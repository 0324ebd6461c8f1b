"""
Configuration Loader (``backoffice_config.loader``).

Responsibility
--------------
Loads a YAML configuration file, applies environment overrides, and parses
the result into the frozen dataclasses of ``backoffice_config.schema``.
Runtime callers use ``backoffice_config.get_active_config()`` instead.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``ConfigurationError`` (wrapping ``yaml.YAMLError``).
* Missing required section or unknown key  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from backoffice_config.schema import (
    BackofficeConfig,
    CodeConfig,
    DatabaseConfig,
    IdentityConfig,
    LoggingConfig,
    WorkflowConfig,
)
from backoffice_kernel.exceptions import ConfigurationError

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "BACKOFFICE_DATABASE_URL": ("database", "url"),
    "BACKOFFICE_JWT_SECRET": ("identity", "secret"),
    "BACKOFFICE_LOG_LEVEL": ("logging", "level"),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: if the file is not valid YAML or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    return data


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``data`` with environment overrides applied."""
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in data.items()}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            merged.setdefault(section, {})[key] = value
    return merged


def compute_checksum(data: Mapping[str, Any]) -> str:
    """Deterministic SHA-256 of the parsed configuration, secrets excluded."""
    redacted = {
        section: (
            {k: v for k, v in values.items() if k != "secret"}
            if isinstance(values, dict) else values
        )
        for section, values in data.items()
    }
    canonical = json.dumps(redacted, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _parse_section(cls, section: str, raw: Any):
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{section}': {sorted(unknown)}")
    try:
        return cls(**raw)
    except TypeError as exc:
        raise ConfigurationError(f"Section '{section}': {exc}") from exc


def parse_config(data: Mapping[str, Any]) -> BackofficeConfig:
    """Parse a loaded (and overridden) mapping into a BackofficeConfig."""
    for required in ("database", "identity"):
        if required not in data:
            raise ConfigurationError(f"Missing required section '{required}'")

    return BackofficeConfig(
        name=str(data.get("name", "default")),
        database=_parse_section(DatabaseConfig, "database", data["database"]),
        identity=_parse_section(IdentityConfig, "identity", data["identity"]),
        codes=_parse_section(CodeConfig, "codes", data.get("codes")),
        workflow=_parse_section(WorkflowConfig, "workflow", data.get("workflow")),
        logging=_parse_section(LoggingConfig, "logging", data.get("logging")),
        checksum=compute_checksum(data),
    )
