"""
Configuration Loader (``transfer_config.loader``).

Responsibility
--------------
Reads a YAML file, applies ``TRANSFER_*`` environment overrides and parses
the result into a frozen ``TransferConfig``.  Runtime code obtains config
through ``transfer_config.get_active_config()``, not from here.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from transfer_config.schema import (
    DatabaseConfig,
    ReferenceNumberConfig,
    TransferConfig,
    WorkflowConfig,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

# env var -> (section, key, parser)
_ENV_OVERRIDES: dict[str, tuple[str | None, str, Any]] = {
    "TRANSFER_DATABASE_URL": ("database", "url", str),
    "TRANSFER_DB_ECHO": ("database", "echo", lambda v: v.strip().lower() in ("1", "true", "yes")),
    "TRANSFER_DB_POOL_SIZE": ("database", "pool_size", int),
    "TRANSFER_DEFAULT_CURRENCY": ("workflow", "default_currency_id", str),
    "TRANSFER_DEFAULT_PRIORITY": ("workflow", "default_priority", str),
    "TRANSFER_CONFLICT_RETRY_ATTEMPTS": ("workflow", "conflict_retry_attempts", int),
    "TRANSFER_REFERENCE_WIDTH": ("reference_numbers", "width", int),
    "TRANSFER_LOG_LEVEL": (None, "log_level", lambda v: v.strip().upper()),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return a copy of ``data`` with ``TRANSFER_*`` overrides applied."""
    environ = os.environ if environ is None else environ
    result = {k: (dict(v) if isinstance(v, dict) else v) for k, v in data.items()}
    for var, (section, key, parse) in _ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = parse(raw)
        except ValueError as exc:
            raise ValueError(f"{var}={raw!r} is not valid: {exc}") from exc
        if section is None:
            result[key] = value
        else:
            result.setdefault(section, {})[key] = value
    return result


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 over the parsed (pre-schema) configuration."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> TransferConfig:
    """Build a ``TransferConfig`` from a plain dict."""
    roles = data.get("roles") or {}
    return TransferConfig(
        database=DatabaseConfig(**(data.get("database") or {})),
        reference_numbers=ReferenceNumberConfig(**(data.get("reference_numbers") or {})),
        workflow=WorkflowConfig(**(data.get("workflow") or {})),
        role_permissions={role: tuple(perms or ()) for role, perms in roles.items()},
        log_level=data.get("log_level", "INFO"),
        checksum=compute_checksum(data),
    )


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> TransferConfig:
    """
    Load configuration from ``path`` (packaged defaults when None).

    Values in ``path`` replace the packaged defaults section by section,
    then environment overrides are applied.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        override = load_yaml_file(Path(path))
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict) and key != "roles":
                data[key] = {**data[key], **value}
            else:
                data[key] = value
    return parse_config(apply_env_overrides(data, environ))
