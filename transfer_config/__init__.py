"""
transfer_config -- single public entrypoint for transfer engine configuration.

Responsibility:
    ``get_active_config()`` is the one way runtime code obtains
    configuration.  The first call loads the packaged ``defaults.yaml``
    (or the file named by ``TRANSFER_CONFIG_FILE``), applies ``TRANSFER_*``
    environment overrides and caches the frozen result.

Architecture position:
    Configuration layer.  ``transfer_services`` reads it; ``transfer_kernel``
    never imports it.

Audit relevance:
    Every load emits a ``TRANSFER_CONFIG_TRACE`` log entry with the
    configuration checksum.
"""

from __future__ import annotations

import logging
import os
import threading

from transfer_config.loader import load_config
from transfer_config.schema import (
    DatabaseConfig,
    ReferenceNumberConfig,
    TransferConfig,
    WorkflowConfig,
)

_logger = logging.getLogger("transfer_kernel.config")

_active: TransferConfig | None = None
_lock = threading.Lock()


def get_active_config() -> TransferConfig:
    """Return the cached configuration, loading it on first use."""
    global _active
    with _lock:
        if _active is None:
            _active = load_config(os.environ.get("TRANSFER_CONFIG_FILE") or None)
            _logger.info(
                "TRANSFER_CONFIG_TRACE",
                extra={
                    "trace_type": "TRANSFER_CONFIG_TRACE",
                    "checksum": _active.checksum,
                    "database_dialect": _active.database.url.split(":", 1)[0],
                    "role_count": len(_active.role_permissions),
                },
            )
        return _active


def reset_active_config() -> None:
    """Forget the cached configuration. FOR TESTING ONLY."""
    global _active
    with _lock:
        _active = None


__all__ = [
    "DatabaseConfig",
    "ReferenceNumberConfig",
    "TransferConfig",
    "WorkflowConfig",
    "get_active_config",
    "load_config",
    "reset_active_config",
]
