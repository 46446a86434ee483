"""
Configuration schema (``transfer_config.schema``).

Responsibility
--------------
Frozen dataclasses describing every tunable of the transfer engine:
database connection, reference-number format, workflow defaults and the
role -> permission table used by the static authorization policy.

Invariants enforced
-------------------
* Every value is validated at construction; bad values raise ``ValueError``.
* Quantity invariants are not configurable and have no entry here.
"""

from __future__ import annotations

from dataclasses import dataclass, field

PRIORITIES = ("low", "medium", "high", "urgent")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

PERMISSIONS = (
    "store_request.create",
    "store_request.update",
    "store_request.delete",
    "store_request.submit",
    "store_request.approve",
    "store_request.reject",
    "store_request.issue",
    "store_request.receive",
    "store_request.cancel",
    "store_request.read",
)


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite+pysqlite:///:memory:"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must not be empty")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"database.max_overflow must be >= 0, got {self.max_overflow}")


@dataclass(frozen=True)
class ReferenceNumberConfig:
    """Reference numbers look like ``{prefix}-{counter:0{width}d}``."""

    request_prefix: str = "SR"
    issue_prefix: str = "SI"
    width: int = 6

    def __post_init__(self) -> None:
        if not self.request_prefix or not self.issue_prefix:
            raise ValueError("reference number prefixes must not be empty")
        if self.request_prefix == self.issue_prefix:
            raise ValueError("request and issue prefixes must differ")
        if not 1 <= self.width <= 12:
            raise ValueError(f"reference number width must be 1..12, got {self.width}")


@dataclass(frozen=True)
class WorkflowConfig:
    default_currency_id: str | None = None
    default_priority: str = "medium"
    conflict_retry_attempts: int = 3

    def __post_init__(self) -> None:
        if self.default_priority not in PRIORITIES:
            raise ValueError(
                f"workflow.default_priority must be one of {PRIORITIES}, "
                f"got {self.default_priority!r}"
            )
        if self.conflict_retry_attempts < 1:
            raise ValueError(
                "workflow.conflict_retry_attempts must be >= 1, "
                f"got {self.conflict_retry_attempts}"
            )


@dataclass(frozen=True)
class TransferConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    reference_numbers: ReferenceNumberConfig = field(default_factory=ReferenceNumberConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    role_permissions: dict[str, tuple[str, ...]] = field(default_factory=dict)
    log_level: str = "INFO"
    checksum: str = ""

    def __post_init__(self) -> None:
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")
        for role, permissions in self.role_permissions.items():
            for permission in permissions:
                if permission != "*" and permission not in PERMISSIONS:
                    raise ValueError(
                        f"role {role!r} grants unknown permission {permission!r}"
                    )
