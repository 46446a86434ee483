"""
transfer_services -- orchestration around the store transfer kernel.

The workflow service is the public entry point; authority, store directory
and rate source are the external collaborators it depends on, and
serialization is the single API boundary.
"""

from transfer_services.authority import AllowAllPolicy, AuthorizationPolicy, RoleBasedPolicy
from transfer_services.rate_source import ExchangeRateSource, StaticRateSource
from transfer_services.store_directory import (
    InMemoryStoreDirectory,
    StoreDirectory,
    StoreProfile,
)
from transfer_services.workflow_service import (
    StoreRequestWorkflowService,
    TransferResult,
    retry_on_conflict,
)

__all__ = [
    "AllowAllPolicy",
    "AuthorizationPolicy",
    "ExchangeRateSource",
    "InMemoryStoreDirectory",
    "RoleBasedPolicy",
    "StaticRateSource",
    "StoreDirectory",
    "StoreProfile",
    "StoreRequestWorkflowService",
    "TransferResult",
    "retry_on_conflict",
]
