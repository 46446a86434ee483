"""
Store directory -- eligibility of stores to take part in transfers.

Stores are master data owned elsewhere.  The workflow service only needs
to know whether a store is active and whether it may receive from or issue
to another store, so it depends on the ``StoreDirectory`` protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from transfer_kernel.exceptions import StoreNotEligibleError


@dataclass(frozen=True)
class StoreProfile:
    id: str
    name: str = ""
    is_active: bool = True
    can_receive_from_store: bool = True
    can_issue_to_store: bool = True


class StoreDirectory(Protocol):
    def get_store(self, store_id: str) -> StoreProfile | None:
        ...


class InMemoryStoreDirectory:
    """Dictionary-backed directory for tests and embedded use."""

    def __init__(self, stores: Iterable[StoreProfile] = ()):
        self._stores = {store.id: store for store in stores}

    def add(self, store: StoreProfile) -> None:
        self._stores[store.id] = store

    def get_store(self, store_id: str) -> StoreProfile | None:
        return self._stores.get(store_id)


def check_transfer_eligibility(
    directory: StoreDirectory,
    requesting_store_id: str,
    issuing_store_id: str,
) -> None:
    """
    Raise StoreNotEligibleError unless both stores may take part.

    The requesting store must be active and able to receive from a store;
    the issuing store must be active and able to issue to a store.
    """
    requesting = directory.get_store(requesting_store_id)
    if requesting is None:
        raise StoreNotEligibleError(requesting_store_id, "requesting", "does not exist")
    if not requesting.is_active:
        raise StoreNotEligibleError(requesting_store_id, "requesting", "is inactive")
    if not requesting.can_receive_from_store:
        raise StoreNotEligibleError(
            requesting_store_id, "requesting", "cannot receive stock from other stores",
        )

    issuing = directory.get_store(issuing_store_id)
    if issuing is None:
        raise StoreNotEligibleError(issuing_store_id, "issuing", "does not exist")
    if not issuing.is_active:
        raise StoreNotEligibleError(issuing_store_id, "issuing", "is inactive")
    if not issuing.can_issue_to_store:
        raise StoreNotEligibleError(
            issuing_store_id, "issuing", "cannot issue stock to other stores",
        )
