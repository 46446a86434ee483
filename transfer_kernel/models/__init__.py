"""ORM models for the transfer kernel."""

from transfer_kernel.models.reference import CurrencyModel, ExchangeRateModel
from transfer_kernel.models.store_request import (
    StoreRequestItemModel,
    StoreRequestItemTransactionModel,
    StoreRequestModel,
)
from transfer_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "CurrencyModel",
    "ExchangeRateModel",
    "SequenceCounter",
    "StoreRequestItemModel",
    "StoreRequestItemTransactionModel",
    "StoreRequestModel",
]
