"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Common constructor and the flush-only contract: kernel services
    persist through ``session.flush()`` and never commit or roll back.
    The workflow service in ``transfer_services`` owns the transaction.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from transfer_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - Never calls ``session.commit()`` or ``session.rollback()``.

    Non-goals:
        - Read-only queries belong in ``transfer_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
