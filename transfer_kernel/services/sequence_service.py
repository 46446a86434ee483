"""
SequenceService -- reference number allocation via locked counter rows.

Responsibility:
    Hands out strictly increasing integers per named sequence and formats
    them into store request reference numbers (``SR-000001`` for requests,
    ``SI-000001`` for issues).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by the
    workflow service when a request is created without a caller-supplied
    reference number.

Invariants enforced:
    - The locked counter row is the only source of the next value; the
      SQL max-plus-one pattern is never used.
    - The increment is part of the caller's transaction; a rollback returns
      the value.

Failure modes:
    - ConcurrentModificationError when two transactions create the same
      counter row at once (the loser retries with a fresh transaction).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from transfer_kernel.db.base import Base
from transfer_kernel.exceptions import ConcurrentModificationError
from transfer_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Transactional sequence numbers.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.

    Usage:
        seq = SequenceService(session)
        ref = seq.next_reference("store_request", "SR", width=6)
    """

    STORE_REQUEST = "store_request"
    STORE_ISSUE = "store_issue"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row, increment it and return the value.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this name in committed transactions.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)
            try:
                self._session.flush()
            except IntegrityError as exc:
                logger.warning(
                    "sequence_counter_race",
                    extra={"sequence_name": sequence_name},
                )
                raise ConcurrentModificationError(f"sequence:{sequence_name}") from exc

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_reference(self, sequence_name: str, prefix: str, width: int = 6) -> str:
        """Next value formatted as ``{prefix}-{value:0{width}d}``."""
        value = self.next_value(sequence_name)
        return f"{prefix}-{value:0{width}d}"

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        WARNING: tests and migrations only.
        """
        counter = self._locked_counter(sequence_name)
        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=value)
            self._session.add(counter)
        else:
            counter.current_value = value

        self._session.flush()

    def initialize_sequences(self) -> None:
        """Create the well-known counters so first use never races on insert."""
        for name in (self.STORE_REQUEST, self.STORE_ISSUE):
            if self.current_value(name) is None:
                self._session.add(SequenceCounter(name=name, current_value=0))
        self._session.flush()
