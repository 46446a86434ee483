"""
Module: transfer_kernel.db.types
Responsibility: Column types and annotated aliases shared by every model.
    Centralizes quantity / amount / rate precision and timezone handling so
    all tables store identical representations.
Architecture position: Kernel > DB.  MUST NOT import from models/,
    services/, selectors/ or domain/.

Invariants enforced:
    - No floats: quantities, amounts and rates are ``Decimal`` end to end.
      On PostgreSQL they are NUMERIC; on SQLite (tests) they are stored as
      text so that no value passes through a binary float.
    - Timestamps are always returned timezone-aware in UTC.

Failure modes:
    - decimal.InvalidOperation if a stored text value is not a number.
"""

from datetime import timezone
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator


class PreciseDecimal(TypeDecorator):
    """Exact decimal column: NUMERIC(p, s) where supported, text on SQLite."""

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__()
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(
            Numeric(self.precision, self.scale, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(Decimal(value))
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime, normalized to UTC on the way in and out."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

