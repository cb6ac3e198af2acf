"""
Module: casework_kernel.db.base
Responsibility: Declarative base for all casework ORM models.  Provides the
    UUID primary key convention and the type annotation map that keeps money,
    timestamps and identifiers consistent across every table.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Every row is keyed by a uuid4 identifier stored as String(36), so the
      same schema works on PostgreSQL and SQLite.
    - Decimal maps to Numeric(38, 9).  Amounts are never floats.
    - datetime maps to UTCDateTime: aware on the way in, UTC on the way out.

Failure modes:
    - IntegrityError on a duplicate primary key (uuid4 collision only).
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime, normalised to UTC.

    PostgreSQL keeps the offset; SQLite does not, so values read back
    without tzinfo are re-labelled as UTC.  Naive datetimes are rejected on
    write.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all casework models.

    Guarantees:
        - id is a uuid4 UUID unless the caller assigns one.
        - Decimal -> Numeric(38, 9), datetime -> UTCDateTime,
          UUID -> UUIDString, int -> BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


UUID = PyUUID
