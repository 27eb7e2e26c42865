"""Declarative base for persisted models.

Tables get a string UUID primary key and server-side timestamps so rows
look the same on SQLite and PostgreSQL.
"""

from datetime import datetime
from typing import ClassVar, Tuple
from uuid import uuid4

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from arledger.core.database import Base


def generate_uuid() -> str:
    return str(uuid4())


class UUIDPrimaryKeyMixin:
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)


class TimestampMixin:
    """``created_at`` set by the database; ``updated_at`` on every update."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class BaseModel(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Abstract base for arledger tables.

    Subclasses list the columns worth showing in ``repr`` in
    ``repr_attrs``.
    """

    __abstract__ = True

    repr_attrs: ClassVar[Tuple[str, ...]] = ("id",)

    def __repr__(self) -> str:
        shown = ", ".join(f"{attr}={getattr(self, attr, None)!r}" for attr in self.repr_attrs)
        return f"<{type(self).__name__}({shown})>"
