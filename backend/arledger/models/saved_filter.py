"""SavedFilter SQLAlchemy model for named customer analytics filters."""

from typing import Any

from sqlalchemy import JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from arledger.models.base import BaseModel


class SavedFilter(BaseModel):
    """A named filter configuration owned by one user.

    The configuration is stored as the JSON dump of a validated
    ``FilterConfig``; it is re-validated whenever it is loaded to run.

    Attributes:
        id: UUID primary key (from BaseModel)
        user_id: Owning user's id as issued by the auth provider
        name: Display name, unique per user
        filter_config: Serialized FilterConfig
        created_at: Creation timestamp (from BaseModel)
        updated_at: Last update timestamp (from BaseModel)
    """

    __tablename__ = "saved_customer_filters"
    repr_attrs = ("id", "user_id", "name")
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_saved_filter_user_name"),
    )

    user_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    filter_config: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )
