"""User model mirrored from the registration flow."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from voxledger.infrastructure.database.models.base import (
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Billable user.

    The id is the canonical internal id minted by the external registration
    flow. It never changes; every external identifier is bound to it through
    ``identity_links``.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Plan/role name, resolved to limits by the limit policy table
    plan: Mapped[str] = mapped_column(String(50), default="FREE", nullable=False)
    subscription_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"
