"""Cross-platform identity mapping models."""

from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from voxledger.infrastructure.database.models.base import Base, TimestampMixin


class Platform(str, Enum):
    """External systems that identify our users."""

    BILLING = "billing"
    CRM = "crm"
    VOICE = "voice"


class IdentityLink(Base, TimestampMixin):
    """One external identifier bound to one internal user.

    The primary key makes every (platform, external_id) point at exactly one
    user; the unique constraint gives each user at most one id per platform.
    """

    __tablename__ = "identity_links"
    __table_args__ = (
        UniqueConstraint("internal_id", "platform", name="uq_identity_links_internal_platform"),
    )

    platform: Mapped[Platform] = mapped_column(String(20), primary_key=True)
    external_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    internal_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<IdentityLink {self.platform}:{self.external_id} -> {self.internal_id}>"


class Assistant(Base, TimestampMixin):
    """Voice-platform assistant owned by a user."""

    __tablename__ = "assistants"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    voice_assistant_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Assistant {self.voice_assistant_id}>"
