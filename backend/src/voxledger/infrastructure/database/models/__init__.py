"""SQLAlchemy ORM models."""

from voxledger.infrastructure.database.models.base import Base, TimestampMixin
from voxledger.infrastructure.database.models.identity import Assistant, IdentityLink, Platform
from voxledger.infrastructure.database.models.invoice import Invoice
from voxledger.infrastructure.database.models.usage import (
    UnattributedEvent,
    UsageChannel,
    UsageRecord,
    UserUsageSnapshot,
)
from voxledger.infrastructure.database.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "Platform",
    "IdentityLink",
    "Assistant",
    "UsageChannel",
    "UsageRecord",
    "UserUsageSnapshot",
    "UnattributedEvent",
    "Invoice",
]
