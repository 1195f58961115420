"""Repository pattern implementations for database access."""

from voxledger.infrastructure.database.repositories.base import BaseRepository
from voxledger.infrastructure.database.repositories.identity import (
    AssistantRepository,
    IdentityLinkRepository,
)
from voxledger.infrastructure.database.repositories.invoice import InvoiceRepository
from voxledger.infrastructure.database.repositories.usage import (
    UnattributedEventRepository,
    UsageLedgerRepository,
    UsageSnapshotRepository,
)
from voxledger.infrastructure.database.repositories.user import UserRepository

__all__ = [
    "BaseRepository",
    "AssistantRepository",
    "IdentityLinkRepository",
    "InvoiceRepository",
    "UnattributedEventRepository",
    "UsageLedgerRepository",
    "UsageSnapshotRepository",
    "UserRepository",
]
