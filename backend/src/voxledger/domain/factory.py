"""Build domain services around one database session."""

from sqlalchemy.ext.asyncio import AsyncSession

from voxledger.config import Settings
from voxledger.domain.billing.invoices import InvoiceGenerator
from voxledger.domain.identity.resolver import IdentityResolver
from voxledger.domain.usage.aggregator import UsageAggregator
from voxledger.domain.usage.alerts import AlertSink
from voxledger.domain.usage.ingestor import UsageEventIngestor
from voxledger.domain.usage.queries import UsageQueryService
from voxledger.domain.usage.snapshots import SnapshotService
from voxledger.infrastructure.database.repositories import (
    AssistantRepository,
    IdentityLinkRepository,
    UnattributedEventRepository,
    UsageLedgerRepository,
    UsageSnapshotRepository,
    UserRepository,
)


def build_identity_resolver(session: AsyncSession) -> IdentityResolver:
    return IdentityResolver(
        link_repo=IdentityLinkRepository(session),
        assistant_repo=AssistantRepository(session),
        user_repo=UserRepository(session),
    )


def build_snapshot_service(session: AsyncSession) -> SnapshotService:
    return SnapshotService(
        snapshot_repo=UsageSnapshotRepository(session),
        ledger_repo=UsageLedgerRepository(session),
    )


def build_aggregator(session: AsyncSession) -> UsageAggregator:
    return UsageAggregator(
        ledger_repo=UsageLedgerRepository(session),
        assistant_repo=AssistantRepository(session),
        user_repo=UserRepository(session),
    )


def build_ingestor(
    session: AsyncSession,
    settings: Settings,
    alert_sink: AlertSink | None = None,
) -> UsageEventIngestor:
    return UsageEventIngestor(
        resolver=build_identity_resolver(session),
        ledger_repo=UsageLedgerRepository(session),
        snapshots=build_snapshot_service(session),
        unattributed_repo=UnattributedEventRepository(session),
        user_repo=UserRepository(session),
        settings=settings,
        alert_sink=alert_sink,
    )


def build_query_service(session: AsyncSession, settings: Settings) -> UsageQueryService:
    return UsageQueryService(
        aggregator=build_aggregator(session),
        snapshots=build_snapshot_service(session),
        user_repo=UserRepository(session),
        settings=settings,
    )


def build_invoice_generator(session: AsyncSession, settings: Settings) -> InvoiceGenerator:
    return InvoiceGenerator.for_session(session, settings)
