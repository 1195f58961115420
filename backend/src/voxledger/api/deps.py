"""FastAPI dependencies for API routes.

Each request gets services bound to its own session; the session commits
when the route returns and rolls back if it raises.
"""

from typing import Annotated

from fastapi import Depends, Request

from voxledger.config import Settings, get_settings
from voxledger.domain.billing.invoices import InvoiceGenerator
from voxledger.domain.factory import (
    build_identity_resolver,
    build_ingestor,
    build_invoice_generator,
    build_query_service,
    build_snapshot_service,
)
from voxledger.domain.identity.resolver import IdentityResolver
from voxledger.domain.usage.alerts import AlertSink
from voxledger.domain.usage.ingestor import UsageEventIngestor
from voxledger.domain.usage.queries import UsageQueryService
from voxledger.domain.usage.snapshots import SnapshotService
from voxledger.infrastructure.database.connection import SessionDep, get_session

SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_alert_sink(request: Request) -> AlertSink | None:
    """Alert sink installed on the app, if any (defaults to the log sink)."""
    return getattr(request.app.state, "alert_sink", None)


async def get_ingestor(
    session: SessionDep,
    settings: SettingsDep,
    alert_sink: Annotated[AlertSink | None, Depends(get_alert_sink)],
) -> UsageEventIngestor:
    return build_ingestor(session, settings, alert_sink)


async def get_query_service(session: SessionDep, settings: SettingsDep) -> UsageQueryService:
    return build_query_service(session, settings)


async def get_snapshot_service(session: SessionDep) -> SnapshotService:
    return build_snapshot_service(session)


async def get_invoice_generator(session: SessionDep, settings: SettingsDep) -> InvoiceGenerator:
    return build_invoice_generator(session, settings)


async def get_identity_resolver(session: SessionDep) -> IdentityResolver:
    return build_identity_resolver(session)


IngestorDep = Annotated[UsageEventIngestor, Depends(get_ingestor)]
QueryServiceDep = Annotated[UsageQueryService, Depends(get_query_service)]
SnapshotServiceDep = Annotated[SnapshotService, Depends(get_snapshot_service)]
InvoiceGeneratorDep = Annotated[InvoiceGenerator, Depends(get_invoice_generator)]
IdentityResolverDep = Annotated[IdentityResolver, Depends(get_identity_resolver)]

__all__ = [
    "get_session",
    "SessionDep",
    "SettingsDep",
    "IngestorDep",
    "QueryServiceDep",
    "SnapshotServiceDep",
    "InvoiceGeneratorDep",
    "IdentityResolverDep",
]
