"""Inbound usage event routes.

The webhook collaborator verifies the voice platform's signature and posts
the event body here unchanged. Every well-formed event is acknowledged with
200 and an outcome, including duplicates and events with no known owner, so
the platform does not keep redelivering them.
"""

from fastapi import APIRouter, Query

from voxledger.api.deps import IngestorDep, SessionDep
from voxledger.api.schemas import IngestResponse, ReconcileResponse
from voxledger.domain.usage.events import UsageEvent
from voxledger.shared.logging import clear_event_context

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("", response_model=IngestResponse)
async def ingest_event(
    event: UsageEvent,
    ingestor: IngestorDep,
    session: SessionDep,
) -> IngestResponse:
    try:
        result = await ingestor.ingest(event)
        # Alerts go out only for usage that is durably recorded
        await session.commit()
        await ingestor.publish_alerts()
    finally:
        clear_event_context()
    return IngestResponse.from_result(result)


@router.post("/unattributed/reconcile", response_model=ReconcileResponse)
async def reconcile_unattributed(
    ingestor: IngestorDep,
    session: SessionDep,
    limit: int | None = Query(default=None, ge=1, le=5000),
) -> ReconcileResponse:
    """Retry attribution of parked events now instead of waiting for the job."""
    report = await ingestor.reconcile_unattributed(limit)
    await session.commit()
    await ingestor.publish_alerts()
    return ReconcileResponse(**report.as_dict())
