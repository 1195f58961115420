"""Invoice routes."""

from uuid import UUID

from fastapi import APIRouter, Request, status

from voxledger.api.deps import InvoiceGeneratorDep
from voxledger.api.ratelimit import RATE_LIMIT_DEFAULT, RATE_LIMIT_INVOICE, limiter
from voxledger.api.schemas import BatchEnqueuedResponse, InvoiceResponse
from voxledger.infrastructure.queue.client import enqueue_invoice_batch
from voxledger.shared.periods import parse_billing_month

router = APIRouter(prefix="/invoices", tags=["Invoices"])


# Registered before /{user_id}/{billing_month} so "batch" is not parsed as a user id
@router.post(
    "/batch/{billing_month}",
    response_model=BatchEnqueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_batch(billing_month: str) -> BatchEnqueuedResponse:
    """Queue invoice generation for every user active in the month."""
    parse_billing_month(billing_month)
    job_id = await enqueue_invoice_batch(billing_month)
    return BatchEnqueuedResponse(
        billing_month=billing_month,
        job_id=job_id,
        enqueued=job_id is not None,
    )


@router.post("/{user_id}/{billing_month}", response_model=InvoiceResponse)
@limiter.limit(RATE_LIMIT_INVOICE)
async def generate_invoice(
    request: Request,
    user_id: UUID,
    billing_month: str,
    generator: InvoiceGeneratorDep,
) -> InvoiceResponse:
    """Generate (or regenerate) the invoice for one user and month."""
    invoice = await generator.generate(user_id, billing_month)
    return InvoiceResponse.from_model(invoice)


@router.get("/{user_id}/{billing_month}", response_model=InvoiceResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_invoice(
    request: Request,
    user_id: UUID,
    billing_month: str,
    generator: InvoiceGeneratorDep,
) -> InvoiceResponse:
    invoice = await generator.get(user_id, billing_month)
    return InvoiceResponse.from_model(invoice)


@router.get("/{user_id}", response_model=list[InvoiceResponse])
@limiter.limit(RATE_LIMIT_DEFAULT)
async def list_invoices(
    request: Request,
    user_id: UUID,
    generator: InvoiceGeneratorDep,
) -> list[InvoiceResponse]:
    """All stored invoices for a user, newest month first."""
    invoices = await generator.list_for_user(user_id)
    return [InvoiceResponse.from_model(invoice) for invoice in invoices]
