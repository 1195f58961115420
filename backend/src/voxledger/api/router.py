"""Main API router aggregating all v1 routes."""

from fastapi import APIRouter

from voxledger.api.routes import events, health, identities, invoices, usage

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(events.router)
api_router.include_router(usage.router)
api_router.include_router(invoices.router)
api_router.include_router(identities.router)
