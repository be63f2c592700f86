"""
Health check endpoint.

Used by:
  - Container HEALTHCHECK / load balancers
  - The chat widget to check proxy connectivity

Returns status + rate-limit storage reachability + how many providers have
credentials, so callers can tell "proxy down" apart from "proxy up but
nothing configured".
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from chatproxy.core import rate_limit as rate_limit_module
from chatproxy.core.config import settings
from chatproxy.services.dispatcher import dispatcher

logger = logging.getLogger(__name__)
router = APIRouter()

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the API process is alive
    version: str
    rate_limit_storage: str  # "connected" | "disconnected" | "disabled"
    providers_configured: int
    providers_total: int
    environment: str


@router.get("", response_model=HealthResponse, summary="Proxy health check")
async def health_check() -> HealthResponse:
    """
    Returns the liveness status of the proxy and its counter store.

    The proxy is considered healthy (HTTP 200) even when the counter store is
    unreachable: rate limiting fails open, requests are still served.
    """
    # Access via module reference so tests can swap rate_limit_module.rate_limiter
    limiter = rate_limit_module.rate_limiter
    if not limiter.enabled:
        storage_status = "disabled"
    elif await limiter.ping():
        storage_status = "connected"
    else:
        storage_status = "disconnected"

    providers = list(dispatcher.registry.providers())
    return HealthResponse(
        status="ok",
        version=VERSION,
        rate_limit_storage=storage_status,
        providers_configured=sum(1 for p in providers if p.is_configured()),
        providers_total=len(providers),
        environment=settings.environment,
    )
