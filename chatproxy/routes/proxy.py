"""
proxy.py — The AI proxy endpoint.

Routes:
  POST /api/ai-proxy  — validate → rate-limit → dispatch (→ fallback) → respond
  GET  /api/models    — the model registry as seen by the chat widget

Status codes:
  200  handled; body is {response} | {base64Image} | {error, code?}
  400  invalid input or unsupported model
  405  any method other than POST on /api/ai-proxy
  429  per-client-per-model or per-IP rate limit
  500  platform credentials missing, or an unhandled exception

Upstream failures come back as HTTP 200 with an embedded error so the chat
widget renders them like any other answer.

Example:
  curl -X POST http://localhost:8000/api/ai-proxy \\
    -H 'Content-Type: application/json' \\
    -d '{"model": "deepseek", "prompt": "hello"}'
"""

import logging
from typing import Union

from fastapi import APIRouter, Request

from chatproxy.core.config import settings
from chatproxy.core.exceptions import RateLimitError
from chatproxy.core.rate_limit import client_address, limiter, rate_limiter
from chatproxy.models.proxy import (
    ErrorResponse,
    ImageResponse,
    ModelInfo,
    ModelsResponse,
    ProxyRequest,
    TextResponse,
)
from chatproxy.services.dispatcher import dispatcher
from chatproxy.services.validation import validate_proxy_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["proxy"])


@router.post(
    "/ai-proxy",
    response_model=Union[TextResponse, ImageResponse, ErrorResponse],
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
@limiter.limit(settings.ip_rate_limit)
async def ai_proxy(request: Request, payload: ProxyRequest):
    """
    Forward a prompt (and optional image) to the selected model.

    Paid providers that report quota exhaustion or a retired model are
    transparently replaced by the free fallback model, once.
    """
    prompt_request = validate_proxy_request(payload)
    provider = dispatcher.preflight(prompt_request.model)

    client = client_address(request)
    if rate_limiter.enabled:
        key = rate_limiter.key_for(client, provider.name)
        allowed = await rate_limiter.check(
            key,
            limit=settings.rate_limit_requests,
            window=settings.rate_limit_window_seconds,
        )
        if not allowed:
            raise RateLimitError(settings.rate_limit_window_seconds)

    logger.info("Dispatching %s request from %s (%d chars)", provider.name, client, len(prompt_request.prompt))
    result = await dispatcher.dispatch(prompt_request)
    return result.to_payload()


@router.get("/models", response_model=ModelsResponse)
async def list_models() -> ModelsResponse:
    """Every selectable model with its kind and whether its credential is set."""
    return ModelsResponse(
        models=[ModelInfo(**provider.describe()) for provider in dispatcher.registry.providers()],
        fallback=dispatcher.fallback_model,
    )
