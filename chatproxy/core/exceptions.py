"""
exceptions.py — Error taxonomy and FastAPI exception handlers.

Every failure leaves the proxy as a JSON body with an "error" key, so the
chat widget can always print a readable message:

  PromptValidationError  → 400
  UnsupportedModelError  → 400
  RateLimitError         → 429
  ConfigurationError     → 500
  Starlette HTTP errors  → their own status (404, 405, ...)
  anything else          → 500 with the exception message

Upstream provider failures are NOT raised to this layer. Providers turn them
into error results (see chatproxy.ai.base) so the fallback policy can look
at them; those are returned with HTTP 200.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    """Base error for conditions the proxy reports to the caller directly."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.code = code
        super().__init__(message)

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.message}
        if self.code:
            payload["code"] = self.code
        return payload


class PromptValidationError(ProxyError):
    """Bad, missing, or oversized prompt."""

    status_code = 400


class UnsupportedModelError(ProxyError):
    status_code = 400

    def __init__(self, model: str):
        super().__init__(f"Unsupported model: {model}" if model else "Model is required")
        self.model = model


class RateLimitError(ProxyError):
    status_code = 429

    def __init__(self, window_seconds: int):
        super().__init__(f"Rate limit exceeded. Please wait {window_seconds} seconds.")
        self.window_seconds = window_seconds


class ConfigurationError(ProxyError):
    """A required platform credential is not configured."""

    status_code = 500


# ── Handlers ──────────────────────────────────────────────────────────────────

async def proxy_exception_handler(request: Request, exc: ProxyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render 404/405 and friends as {"error": ...} instead of {"detail": ...}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or wrongly typed fields are client errors (400, not 422)."""
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        detail = first.get("msg", "invalid value")
        message = f"Invalid request body: {location}: {detail}" if location else f"Invalid request body: {detail}"
    return JSONResponse(status_code=400, content={"error": message})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProxyError, proxy_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
