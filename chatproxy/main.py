"""
chatproxy — Application entry point.

Bootstraps FastAPI, wires up middleware, exception handlers, rate limiting
and route groups, and checks the rate-limit storage on startup.

Extension points:
  - Add providers in chatproxy.ai.registry.build_default_registry()
  - Add new route groups with app.include_router() below
  - Change startup behaviour in the lifespan context manager

Run locally:
  uvicorn chatproxy.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from chatproxy.core.config import settings
from chatproxy.core.exceptions import register_exception_handlers
from chatproxy.core.rate_limit import limiter, rate_limiter
from chatproxy.routes.health import VERSION
from chatproxy.routes.health import router as health_router
from chatproxy.routes.proxy import router as proxy_router
from chatproxy.services.dispatcher import dispatcher

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage startup and shutdown lifecycle.

    Code before `yield` runs on startup; code after runs on shutdown.
    """
    logger.info("Starting chatproxy (env: %s)", settings.environment)
    if rate_limiter.enabled and not await rate_limiter.ping():
        logger.warning("Rate-limit storage unreachable, requests will not be throttled per model")

    missing = [p.name for p in dispatcher.registry.providers() if not p.is_configured()]
    if missing:
        logger.warning("Providers without credentials: %s", ", ".join(missing))
    yield
    logger.info("Shutting down chatproxy")


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="chatproxy",
    description=(
        "Rate-limited proxy between the chat widget and hosted AI models "
        "(Workers AI, Gemini, DeepSeek, Kimi, Hugging Face Flux)."
    ),
    version=VERSION,
    lifespan=lifespan,
    # Disable docs in production to reduce attack surface
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Errors + rate limiting ────────────────────────────────────────────────────
# Every failure leaves as {"error": ...}; see chatproxy.core.exceptions.
register_exception_handlers(app)

# Attach the slowapi limiter to app state so its decorator can find it.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ─── Middleware ─────────────────────────────────────────────────────────────────
# CORS: allow the chat widget to call the proxy from its own origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(proxy_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "chatproxy",
        "version": VERSION,
        "status": "running",
        "environment": settings.environment,
        "endpoint": "/api/ai-proxy",
    }
