"""
proxy.py — Pydantic models for the AI proxy endpoint.

Field names follow the chat widget's JSON (camelCase `base64Image`).
Length and emptiness rules live in chatproxy.services.validation so the
client gets the exact messages it expects ("Prompt is required", ...)
with HTTP 400 instead of FastAPI's generic 422.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Request ───────────────────────────────────────────────────────────────────

class ChatMessage(BaseModel):
    """One turn of a structured conversation."""

    role:    Literal["system", "user", "assistant"]
    content: str


class ProxyRequest(BaseModel):
    """Body of POST /api/ai-proxy."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model:        str = ""
    prompt:       Optional[str] = None
    base64_image: Optional[str] = Field(
        default=None,
        alias="base64Image",
        description="Image bytes, base64 without data-URI prefix (≤ 4 MB, checked by the client)",
    )
    messages:     Optional[list[ChatMessage]] = None


# ── Responses ─────────────────────────────────────────────────────────────────
# Documentation models for OpenAPI; the route returns exactly one shape.

class TextResponse(BaseModel):
    response: str


class ImageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base64_image: str = Field(..., alias="base64Image")


class ErrorResponse(BaseModel):
    error: str
    code:  Optional[str] = None  # exhausted | deprecated | missing_key | model_loading | ...


class ModelInfo(BaseModel):
    id:         str
    kind:       str   # text | image
    free:       bool  # edge-hosted, never replaced by the fallback
    configured: bool  # credential present


class ModelsResponse(BaseModel):
    models:   list[ModelInfo]
    fallback: Optional[str]
