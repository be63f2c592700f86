"""
Provider abstraction for the AI proxy.

A provider wraps one upstream model behind a single coroutine:

    result = await provider.generate(PromptRequest(...))

and always answers with a ProviderResult, never an exception. Transport
errors, HTTP error statuses and SDK errors are folded into error results
carrying a machine code, so the dispatcher can decide on fallback without
knowing any upstream's error format.

Adding a provider:
  1. Subclass Provider, set `kind`, `credential_name`, `credential_attrs`
  2. Implement `_generate()` — raise UpstreamError for upstream failures
  3. Register an instance in chatproxy.ai.registry.build_default_registry()
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from chatproxy.core.config import settings

logger = logging.getLogger(__name__)

# Machine codes attached to error results.
CODE_EXHAUSTED = "exhausted"
CODE_DEPRECATED = "deprecated"
CODE_MISSING_KEY = "missing_key"
CODE_MODEL_LOADING = "model_loading"
CODE_UPSTREAM_ERROR = "upstream_error"
CODE_EMPTY_RESPONSE = "empty_response"

KIND_TEXT = "text"
KIND_IMAGE = "image"


@dataclass
class PromptRequest:
    """A validated proxy request, ready for a provider."""

    model: str
    prompt: str
    messages: list[dict[str, str]] = field(default_factory=list)
    image_b64: Optional[str] = None

    def chat_messages(self) -> list[dict[str, str]]:
        """Role/content list for chat-completion style upstreams."""
        if self.messages:
            return [dict(m) for m in self.messages]
        return [{"role": "user", "content": self.prompt}]


@dataclass
class ProviderResult:
    """
    Normalized upstream answer: exactly one of response / base64_image / error.

    `upstream_status` is the HTTP status the upstream replied with, kept for
    logging and failure classification; it is never sent to the client.
    """

    response: Optional[str] = None
    base64_image: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    upstream_status: Optional[int] = None

    @classmethod
    def text(cls, response: str) -> "ProviderResult":
        return cls(response=response)

    @classmethod
    def image(cls, base64_image: str) -> "ProviderResult":
        return cls(base64_image=base64_image)

    @classmethod
    def failure(
        cls,
        error: str,
        code: Optional[str] = None,
        upstream_status: Optional[int] = None,
    ) -> "ProviderResult":
        return cls(error=error, code=code, upstream_status=upstream_status)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_payload(self) -> dict[str, str]:
        """JSON body returned to the chat widget."""
        if self.error is not None:
            payload = {"error": self.error}
            if self.code:
                payload["code"] = self.code
            return payload
        if self.base64_image is not None:
            return {"base64Image": self.base64_image}
        return {"response": self.response or ""}


class UpstreamError(Exception):
    """Raised inside providers when an upstream reports a failure."""

    def __init__(self, message: str, code: str = CODE_UPSTREAM_ERROR, status: Optional[int] = None):
        self.message = message
        self.code = code
        self.status = status
        super().__init__(message)

    def to_result(self) -> ProviderResult:
        return ProviderResult.failure(self.message, code=self.code, upstream_status=self.status)


def code_for_status(status: int) -> str:
    """Structured failure code from an upstream HTTP status."""
    if status in (402, 429):
        return CODE_EXHAUSTED
    if status in (404, 410):
        return CODE_DEPRECATED
    if status == 503:
        return CODE_MODEL_LOADING
    return CODE_UPSTREAM_ERROR


def error_message_from_body(response: httpx.Response) -> str:
    """
    Pull a readable message out of an upstream error body.

    Understands the shapes used by the upstreams we talk to:
      {"error": {"message": "..."}}      OpenAI-compatible, Gemini REST
      {"error": "..."}                   Hugging Face
      {"errors": [{"message": "..."}]}   Cloudflare API
    Falls back to the HTTP reason phrase.
    """
    try:
        data: Any = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", ""))

    return response.reason_phrase or f"HTTP {response.status_code}"


class Provider:
    """
    Base class for every upstream model.

    Attributes:
        name:             Model identifier exposed to the chat widget.
        kind:             "text" or "image".
        credential_name:  Human-facing env var name(s), used in "<KEY> missing".
        credential_attrs: Settings attributes that must all be non-empty.
        free:             True for edge-hosted models; free models are never
                          replaced by the fallback.
        platform:         True when the credential belongs to the hosting
                          platform rather than a third-party account.
    """

    name: str = ""
    kind: str = KIND_TEXT
    credential_name: str = ""
    credential_attrs: tuple[str, ...] = ()
    free: bool = False
    platform: bool = False

    # Shared by every provider; tests swap in an httpx.MockTransport.
    transport: Optional[httpx.AsyncBaseTransport] = None

    def is_configured(self) -> bool:
        return all(getattr(settings, attr, "") for attr in self.credential_attrs)

    def credential(self, attr: str) -> str:
        return getattr(settings, attr, "")

    @property
    def timeout(self) -> float:
        return settings.upstream_timeout_seconds

    def http_client(self) -> httpx.AsyncClient:
        """Short-lived client for one upstream call."""
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.name,
            "kind": self.kind,
            "free": self.free,
            "configured": self.is_configured(),
        }

    async def generate(self, request: PromptRequest) -> ProviderResult:
        """
        Run the request against the upstream.

        Never raises for upstream trouble: missing credentials, HTTP errors,
        network errors and malformed bodies all come back as error results.
        """
        if not self.is_configured():
            logger.warning("%s requested but %s is not set", self.name, self.credential_name)
            return ProviderResult.failure(
                f"{self.credential_name} missing. Set it in the environment.",
                code=CODE_MISSING_KEY,
            )

        try:
            return await self._generate(request)
        except UpstreamError as exc:
            logger.warning(
                "Upstream error (model=%s, status=%s, code=%s): %s",
                self.name, exc.status, exc.code, exc.message,
            )
            return exc.to_result()
        except httpx.TimeoutException:
            logger.error("Upstream timeout (model=%s) after %.0fs", self.name, self.timeout)
            return ProviderResult.failure(
                f"{self.name} did not answer within {self.timeout:.0f} seconds",
                code=CODE_UPSTREAM_ERROR,
            )
        except httpx.RequestError as exc:
            logger.error("Upstream request failed (model=%s): %s", self.name, exc)
            return ProviderResult.failure(
                f"Could not reach {self.name}: {exc.__class__.__name__}",
                code=CODE_UPSTREAM_ERROR,
            )
        except ValueError as exc:
            # Success status but a body that is not the JSON we expected.
            logger.error("Unreadable upstream body (model=%s): %s", self.name, exc)
            return ProviderResult.failure(
                f"{self.name} returned an unreadable response",
                code=CODE_UPSTREAM_ERROR,
            )

    async def _generate(self, request: PromptRequest) -> ProviderResult:  # pragma: no cover - interface
        raise NotImplementedError
