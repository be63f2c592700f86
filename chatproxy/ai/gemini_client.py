"""
GeminiProvider — Async wrapper around the Google Generative AI SDK.

The only multimodal provider: when the request carries `base64Image`, the
bytes are decoded and attached as an inline JPEG part next to the prompt.

Message lists are mapped onto Gemini's content format:
  user      → role "user"
  assistant → role "model"
  system    → GenerativeModel(system_instruction=...)

SDK errors are mapped to result codes by exception type rather than by
message text:
  ResourceExhausted (429)        → "exhausted"
  NotFound (404)                 → "deprecated"  (retired model name)
  any other GoogleAPIError       → "upstream_error"
"""

import base64
import binascii
import logging
import os
from typing import Any

# Python 3.14 + protobuf native extension can fail when importing Gemini deps.
# Keep this as default-only so users can still override it explicitly.
os.environ.setdefault("PROTOCOL_BUFFERS_PYTHON_IMPLEMENTATION", "python")

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from chatproxy.ai.base import (
    CODE_DEPRECATED,
    CODE_EXHAUSTED,
    CODE_UPSTREAM_ERROR,
    KIND_TEXT,
    PromptRequest,
    Provider,
    ProviderResult,
    UpstreamError,
)

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response."
IMAGE_MIME_TYPE = "image/jpeg"

_ROLE_MAP = {"user": "user", "assistant": "model"}


class GeminiProvider(Provider):
    name = "gemini"
    kind = KIND_TEXT
    credential_name = "GEMINI_KEY"
    credential_attrs = ("gemini_key",)

    def __init__(self) -> None:
        self._configured_key = ""

    def _configure(self) -> None:
        # genai.configure() is process-global; only redo it when the key changes.
        api_key = self.credential("gemini_key")
        if api_key != self._configured_key:
            genai.configure(api_key=api_key)
            self._configured_key = api_key

    def build_contents(self, request: PromptRequest) -> tuple[list[dict[str, Any]], str]:
        """
        Build (contents, system_instruction) for generate_content_async().

        Raises:
            UpstreamError: if base64Image is not valid base64.
        """
        system_parts: list[str] = []
        contents: list[dict[str, Any]] = []

        for message in request.chat_messages():
            role = message.get("role", "user")
            if role == "system":
                system_parts.append(message.get("content", ""))
                continue
            contents.append({"role": _ROLE_MAP.get(role, "user"), "parts": [message.get("content", "")]})

        if request.image_b64:
            try:
                image_bytes = base64.b64decode(request.image_b64, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise UpstreamError(f"Image is not valid base64: {exc}", code=CODE_UPSTREAM_ERROR) from exc
            # Attach the image to the latest user turn.
            for content in reversed(contents):
                if content["role"] == "user":
                    content["parts"].append({"mime_type": IMAGE_MIME_TYPE, "data": image_bytes})
                    break

        return contents, "\n".join(part for part in system_parts if part)

    async def _generate(self, request: PromptRequest) -> ProviderResult:
        self._configure()
        contents, system_instruction = self.build_contents(request)

        model = genai.GenerativeModel(
            self.credential("gemini_model"),
            system_instruction=system_instruction or None,
        )
        try:
            response = await model.generate_content_async(
                contents,
                request_options={"timeout": self.timeout},
            )
        except google_exceptions.ResourceExhausted as exc:
            raise UpstreamError(exc.message or str(exc), code=CODE_EXHAUSTED, status=429) from exc
        except google_exceptions.NotFound as exc:
            raise UpstreamError(exc.message or str(exc), code=CODE_DEPRECATED, status=404) from exc
        except google_exceptions.GoogleAPIError as exc:
            status = getattr(exc, "code", None)
            raise UpstreamError(
                getattr(exc, "message", None) or str(exc),
                code=CODE_UPSTREAM_ERROR,
                status=status if isinstance(status, int) else None,
            ) from exc

        return ProviderResult.text(_response_text(response))


def _response_text(response: Any) -> str:
    # .text raises ValueError when the candidate was blocked or has no text part.
    try:
        text = response.text
    except (ValueError, AttributeError, IndexError):
        logger.info("Gemini returned no text part")
        return NO_RESPONSE
    return text or NO_RESPONSE
