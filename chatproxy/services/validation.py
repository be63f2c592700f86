"""
validation.py — Input checks for the AI proxy.

Turns a parsed ProxyRequest body into a PromptRequest, or raises
PromptValidationError (HTTP 400) naming the constraint that failed.

Rules:
  - prompt must be a non-blank string, unless a non-empty message list is sent
  - prompt longer than settings.max_prompt_chars is rejected for every model
  - with messages only, the last user message is the effective prompt and
    obeys the same length limit
  - model must be present (whether it is supported is the dispatcher's call)

Image bytes are not inspected: the chat widget enforces size and MIME type.
"""

from chatproxy.ai.base import PromptRequest
from chatproxy.core.config import settings
from chatproxy.core.exceptions import PromptValidationError, UnsupportedModelError
from chatproxy.models.proxy import ProxyRequest


def validate_proxy_request(payload: ProxyRequest) -> PromptRequest:
    max_chars = settings.max_prompt_chars
    messages = [m.model_dump() for m in payload.messages or []]

    if len(messages) > settings.max_messages:
        raise PromptValidationError(f"Too many messages (max {settings.max_messages})")

    prompt = payload.prompt or ""
    if not prompt.strip():
        prompt = _last_user_content(messages)
        if not prompt.strip():
            raise PromptValidationError("Prompt is required")

    if len(prompt) > max_chars:
        raise PromptValidationError(f"Prompt exceeds {max_chars} character limit")

    model = (payload.model or "").strip()
    if not model:
        raise UnsupportedModelError("")

    if messages and payload.prompt and payload.prompt.strip():
        # Explicit prompt plus history: the prompt is the newest user turn.
        if messages[-1] != {"role": "user", "content": prompt}:
            messages.append({"role": "user", "content": prompt})

    return PromptRequest(
        model=model,
        prompt=prompt,
        messages=messages,
        image_b64=payload.base64_image or None,
    )


def _last_user_content(messages: list[dict[str, str]]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content", "")
    return ""
