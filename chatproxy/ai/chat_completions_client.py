"""
ChatCompletionsProvider — OpenAI-compatible chat APIs (DeepSeek, Kimi).

Both upstreams accept the same request:

    POST {base_url}/chat/completions
    Authorization: Bearer <key>
    {"model": "...", "messages": [{"role": "user", "content": "..."}]}

and answer with choices[0].message.content. Only the base URL, upstream
model name and credential differ, so one class serves both.

Quota signals:
  - DeepSeek: HTTP 402 "Insufficient Balance"
  - Moonshot: HTTP 429 with error.type "exceeded_current_quota_error"
Both map to code "exhausted". 404/410 (model retired) map to "deprecated".
"""

import logging
from typing import Any

import httpx

from chatproxy.ai.base import (
    CODE_EXHAUSTED,
    KIND_TEXT,
    PromptRequest,
    Provider,
    ProviderResult,
    UpstreamError,
    code_for_status,
    error_message_from_body,
)

logger = logging.getLogger(__name__)

NO_CONTENT = "Error: No content received."

# error.type / error.code values that mean "out of credit" regardless of status
_QUOTA_ERROR_TYPES = {
    "exceeded_current_quota_error",
    "insufficient_quota",
    "insufficient_balance",
}


class ChatCompletionsProvider(Provider):
    """
    One OpenAI-compatible upstream.

    Settings attributes are passed by name so the provider always reads the
    current configuration (tests and .env reloads change `settings` in place).
    """

    kind = KIND_TEXT

    def __init__(
        self,
        name: str,
        credential_attr: str,
        base_url_attr: str,
        model_attr: str,
    ) -> None:
        self.name = name
        self.credential_name = credential_attr.upper()
        self.credential_attrs = (credential_attr,)
        self._credential_attr = credential_attr
        self._base_url_attr = base_url_attr
        self._model_attr = model_attr

    @property
    def endpoint(self) -> str:
        return f"{self.credential(self._base_url_attr).rstrip('/')}/chat/completions"

    @property
    def upstream_model(self) -> str:
        return self.credential(self._model_attr)

    def build_payload(self, request: PromptRequest) -> dict[str, Any]:
        return {
            "model": self.upstream_model,
            "messages": request.chat_messages(),
        }

    async def _generate(self, request: PromptRequest) -> ProviderResult:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.credential(self._credential_attr)}",
        }

        async with self.http_client() as client:
            response = await client.post(self.endpoint, headers=headers, json=self.build_payload(request))

        if response.is_error:
            raise UpstreamError(
                f"{self.name} API error: {error_message_from_body(response)}",
                code=self._classify(response),
                status=response.status_code,
            )

        return self.parse_response(response.json())

    def parse_response(self, data: Any) -> ProviderResult:
        # Some gateways answer 200 with an error object.
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            err = data["error"]
            code = CODE_EXHAUSTED if err.get("type") in _QUOTA_ERROR_TYPES else None
            return ProviderResult.failure(str(err.get("message", "Unknown error")), code=code)

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None

        return ProviderResult.text(content or NO_CONTENT)

    @staticmethod
    def _classify(response: httpx.Response) -> str:
        try:
            err = response.json().get("error")
        except (ValueError, AttributeError):
            err = None
        if isinstance(err, dict):
            if err.get("type") in _QUOTA_ERROR_TYPES or err.get("code") in _QUOTA_ERROR_TYPES:
                return CODE_EXHAUSTED
        return code_for_status(response.status_code)
