"""
WorkersAIProvider — Cloudflare Workers AI built-in models (free tier).

Reached over the REST API:

    POST {api_base}/accounts/{account_id}/ai/run/{model_id}
    Authorization: Bearer <api token>

Text models take {"prompt": ...} or {"messages": [...]} and answer
{"result": {"response": "..."}, "success": true}. The image model
(flux-1-schnell) takes a prompt plus step count and answers
{"result": {"image": "<base64>"}}.

These models are the platform's own, so a missing account ID / token is a
deployment error (HTTP 500 at the route), not a per-provider degradation.
cf-llama-daily doubles as the fallback for exhausted paid providers.
"""

import logging
from typing import Any, Optional

import httpx

from chatproxy.ai.base import (
    CODE_EMPTY_RESPONSE,
    CODE_EXHAUSTED,
    KIND_IMAGE,
    KIND_TEXT,
    PromptRequest,
    Provider,
    ProviderResult,
    UpstreamError,
    code_for_status,
    error_message_from_body,
)

logger = logging.getLogger(__name__)

# Cloudflare API error code for "daily free neuron allocation used up".
_CF_QUOTA_ERROR_CODES = {4006}

# Image generation parameters for flux-1-schnell.
FLUX_STEPS = 4
FLUX_GUIDANCE = 7.5


class WorkersAIProvider(Provider):
    credential_name = "CLOUDFLARE_ACCOUNT_ID / CLOUDFLARE_API_TOKEN"
    credential_attrs = ("cloudflare_account_id", "cloudflare_api_token")
    free = True
    platform = True

    def __init__(self, name: str, model_id: str, kind: str = KIND_TEXT) -> None:
        self.name = name
        self.model_id = model_id
        self.kind = kind

    @property
    def endpoint(self) -> str:
        base_url = self.credential("cloudflare_api_base_url").rstrip("/")
        account_id = self.credential("cloudflare_account_id")
        return f"{base_url}/accounts/{account_id}/ai/run/{self.model_id}"

    def build_payload(self, request: PromptRequest) -> dict[str, Any]:
        if self.kind == KIND_IMAGE:
            return {"prompt": request.prompt, "steps": FLUX_STEPS, "guidance": FLUX_GUIDANCE}
        if request.messages:
            return {"messages": request.chat_messages()}
        return {"prompt": request.prompt}

    async def _generate(self, request: PromptRequest) -> ProviderResult:
        headers = {"Authorization": f"Bearer {self.credential('cloudflare_api_token')}"}

        async with self.http_client() as client:
            response = await client.post(self.endpoint, headers=headers, json=self.build_payload(request))

        if response.is_error:
            raise UpstreamError(
                f"Workers AI error ({self.model_id}): {error_message_from_body(response)}",
                code=_classify(response),
                status=response.status_code,
            )

        data = response.json()
        if isinstance(data, dict) and data.get("success") is False:
            raise UpstreamError(
                f"Workers AI error ({self.model_id}): {error_message_from_body(response)}",
                code=_classify(response),
                status=response.status_code,
            )

        result = data.get("result", data) if isinstance(data, dict) else data
        if self.kind == KIND_IMAGE:
            return self._image_result(result)
        return self._text_result(result)

    def _text_result(self, result: Any) -> ProviderResult:
        if isinstance(result, dict):
            text = result.get("response")
            if text:
                return ProviderResult.text(str(text))
            return ProviderResult.failure(f"{self.name} returned no text", code=CODE_EMPTY_RESPONSE)
        if isinstance(result, str) and result:
            return ProviderResult.text(result)
        return ProviderResult.failure(f"{self.name} returned no text", code=CODE_EMPTY_RESPONSE)

    def _image_result(self, result: Any) -> ProviderResult:
        image: Optional[str] = result.get("image") if isinstance(result, dict) else None
        if not image:
            return ProviderResult.failure(f"{self.name} returned no image", code=CODE_EMPTY_RESPONSE)
        # The API already hands back bare base64; strip a data URI if one ever appears.
        if image.startswith("data:"):
            image = image.split(",", 1)[-1]
        return ProviderResult.image(image)


def _classify(response: httpx.Response) -> str:
    try:
        errors = response.json().get("errors") or []
    except (ValueError, AttributeError):
        errors = []
    for err in errors:
        if isinstance(err, dict) and err.get("code") in _CF_QUOTA_ERROR_CODES:
            return CODE_EXHAUSTED
    return code_for_status(response.status_code)
