"""
HuggingFaceImageProvider — text-to-image through Hugging Face Inference.

Sends {"inputs": prompt} to the FLUX.1-schnell endpoint and receives raw
image bytes, which are returned base64-encoded with no data-URI prefix.

Cold models answer 503 with {"error": "... is currently loading",
"estimated_time": ...}. That is reported with code "model_loading" so the
chat widget can retry once after 20 seconds instead of showing a failure.
"""

import base64
import logging

from chatproxy.ai.base import (
    CODE_MODEL_LOADING,
    KIND_IMAGE,
    PromptRequest,
    Provider,
    ProviderResult,
    UpstreamError,
    code_for_status,
    error_message_from_body,
)

logger = logging.getLogger(__name__)


class HuggingFaceImageProvider(Provider):
    name = "flux"
    kind = KIND_IMAGE
    credential_name = "HF_TOKEN"
    credential_attrs = ("hf_token",)

    @property
    def endpoint(self) -> str:
        base_url = self.credential("hf_inference_base_url").rstrip("/")
        return f"{base_url}/{self.credential('flux_model')}"

    async def _generate(self, request: PromptRequest) -> ProviderResult:
        headers = {
            "Authorization": f"Bearer {self.credential('hf_token')}",
            "Content-Type": "application/json",
            "Accept": "image/png",
        }

        async with self.http_client() as client:
            response = await client.post(self.endpoint, headers=headers, json={"inputs": request.prompt})

        if response.is_error:
            detail = error_message_from_body(response)
            code = code_for_status(response.status_code)
            if "loading" in detail.lower():
                code = CODE_MODEL_LOADING
            raise UpstreamError(f"Flux API Error: {detail}", code=code, status=response.status_code)

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            # 200 with a JSON body means the router returned a message, not an image.
            raise UpstreamError(f"Flux API Error: {error_message_from_body(response)}", status=response.status_code)

        logger.debug("Flux returned %d bytes (%s)", len(response.content), content_type)
        return ProviderResult.image(base64.b64encode(response.content).decode("ascii"))
