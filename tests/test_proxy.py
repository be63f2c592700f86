"""
test_proxy.py — POST /api/ai-proxy end to end over ASGI.

Upstreams are served by the `upstream` stub, so every request exercises the
real validation → rate limit → dispatch → fallback → response path.
"""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

from httpx import ASGITransport, AsyncClient

from chatproxy.core.config import settings
from conftest import chat_completion, workers_ai_image, workers_ai_text

URL = "/api/ai-proxy"


class TestHappyPath:
    async def test_deepseek_text(self, client, upstream):
        upstream.add("api.deepseek.com", json=chat_completion("Hello! How can I help?"))

        r = await client.post(URL, json={"model": "deepseek", "prompt": "hello"})

        assert r.status_code == 200
        assert r.json() == {"response": "Hello! How can I help?"}

    async def test_edge_text_model(self, client, upstream):
        upstream.add("meta/llama-3.2-3b-instruct", json=workers_ai_text("Quick answer"))

        r = await client.post(URL, json={"model": "cf-llama-speed", "prompt": "hello"})

        assert r.status_code == 200
        assert r.json() == {"response": "Quick answer"}

    async def test_edge_image_model(self, client, upstream):
        b64 = base64.b64encode(b"jpeg-bytes").decode()
        upstream.add("flux-1-schnell", json=workers_ai_image(b64))

        r = await client.post(URL, json={"model": "cf-flux", "prompt": "a lighthouse at dusk"})

        assert r.status_code == 200
        assert r.json() == {"base64Image": b64}

    async def test_hugging_face_image_model(self, client, upstream):
        png = b"\x89PNG fake"
        upstream.add("FLUX.1-schnell", content=png, headers={"content-type": "image/png"})

        r = await client.post(URL, json={"model": "flux", "prompt": "a red fox"})

        assert r.status_code == 200
        assert base64.b64decode(r.json()["base64Image"]) == png

    async def test_messages_without_prompt(self, client, upstream):
        upstream.add("api.moonshot.ai", json=chat_completion("Paris."))
        messages = [
            {"role": "system", "content": "Answer in one word."},
            {"role": "user", "content": "Capital of France?"},
        ]

        r = await client.post(URL, json={"model": "kimi", "messages": messages})

        assert r.status_code == 200
        assert r.json() == {"response": "Paris."}
        assert upstream.payload(upstream.requests[0])["messages"] == messages

    async def test_gemini_with_image(self, client):
        raw = b"\xff\xd8\xff jpeg"
        model = MagicMock()
        model.generate_content_async = AsyncMock(return_value=MagicMock(text="A cat on a mat."))

        with (
            patch("chatproxy.ai.gemini_client.genai.configure"),
            patch("chatproxy.ai.gemini_client.genai.GenerativeModel", return_value=model),
        ):
            r = await client.post(URL, json={
                "model": "gemini",
                "prompt": "What is in this picture?",
                "base64Image": base64.b64encode(raw).decode(),
            })

        assert r.status_code == 200
        assert r.json() == {"response": "A cat on a mat."}
        parts = model.generate_content_async.call_args.args[0][-1]["parts"]
        assert parts[1]["data"] == raw


class TestValidationErrors:
    async def test_empty_prompt(self, client, upstream):
        r = await client.post(URL, json={"model": "gemini", "prompt": ""})
        assert r.status_code == 400
        assert r.json() == {"error": "Prompt is required"}

    async def test_prompt_over_limit(self, client, upstream):
        r = await client.post(URL, json={"model": "deepseek", "prompt": "A" * 2001})
        assert r.status_code == 400
        assert r.json() == {"error": "Prompt exceeds 2000 character limit"}
        assert upstream.requests == []

    async def test_unknown_model(self, client, upstream):
        r = await client.post(URL, json={"model": "gpt-9", "prompt": "hello"})
        assert r.status_code == 400
        assert r.json() == {"error": "Unsupported model: gpt-9"}

    async def test_missing_model(self, client):
        r = await client.post(URL, json={"prompt": "hello"})
        assert r.status_code == 400
        assert r.json() == {"error": "Model is required"}

    async def test_malformed_json(self, client):
        r = await client.post(URL, content=b"{not json", headers={"content-type": "application/json"})
        assert r.status_code == 400
        assert r.json()["error"].startswith("Invalid request body")

    async def test_wrong_field_type(self, client):
        r = await client.post(URL, json={"model": "deepseek", "prompt": ["not", "a", "string"]})
        assert r.status_code == 400
        assert "prompt" in r.json()["error"]

    async def test_unknown_message_role(self, client):
        r = await client.post(URL, json={"model": "deepseek", "messages": [{"role": "tool", "content": "x"}]})
        assert r.status_code == 400

    async def test_get_not_allowed(self, client):
        r = await client.get(URL)
        assert r.status_code == 405
        assert "error" in r.json()


class TestProviderFailures:
    async def test_missing_key_is_embedded_error(self, client, upstream, monkeypatch):
        monkeypatch.setattr(settings, "deepseek_key", "")

        r = await client.post(URL, json={"model": "deepseek", "prompt": "hello"})

        assert r.status_code == 200
        body = r.json()
        assert "missing" in body["error"]
        assert body["code"] == "missing_key"
        assert upstream.requests == []

    async def test_missing_edge_credentials_is_500(self, client, upstream, monkeypatch):
        monkeypatch.setattr(settings, "cloudflare_account_id", "")

        r = await client.post(URL, json={"model": "cf-llama-daily", "prompt": "hello"})

        assert r.status_code == 500
        assert r.json()["error"].startswith("Workers AI credentials not found")

    async def test_model_loading_is_not_replaced(self, client, upstream):
        upstream.add("FLUX.1-schnell", status_code=503, json={"error": "Model is currently loading"})

        r = await client.post(URL, json={"model": "flux", "prompt": "a fox"})

        assert r.status_code == 200
        assert r.json()["code"] == "model_loading"
        assert upstream.calls_to("ai/run") == []

    async def test_upstream_server_error_is_embedded(self, client, upstream):
        upstream.add("api.deepseek.com", status_code=500, json={"error": {"message": "Internal error"}})

        r = await client.post(URL, json={"model": "deepseek", "prompt": "hello"})

        assert r.status_code == 200
        assert r.json() == {"error": "deepseek API error: Internal error", "code": "upstream_error"}


class TestFallback:
    async def test_exhausted_provider_answered_by_edge_model(self, client, upstream):
        upstream.add("api.deepseek.com", status_code=402, json={"error": {"message": "Insufficient Balance"}})
        upstream.add("meta/llama-3.1-8b-instruct", json=workers_ai_text("Edge answer"))

        r = await client.post(URL, json={"model": "deepseek", "prompt": "hello"})

        assert r.status_code == 200
        assert r.json() == {"response": "Edge answer"}
        assert upstream.payload(upstream.calls_to("ai/run")[0]) == {"prompt": "hello"}

    async def test_quota_error_on_success_status(self, client, upstream):
        upstream.add(
            "api.moonshot.ai",
            json={"error": {"message": "quota exceeded", "type": "exceeded_current_quota_error"}},
        )
        upstream.add("meta/llama-3.1-8b-instruct", json=workers_ai_text("Edge answer"))

        r = await client.post(URL, json={"model": "kimi", "prompt": "hello"})

        assert r.json() == {"response": "Edge answer"}

    async def test_fallback_failure_returned_as_is(self, client, upstream):
        upstream.add("api.deepseek.com", status_code=402, json={"error": {"message": "Insufficient Balance"}})
        upstream.add(
            "meta/llama-3.1-8b-instruct",
            status_code=429,
            json={"success": False, "errors": [{"code": 4006, "message": "daily free allocation used up"}]},
        )

        r = await client.post(URL, json={"model": "deepseek", "prompt": "hello"})

        body = r.json()
        assert body["code"] == "exhausted"
        assert "daily free allocation" in body["error"]
        assert len(upstream.calls_to("ai/run")) == 1

    async def test_fallback_counts_against_requested_model_only(self, client, upstream):
        from chatproxy.core.rate_limit import rate_limiter

        upstream.add("api.deepseek.com", status_code=402, json={"error": {"message": "Insufficient Balance"}})
        upstream.add("meta/llama-3.1-8b-instruct", json=workers_ai_text("Edge answer"))

        await client.post(URL, json={"model": "deepseek", "prompt": "hello"})

        assert await rate_limiter.current("ratelimit:127.0.0.1:deepseek") == 1
        assert await rate_limiter.current("ratelimit:127.0.0.1:cf-llama-daily") == 0


class TestUnhandledErrors:
    async def test_unexpected_exception_is_500_with_message(self, upstream):
        from chatproxy.main import app
        from chatproxy.services.dispatcher import dispatcher

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        with patch.object(dispatcher, "dispatch", AsyncMock(side_effect=RuntimeError("boom"))):
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                r = await ac.post(URL, json={"model": "deepseek", "prompt": "hello"})

        assert r.status_code == 500
        assert r.json() == {"error": "boom"}


class TestModelsEndpoint:
    async def test_lists_every_model(self, client):
        r = await client.get("/api/models")

        assert r.status_code == 200
        body = r.json()
        ids = {m["id"] for m in body["models"]}
        assert {"cf-llama-daily", "cf-flux", "gemini", "deepseek", "kimi", "flux"} <= ids
        assert body["fallback"] == "cf-llama-daily"

    async def test_reports_missing_credentials(self, client, monkeypatch):
        monkeypatch.setattr(settings, "kimi_token", "")

        r = await client.get("/api/models")

        kimi = next(m for m in r.json()["models"] if m["id"] == "kimi")
        assert kimi == {"id": "kimi", "kind": "text", "free": False, "configured": False}
