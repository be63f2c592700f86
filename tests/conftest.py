"""
pytest configuration and shared fixtures for the chatproxy tests.

Key concern: tests must not call any real AI upstream or need real keys.
We achieve this by:
  1. Setting fake credentials BEFORE importing the app so Settings picks
     them up; individual tests blank a credential to exercise "missing key".
  2. Routing every provider's outbound HTTP through an httpx.MockTransport
     that serves canned upstream replies — see the `upstream` fixture.
  3. Resetting the rate-limit counters and the slowapi limiter before each
     test so request counts never bleed between tests.
"""

import json
import os
from typing import Any, Optional
from unittest.mock import patch

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CLOUDFLARE_ACCOUNT_ID", "test-account")
os.environ.setdefault("CLOUDFLARE_API_TOKEN", "test-cf-token")
os.environ.setdefault("GEMINI_KEY", "test-gemini-key")
os.environ.setdefault("DEEPSEEK_KEY", "test-deepseek-key")
os.environ.setdefault("KIMI_TOKEN", "test-kimi-token")
os.environ.setdefault("HF_TOKEN", "test-hf-token")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "async+memory://")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "10")
os.environ.setdefault("RATE_LIMIT_WINDOW_SECONDS", "60")
os.environ.setdefault("FALLBACK_ENABLED", "true")
os.environ.setdefault("FALLBACK_MODEL", "cf-llama-daily")


# ── Canned upstream bodies ────────────────────────────────────────────────────

def chat_completion(content: Optional[str]) -> dict[str, Any]:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


def workers_ai_text(text: str) -> dict[str, Any]:
    return {"result": {"response": text}, "success": True, "errors": [], "messages": []}


def workers_ai_image(b64: str) -> dict[str, Any]:
    return {"result": {"image": b64}, "success": True, "errors": [], "messages": []}


# ── Upstream stub ─────────────────────────────────────────────────────────────

class UpstreamStub:
    """
    Handler for httpx.MockTransport.

    Maps a URL substring to canned replies (the last one queued for a route
    repeats); records every request so tests can assert on the URL, headers
    and JSON payload each upstream received.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, list[dict[str, Any]]]] = []
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url_part: str,
        status_code: int = 200,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        reply = {"status_code": status_code, "json": json, "content": content, "headers": headers}
        for part, queue in self.routes:
            if part == url_part:
                queue.append(reply)
                return
        self.routes.append((url_part, [reply]))

    def calls_to(self, url_part: str) -> list[httpx.Request]:
        return [r for r in self.requests if url_part in str(r.url)]

    def payload(self, request: httpx.Request) -> Any:
        return json.loads(request.content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for url_part, queue in self.routes:
            if url_part in str(request.url):
                reply = queue.pop(0) if len(queue) > 1 else queue[0]
                if reply["json"] is not None:
                    return httpx.Response(reply["status_code"], json=reply["json"], headers=reply["headers"])
                return httpx.Response(reply["status_code"], content=reply["content"] or b"", headers=reply["headers"])
        raise httpx.ConnectError(f"no canned response for {request.url}", request=request)


@pytest.fixture()
def upstream():
    """Send every provider's outbound HTTP to an UpstreamStub."""
    from chatproxy.ai.base import Provider

    stub = UpstreamStub()
    with patch.object(Provider, "transport", httpx.MockTransport(stub)):
        yield stub


# ── App + state ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def reset_rate_limits():
    """Start every test with empty per-model counters and a fresh IP limiter."""
    from chatproxy.core.rate_limit import limiter, rate_limiter

    await rate_limiter.reset()
    limiter.reset()
    yield
    await rate_limiter.reset()


@pytest.fixture()
async def client():
    """
    HTTPX async test client wired to the FastAPI app.

    Usage:
        async def test_something(client, upstream):
            upstream.add("api.deepseek.com", json=chat_completion("hi"))
            response = await client.post("/api/ai-proxy", json={...})
            assert response.status_code == 200
    """
    from chatproxy.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
