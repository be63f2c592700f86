"""
Application configuration loaded from environment variables.

Uses pydantic-settings for type-safe env var parsing with automatic
.env file loading. All provider credentials are injected via environment,
never hard-coded. A missing credential does not stop the service: the
provider that needs it answers with an embedded "<KEY> missing" error.

To extend: add new fields here and document them in .env.example.
See https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ─── Core ──────────────────────────────────────────────────────
    environment: str = "development"
    debug: bool = False

    # ─── CORS ──────────────────────────────────────────────────────
    # Comma-separated allowed origins for the chat widget.
    cors_origins_str: str = "http://localhost:5173,http://localhost:3000,http://localhost:8788"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins_str.split(",") if o.strip()]

    # ─── Input limits ──────────────────────────────────────────────
    max_prompt_chars: int = 2000
    max_messages: int = 50

    # ─── Rate limiting ─────────────────────────────────────────────
    # limits storage URI for the per-client-per-model counters.
    # "async+memory://" for a single process, "async+redis://host:6379" when
    # several workers share the counters. Empty string disables the check.
    rate_limit_storage_uri: str = "async+memory://"
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60

    # Coarse per-IP ceiling across every model (slowapi notation).
    ip_rate_limit: str = "60/minute"

    # ─── Fallback ──────────────────────────────────────────────────
    fallback_enabled: bool = True
    fallback_model: str = "cf-llama-daily"

    # ─── Upstream HTTP ─────────────────────────────────────────────
    upstream_timeout_seconds: float = 60.0

    # ─── Cloudflare Workers AI (free edge models) ─────────────────
    # Both values come from the Cloudflare dashboard → AI → Workers AI → REST API.
    cloudflare_account_id: str = ""
    cloudflare_api_token: str = ""
    cloudflare_api_base_url: str = "https://api.cloudflare.com/client/v4"

    # ─── External providers ────────────────────────────────────────
    # Get from https://aistudio.google.com/
    gemini_key: str = ""
    gemini_model: str = "gemini-2.0-flash"

    deepseek_key: str = ""
    deepseek_base_url: str = "https://api.deepseek.com"
    deepseek_model: str = "deepseek-chat"

    kimi_token: str = ""
    kimi_base_url: str = "https://api.moonshot.ai/v1"
    kimi_model: str = "kimi-k2-instruct"

    hf_token: str = ""
    hf_inference_base_url: str = "https://router.huggingface.co/hf-inference/models"
    flux_model: str = "black-forest-labs/FLUX.1-schnell"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Don't fail on unknown env vars
    )


# Module-level singleton, import this everywhere instead of instantiating Settings()
settings = Settings()
