"""
dispatcher.py — Route a validated request to its provider, with fallback.

    resolve(model)        registry lookup, UnsupportedModelError if unknown
    preflight(model)      resolve + platform credential check (HTTP 500)
    dispatch(request)     run the provider; when a paid provider is out of
                          quota or retired, run the fallback model once and
                          return its result instead

The fallback is attempted at most once per request, and its result is
returned verbatim even when it is an error.
"""

import logging
from dataclasses import replace
from typing import Optional

from chatproxy.ai.base import PromptRequest, Provider, ProviderResult
from chatproxy.ai.registry import ProviderRegistry, build_default_registry
from chatproxy.core.config import settings
from chatproxy.core.exceptions import ConfigurationError, UnsupportedModelError
from chatproxy.services.fallback import recoverable_reason

logger = logging.getLogger(__name__)


class Dispatcher:
    def __init__(
        self,
        registry: ProviderRegistry,
        fallback_model: Optional[str] = None,
        fallback_enabled: bool = True,
    ) -> None:
        self.registry = registry
        self.fallback_model = fallback_model if fallback_enabled else None

        if self.fallback_model and self.fallback_model not in registry:
            logger.warning("Fallback model %r is not registered, fallback disabled", self.fallback_model)
            self.fallback_model = None

    def resolve(self, model: str) -> Provider:
        provider = self.registry.get(model)
        if provider is None:
            raise UnsupportedModelError(model)
        return provider

    def preflight(self, model: str) -> Provider:
        """
        Resolve *model* and check that platform-hosted models can run.

        Raises:
            UnsupportedModelError: unknown model identifier (400).
            ConfigurationError:    edge runtime credentials missing (500).
        """
        provider = self.resolve(model)
        if provider.platform and not provider.is_configured():
            raise ConfigurationError(
                "Workers AI credentials not found. "
                "Set CLOUDFLARE_ACCOUNT_ID and CLOUDFLARE_API_TOKEN."
            )
        return provider

    async def dispatch(self, request: PromptRequest) -> ProviderResult:
        provider = self.resolve(request.model)
        result = await provider.generate(request)

        if provider.free or not self.fallback_model or self.fallback_model == provider.name:
            return result

        reason = recoverable_reason(result)
        if reason is None:
            return result

        logger.warning(
            "%s failed (%s: %s), falling back to %s",
            provider.name, reason, result.error, self.fallback_model,
        )
        fallback = self.resolve(self.fallback_model)
        return await fallback.generate(replace(request, model=fallback.name, image_b64=None))


# Module-level singleton, import and use this everywhere
dispatcher = Dispatcher(
    build_default_registry(),
    fallback_model=settings.fallback_model,
    fallback_enabled=settings.fallback_enabled,
)
