"""Provider registry: model identifier → provider instance."""

from typing import Iterable, Optional

from chatproxy.ai.base import KIND_IMAGE, Provider
from chatproxy.ai.chat_completions_client import ChatCompletionsProvider
from chatproxy.ai.gemini_client import GeminiProvider
from chatproxy.ai.huggingface_client import HuggingFaceImageProvider
from chatproxy.ai.workers_ai_client import WorkersAIProvider


class ProviderRegistry:
    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}

    def register(self, provider: Provider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> Optional[Provider]:
        return self._providers.get(name)

    def names(self) -> Iterable[str]:
        return self._providers.keys()

    def providers(self) -> Iterable[Provider]:
        return self._providers.values()

    def __contains__(self, item: str) -> bool:
        return item in self._providers

    def __len__(self) -> int:
        return len(self._providers)


def build_default_registry() -> ProviderRegistry:
    """Every model the chat widget can select."""
    registry = ProviderRegistry()

    # Free edge-hosted models
    registry.register(WorkersAIProvider("cf-llama-daily", "@cf/meta/llama-3.1-8b-instruct"))
    registry.register(WorkersAIProvider("cf-llama-speed", "@cf/meta/llama-3.2-3b-instruct"))
    registry.register(WorkersAIProvider("cf-deepseek", "@cf/deepseek-ai/deepseek-r1-distill-qwen-32b"))
    registry.register(WorkersAIProvider("cf-flux", "@cf/black-forest-labs/flux-1-schnell", kind=KIND_IMAGE))

    # External APIs, one credential each
    registry.register(GeminiProvider())
    registry.register(ChatCompletionsProvider("deepseek", "deepseek_key", "deepseek_base_url", "deepseek_model"))
    registry.register(ChatCompletionsProvider("kimi", "kimi_token", "kimi_base_url", "kimi_model"))
    registry.register(HuggingFaceImageProvider())

    return registry
