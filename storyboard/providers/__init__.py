"""Generation provider adapters and the registry that selects among them."""

from __future__ import annotations

from typing import TYPE_CHECKING

from storyboard.providers.aivideoauto import AivideoautoProvider, VideoTaskStatus
from storyboard.providers.base import (
    DISPLAY_NAMES,
    ModelCatalog,
    ModelInfo,
    ProviderName,
    ProviderRegistry,
)
from storyboard.providers.gemini import GeminiProvider
from storyboard.providers.openai_text import OpenAITextProvider

if TYPE_CHECKING:
    from storyboard.config import ApiConfig, GenerationSettings


def build_registry(api_config: ApiConfig, settings: GenerationSettings) -> ProviderRegistry:
    """Create one adapter per provider, bound to its live credentials."""
    return ProviderRegistry({
        ProviderName.GOOGLE: GeminiProvider(api_config[ProviderName.GOOGLE], settings),
        ProviderName.OPENAI: OpenAITextProvider(api_config[ProviderName.OPENAI]),
        ProviderName.AIVIDEOAUTO: AivideoautoProvider(api_config[ProviderName.AIVIDEOAUTO], settings),
    })


async def close_registry(registry: ProviderRegistry) -> None:
    """Release HTTP connections held by adapters."""
    if registry.has(ProviderName.AIVIDEOAUTO):
        await registry.get(ProviderName.AIVIDEOAUTO).close()


__all__ = [
    "AivideoautoProvider",
    "DISPLAY_NAMES",
    "GeminiProvider",
    "ModelCatalog",
    "ModelInfo",
    "OpenAITextProvider",
    "ProviderName",
    "ProviderRegistry",
    "VideoTaskStatus",
    "build_registry",
    "close_registry",
]
