"""Capability contracts shared by all generation providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from storyboard.models import Blueprint, Character, Location, Scene, UploadedImage, VideoStyle

if TYPE_CHECKING:
    from storyboard.config import ApiConfig


class ProviderName(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"
    AIVIDEOAUTO = "aivideoauto"


DISPLAY_NAMES: dict[ProviderName, str] = {
    ProviderName.GOOGLE: "Gemini",
    ProviderName.OPENAI: "OpenAI",
    ProviderName.AIVIDEOAUTO: "Aivideoauto",
}


@dataclass
class ModelInfo:
    id: str
    name: str


@dataclass
class ModelCatalog:
    image_models: list[ModelInfo] = field(default_factory=list)
    video_models: list[ModelInfo] = field(default_factory=list)
    text_models: list[ModelInfo] = field(default_factory=list)


ProgressCallback = Callable[[str], None]


@runtime_checkable
class Provider(Protocol):
    name: ProviderName

    async def validate_credentials(self, key: str) -> None:
        """Raise if ``key`` is rejected by the service."""

    async def list_models(self, key: str) -> ModelCatalog: ...


@runtime_checkable
class TextGenProvider(Protocol):
    async def generate_blueprint(self, idea: str, num_scenes: int, style: VideoStyle) -> Blueprint: ...

    async def generate_scenes(self, blueprint: Blueprint, num_scenes: int) -> list[dict[str, Any]]: ...


@runtime_checkable
class ImageGenProvider(Protocol):
    # True when the provider prepends its own style tag to every prompt.
    applies_style: bool

    async def generate_image(
        self,
        prompt: str,
        character_refs: Sequence[Character] = (),
        location_refs: Sequence[Location] = (),
        model: str | None = None,
        style: VideoStyle = VideoStyle.CINEMATIC,
        aspect: str = "16:9",
        name: str = "image.png",
    ) -> UploadedImage: ...

    async def edit_image(
        self,
        image: UploadedImage,
        prompt: str,
        refs: Sequence[UploadedImage] = (),
        aspect: str = "16:9",
        model: str | None = None,
    ) -> UploadedImage: ...


@runtime_checkable
class VideoGenProvider(Protocol):
    async def generate_video(
        self,
        scene: Scene,
        model: str | None,
        on_progress: ProgressCallback,
        on_task: Callable[[str], None] | None = None,
    ) -> str: ...


@runtime_checkable
class ShotAdvisor(Protocol):
    async def suggest_shot_types(self, scene_prompt: str) -> list[str]: ...


@runtime_checkable
class ImageAnalyzer(Protocol):
    async def describe_image(self, image: UploadedImage) -> dict[str, Any]: ...


@runtime_checkable
class SketchProvider(Protocol):
    async def generate_sketch(self, scene: Scene, style: VideoStyle, aspect: str, name: str) -> UploadedImage: ...


class ProviderRegistry:
    """Adapters by provider name, plus the provider-selection policy."""

    def __init__(self, providers: Mapping[ProviderName, Any]) -> None:
        self._providers = dict(providers)

    def get(self, name: ProviderName) -> Any:
        provider = self._providers.get(name)
        if provider is None:
            raise KeyError(f"No adapter registered for provider {name.value}")
        return provider

    def has(self, name: ProviderName) -> bool:
        return name in self._providers

    def _ready(self, config: ApiConfig, names: Iterable[ProviderName], capability: type) -> list[ProviderName]:
        return [
            n for n in names
            if n in self._providers
            and isinstance(self._providers[n], capability)
            and config.is_ready(n)
        ]

    def text_order(self, config: ApiConfig) -> list[ProviderName]:
        """Preferred text provider first, then the other ready ones.

        OpenAI leads when it is the selected service, or when
        ``use_openai_for_prompt`` is set and its key is ready.
        """
        use_openai = config.service is ProviderName.OPENAI or (
            config.use_openai_for_prompt and config.is_ready(ProviderName.OPENAI)
        )
        preferred = ProviderName.OPENAI if use_openai else ProviderName.GOOGLE
        others = [n for n in (ProviderName.OPENAI, ProviderName.GOOGLE) if n is not preferred]
        return [preferred, *self._ready(config, others, TextGenProvider)]

    def image_provider(self, config: ApiConfig) -> ProviderName:
        """Preferred image provider; a selection without image support is ignored."""
        if config.service is ProviderName.GOOGLE:
            return ProviderName.GOOGLE
        chosen = config.image_provider
        if (
            chosen is not None
            and config.is_ready(ProviderName.OPENAI)
            and isinstance(self._providers.get(chosen), ImageGenProvider)
        ):
            return chosen
        return ProviderName.AIVIDEOAUTO

    def image_order(self, config: ApiConfig) -> list[ProviderName]:
        preferred = self.image_provider(config)
        others = [n for n in (ProviderName.GOOGLE, ProviderName.AIVIDEOAUTO) if n is not preferred]
        return [preferred, *self._ready(config, others, ImageGenProvider)]

    def video_pair(self, config: ApiConfig) -> tuple[ProviderName, ProviderName]:
        """Return ``(primary, secondary)`` video providers."""
        use_google = config.service is ProviderName.GOOGLE or (
            config.service is ProviderName.OPENAI and config.image_provider is ProviderName.GOOGLE
        )
        if use_google:
            return ProviderName.GOOGLE, ProviderName.AIVIDEOAUTO
        return ProviderName.AIVIDEOAUTO, ProviderName.GOOGLE

    def first_capable(self, config: ApiConfig, capability: type) -> Any | None:
        """First ready provider implementing ``capability``, Google first."""
        names = self._ready(config, list(ProviderName), capability)
        return self._providers[names[0]] if names else None
