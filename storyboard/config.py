"""Configuration loading, credential persistence and provider readiness."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml

from storyboard.models import VideoStyle
from storyboard.providers.base import ModelInfo, ProviderName

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = "config.yaml"
_DEFAULT_CREDENTIALS = ".storyboard-credentials.yaml"

DEFAULT_GOOGLE_IMAGE_MODEL = "gemini-2.5-flash-image"
DEFAULT_GOOGLE_VIDEO_MODEL = "veo-2.0-generate-001"
DEFAULT_OPENAI_TEXT_MODEL = "gpt-4o"

GOOGLE_ENV_VARS = ("API_KEY", "GEMINI_API_KEY")
_PROVIDER_VALUES = {p.value for p in ProviderName}

# Providers that can render images
IMAGE_PROVIDERS = (ProviderName.GOOGLE, ProviderName.AIVIDEOAUTO)


# ----------------------------------------------------------------
# YAML config
# ----------------------------------------------------------------

def load_config(config_path: str | None = None) -> dict:
    path = Path(config_path or _DEFAULT_CONFIG)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_project_root(config_path: str | None = None) -> Path:
    path = Path(config_path or _DEFAULT_CONFIG)
    return path.resolve().parent


def resolve_path(config: dict, key_path: str, config_path: str | None = None) -> Path:
    root = get_project_root(config_path)
    val: Any = config
    for k in key_path.split("."):
        val = val[k]
    p = Path(val)
    if not p.is_absolute():
        p = root / p
    return p


@dataclass
class GenerationSettings:
    style: VideoStyle = VideoStyle.CINEMATIC
    aspect: str = "16:9"
    video_duration: int = 40
    auto_generate_prompt: bool = True
    auto_reference_images: bool = False
    max_concurrency: int | None = None
    poll_interval: float = 5.0
    max_wait: float = 900.0
    max_retries: int = 3
    initial_delay: float = 1.0
    rate_limit_delay: float = 2.0
    videos_dir: Path = Path("videos")
    google_image_model: str = DEFAULT_GOOGLE_IMAGE_MODEL
    google_video_model: str = DEFAULT_GOOGLE_VIDEO_MODEL
    openai_text_model: str = DEFAULT_OPENAI_TEXT_MODEL
    aivideoauto_image_model: str | None = None
    aivideoauto_video_model: str | None = None


def settings_from_config(config: dict, config_path: str | None = None) -> GenerationSettings:
    """Build :class:`GenerationSettings` from a loaded YAML config.

    Missing sections fall back to the dataclass defaults.
    """
    gen = config.get("generation") or {}
    polling = config.get("polling") or {}
    retry = config.get("retry") or {}
    models = config.get("models") or {}
    defaults = GenerationSettings()

    videos_dir = defaults.videos_dir
    if (config.get("project") or {}).get("videos_dir"):
        videos_dir = resolve_path(config, "project.videos_dir", config_path)

    max_concurrency = gen.get("max_concurrency")
    return GenerationSettings(
        style=VideoStyle(gen.get("video_style", defaults.style.value)),
        aspect=gen.get("aspect_ratio", defaults.aspect),
        video_duration=int(gen.get("video_duration", defaults.video_duration)),
        auto_generate_prompt=bool(gen.get("auto_generate_prompt", defaults.auto_generate_prompt)),
        auto_reference_images=bool(gen.get("auto_reference_images", defaults.auto_reference_images)),
        max_concurrency=int(max_concurrency) if max_concurrency else None,
        poll_interval=float(polling.get("interval_seconds", defaults.poll_interval)),
        max_wait=float(polling.get("max_wait_seconds", defaults.max_wait)),
        max_retries=int(retry.get("max_retries", defaults.max_retries)),
        initial_delay=float(retry.get("initial_delay_seconds", defaults.initial_delay)),
        rate_limit_delay=float(retry.get("rate_limit_delay_seconds", defaults.rate_limit_delay)),
        videos_dir=videos_dir,
        google_image_model=models.get("google_image", defaults.google_image_model),
        google_video_model=models.get("google_video", defaults.google_video_model),
        openai_text_model=models.get("openai_text", defaults.openai_text_model),
        aivideoauto_image_model=models.get("aivideoauto_image"),
        aivideoauto_video_model=models.get("aivideoauto_video"),
    )


# ----------------------------------------------------------------
# Credential store
# ----------------------------------------------------------------

class CredentialStore:
    """Flat key-value store persisted as a YAML mapping."""

    def __init__(self, path: str | Path = _DEFAULT_CREDENTIALS):
        self.path = Path(path)
        self._data: dict[str, str] = {}
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"Credential store {self.path} is not a mapping")
            self._data = {str(k): str(v) for k, v in loaded.items()}

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._data.get(key, default)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self._data, f, allow_unicode=True, sort_keys=True)


KEY_NAMES: dict[ProviderName, str] = {
    ProviderName.GOOGLE: "google_gemini_api_key",
    ProviderName.OPENAI: "openai_api_key",
    ProviderName.AIVIDEOAUTO: "aivideoauto_access_token",
}


# ----------------------------------------------------------------
# Provider readiness
# ----------------------------------------------------------------

class CredentialStatus(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    VALID = "valid"
    ERROR = "error"
    ENV_CONFIGURED = "env_configured"


@dataclass
class ProviderCredentials:
    key: str = ""
    status: CredentialStatus = CredentialStatus.IDLE
    error: str | None = None
    image_model: str | None = None
    video_model: str | None = None
    text_model: str | None = None
    image_models: list[ModelInfo] = field(default_factory=list)
    video_models: list[ModelInfo] = field(default_factory=list)
    text_models: list[ModelInfo] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return bool(self.key) and self.status in (CredentialStatus.VALID, CredentialStatus.ENV_CONFIGURED)


def _keep_or_first(current: str | None, models: list[ModelInfo], default: str | None) -> str | None:
    if current and any(m.id == current for m in models):
        return current
    return models[0].id if models else default


def parse_image_provider(value: str | ProviderName) -> ProviderName:
    """Image provider named by ``value``; only Google and aivideoauto render images.

    Raises:
        ValueError: If ``value`` names a text-only or unknown provider.
    """
    name = value.value if isinstance(value, ProviderName) else str(value).strip().lower()
    for provider in IMAGE_PROVIDERS:
        if provider.value == name:
            return provider
    choices = ", ".join(p.value for p in IMAGE_PROVIDERS)
    raise ValueError(f"Image provider must be one of {choices}, got {name!r}")


@dataclass
class ApiConfig:
    service: ProviderName = ProviderName.GOOGLE
    image_provider: ProviderName | None = None
    use_openai_for_prompt: bool = False
    credentials: dict[ProviderName, ProviderCredentials] = field(
        default_factory=lambda: {name: ProviderCredentials() for name in ProviderName}
    )
    store: CredentialStore | None = None

    def __getitem__(self, name: ProviderName) -> ProviderCredentials:
        return self.credentials[name]

    def is_ready(self, name: ProviderName) -> bool:
        return self.credentials[name].ready

    @classmethod
    def load(
        cls,
        store: CredentialStore,
        settings: GenerationSettings | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "ApiConfig":
        """Restore selections and keys from ``store``.

        Stored keys are taken as valid; call :meth:`save_key` to re-validate.
        A Google key from the environment is used only when none is stored.
        """
        settings = settings or GenerationSettings()
        environ = os.environ if environ is None else environ

        service = store.get("api_service", ProviderName.GOOGLE.value)
        image_provider = store.get("image_provider")
        config = cls(
            service=ProviderName(service) if service in _PROVIDER_VALUES else ProviderName.GOOGLE,
            image_provider=(
                ProviderName(image_provider)
                if image_provider in {p.value for p in IMAGE_PROVIDERS}
                else None
            ),
            use_openai_for_prompt=store.get("use_openai_for_prompt") == "true",
            store=store,
        )

        google = config[ProviderName.GOOGLE]
        google.image_model = store.get("google_image_model", settings.google_image_model)
        google.video_model = store.get("google_video_model", settings.google_video_model)
        config[ProviderName.OPENAI].text_model = store.get("openai_text_model", settings.openai_text_model)
        aiva = config[ProviderName.AIVIDEOAUTO]
        aiva.image_model = store.get("aivideoauto_image_model", settings.aivideoauto_image_model)
        aiva.video_model = store.get("aivideoauto_video_model", settings.aivideoauto_video_model)

        env_key = next((environ[v] for v in GOOGLE_ENV_VARS if environ.get(v)), None)
        for name, store_key in KEY_NAMES.items():
            stored = store.get(store_key)
            if stored:
                config[name].key = stored
                config[name].status = CredentialStatus.VALID
            elif name is ProviderName.GOOGLE and env_key:
                google.key = env_key
                google.status = CredentialStatus.ENV_CONFIGURED
        return config

    def set_service(self, service: ProviderName) -> None:
        self.service = service
        if self.store is not None:
            self.store.set("api_service", service.value)

    def set_image_provider(self, provider: str | ProviderName) -> None:
        self.image_provider = parse_image_provider(provider)
        if self.store is not None:
            self.store.set("image_provider", self.image_provider.value)

    def set_use_openai_for_prompt(self, enabled: bool) -> None:
        self.use_openai_for_prompt = enabled
        if self.store is not None:
            self.store.set("use_openai_for_prompt", "true" if enabled else "false")

    async def save_key(self, name: ProviderName, key: str, adapter: Any) -> bool:
        """Validate ``key`` with ``adapter`` and persist it on success.

        An empty key clears the stored credential. Returns True when the
        provider ends up ready.
        """
        creds = self.credentials[name]
        store_key = KEY_NAMES[name]
        if not key:
            logger.info("Clearing %s credentials", name.value)
            self.credentials[name] = ProviderCredentials(
                image_model=creds.image_model, video_model=creds.video_model, text_model=creds.text_model,
            )
            if self.store is not None:
                self.store.remove(store_key)
            return False

        logger.info("Validating %s credentials...", name.value)
        creds.status = CredentialStatus.VALIDATING
        creds.error = None
        try:
            await adapter.validate_credentials(key)
        except Exception as e:
            logger.error("%s credential validation failed: %s", name.value, e)
            creds.status = CredentialStatus.ERROR
            creds.error = str(e) or "Lỗi không xác định."
            return False

        try:
            catalog = await adapter.list_models(key)
        except Exception as e:
            logger.warning("Failed to list %s models, keeping defaults: %s", name.value, e)
        else:
            creds.image_models = catalog.image_models
            creds.video_models = catalog.video_models
            creds.text_models = catalog.text_models
            creds.image_model = _keep_or_first(creds.image_model, catalog.image_models, creds.image_model)
            creds.video_model = _keep_or_first(creds.video_model, catalog.video_models, creds.video_model)
            creds.text_model = _keep_or_first(creds.text_model, catalog.text_models, creds.text_model)

        creds.key = key
        creds.status = CredentialStatus.VALID
        logger.info("%s credentials valid", name.value)
        if self.store is not None:
            self.store.set(store_key, key)
        return True

