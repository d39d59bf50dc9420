import asyncio

import pytest
import yaml

from storyboard.config import (
    ApiConfig,
    CredentialStatus,
    CredentialStore,
    ProviderCredentials,
    load_config,
    parse_image_provider,
    settings_from_config,
)
from storyboard.models import VideoStyle
from storyboard.providers.base import ModelCatalog, ModelInfo, ProviderName


class Adapter:
    def __init__(self, error=None, catalog=None):
        self.error = error
        self.catalog = catalog or ModelCatalog()
        self.validated = []

    async def validate_credentials(self, key):
        self.validated.append(key)
        if self.error:
            raise self.error

    async def list_models(self, key):
        return self.catalog


def test_settings_from_config(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump({
        "project": {"videos_dir": "out/videos"},
        "generation": {"video_style": "3d-pixar", "video_duration": 16, "max_concurrency": 2},
        "polling": {"interval_seconds": 1, "max_wait_seconds": 30},
        "retry": {"rate_limit_delay_seconds": 0.5},
    }))
    config = load_config(str(config_file))
    settings = settings_from_config(config, str(config_file))

    assert settings.style is VideoStyle.PIXAR_3D
    assert settings.video_duration == 16
    assert settings.max_concurrency == 2
    assert settings.poll_interval == 1.0
    assert settings.max_wait == 30.0
    assert settings.rate_limit_delay == 0.5
    assert settings.videos_dir == tmp_path.resolve() / "out" / "videos"
    assert settings.aspect == "16:9"


def test_load_config_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_credential_store_round_trip(tmp_path):
    path = tmp_path / "creds.yaml"
    store = CredentialStore(path)
    store.set("openai_api_key", "sk-1")
    store.set("api_service", "openai")
    store.remove("api_service")

    reloaded = CredentialStore(path)
    assert reloaded.get("openai_api_key") == "sk-1"
    assert reloaded.get("api_service") is None


def test_credential_store_rejects_non_mapping(tmp_path):
    path = tmp_path / "creds.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        CredentialStore(path)


def test_readiness_needs_key_and_good_status():
    assert not ProviderCredentials(key="k").ready
    assert not ProviderCredentials(status=CredentialStatus.VALID).ready
    assert ProviderCredentials(key="k", status=CredentialStatus.VALID).ready
    assert ProviderCredentials(key="k", status=CredentialStatus.ENV_CONFIGURED).ready
    assert not ProviderCredentials(key="k", status=CredentialStatus.ERROR).ready


def test_load_restores_stored_keys_and_selection(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    store.set("api_service", "openai")
    store.set("image_provider", "google")
    store.set("aivideoauto_access_token", "tok")

    config = ApiConfig.load(store, environ={})
    assert config.service is ProviderName.OPENAI
    assert config.image_provider is ProviderName.GOOGLE
    assert config.is_ready(ProviderName.AIVIDEOAUTO)
    assert not config.is_ready(ProviderName.GOOGLE)
    assert config[ProviderName.GOOGLE].video_model == "veo-2.0-generate-001"


def test_environment_key_used_only_without_stored_key(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    config = ApiConfig.load(store, environ={"GEMINI_API_KEY": "env-key"})
    assert config[ProviderName.GOOGLE].status is CredentialStatus.ENV_CONFIGURED
    assert config.is_ready(ProviderName.GOOGLE)

    store.set("google_gemini_api_key", "stored-key")
    config = ApiConfig.load(store, environ={"GEMINI_API_KEY": "env-key"})
    assert config[ProviderName.GOOGLE].key == "stored-key"
    assert config[ProviderName.GOOGLE].status is CredentialStatus.VALID


def test_unknown_stored_service_falls_back_to_google(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    store.set("api_service", "higgsfield")
    assert ApiConfig.load(store, environ={}).service is ProviderName.GOOGLE


def test_save_key_validates_persists_and_picks_models(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    config = ApiConfig.load(store, environ={})
    adapter = Adapter(catalog=ModelCatalog(
        image_models=[ModelInfo("img-a", "A"), ModelInfo("img-b", "B")],
        video_models=[ModelInfo("vid-a", "A")],
    ))

    assert asyncio.run(config.save_key(ProviderName.AIVIDEOAUTO, "tok", adapter))
    creds = config[ProviderName.AIVIDEOAUTO]
    assert creds.ready
    assert creds.image_model == "img-a"
    assert creds.video_model == "vid-a"
    assert CredentialStore(tmp_path / "creds.yaml").get("aivideoauto_access_token") == "tok"


def test_save_key_failure_marks_error_and_keeps_store(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    config = ApiConfig.load(store, environ={})
    adapter = Adapter(error=RuntimeError("API key not valid"))

    assert not asyncio.run(config.save_key(ProviderName.OPENAI, "bad", adapter))
    creds = config[ProviderName.OPENAI]
    assert creds.status is CredentialStatus.ERROR
    assert creds.error == "API key not valid"
    assert not creds.ready
    assert store.get("openai_api_key") is None


def test_empty_key_clears_credentials(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    store.set("openai_api_key", "sk-1")
    config = ApiConfig.load(store, environ={})
    assert config.is_ready(ProviderName.OPENAI)

    assert not asyncio.run(config.save_key(ProviderName.OPENAI, "", Adapter()))
    assert not config.is_ready(ProviderName.OPENAI)
    assert config[ProviderName.OPENAI].text_model == "gpt-4o"
    assert store.get("openai_api_key") is None


@pytest.mark.parametrize("value, expected", [
    ("google", ProviderName.GOOGLE),
    (" AivideoAuto ", ProviderName.AIVIDEOAUTO),
    (ProviderName.GOOGLE, ProviderName.GOOGLE),
])
def test_parse_image_provider(value, expected):
    assert parse_image_provider(value) is expected


@pytest.mark.parametrize("value", ["openai", ProviderName.OPENAI, "higgsfield"])
def test_parse_image_provider_rejects_providers_without_images(value):
    with pytest.raises(ValueError, match="google, aivideoauto"):
        parse_image_provider(value)


def test_set_image_provider_validates_before_persisting(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    config = ApiConfig.load(store, environ={})

    config.set_image_provider("aivideoauto")
    with pytest.raises(ValueError):
        config.set_image_provider(ProviderName.OPENAI)

    assert config.image_provider is ProviderName.AIVIDEOAUTO
    assert CredentialStore(tmp_path / "creds.yaml").get("image_provider") == "aivideoauto"


def test_stored_openai_image_provider_is_ignored(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    store.set("image_provider", "openai")
    assert ApiConfig.load(store, environ={}).image_provider is None


def test_use_openai_for_prompt_round_trip(tmp_path):
    store = CredentialStore(tmp_path / "creds.yaml")
    ApiConfig.load(store, environ={}).set_use_openai_for_prompt(True)

    assert ApiConfig.load(CredentialStore(tmp_path / "creds.yaml"), environ={}).use_openai_for_prompt
