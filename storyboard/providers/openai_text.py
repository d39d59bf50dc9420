"""OpenAI chat-completions adapter for blueprint and scene text."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, Callable

import openai
from openai import AsyncOpenAI

from storyboard.errors import ErrorKind, ProviderError
from storyboard.models import SCENE_SECONDS, Blueprint, VideoStyle
from storyboard.providers.base import ModelCatalog, ModelInfo, ProviderName

if TYPE_CHECKING:
    from storyboard.config import ProviderCredentials

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
TEMPERATURE = 0.7

DEFAULT_TEXT_MODELS = [
    ModelInfo("gpt-4o", "GPT-4o"),
    ModelInfo("gpt-4o-mini", "GPT-4o Mini"),
    ModelInfo("gpt-4.1", "GPT-4.1"),
    ModelInfo("gpt-4.1-mini", "GPT-4.1 Mini"),
]

_INCLUDE = ("gpt", "4o", "4.1", "3.5", "instruct")
_EXCLUDE = ("embedding", "whisper", "tts", "audio", "speech", "image", "vision", "moderation")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


# ----------------------------------------------------------------
# Model list helpers
# ----------------------------------------------------------------

def is_text_model_id(model_id: str) -> bool:
    lowered = model_id.lower()
    return any(t in lowered for t in _INCLUDE) and not any(t in lowered for t in _EXCLUDE)


def pretty_model_name(model_id: str) -> str:
    """``gpt-4o-mini`` -> ``GPT 4o Mini``."""
    names = {"gpt": "GPT", "mini": "Mini", "instruct": "Instruct"}
    words = [names.get(p) or p.upper().replace("4O", "4o") for p in model_id.split("-")]
    return " ".join(w for w in words if w)


def _model_weight(model_id: str) -> int:
    x = model_id.lower()
    if "4o" in x and "mini" not in x:
        return 0
    if "4.1" in x and "mini" not in x:
        return 1
    if "4o" in x:
        return 2
    if "4.1" in x:
        return 3
    if "3.5" in x:
        return 4
    if "instruct" in x:
        return 5
    return 6


def sort_models(models: list[ModelInfo]) -> list[ModelInfo]:
    return sorted(models, key=lambda m: (_model_weight(m.id), m.id))


def extract_json(content: str, pattern: re.Pattern[str]) -> Any:
    """Parse the first JSON object/array found in free-form reply text."""
    match = pattern.search(content)
    if not match:
        raise ProviderError("Định dạng phản hồi không hợp lệ từ OpenAI", provider=ProviderName.OPENAI.value)
    return json.loads(match.group(0))


# ----------------------------------------------------------------
# Prompts
# ----------------------------------------------------------------

def blueprint_prompt(idea: str, num_scenes: int, style: VideoStyle) -> str:
    style = VideoStyle(style).value
    return f"""You are a professional storyboard creator. Create a detailed storyboard blueprint for a {style} video based on this idea: "{idea}"

The video should be approximately {num_scenes * SCENE_SECONDS} seconds long, divided into {num_scenes} scenes of {SCENE_SECONDS} seconds each.

Please respond with a JSON object in this exact format:
{{
  "characters": [
    {{"name": "Character Name", "description": "Detailed physical and personality description"}}
  ],
  "locations": [
    {{"name": "Location Name", "description": "Detailed description of the setting and atmosphere"}}
  ],
  "story_outline": [
    "Scene 1: Brief description of what happens",
    "Scene 2: Brief description of what happens",
    ...
  ]
}}

Make sure the story flows logically and each scene advances the narrative. Focus on visual storytelling appropriate for {style} style. All names, descriptions and outline points MUST be in Vietnamese."""


def scenes_prompt(blueprint: Blueprint, num_scenes: int) -> str:
    characters = "\n".join(f"- {c.name}: {c.description}" for c in blueprint.characters)
    locations = "\n".join(f"- {loc.name}: {loc.description}" for loc in blueprint.locations)
    outline = "\n".join(f"{i}. {p}" for i, p in enumerate(blueprint.story_outline, 1))
    return f"""You are a professional storyboard creator. Based on this blueprint, create detailed scene descriptions for {num_scenes} scenes.

CHARACTERS:
{characters}

LOCATIONS:
{locations}

STORY OUTLINE:
{outline}

Please respond with a JSON array of scene objects in this exact format:
[
  {{
    "title": "Scene 1",
    "action": "What the characters are doing in this scene",
    "setting": "Where the scene takes place",
    "cameraAngle": "Camera angle (e.g., Wide Shot, Close-up, Medium Shot)",
    "lighting": "Lighting description (e.g., Natural daylight, Dramatic shadows, Soft ambient)",
    "colorPalette": "Color scheme (e.g., Warm tones, Cool blues, High contrast)",
    "emotionalTone": "Mood/emotion (e.g., Tense, Joyful, Mysterious, Romantic)",
    "soundDesign": "Audio elements (e.g., Background music, Sound effects, Dialogue)",
    "vfx": "Visual effects if any (e.g., None, Particle effects, Slow motion)",
    "transition": "How this scene transitions to the next (e.g., Fade to black, Cut, Dissolve)",
    "duration": {SCENE_SECONDS},
    "notes": "Additional notes or context",
    "characterNames": ["Names of the characters present"],
    "locationNames": ["Name of the primary location"]
  }},
  ...
]

Make sure each scene is visually distinct and advances the story. Focus on cinematic details that would help with video production."""


# ----------------------------------------------------------------
# Provider
# ----------------------------------------------------------------

class OpenAITextProvider:
    """Prompt-only provider: blueprints and scene breakdowns via GPT."""

    name = ProviderName.OPENAI

    def __init__(
        self,
        credentials: ProviderCredentials,
        client_factory: Callable[..., Any] = AsyncOpenAI,
    ) -> None:
        self.credentials = credentials
        self._client_factory = client_factory

    def _client(self, key: str | None = None) -> Any:
        key = key or self.credentials.key
        if not key:
            raise ProviderError("Thiếu OpenAI API key", provider=self.name.value, kind=ErrorKind.UNAUTHORIZED)
        return self._client_factory(api_key=key)

    async def _chat(self, prompt: str, max_tokens: int) -> str:
        client = self._client()
        model = self.credentials.text_model or DEFAULT_MODEL
        logger.info("OpenAI chat (%s): %s", model, prompt[:80])
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=TEMPERATURE,
                max_tokens=max_tokens,
            )
        except openai.APIStatusError as e:
            raise ProviderError(
                f"Lỗi OpenAI API: {e.message}", provider=self.name.value,
                status_code=e.status_code, body=e.body,
            ) from e
        except openai.APIConnectionError as e:
            raise ProviderError(
                f"Network error: {e}", provider=self.name.value, kind=ErrorKind.NETWORK_FAILURE,
            ) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError("Không nhận được phản hồi từ OpenAI", provider=self.name.value)
        return content

    async def validate_credentials(self, key: str) -> None:
        client = self._client(key)
        try:
            await client.models.list()
        except openai.AuthenticationError as e:
            raise ProviderError(
                "API key không hợp lệ.", provider=self.name.value, status_code=e.status_code,
                kind=ErrorKind.UNAUTHORIZED,
            ) from e
        except openai.APIStatusError as e:
            raise ProviderError(
                f"Lỗi OpenAI API: {e.status_code}", provider=self.name.value, status_code=e.status_code,
            ) from e

    async def list_models(self, key: str) -> ModelCatalog:
        client = self._client(key)
        try:
            page = await client.models.list()
            ids = sorted({m.id for m in page.data if m.id and is_text_model_id(m.id)})
        except openai.OpenAIError as e:
            logger.warning("Failed to list OpenAI models, using defaults: %s", e)
            ids = []
        models = sort_models([ModelInfo(i, pretty_model_name(i)) for i in ids])
        return ModelCatalog(text_models=models or list(DEFAULT_TEXT_MODELS))

    async def generate_blueprint(self, idea: str, num_scenes: int, style: VideoStyle) -> Blueprint:
        content = await self._chat(blueprint_prompt(idea, num_scenes, style), max_tokens=2000)
        result = extract_json(content, _JSON_OBJECT)
        if not isinstance(result, dict) or not all(k in result for k in ("characters", "locations", "story_outline")):
            raise ProviderError("Cấu trúc blueprint không hợp lệ từ OpenAI", provider=self.name.value)
        logger.info("OpenAI blueprint generated")
        return Blueprint.from_payload(result)

    async def generate_scenes(self, blueprint: Blueprint, num_scenes: int) -> list[dict[str, Any]]:
        content = await self._chat(scenes_prompt(blueprint, num_scenes), max_tokens=3000)
        result = extract_json(content, _JSON_ARRAY)
        if not isinstance(result, list) or not result:
            raise ProviderError("Cấu trúc scenes không hợp lệ từ OpenAI", provider=self.name.value)
        logger.info("OpenAI returned %d scenes", len(result))
        return [s for s in result if isinstance(s, dict)]
