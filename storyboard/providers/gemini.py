"""Google Gemini / Imagen / Veo adapter built on google-genai."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence, TypeVar

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from storyboard.errors import ErrorKind, ProviderError, StoryboardError, USER_MESSAGES
from storyboard.models import Blueprint, Character, Location, Scene, UploadedImage, VideoStyle
from storyboard.prompts import reference_preamble
from storyboard.providers.base import ModelCatalog, ModelInfo, ProgressCallback, ProviderName
from storyboard.retry import with_retry
from storyboard.vocabulary import (
    CAMERA_ANGLES,
    COLOR_PALETTES,
    CUTTING_STYLES,
    IMAGE_SHOT_TYPES,
    NEGATIVE_PROMPT_NO_TEXT,
    PROVIDER_STYLE_TAGS,
    TRANSITIONS,
)

if TYPE_CHECKING:
    from storyboard.config import GenerationSettings, ProviderCredentials

logger = logging.getLogger(__name__)

T = TypeVar("T")

TEXT_MODEL = "gemini-2.5-flash"
FLASH_IMAGE_MODEL = "gemini-2.5-flash-image"
IMAGEN_MODEL = "imagen-4.0-generate-001"
VEO_POLL_INTERVAL = 10.0
_DOWNLOAD_TIMEOUT = 300.0

DEFAULT_IMAGE_MODELS = [
    ModelInfo(FLASH_IMAGE_MODEL, "Gemini 2.5 Flash Image"),
    ModelInfo(IMAGEN_MODEL, "Imagen 4 (Generate)"),
]
DEFAULT_VIDEO_MODELS = [ModelInfo("veo-2.0-generate-001", "Veo 2 (8s 720p/1080p)")]
DEFAULT_SHOT_SUGGESTIONS = ["Cinematic Wide Shot", "Cinematic Medium Shot", "Cinematic Close-up Shot"]

VEO_PROGRESS_MESSAGES = [
    "Bắt đầu render...",
    "Đang xử lý các khung hình...",
    "Áp dụng hiệu ứng và màu sắc...",
    "Giai đoạn cuối, sắp hoàn thành...",
    "Đang hoàn tất quá trình...",
]


# ----------------------------------------------------------------
# Response schemas
# ----------------------------------------------------------------

_NAMED_ENTITY = {
    "type": "OBJECT",
    "properties": {"name": {"type": "STRING"}, "description": {"type": "STRING"}},
    "required": ["name", "description"],
}

BLUEPRINT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "characters": {"type": "ARRAY", "items": _NAMED_ENTITY},
        "locations": {"type": "ARRAY", "items": _NAMED_ENTITY},
        "story_outline": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["characters", "locations", "story_outline"],
}

SCENES_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING"},
            "action": {"type": "STRING"},
            "setting": {"type": "STRING"},
            "cameraAngle": {"type": "STRING", "enum": CAMERA_ANGLES},
            "cuttingStyle": {
                "type": "STRING",
                "enum": CUTTING_STYLES,
                "description": "The editing cut style used within the scene.",
            },
            "lighting": {"type": "STRING"},
            "colorPalette": {"type": "STRING", "enum": COLOR_PALETTES},
            "soundDesign": {"type": "STRING"},
            "emotionalTone": {"type": "STRING"},
            "vfx": {"type": "STRING"},
            "transition": {"type": "STRING", "enum": list(TRANSITIONS)},
            "duration": {"type": "INTEGER"},
            "notes": {"type": "STRING"},
            "characterNames": {
                "type": "ARRAY",
                "items": {"type": "STRING"},
                "description": "Names of characters present in this scene.",
            },
            "locationNames": {
                "type": "ARRAY",
                "items": {"type": "STRING"},
                "description": "Names of locations for this scene.",
            },
        },
        "required": [
            "title", "action", "setting", "cameraAngle", "cuttingStyle", "lighting",
            "colorPalette", "soundDesign", "emotionalTone", "vfx", "transition",
            "duration", "notes", "characterNames", "locationNames",
        ],
    },
}

IMAGE_DETAILS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING", "description": "A short, simple title for the scene."},
        "action": {"type": "STRING", "description": "The primary action happening in the scene."},
        "setting": {
            "type": "STRING",
            "description": "A detailed description of the setting, time of day, and environment.",
        },
        "cameraAngle": {
            "type": "STRING",
            "enum": CAMERA_ANGLES,
            "description": "The most fitting camera angle from the provided list.",
        },
        "lighting": {"type": "STRING", "description": "A description of the lighting in the scene."},
        "colorPalette": {
            "type": "STRING",
            "enum": COLOR_PALETTES,
            "description": "The most fitting color palette from the provided list.",
        },
        "soundDesign": {
            "type": "STRING",
            "description": "Suggested background sounds, sound effects, or music.",
        },
        "emotionalTone": {"type": "STRING", "description": "The dominant emotional tone of the scene."},
        "vfx": {"type": "STRING", "description": 'Any visual effects needed, or "None".'},
        "transition": {
            "type": "STRING",
            "enum": list(TRANSITIONS),
            "description": "The most fitting transition to the next scene.",
        },
        "duration": {"type": "INTEGER", "description": "Duration in seconds (e.g., 8)."},
        "notes": {"type": "STRING", "description": "Brief director's notes (e.g., sound effects, mood)."},
    },
    "required": [
        "title", "action", "setting", "cameraAngle", "lighting", "colorPalette",
        "soundDesign", "emotionalTone", "vfx", "transition", "duration", "notes",
    ],
}


# ----------------------------------------------------------------
# Prompts
# ----------------------------------------------------------------

def blueprint_prompt(idea: str, num_scenes: int, style: VideoStyle) -> str:
    style = VideoStyle(style).value
    return f"""You are a creative director specializing in the visual style of **{style}**. Your task is to analyze a video idea and break it down into its core creative components, ensuring all descriptions align with this specific aesthetic.

**Core Idea:** "{idea}"
**Approximate number of scenes desired:** {num_scenes}
**Target Visual Style:** {style}

**Instructions:**
1.  **Identify Main Characters:** List the key characters. For each, provide a name and a detailed visual description. The description MUST be rich and evocative, tailored specifically to the **{style}** style, making it ready for an AI image generator.
2.  **Identify Main Locations:** List the key settings or locations. For each, provide a name and a detailed visual description, also crafted to perfectly match the **{style}** aesthetic.
3.  **Create a Story Outline:** Write a brief, high-level story outline with 3-5 key plot points that cover the beginning, middle, and end of the story.
4.  **Copyright Consideration:** If the idea mentions specific copyrighted characters (e.g., Batman, Elsa from Frozen), do NOT use their names or exact likenesses. Instead, create new, original characters that are heavily *inspired* by them. Give them a new name and describe their appearance in a way that captures the essence and style of the original, but is legally distinct.
5.  **Language:** All output content (names, descriptions, outline points) MUST be in Vietnamese.

**Output Format:** Respond with a single JSON object with the keys "characters", "locations", and "story_outline"."""


def scenes_prompt(blueprint: Blueprint, num_scenes: int) -> str:
    characters = "\n".join(f"- {c.name}: {c.description}" for c in blueprint.characters)
    locations = "\n".join(f"- {loc.name}: {loc.description}" for loc in blueprint.locations)
    outline = "\n".join(f"- {p}" for p in blueprint.story_outline)
    return f"""You are an expert cinematic storyteller. Your task is to generate a detailed storyboard based on a pre-approved creative blueprint.

**CREATIVE BLUEPRINT:**
**Characters (Use these EXACTLY):**
{characters}

**Locations (Use these EXACTLY):**
{locations}

**Story Outline:**
{outline}

**RULES:**
1.  **Total Scenes:** Generate exactly {num_scenes} scenes.
2.  **Consistency:** The scenes must ONLY use the characters and locations provided in the blueprint. Assign the correct characters and location to each scene.
3.  **Visual Storytelling:** Create scenes with dynamic composition and diverse camera angles. Describe what is visually happening.
4.  **Scene Duration:** Each scene must have a "duration" field set to 8.
5.  **Cutting Style:** For each scene, choose the most appropriate 'cuttingStyle' from the provided list to describe how shots are edited *within* the 8-second clip.
6.  **Output Format:** Respond with a JSON array of scene objects. For each scene, include which characters are present ('characterNames') and the primary location ('locationNames').
7.  **Language:** All text-based field values (title, action, setting, lighting, soundDesign, emotionalTone, notes, etc.) MUST be in Vietnamese."""


IMAGE_ANALYSIS_PROMPT = (
    "You are a professional cinematographer analyzing a single frame to break it down for a "
    "storyboard. Your task is to extract key details from the provided image. Be descriptive, "
    "objective, and focus only on what is visually present in the image. Do not invent details "
    "that are not in the frame.\n\n"
    "Fill out the following parameters in a JSON object, providing a detailed description for "
    "each field based *only* on the visual content. All descriptions and text values in the JSON "
    "output MUST be in Vietnamese."
)


def shot_suggestion_prompt(scene_prompt: str) -> str:
    options = ", ".join(IMAGE_SHOT_TYPES)
    return (
        "You are an expert cinematographer. Based on the following scene description, choose the "
        "THREE most compelling, diverse, and story-driven camera shot types from the provided list. "
        "Your choices should enhance the narrative and emotional impact of the scene. Do not choose "
        'simple shots like "Cinematic Wide Shot" or "Cinematic Medium Shot" unless they are '
        "absolutely essential. Prioritize creative and dynamic angles.\n\n"
        f'Scene Description: "{scene_prompt}"\n\n'
        f"Available Shot Types: [{options}]\n\n"
        "Respond with ONLY a JSON array containing exactly three strings from the list above. "
        'Example: ["High-angle Shot", "Point of View (POV) Shot", "Dutch Angle Shot"]'
    )


def sketch_prompt(scene: Scene, style: VideoStyle) -> str:
    return (
        "Create a very simple, minimalist, black and white line drawing sketch that visually "
        "represents the following scene description. The style should be like a quick storyboard "
        "sketch, focusing on composition and character placement, not detail. "
        f'Scene: "{scene.action}, {scene.setting}". Style hint: {PROVIDER_STYLE_TAGS[VideoStyle(style)]}.'
    )


# ----------------------------------------------------------------
# Provider
# ----------------------------------------------------------------

class GeminiProvider:
    """Text, image, sketch and Veo video generation through the Gemini API.

    The API key and model selection are read from ``credentials`` on every
    call so a re-validated key takes effect immediately.
    """

    name = ProviderName.GOOGLE
    applies_style = True

    def __init__(
        self,
        credentials: ProviderCredentials,
        settings: GenerationSettings,
        client_factory: Callable[..., Any] = genai.Client,
        http: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.credentials = credentials
        self.settings = settings
        self._client_factory = client_factory
        self._http = http
        self._sleep = sleep

    # ----------------------------------------------------------------
    # Plumbing
    # ----------------------------------------------------------------

    def _client(self, key: str | None = None) -> Any:
        key = key or self.credentials.key
        if not key:
            raise ProviderError(
                "API Key for Google is not configured.", provider=self.name.value,
                kind=ErrorKind.UNAUTHORIZED,
            )
        return self._client_factory(api_key=key)

    async def _call(self, make: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            try:
                return await make()
            except genai_errors.APIError as e:
                raise ProviderError(
                    str(e), provider=self.name.value, status_code=e.code, body=e.details,
                ) from e

        return await with_retry(
            attempt, self.settings.max_retries, self.settings.initial_delay, self._sleep,
        )

    async def _generate_json(self, contents: Any, schema: dict) -> Any:
        client = self._client()
        response = await self._call(lambda: client.aio.models.generate_content(
            model=TEXT_MODEL,
            contents=contents,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=schema,
            ),
        ))
        text = (response.text or "").strip()
        if not text:
            raise ProviderError("Gemini returned an empty response", provider=self.name.value)
        return json.loads(text)

    # ----------------------------------------------------------------
    # Credentials
    # ----------------------------------------------------------------

    async def validate_credentials(self, key: str) -> None:
        client = self._client(key)
        try:
            await client.aio.models.generate_content(
                model=TEXT_MODEL,
                contents="test",
                config=types.GenerateContentConfig(
                    max_output_tokens=1,
                    thinking_config=types.ThinkingConfig(thinking_budget=0),
                ),
            )
        except genai_errors.APIError as e:
            text = str(e)
            if "API key not valid" in text or "API_KEY_INVALID" in text:
                raise ProviderError(
                    "API key không hợp lệ. Vui lòng kiểm tra lại.", provider=self.name.value,
                    status_code=e.code, kind=ErrorKind.UNAUTHORIZED,
                ) from e
            raise ProviderError(
                "Không thể xác thực API key. Vui lòng kiểm tra kết nối và key.",
                provider=self.name.value, status_code=e.code,
            ) from e

    async def list_models(self, key: str) -> ModelCatalog:
        """Categorize the models visible to ``key``, falling back to defaults."""
        client = self._client(key)
        image: dict[str, ModelInfo] = {}
        video: dict[str, ModelInfo] = {}
        try:
            pager = await client.aio.models.list()
            async for model in pager:
                model_id = (model.name or "").removeprefix("models/")
                lower = model_id.lower()
                if "image" in lower or "imagen" in lower:
                    image[model_id] = ModelInfo(model_id, model.display_name or model_id)
                if "veo" in lower:
                    video[model_id] = ModelInfo(model_id, model.display_name or model_id)
        except genai_errors.APIError as e:
            logger.warning("Listing Gemini models failed, using defaults: %s", e)
        return ModelCatalog(
            image_models=list(image.values()) or list(DEFAULT_IMAGE_MODELS),
            video_models=list(video.values()) or list(DEFAULT_VIDEO_MODELS),
        )

    # ----------------------------------------------------------------
    # Text
    # ----------------------------------------------------------------

    async def generate_blueprint(self, idea: str, num_scenes: int, style: VideoStyle) -> Blueprint:
        logger.info("Generating blueprint (%d scenes, %s): %s", num_scenes, VideoStyle(style).value, idea[:80])
        payload = await self._generate_json(blueprint_prompt(idea, num_scenes, style), BLUEPRINT_SCHEMA)
        blueprint = Blueprint.from_payload(payload)
        logger.info(
            "Blueprint: %d characters, %d locations, %d outline points",
            len(blueprint.characters), len(blueprint.locations), len(blueprint.story_outline),
        )
        return blueprint

    async def generate_scenes(self, blueprint: Blueprint, num_scenes: int) -> list[dict[str, Any]]:
        logger.info("Generating %d scenes from blueprint", num_scenes)
        result = await self._generate_json(scenes_prompt(blueprint, num_scenes), SCENES_SCHEMA)
        scenes = [s for s in result if isinstance(s, dict)] if isinstance(result, list) else []
        logger.info("Gemini returned %d scenes", len(scenes))
        return scenes

    async def suggest_shot_types(self, scene_prompt: str) -> list[str]:
        """Three shot types for ``scene_prompt``; the default trio on any failure."""
        try:
            result = await self._generate_json(
                shot_suggestion_prompt(scene_prompt), {"type": "ARRAY", "items": {"type": "STRING"}},
            )
        except (StoryboardError, ValueError) as e:
            logger.warning("Shot suggestion failed, using defaults: %s", e)
            return list(DEFAULT_SHOT_SUGGESTIONS)
        if isinstance(result, list) and len(result) == 3 and all(isinstance(s, str) for s in result):
            return result
        logger.warning("Expected three shot types, got %r; using defaults", result)
        return list(DEFAULT_SHOT_SUGGESTIONS)

    async def describe_image(self, image: UploadedImage) -> dict[str, Any]:
        contents = [
            types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
            IMAGE_ANALYSIS_PROMPT,
        ]
        result = await self._generate_json(contents, IMAGE_DETAILS_SCHEMA)
        if not isinstance(result, dict):
            raise ValueError("Image analysis did not return an object")
        return result

    # ----------------------------------------------------------------
    # Images
    # ----------------------------------------------------------------

    def _image_from_response(self, response: Any, name: str) -> UploadedImage:
        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and feedback.block_reason:
            raise ProviderError(f"Yêu cầu bị chặn vì lý do: {feedback.block_reason}.", provider=self.name.value)

        text = (response.text or "").strip()
        if not response.candidates:
            if text:
                raise ProviderError(f'API không trả về ảnh. Phản hồi: "{text}"', provider=self.name.value)
            raise ProviderError("API không trả về kết quả.", provider=self.name.value)

        candidate = response.candidates[0]
        reason = candidate.finish_reason
        if reason and reason != types.FinishReason.STOP:
            if text:
                raise ProviderError(f'Tạo ảnh thất bại ({reason}). Phản hồi: "{text}"', provider=self.name.value)
            raise ProviderError(f"Tạo ảnh thất bại. Lý do: {reason}.", provider=self.name.value)

        parts = candidate.content.parts if candidate.content and candidate.content.parts else []
        for part in parts:
            if part.inline_data is not None and part.inline_data.data:
                return UploadedImage.from_bytes(part.inline_data.data, part.inline_data.mime_type, name)
        if text:
            raise ProviderError(f'API chỉ trả về văn bản, không có ảnh: "{text}"', provider=self.name.value)
        raise ProviderError("Không thể trích xuất ảnh từ phản hồi của API.", provider=self.name.value)

    async def _flash_image(self, parts: list[Any], name: str) -> UploadedImage:
        client = self._client()
        response = await self._call(lambda: client.aio.models.generate_content(
            model=FLASH_IMAGE_MODEL,
            contents=parts,
            config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
        ))
        return self._image_from_response(response, name)

    async def _imagen(self, prompt: str, model: str, aspect: str, mime_type: str) -> bytes:
        client = self._client()
        response = await self._call(lambda: client.aio.models.generate_images(
            model=model,
            prompt=prompt,
            config=types.GenerateImagesConfig(
                number_of_images=1, output_mime_type=mime_type, aspect_ratio=aspect,
            ),
        ))
        generated = response.generated_images or []
        if not generated or not generated[0].image or not generated[0].image.image_bytes:
            raise ProviderError("API response did not contain image data.", provider=self.name.value)
        return generated[0].image.image_bytes

    async def generate_image(
        self,
        prompt: str,
        character_refs: Sequence[Character] = (),
        location_refs: Sequence[Location] = (),
        model: str | None = None,
        style: VideoStyle = VideoStyle.CINEMATIC,
        aspect: str = "16:9",
        name: str = "image.png",
    ) -> UploadedImage:
        """Generate one image, attaching reference images when given.

        References force the flash-image model. Otherwise Imagen is used
        unless the flash-image model is selected, and a billing rejection
        from Imagen falls back to flash-image.
        """
        model = model or self.credentials.image_model or FLASH_IMAGE_MODEL
        style_tag = PROVIDER_STYLE_TAGS[VideoStyle(style)]
        has_refs = bool(character_refs) or bool(location_refs)
        logger.info(
            "Gemini image (%s, %s, refs=%d): %s",
            FLASH_IMAGE_MODEL if has_refs else model, aspect,
            len(character_refs) + len(location_refs), prompt[:80],
        )

        if has_refs or model == FLASH_IMAGE_MODEL:
            instruction = prompt
            if has_refs:
                instruction = reference_preamble(
                    [c.name for c in character_refs], [loc.name for loc in location_refs],
                ) + prompt
            parts: list[Any] = [
                f"{style_tag} {instruction}. IMPORTANT: Strictly adhere to a {aspect} aspect ratio. "
                "Do not output a square image. Do not include any form of text, subtitles, or words "
                "in the generated image."
            ]
            for entity in (*location_refs, *character_refs):
                if entity.image is not None:
                    parts.append(types.Part.from_bytes(data=entity.image.data, mime_type=entity.image.mime_type))
            return await self._flash_image(parts, name)

        imagen_prompt = (
            f"{style_tag} {prompt}. A cinematic photograph with an aspect ratio of {aspect}. "
            f"Do not include: {NEGATIVE_PROMPT_NO_TEXT}."
        )
        try:
            data = await self._imagen(imagen_prompt, model, aspect, "image/jpeg")
        except ProviderError as e:
            if "only accessible to billed users" not in str(e):
                raise
            logger.warning("Imagen requires billing, falling back to %s", FLASH_IMAGE_MODEL)
            return await self._flash_image(
                [f"{style_tag} {prompt}. IMPORTANT: Strictly adhere to a {aspect} aspect ratio. Do not include any text."],
                name,
            )
        return UploadedImage.from_bytes(data, "image/jpeg", name.rsplit(".", 1)[0] + ".jpeg")

    async def edit_image(
        self,
        image: UploadedImage,
        prompt: str,
        refs: Sequence[UploadedImage] = (),
        aspect: str = "16:9",
        model: str | None = None,
    ) -> UploadedImage:
        logger.info("Gemini edit (%d refs): %s", len(refs), prompt[:80])
        parts: list[Any] = [types.Part.from_bytes(data=image.data, mime_type=image.mime_type)]
        parts.extend(types.Part.from_bytes(data=r.data, mime_type=r.mime_type) for r in refs)
        base = (
            "Edit the first image based on the following instructions. Use the subsequent image(s) "
            f"as a style or content reference where applicable. Instructions: {prompt}"
            if refs else prompt
        )
        parts.append(
            f"{base}. IMPORTANT: Strictly adhere to a {aspect} aspect ratio for the final image. "
            "Do not change the dimensions or crop the image. Do not add any text, subtitles, or "
            "words to the image."
        )
        return await self._flash_image(parts, image.name)

    async def generate_sketch(self, scene: Scene, style: VideoStyle, aspect: str, name: str) -> UploadedImage:
        logger.info("Gemini sketch for scene %s", scene.id)
        data = await self._imagen(sketch_prompt(scene, style), IMAGEN_MODEL, aspect, "image/png")
        return UploadedImage.from_bytes(data, "image/png", name)

    # ----------------------------------------------------------------
    # Video
    # ----------------------------------------------------------------

    async def generate_video(
        self,
        scene: Scene,
        model: str | None,
        on_progress: ProgressCallback,
        on_task: Callable[[str], None] | None = None,
    ) -> str:
        """Render ``scene`` with Veo and return a ``file://`` URI to the mp4.

        Polls every 10 s with rotating status messages. Raises a TIMEOUT
        error once ``settings.max_wait`` seconds have elapsed.
        """
        client = self._client()
        model = model or self.credentials.video_model or DEFAULT_VIDEO_MODELS[0].id
        prompt = scene.video_prompt or "Animate this image."
        source = (
            types.Image(image_bytes=scene.main_image.data, mime_type=scene.main_image.mime_type)
            if scene.main_image else None
        )
        logger.info("Veo request (%s, image=%s): %s", model, source is not None, prompt[:80])

        operation = await self._call(lambda: client.aio.models.generate_videos(
            model=model,
            prompt=prompt,
            image=source,
            config=types.GenerateVideosConfig(number_of_videos=1),
        ))
        if on_task is not None and operation.name:
            on_task(operation.name)

        on_progress(VEO_PROGRESS_MESSAGES[0])
        tick = 1
        elapsed = 0.0
        while not operation.done:
            if elapsed >= self.settings.max_wait:
                raise StoryboardError(USER_MESSAGES[ErrorKind.TIMEOUT], ErrorKind.TIMEOUT)
            await self._sleep(VEO_POLL_INTERVAL)
            elapsed += VEO_POLL_INTERVAL
            logger.debug("Polling Veo operation %s (%.0fs)", operation.name, elapsed)
            operation = await self._call(lambda: client.aio.operations.get(operation))
            if not operation.done:
                on_progress(VEO_PROGRESS_MESSAGES[tick % len(VEO_PROGRESS_MESSAGES)])
                tick += 1

        if operation.error:
            raise ProviderError(str(operation.error.get("message", operation.error)), provider=self.name.value)
        videos = operation.response.generated_videos if operation.response else None
        video = videos[0].video if videos else None
        if video is None or not (video.uri or video.video_bytes):
            on_progress("Lỗi: Không nhận được video.")
            raise ProviderError("API did not return a video download link.", provider=self.name.value)

        on_progress("Đang tải xuống video...")
        data = video.video_bytes or await self._download(video.uri)
        self.settings.videos_dir.mkdir(parents=True, exist_ok=True)
        path = self.settings.videos_dir / f"{scene.id}.mp4"
        await asyncio.to_thread(path.write_bytes, data)
        logger.info("Veo video saved: %s (%d bytes)", path, len(data))
        return path.resolve().as_uri()

    async def _download(self, uri: str) -> bytes:
        headers = {"x-goog-api-key": self.credentials.key}
        if self._http is not None:
            resp = await self._http.get(uri, headers=headers, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(_DOWNLOAD_TIMEOUT, connect=10.0)) as http:
                resp = await http.get(uri, headers=headers, follow_redirects=True)
        if resp.status_code >= 400:
            raise ProviderError(
                f"Failed to fetch the generated video (status: {resp.status_code}).",
                provider=self.name.value, status_code=resp.status_code,
            )
        return resp.content
