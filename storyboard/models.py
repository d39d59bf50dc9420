"""Data models for the storyboard orchestration core."""

from __future__ import annotations

import base64
import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any

MAX_IMAGE_OPTIONS = 3
SCENE_SECONDS = 8


class VideoStyle(str, Enum):
    CINEMATIC = "cinematic"
    HYPER_REALISTIC_3D = "hyper-realistic-3d"
    PIXAR_3D = "3d-pixar"


class VideoStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    DONE = "done"
    ERROR = "error"


class EntityStatus(str, Enum):
    SUGGESTED = "suggested"  # proposed by text generation, not rendered yet
    DEFINED = "defined"


def uid() -> str:
    """Return a short opaque identifier."""
    return uuid.uuid4().hex[:9]


@dataclass(frozen=True)
class ProviderImageRef:
    """Handle of an image already registered on a provider's server."""
    id_base: str
    url: str


@dataclass
class UploadedImage:
    """An in-memory image encoded as a data URL."""
    name: str
    mime_type: str
    size: int
    data_url: str
    provider_ref: ProviderImageRef | None = None

    @property
    def base64_data(self) -> str:
        return self.data_url.split(",", 1)[1] if "," in self.data_url else self.data_url

    @property
    def data(self) -> bytes:
        return base64.b64decode(self.base64_data)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str, name: str, **kwargs: Any) -> UploadedImage:
        encoded = base64.b64encode(data).decode("ascii")
        return cls(
            name=name,
            mime_type=mime_type,
            size=len(data),
            data_url=f"data:{mime_type};base64,{encoded}",
            **kwargs,
        )

    @classmethod
    def from_dict(cls, data: dict | None) -> UploadedImage | None:
        if not data:
            return None
        ref = data.get("provider_ref")
        return cls(
            name=data.get("name", "image"),
            mime_type=data.get("mime_type", "image/png"),
            size=data.get("size", 0),
            data_url=data["data_url"],
            provider_ref=ProviderImageRef(**ref) if ref else None,
        )


@dataclass
class Annotation:
    """A director's note pinned to a sketch at a normalized 0-100 position."""
    text: str
    x: float
    y: float
    type: str = "note"  # note | pose | camera
    id: str = field(default_factory=uid)


@dataclass
class Character:
    name: str
    description: str = ""
    image: UploadedImage | None = None
    status: EntityStatus = EntityStatus.DEFINED
    id: str = field(default_factory=uid)

    @classmethod
    def from_dict(cls, data: dict) -> Character:
        return cls(
            id=data.get("id") or uid(),
            name=data.get("name", ""),
            description=data.get("description", ""),
            image=UploadedImage.from_dict(data.get("image")),
            status=EntityStatus(data.get("status", EntityStatus.DEFINED.value)),
        )


@dataclass
class Location:
    name: str
    description: str = ""
    image: UploadedImage | None = None
    status: EntityStatus = EntityStatus.DEFINED
    id: str = field(default_factory=uid)

    @classmethod
    def from_dict(cls, data: dict) -> Location:
        return cls(
            id=data.get("id") or uid(),
            name=data.get("name", ""),
            description=data.get("description", ""),
            image=UploadedImage.from_dict(data.get("image")),
            status=EntityStatus(data.get("status", EntityStatus.DEFINED.value)),
        )


@dataclass
class Scene:
    """One ~8-second storyboard segment."""
    title: str = ""
    main_image: UploadedImage | None = None
    image_options: list[UploadedImage] = field(default_factory=list)
    sketch_image: UploadedImage | None = None
    sketch_annotations: list[Annotation] = field(default_factory=list)
    image_shot_type: str = "Cinematic Wide Shot"
    image_prompt: str = ""
    video_prompt: str = ""
    image_model: str | None = None
    negative_prompt: str = ""
    action: str = ""
    setting: str = ""
    camera_angle: str = "None"
    cutting_style: str = "Hard Cut"
    use_advanced_video_settings: bool = True
    lighting: str = ""
    color_palette: str = ""
    sound_design: str = ""
    emotional_tone: str = ""
    vfx: str = "None"
    transition: str = "None"
    duration: int | None = SCENE_SECONDS
    aspect: str = "16:9"
    seed: int | None = None
    strength: float | None = None
    notes: str = ""
    character_ids: list[str] = field(default_factory=list)
    location_ids: list[str] = field(default_factory=list)
    video_url: str | None = None
    video_status: VideoStatus = VideoStatus.IDLE
    video_status_message: str | None = None
    task_id: str | None = None
    id: str = field(default_factory=uid)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Scene:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["main_image"] = UploadedImage.from_dict(data.get("main_image"))
        values["sketch_image"] = UploadedImage.from_dict(data.get("sketch_image"))
        values["image_options"] = [
            UploadedImage.from_dict(img) for img in data.get("image_options", []) if img
        ]
        values["sketch_annotations"] = [
            Annotation(**a) for a in data.get("sketch_annotations", [])
        ]
        values["video_status"] = VideoStatus(data.get("video_status") or VideoStatus.IDLE.value)
        if not values.get("id"):
            values["id"] = uid()
        return cls(**values)


@dataclass
class EntityDraft:
    """A character or location proposed by a text provider."""
    name: str
    description: str = ""


@dataclass
class Blueprint:
    """Characters, locations and outline proposed from a free-text idea."""
    characters: list[EntityDraft] = field(default_factory=list)
    locations: list[EntityDraft] = field(default_factory=list)
    story_outline: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Any) -> Blueprint:
        """Build a blueprint from a provider's decoded JSON reply.

        Raises:
            ValueError: If a required key is missing.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Blueprint payload must be an object, got {type(data).__name__}")
        outline = data.get("story_outline", data.get("storyOutline"))
        if data.get("characters") is None or data.get("locations") is None or outline is None:
            raise ValueError("Blueprint payload is missing characters, locations or story_outline")
        return cls(
            characters=[
                EntityDraft(name=c.get("name", ""), description=c.get("description", ""))
                for c in data["characters"]
            ],
            locations=[
                EntityDraft(name=loc.get("name", ""), description=loc.get("description", ""))
                for loc in data["locations"]
            ],
            story_outline=[str(point) for point in outline],
        )


@dataclass
class BatchProgress:
    """Aggregate progress of a running batch."""
    total: int
    task: str
    completed: int = 0
    start_time: float | None = None
    eta: int = 0  # seconds

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0


# ------------------------------------------------------------------
# Provider payload mapping
# ------------------------------------------------------------------

# Keys providers use in scene JSON, mapped onto Scene fields.
SCENE_PAYLOAD_KEYS: dict[str, str] = {
    "title": "title",
    "action": "action",
    "setting": "setting",
    "cameraAngle": "camera_angle",
    "cuttingStyle": "cutting_style",
    "lighting": "lighting",
    "colorPalette": "color_palette",
    "soundDesign": "sound_design",
    "emotionalTone": "emotional_tone",
    "vfx": "vfx",
    "transition": "transition",
    "duration": "duration",
    "notes": "notes",
    "imageShotType": "image_shot_type",
    "negativePrompt": "negative_prompt",
}


def scene_fields_from_payload(data: dict) -> dict[str, Any]:
    """Translate a provider scene object into Scene field updates.

    Accepts camelCase or snake_case keys; unknown keys and null values are
    dropped.
    """
    snake_names = set(SCENE_PAYLOAD_KEYS.values())
    result: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        name = SCENE_PAYLOAD_KEYS.get(key) or (key if key in snake_names else None)
        if name is None:
            continue
        if name == "duration":
            try:
                value = int(value)
            except (TypeError, ValueError):
                continue
        elif not isinstance(value, str):
            value = str(value)
        result[name] = value
    return result
