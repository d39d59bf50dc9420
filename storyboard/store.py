"""In-memory entity store: scenes, characters, locations and the outline.

All mutation goes through the store. Lists are replaced rather than
mutated, and entities are replaced with updated copies, so a list obtained
from a property is a stable snapshot.
"""

from __future__ import annotations

import logging
import random
from dataclasses import fields, replace
from typing import Any, Callable, Sequence

from storyboard.errors import IndexOutOfBoundsError
from storyboard.models import Character, Location, Scene, VideoStyle
from storyboard.prompts import RandomSource, synthesize_image_prompt, synthesize_video_prompt

logger = logging.getLogger(__name__)

# Changing one of these re-derives the image prompt.
IMAGE_PROMPT_FIELDS = frozenset({
    "action", "setting", "lighting", "color_palette", "emotional_tone", "vfx",
    "notes", "character_ids", "location_ids", "title", "image_shot_type",
})

# Video lifecycle bookkeeping and image selection never re-derive the video prompt.
VIDEO_PROMPT_INERT_FIELDS = frozenset({
    "video_status", "video_url", "video_status_message", "task_id", "image_prompt",
    "image_options", "main_image",
})

_SCENE_FIELDS = frozenset(f.name for f in fields(Scene)) - {"id"}


class EntityStore:
    """Canonical storyboard state with index-addressed partial updates.

    Args:
        style: Visual style used for the image-prompt prefix.
        auto_generate_prompt: Re-derive prompts when structured fields change.
        rng: Random source for video sub-shot sampling.
    """

    def __init__(
        self,
        style: VideoStyle | str = VideoStyle.CINEMATIC,
        auto_generate_prompt: bool = True,
        rng: RandomSource | None = None,
    ) -> None:
        self.style = VideoStyle(style)
        self.auto_generate_prompt = auto_generate_prompt
        self.rng: RandomSource = rng or random.Random()
        self._scenes: list[Scene] = []
        self._characters: list[Character] = []
        self._locations: list[Location] = []
        self._outline: list[str] = []
        self._subscribers: list[Callable[[EntityStore], None]] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def scenes(self) -> list[Scene]:
        return self._scenes

    @property
    def characters(self) -> list[Character]:
        return self._characters

    @property
    def locations(self) -> list[Location]:
        return self._locations

    @property
    def story_outline(self) -> list[str]:
        return self._outline

    def scene_index(self, scene_id: str) -> int | None:
        return next((i for i, s in enumerate(self._scenes) if s.id == scene_id), None)

    def character_index(self, character_id: str) -> int | None:
        return next((i for i, c in enumerate(self._characters) if c.id == character_id), None)

    def location_index(self, location_id: str) -> int | None:
        return next((i for i, loc in enumerate(self._locations) if loc.id == location_id), None)

    def subscribe(self, callback: Callable[[EntityStore], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _changed(self) -> None:
        for callback in list(self._subscribers):
            callback(self)

    @staticmethod
    def _check_index(collection: str, items: Sequence[Any], index: int) -> None:
        if not 0 <= index < len(items):
            raise IndexOutOfBoundsError(collection, index, len(items))

    # ------------------------------------------------------------------
    # Prompt derivation
    # ------------------------------------------------------------------

    def image_prompt_for(self, scene: Scene) -> str:
        return synthesize_image_prompt(scene, self._characters, self._locations, self.style)

    def video_prompt_for(self, scene: Scene) -> str:
        return synthesize_video_prompt(scene, self._characters, self._locations, self.rng)

    def with_prompts(self, scene: Scene) -> Scene:
        """Return ``scene`` with both prompts derived from its fields."""
        if not self.auto_generate_prompt:
            return scene
        return replace(
            scene,
            image_prompt=self.image_prompt_for(scene),
            video_prompt=self.video_prompt_for(scene),
        )

    # ------------------------------------------------------------------
    # Scenes
    # ------------------------------------------------------------------

    def update_scene(self, index: int, **changes: Any) -> Scene:
        """Replace the given fields of the scene at ``index``.

        Unless ``image_prompt``/``video_prompt`` are passed explicitly, the
        image prompt is re-derived when a prompt-relevant field changed and
        the video prompt when any field outside
        ``VIDEO_PROMPT_INERT_FIELDS`` changed.

        Raises:
            IndexOutOfBoundsError: If ``index`` is out of range.
            TypeError: If a field name is unknown.
        """
        self._check_index("scenes", self._scenes, index)
        unknown = set(changes) - _SCENE_FIELDS
        if unknown:
            raise TypeError(f"Unknown scene field(s): {', '.join(sorted(unknown))}")

        updated = replace(self._scenes[index], **changes)
        if self.auto_generate_prompt:
            if "image_prompt" not in changes and IMAGE_PROMPT_FIELDS & changes.keys():
                updated.image_prompt = self.image_prompt_for(updated)
            if "video_prompt" not in changes and set(changes) - VIDEO_PROMPT_INERT_FIELDS:
                updated.video_prompt = self.video_prompt_for(updated)

        scenes = list(self._scenes)
        scenes[index] = updated
        self._scenes = scenes
        self._changed()
        return updated

    def update_scene_by_id(self, scene_id: str, **changes: Any) -> Scene | None:
        """Update a scene located by id; returns None if it no longer exists."""
        index = self.scene_index(scene_id)
        if index is None:
            logger.warning("Scene %s no longer exists; dropping update of %s", scene_id, sorted(changes))
            return None
        return self.update_scene(index, **changes)

    def set_scenes(self, scenes: Sequence[Scene]) -> None:
        self._scenes = list(scenes)
        self._changed()

    def add_scenes(self, scenes: Sequence[Scene]) -> None:
        self._scenes = [*self._scenes, *scenes]
        self._changed()

    def remove_scene(self, index: int) -> Scene:
        self._check_index("scenes", self._scenes, index)
        removed = self._scenes[index]
        self._scenes = [s for i, s in enumerate(self._scenes) if i != index]
        self._changed()
        return removed

    def reorder_scenes(self, start: int, end: int) -> None:
        """Move the scene at ``start`` so that it ends up at ``end``."""
        self._check_index("scenes", self._scenes, start)
        self._check_index("scenes", self._scenes, end)
        scenes = list(self._scenes)
        moved = scenes.pop(start)
        scenes.insert(end, moved)
        self._scenes = scenes
        self._changed()

    # ------------------------------------------------------------------
    # Characters and locations
    # ------------------------------------------------------------------

    def update_character(self, index: int, **changes: Any) -> Character:
        """Replace the given fields of the character at ``index``.

        Raises:
            IndexOutOfBoundsError: If ``index`` is out of range.
        """
        self._check_index("characters", self._characters, index)
        updated = replace(self._characters[index], **changes)
        characters = list(self._characters)
        characters[index] = updated
        self._characters = characters
        self._changed()
        return updated

    def update_character_by_id(self, character_id: str, **changes: Any) -> Character | None:
        index = self.character_index(character_id)
        if index is None:
            logger.warning("Character %s no longer exists", character_id)
            return None
        return self.update_character(index, **changes)

    def update_location(self, index: int, **changes: Any) -> Location:
        """Replace the given fields of the location at ``index``.

        Raises:
            IndexOutOfBoundsError: If ``index`` is out of range.
        """
        self._check_index("locations", self._locations, index)
        updated = replace(self._locations[index], **changes)
        locations = list(self._locations)
        locations[index] = updated
        self._locations = locations
        self._changed()
        return updated

    def update_location_by_id(self, location_id: str, **changes: Any) -> Location | None:
        index = self.location_index(location_id)
        if index is None:
            logger.warning("Location %s no longer exists", location_id)
            return None
        return self.update_location(index, **changes)

    def set_characters(self, characters: Sequence[Character]) -> None:
        self._characters = list(characters)
        self._changed()

    def set_locations(self, locations: Sequence[Location]) -> None:
        self._locations = list(locations)
        self._changed()

    def add_character(self, character: Character) -> None:
        self._characters = [*self._characters, character]
        self._changed()

    def add_location(self, location: Location) -> None:
        self._locations = [*self._locations, location]
        self._changed()

    def remove_character(self, index: int) -> Character:
        """Remove a character; scenes keep their (now dangling) reference."""
        self._check_index("characters", self._characters, index)
        removed = self._characters[index]
        self._characters = [c for i, c in enumerate(self._characters) if i != index]
        self._changed()
        return removed

    def remove_location(self, index: int) -> Location:
        self._check_index("locations", self._locations, index)
        removed = self._locations[index]
        self._locations = [loc for i, loc in enumerate(self._locations) if i != index]
        self._changed()
        return removed

    # ------------------------------------------------------------------
    # Outline
    # ------------------------------------------------------------------

    def set_story_outline(self, outline: Sequence[str]) -> None:
        self._outline = list(outline)
        self._changed()

    def update_story_outline(self, index: int, value: str) -> None:
        self._check_index("story_outline", self._outline, index)
        outline = list(self._outline)
        outline[index] = value
        self._outline = outline
        self._changed()

    def reset(self) -> None:
        """Drop every scene, character, location and outline point."""
        self._scenes, self._characters, self._locations, self._outline = [], [], [], []
        self._changed()
