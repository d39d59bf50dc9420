"""Orchestration core: generation workflows over the entity store.

``Storyboard`` decides which provider to call, runs retry and fallback,
keeps busy flags and batch progress current, and writes every result back
through the :class:`~storyboard.store.EntityStore`.

Entity operations capture the entity id before their first await and
re-resolve it when writing, so a scene that was reordered meanwhile is
still updated correctly and one that was removed is skipped.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import replace
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from storyboard.busy import BusySnapshot, BusyTracker, EntityKind, GlobalFlag, snapshot_summary
from storyboard.config import ApiConfig, GenerationSettings
from storyboard.errors import (
    ErrorKind,
    IndexOutOfBoundsError,
    InvalidInputError,
    StoryboardError,
    classify_error,
    user_message,
)
from storyboard.files import compress_image
from storyboard.models import (
    MAX_IMAGE_OPTIONS,
    SCENE_SECONDS,
    Annotation,
    BatchProgress,
    Blueprint,
    Character,
    EntityDraft,
    EntityStatus,
    Location,
    Scene,
    UploadedImage,
    VideoStatus,
    VideoStyle,
    scene_fields_from_payload,
)
from storyboard.progress import BatchReporter
from storyboard.prompts import RandomSource, character_reference_prompt, location_reference_prompt
from storyboard.providers.base import (
    DISPLAY_NAMES,
    ImageAnalyzer,
    ProviderName,
    ProviderRegistry,
    ShotAdvisor,
    SketchProvider,
)
from storyboard.store import EntityStore
from storyboard.vocabulary import FALLBACK_SHOT_TYPES, image_style_prefix, video_style_instruction

logger = logging.getLogger(__name__)

T = TypeVar("T")

MANUAL_SCENE_SECONDS = 5

TEXT_FALLBACK_NOTICE = "Đã tự động chuyển sang {name} do provider chính lỗi."
SCENES_FALLBACK_NOTICE = "Đã tự động chuyển sang {name} (scenes) do provider chính lỗi."
IMAGE_FALLBACK_NOTICE = "Tự động chuyển provider do lỗi: {error}"
VIDEO_FALLBACK_NOTICE = "Đã tự động chuyển sang {name} do lỗi: {error}"

VIDEO_DISPLAY_NAMES: dict[ProviderName, str] = {
    ProviderName.GOOGLE: "Veo 2",
    ProviderName.AIVIDEOAUTO: "Aivideoauto",
}

VIDEO_STARTING_MESSAGE = "Đang khởi tạo..."
ANALYSIS_FAILED_NOTE = "Lỗi: Không thể tự động phân tích ảnh này."
MORE_OPTIONS_FAILED = "Không thể tạo thêm các tùy chọn ảnh."
NO_PROVIDER_MESSAGE = "Chưa cấu hình nhà cung cấp hỗ trợ {task}."


def _at(collection: str, items: Sequence[T], index: int) -> T:
    if not 0 <= index < len(items):
        raise IndexOutOfBoundsError(collection, index, len(items))
    return items[index]


def _names(value: Any) -> str:
    """Lower-cased blob of the names a provider listed for a scene."""
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value).lower()
    return ""


class Storyboard:
    """Coordinates providers, busy state and progress for one storyboard.

    Args:
        store: Canonical entity state.
        api_config: Credentials, readiness and provider selection.
        providers: Adapters by provider name.
        settings: Generation defaults (style, aspect, duration, polling).
        on_error: Sink for failures of single-entity and global operations.
        notify: Sink for non-blocking notices such as provider switches.
        rng: Random source for video sub-shot sampling.
        sleep: Awaitable delay, replaced in tests.
    """

    def __init__(
        self,
        store: EntityStore,
        api_config: ApiConfig,
        providers: ProviderRegistry,
        settings: GenerationSettings | None = None,
        on_error: Callable[[str], None] | None = None,
        notify: Callable[[str], None] | None = None,
        rng: RandomSource | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.api_config = api_config
        self.providers = providers
        self.settings = settings or GenerationSettings()
        self._notify = notify or (lambda message: logger.info("Notice: %s", message))
        self._sleep = sleep
        self.idea = ""

        self.store.style = VideoStyle(self.settings.style)
        self.store.auto_generate_prompt = self.settings.auto_generate_prompt
        if rng is not None:
            self.store.rng = rng

        self.busy = BusyTracker(on_error=on_error)
        self.reporter = BatchReporter(self.busy, on_error, self.settings.max_concurrency)
        self.busy.subscribe(lambda snapshot: logger.debug("Busy: %s", snapshot_summary(snapshot)))

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    def is_busy(self, entity_id: str) -> bool:
        return self.busy.is_busy(entity_id)

    @property
    def busy_state(self) -> BusySnapshot:
        return self.busy.snapshot

    @property
    def is_generating_blueprint(self) -> bool:
        return self.busy.is_global_busy(GlobalFlag.GENERATING_BLUEPRINT)

    @property
    def is_generating_scenes(self) -> bool:
        return self.busy.is_global_busy(GlobalFlag.GENERATING_SCENES)

    @property
    def is_batch_generating(self) -> bool:
        return self.busy.is_global_busy(GlobalFlag.BATCH_GENERATING)

    @property
    def is_generating_reference_images(self) -> bool:
        return self.busy.is_global_busy(GlobalFlag.GENERATING_REFERENCE_IMAGES)

    @property
    def batch_progress(self) -> BatchProgress | None:
        return self.reporter.progress

    @property
    def num_scenes(self) -> int:
        return max(1, math.ceil(self.settings.video_duration / SCENE_SECONDS))

    def set_style(self, style: VideoStyle | str) -> None:
        self.settings.style = VideoStyle(style)
        self.store.style = self.settings.style

    def set_video_duration(self, seconds: int) -> None:
        if seconds <= 0:
            raise InvalidInputError(f"Video duration must be positive, got {seconds}")
        self.settings.video_duration = seconds

    # ------------------------------------------------------------------
    # Provider plumbing
    # ------------------------------------------------------------------

    async def _with_fallback(
        self,
        names: Sequence[ProviderName],
        call: Callable[[Any], Awaitable[T]],
        notice: str,
        task: str,
    ) -> T:
        """Call providers in order until one succeeds.

        A notice is sent before each alternate is tried. When every
        provider fails, the first failure is raised with its user-facing
        message.
        """
        names = [n for n in names if self.providers.has(n)]
        if not names:
            raise StoryboardError(NO_PROVIDER_MESSAGE.format(task=task), ErrorKind.UNAUTHORIZED)

        first_error: Exception | None = None
        for position, name in enumerate(names):
            if position > 0:
                logger.warning("Falling back to %s for %s", name.value, task)
                self._notify(notice.format(name=DISPLAY_NAMES[name], error=user_message(first_error)))
            try:
                return await call(self.providers.get(name))
            except Exception as e:
                logger.warning("%s failed with %s: %s", task, name.value, e)
                if first_error is None:
                    first_error = e

        raise StoryboardError(user_message(first_error), classify_error(first_error)) from first_error

    def _require(self, capability: type, task: str) -> Any:
        provider = self.providers.first_capable(self.api_config, capability)
        if provider is None:
            raise StoryboardError(NO_PROVIDER_MESSAGE.format(task=task), ErrorKind.UNAUTHORIZED)
        return provider

    def _default_image_model(self) -> str | None:
        return self.api_config[self.providers.image_provider(self.api_config)].image_model

    async def _generate_image(
        self,
        prompt: str | Callable[[Any], str],
        character_refs: Sequence[Character] = (),
        location_refs: Sequence[Location] = (),
        model: str | None = None,
        name: str = "image.png",
        fallback: bool = True,
    ) -> UploadedImage:
        """Generate one image through the image provider chain.

        ``prompt`` may be a function of the provider, for prompts that
        depend on whether the provider adds its own style tag. ``model``
        only applies to the preferred provider.
        """
        order = self.providers.image_order(self.api_config)
        preferred = order[0]
        if not fallback:
            order = order[:1]

        async def call(provider: Any) -> UploadedImage:
            text = prompt(provider) if callable(prompt) else prompt
            return await provider.generate_image(
                text,
                character_refs,
                location_refs,
                model if provider.name is preferred else None,
                self.settings.style,
                self.settings.aspect,
                name,
            )

        return await self._with_fallback(order, call, IMAGE_FALLBACK_NOTICE, "image generation")

    def _style_prefix_for(self, provider: Any) -> str | None:
        return None if provider.applies_style else image_style_prefix(self.settings.style)

    def _references(self, scene: Scene) -> tuple[list[Character], list[Location]]:
        """Linked characters and locations that have a reference image."""
        characters = {c.id: c for c in self.store.characters}
        locations = {loc.id: loc for loc in self.store.locations}
        char_refs = [characters[i] for i in scene.character_ids if i in characters and characters[i].image]
        loc_refs = [locations[i] for i in scene.location_ids if i in locations and locations[i].image]
        return char_refs, loc_refs

    def _scene_at(self, index: int) -> Scene:
        return _at("scenes", self.store.scenes, index)

    def _scene_by_id(self, scene_id: str) -> Scene | None:
        index = self.store.scene_index(scene_id)
        return None if index is None else self.store.scenes[index]

    # ------------------------------------------------------------------
    # Blueprint and scenes
    # ------------------------------------------------------------------

    async def generate_blueprint(self, idea: str) -> Blueprint | None:
        """Replace the storyboard with characters, locations and an outline for ``idea``.

        Raises:
            InvalidInputError: If ``idea`` is blank.
        """
        if not idea or not idea.strip():
            raise InvalidInputError("Idea text is empty")
        self.idea = idea
        return await self.busy.run_global(
            GlobalFlag.GENERATING_BLUEPRINT, lambda: self._generate_blueprint(idea),
        )

    async def _generate_blueprint(self, idea: str) -> Blueprint:
        self.store.reset()
        num_scenes = self.num_scenes
        logger.info("Generating blueprint (%d scenes, %s): %s", num_scenes, self.settings.style.value, idea[:80])

        blueprint = await self._with_fallback(
            self.providers.text_order(self.api_config),
            lambda p: p.generate_blueprint(idea, num_scenes, self.settings.style),
            TEXT_FALLBACK_NOTICE,
            "blueprint",
        )

        self.store.set_characters([
            Character(name=c.name, description=c.description, status=EntityStatus.SUGGESTED)
            for c in blueprint.characters
        ])
        self.store.set_locations([
            Location(name=loc.name, description=loc.description, status=EntityStatus.SUGGESTED)
            for loc in blueprint.locations
        ])
        self.store.set_story_outline(blueprint.story_outline)
        logger.info(
            "Blueprint ready: %d characters, %d locations, %d outline points",
            len(blueprint.characters), len(blueprint.locations), len(blueprint.story_outline),
        )

        if self.settings.auto_reference_images:
            await self.generate_all_reference_images()
        return blueprint

    async def generate_scenes_from_blueprint(self) -> list[Scene] | None:
        """Replace the scenes with ones generated from the current blueprint."""
        if not self.store.characters and not self.store.locations:
            logger.info("No characters or locations; nothing to generate scenes from")
            return None
        return await self.busy.run_global(GlobalFlag.GENERATING_SCENES, self._generate_scenes)

    async def _generate_scenes(self) -> list[Scene]:
        num_scenes = self.num_scenes
        blueprint = Blueprint(
            characters=[EntityDraft(c.name, c.description) for c in self.store.characters],
            locations=[EntityDraft(loc.name, loc.description) for loc in self.store.locations],
            story_outline=list(self.store.story_outline),
        )
        payloads = await self._with_fallback(
            self.providers.text_order(self.api_config),
            lambda p: p.generate_scenes(blueprint, num_scenes),
            SCENES_FALLBACK_NOTICE,
            "scene generation",
        )
        if len(payloads) > num_scenes:
            logger.warning("Provider returned %d scenes, keeping %d", len(payloads), num_scenes)

        scenes = [self._scene_from_payload(data, i) for i, data in enumerate(payloads[:num_scenes])]
        self.store.set_scenes(scenes)
        logger.info("Generated %d scenes", len(scenes))
        return scenes

    def _scene_from_payload(self, data: dict[str, Any], index: int) -> Scene:
        # Providers sometimes return "A and B" as one string, so match by substring.
        char_names = _names(data.get("characterNames", data.get("character_names")))
        loc_names = _names(data.get("locationNames", data.get("location_names")))
        values: dict[str, Any] = {"title": f"Cảnh {index + 1}", "duration": SCENE_SECONDS}
        values.update(scene_fields_from_payload(data))
        scene = Scene(
            **values,
            aspect=self.settings.aspect,
            image_model=self._default_image_model(),
            character_ids=[c.id for c in self.store.characters if c.name and c.name.lower() in char_names],
            location_ids=[loc.id for loc in self.store.locations if loc.name and loc.name.lower() in loc_names],
        )
        return self.store.with_prompts(scene)

    # ------------------------------------------------------------------
    # Scene management
    # ------------------------------------------------------------------

    def _new_scene(self, number: int, **values: Any) -> Scene:
        scene = Scene(
            title=f"Cảnh {number}",
            duration=MANUAL_SCENE_SECONDS,
            aspect=self.settings.aspect,
            image_model=self._default_image_model(),
            **values,
        )
        return self.store.with_prompts(scene)

    def add_blank_scene(self) -> Scene:
        scene = self._new_scene(len(self.store.scenes) + 1)
        self.store.add_scenes([scene])
        return scene

    def update_scene(self, index: int, **changes: Any) -> Scene:
        return self.store.update_scene(index, **changes)

    def remove_scene(self, index: int) -> Scene:
        return self.store.remove_scene(index)

    def reorder_scenes(self, start: int, end: int) -> None:
        self.store.reorder_scenes(start, end)

    def update_scene_annotations(self, index: int, annotations: Sequence[Annotation]) -> Scene:
        return self.store.update_scene(index, sketch_annotations=list(annotations))

    async def add_scenes_from_images(
        self,
        images: Sequence[UploadedImage],
        analyze: bool | None = None,
    ) -> list[Scene] | None:
        """Append one scene per image, optionally filling details by image analysis.

        ``analyze`` defaults to the auto-prompt setting. A scene whose
        analysis fails keeps a note saying so.
        """
        if not images:
            return []
        if analyze is None:
            analyze = self.settings.auto_generate_prompt
        return await self.busy.run_global(
            GlobalFlag.UPLOADING, lambda: self._add_scenes_from_images(images, analyze),
        )

    async def _add_scenes_from_images(self, images: Sequence[UploadedImage], analyze: bool) -> list[Scene]:
        offset = len(self.store.scenes)
        pending = [
            self._new_scene(offset + i + 1, main_image=image, image_options=[image])
            for i, image in enumerate(images)
        ]

        analyzer = self.providers.first_capable(self.api_config, ImageAnalyzer) if analyze else None
        if analyze and analyzer is None:
            logger.warning("No image analyzer configured; adding %d scenes without details", len(pending))

        if analyzer is not None:
            async def describe(position: int) -> None:
                scene = pending[position]
                try:
                    details = await analyzer.describe_image(scene.main_image)
                except Exception:
                    logger.exception("Failed to analyze image for %s", scene.title)
                    pending[position] = replace(scene, notes=ANALYSIS_FAILED_NOTE)
                    return
                pending[position] = self.store.with_prompts(replace(scene, **scene_fields_from_payload(details)))

            await self.reporter.run_batch(
                GlobalFlag.BATCH_GENERATING, "phân tích ảnh", list(range(len(pending))), describe,
            )

        self.store.add_scenes(pending)
        logger.info("Added %d scenes from images", len(pending))
        return pending

    async def replace_scene_image(self, index: int, image: UploadedImage) -> Scene | None:
        """Make ``image`` the scene's only option, re-analyzing it when auto-prompt is on."""
        updated = self.store.update_scene(index, main_image=image, image_options=[image])
        if self.settings.auto_generate_prompt:
            await self._scene_details(updated.id)
        return self._scene_by_id(updated.id)

    async def regenerate_scene_details(self, index: int) -> None:
        scene = self._scene_at(index)
        if scene.main_image is None:
            return
        await self._scene_details(scene.id)

    async def _scene_details(self, scene_id: str) -> None:
        scene = self._scene_by_id(scene_id)
        if scene is None or scene.main_image is None:
            return

        async def run() -> None:
            analyzer = self._require(ImageAnalyzer, "phân tích ảnh")
            details = await analyzer.describe_image(scene.main_image)
            self.store.update_scene_by_id(scene.id, **scene_fields_from_payload(details))

        await self.busy.run_scoped(EntityKind.SCENES, scene.id, run)

    # ------------------------------------------------------------------
    # Scene images
    # ------------------------------------------------------------------

    async def generate_image_for_scene(self, index: int) -> UploadedImage | None:
        """Generate a fresh image that becomes the scene's only option."""
        return await self._scene_image(self._scene_at(index).id)

    async def _scene_image(self, scene_id: str) -> UploadedImage | None:
        scene = self._scene_by_id(scene_id)
        if scene is None:
            return None

        async def run() -> UploadedImage:
            self.store.update_scene_by_id(scene.id, image_options=[])
            char_refs, loc_refs = self._references(scene)
            try:
                image = await self._generate_image(
                    scene.image_prompt, char_refs, loc_refs, scene.image_model, name=f"scene_{scene.id}.png",
                )
            except Exception:
                self.store.update_scene_by_id(scene.id, image_options=scene.image_options)
                raise
            self.store.update_scene_by_id(scene.id, image_options=[image], main_image=image)
            return image

        return await self.busy.run_scoped(EntityKind.SCENES, scene.id, run)

    async def generate_more_image_options(self, index: int) -> list[UploadedImage] | None:
        """Add up to three options in shot types other than the selected one.

        Shot types come from a shot advisor. All images are requested in
        parallel from the preferred image provider; the operation fails only
        if none of them succeeds.
        """
        scene = self._scene_at(index)
        if scene.main_image is None or len(scene.image_options) >= MAX_IMAGE_OPTIONS:
            return None

        async def run() -> list[UploadedImage]:
            wanted = MAX_IMAGE_OPTIONS - len(scene.image_options)
            advisor = self.providers.first_capable(self.api_config, ShotAdvisor)
            shot_types = (
                await advisor.suggest_shot_types(scene.image_prompt) if advisor is not None
                else list(FALLBACK_SHOT_TYPES)
            )
            new_types = [s for s in shot_types if s != scene.image_shot_type][:wanted]
            char_refs, loc_refs = self._references(scene)
            logger.info("Generating %d more options for %s: %s", len(new_types), scene.id, new_types)

            results = await asyncio.gather(
                *(
                    self._generate_image(
                        f"{shot}. {scene.image_prompt}", char_refs, loc_refs, scene.image_model,
                        name=f"scene_{scene.id}_{n}.png", fallback=False,
                    )
                    for n, shot in enumerate(new_types, start=len(scene.image_options) + 1)
                ),
                return_exceptions=True,
            )
            images = [r for r in results if isinstance(r, UploadedImage)]
            for r in results:
                if isinstance(r, Exception):
                    logger.warning("Extra image option failed: %s", r)
            if not images:
                raise StoryboardError(MORE_OPTIONS_FAILED)

            latest = self._scene_by_id(scene.id)
            if latest is not None:
                options = [*latest.image_options, *images][:MAX_IMAGE_OPTIONS]
                self.store.update_scene_by_id(scene.id, image_options=options)
            return images

        return await self.busy.run_scoped(EntityKind.SCENES, scene.id, run)

    async def edit_image_for_scene(
        self,
        index: int,
        prompt: str,
        refs: Sequence[UploadedImage] = (),
    ) -> UploadedImage | None:
        """Edit the main image; the edited image replaces it among the options too."""
        scene = self._scene_at(index)
        if scene.main_image is None:
            return None
        original = scene.main_image

        async def run() -> UploadedImage:
            provider = self.providers.get(self.providers.image_provider(self.api_config))
            edited = await provider.edit_image(original, prompt, refs, self.settings.aspect, scene.image_model)
            latest = self._scene_by_id(scene.id)
            if latest is not None:
                options = [edited if o.data_url == original.data_url else o for o in latest.image_options]
                self.store.update_scene_by_id(scene.id, main_image=edited, image_options=options)
            return edited

        return await self.busy.run_scoped(EntityKind.SCENES, scene.id, run)

    async def regenerate_all_images(self) -> None:
        scene_ids = [s.id for s in self.store.scenes]
        await self.reporter.run_batch(GlobalFlag.BATCH_GENERATING, "ảnh", scene_ids, self._scene_image)

    async def regenerate_missing_images(self) -> None:
        scene_ids = [s.id for s in self.store.scenes if s.main_image is None]
        await self.reporter.run_batch(GlobalFlag.BATCH_GENERATING, "ảnh", scene_ids, self._scene_image)

    # ------------------------------------------------------------------
    # Characters and locations
    # ------------------------------------------------------------------

    def add_character(self, name: str = "New Character", description: str = "") -> Character:
        character = Character(name=name, description=description, status=EntityStatus.DEFINED)
        self.store.add_character(character)
        return character

    def update_character(self, index: int, **changes: Any) -> Character:
        return self.store.update_character(index, **changes)

    def remove_character(self, index: int) -> Character:
        return self.store.remove_character(index)

    def set_character_image(self, index: int, image: UploadedImage) -> Character:
        return self.store.update_character(index, image=compress_image(image), status=EntityStatus.DEFINED)

    def add_location(self, name: str = "New Location", description: str = "") -> Location:
        location = Location(name=name, description=description, status=EntityStatus.DEFINED)
        self.store.add_location(location)
        return location

    def update_location(self, index: int, **changes: Any) -> Location:
        return self.store.update_location(index, **changes)

    def remove_location(self, index: int) -> Location:
        return self.store.remove_location(index)

    def set_location_image(self, index: int, image: UploadedImage) -> Location:
        return self.store.update_location(index, image=compress_image(image), status=EntityStatus.DEFINED)

    def update_story_outline(self, index: int, value: str) -> None:
        self.store.update_story_outline(index, value)

    # ------------------------------------------------------------------
    # Reference images
    # ------------------------------------------------------------------

    def _entity(self, kind: EntityKind, entity_id: str) -> Character | Location | None:
        if kind is EntityKind.CHARACTERS:
            index = self.store.character_index(entity_id)
            return None if index is None else self.store.characters[index]
        index = self.store.location_index(entity_id)
        return None if index is None else self.store.locations[index]

    def _write_entity(self, kind: EntityKind, entity_id: str, **changes: Any) -> None:
        if kind is EntityKind.CHARACTERS:
            self.store.update_character_by_id(entity_id, **changes)
        else:
            self.store.update_location_by_id(entity_id, **changes)

    async def generate_character_image(self, index: int) -> UploadedImage | None:
        character = _at("characters", self.store.characters, index)
        if not character.description:
            return None
        return await self._reference_image(EntityKind.CHARACTERS, character.id)

    async def generate_location_image(self, index: int) -> UploadedImage | None:
        location = _at("locations", self.store.locations, index)
        if not location.description:
            return None
        return await self._reference_image(EntityKind.LOCATIONS, location.id)

    async def _reference_image(self, kind: EntityKind, entity_id: str) -> UploadedImage | None:
        entity = self._entity(kind, entity_id)
        if entity is None or not entity.description:
            return None
        build = character_reference_prompt if kind is EntityKind.CHARACTERS else location_reference_prompt

        async def run() -> UploadedImage:
            image = await self._generate_image(
                lambda provider: build(entity.description, self._style_prefix_for(provider)),
                name=f"{kind.value}_{entity.id}.png",
            )
            compressed = compress_image(image)
            self._write_entity(kind, entity.id, image=compressed, status=EntityStatus.DEFINED)
            logger.info("Reference image ready for %s", entity.name)
            return compressed

        return await self.busy.run_scoped(kind, entity.id, run)

    async def edit_character_image(
        self, index: int, prompt: str, refs: Sequence[UploadedImage] = (),
    ) -> UploadedImage | None:
        character = _at("characters", self.store.characters, index)
        return await self._edit_reference(EntityKind.CHARACTERS, character, prompt, refs)

    async def edit_location_image(
        self, index: int, prompt: str, refs: Sequence[UploadedImage] = (),
    ) -> UploadedImage | None:
        location = _at("locations", self.store.locations, index)
        return await self._edit_reference(EntityKind.LOCATIONS, location, prompt, refs)

    async def _edit_reference(
        self,
        kind: EntityKind,
        entity: Character | Location,
        prompt: str,
        refs: Sequence[UploadedImage],
    ) -> UploadedImage | None:
        if entity.image is None:
            return None
        source = entity.image

        async def run() -> UploadedImage:
            provider = self.providers.get(self.providers.image_provider(self.api_config))
            edited = compress_image(await provider.edit_image(source, prompt, refs, self.settings.aspect))
            self._write_entity(kind, entity.id, image=edited)
            return edited

        return await self.busy.run_scoped(kind, entity.id, run)

    async def generate_all_reference_images(self) -> None:
        """Render every described character and location that has no image yet."""
        items = [
            *((EntityKind.CHARACTERS, c.id) for c in self.store.characters if c.image is None and c.description),
            *((EntityKind.LOCATIONS, loc.id) for loc in self.store.locations if loc.image is None and loc.description),
        ]
        await self.reporter.run_batch(
            GlobalFlag.GENERATING_REFERENCE_IMAGES,
            "ảnh tham chiếu",
            items,
            lambda item: self._reference_image(*item),
        )

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    async def generate_video_for_scene(self, index: int) -> str | None:
        """Render the scene's video and return its URL.

        The scene goes to ``generating`` before the first provider call,
        then to ``done`` with the URL or to ``error`` with a user-facing
        message.
        """
        return await self._scene_video(self._scene_at(index).id)

    async def _scene_video(self, scene_id: str) -> str | None:
        scene = self._scene_by_id(scene_id)
        if scene is None:
            return None
        return await self.busy.run_scoped(EntityKind.SCENES, scene.id, lambda: self._render_video(scene))

    async def _render_video(self, scene: Scene) -> str:
        self.store.update_scene_by_id(
            scene.id, video_status=VideoStatus.GENERATING, video_url=None,
            video_status_message=VIDEO_STARTING_MESSAGE,
        )
        instruction = video_style_instruction(self.settings.style)
        styled = replace(
            scene,
            video_prompt=f"{instruction}. {scene.video_prompt}" if instruction else scene.video_prompt,
        )

        def on_progress(message: str) -> None:
            self.store.update_scene_by_id(scene.id, video_status_message=message)

        def on_task(task_id: str) -> None:
            self.store.update_scene_by_id(scene.id, task_id=task_id)

        async def attempt(name: ProviderName) -> str:
            logger.info("Generating video for %s with %s", scene.id, name.value)
            provider = self.providers.get(name)
            return await provider.generate_video(styled, self.api_config[name].video_model, on_progress, on_task)

        try:
            url = await self._video_with_fallback(attempt)
            if not url:
                raise StoryboardError("Tạo video thất bại, không nhận được đường dẫn video.")
        except Exception as e:
            friendly = user_message(e)
            logger.error("Video generation failed for %s: %s", scene.id, e)
            self.store.update_scene_by_id(scene.id, video_status=VideoStatus.ERROR, video_status_message=friendly)
            raise StoryboardError(friendly, classify_error(e)) from e

        self.store.update_scene_by_id(
            scene.id, video_status=VideoStatus.DONE, video_url=url, video_status_message=None,
        )
        logger.info("Video ready for %s: %s", scene.id, url)
        return url

    async def _video_with_fallback(self, attempt: Callable[[ProviderName], Awaitable[str]]) -> str:
        """Primary provider, one delayed retry when rate limited, then the secondary."""
        primary, secondary = self.providers.video_pair(self.api_config)
        try:
            return await attempt(primary)
        except Exception as e:
            error = e

        if classify_error(error) is ErrorKind.RATE_LIMITED:
            logger.warning(
                "%s rate limited, retrying in %.1fs", primary.value, self.settings.rate_limit_delay,
            )
            await self._sleep(self.settings.rate_limit_delay)
            try:
                return await attempt(primary)
            except Exception as e:
                logger.warning("Retry with %s failed: %s", primary.value, e)

        if not (self.providers.has(secondary) and self.api_config.is_ready(secondary)):
            raise error
        logger.warning("Falling back to %s for video", secondary.value)
        self._notify(VIDEO_FALLBACK_NOTICE.format(name=VIDEO_DISPLAY_NAMES[secondary], error=user_message(error)))
        return await attempt(secondary)

    async def generate_all_scene_videos(self) -> None:
        scene_ids = [
            s.id for s in self.store.scenes
            if s.video_status in (VideoStatus.IDLE, VideoStatus.ERROR)
        ]
        await self.reporter.run_batch(GlobalFlag.BATCH_GENERATING, "video", scene_ids, self._scene_video)

    # ------------------------------------------------------------------
    # Sketches
    # ------------------------------------------------------------------

    async def generate_sketch_for_scene(self, index: int) -> UploadedImage | None:
        return await self._scene_sketch(self._scene_at(index).id)

    async def _scene_sketch(self, scene_id: str) -> UploadedImage | None:
        scene = self._scene_by_id(scene_id)
        if scene is None:
            return None

        async def run() -> UploadedImage:
            sketcher = self._require(SketchProvider, "phác thảo")
            sketch = await sketcher.generate_sketch(
                scene, self.settings.style, self.settings.aspect, f"sketch_{scene.id}.png",
            )
            self.store.update_scene_by_id(scene.id, sketch_image=sketch)
            return sketch

        return await self.busy.run_scoped(EntityKind.SCENES, scene.id, run)

    async def generate_all_sketches(self) -> None:
        scene_ids = [s.id for s in self.store.scenes if s.sketch_image is None]
        await self.reporter.run_batch(GlobalFlag.BATCH_GENERATING, "phác thảo", scene_ids, self._scene_sketch)
