"""Storyboard persistence between CLI invocations, and asset export."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, replace
from pathlib import Path
from typing import TYPE_CHECKING

from storyboard.files import data_url_to_bytes, extension_for
from storyboard.models import Character, Location, Scene, UploadedImage, VideoStatus

if TYPE_CHECKING:
    from storyboard.orchestrator import Storyboard
    from storyboard.store import EntityStore

logger = logging.getLogger(__name__)

PROJECT_VERSION = 1

_UNSAFE = re.compile(r"[^\w-]+", re.UNICODE)


def project_to_dict(board: Storyboard) -> dict:
    store = board.store
    return {
        "version": PROJECT_VERSION,
        "idea": board.idea,
        "video_duration": board.settings.video_duration,
        "video_style": board.settings.style.value,
        "story_outline": list(store.story_outline),
        "characters": [asdict(c) for c in store.characters],
        "locations": [asdict(loc) for loc in store.locations],
        "scenes": [s.to_dict() for s in store.scenes],
    }


def save_project(path: str | Path, board: Storyboard) -> None:
    """Write the storyboard to ``path`` as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(project_to_dict(board), f, indent=2, ensure_ascii=False)
    logger.debug("Saved project to %s", path)


def load_project(path: str | Path, board: Storyboard) -> bool:
    """Restore a saved storyboard into ``board``.

    Returns False when ``path`` does not exist. Scenes saved mid-render
    come back as idle, since their polling did not survive the process.
    """
    path = Path(path)
    if not path.exists():
        return False
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    scenes = []
    for raw in data.get("scenes", []):
        scene = Scene.from_dict(raw)
        if scene.video_status is VideoStatus.GENERATING:
            scene = replace(scene, video_status=VideoStatus.IDLE, video_status_message=None)
        scenes.append(scene)

    board.idea = data.get("idea", "")
    if data.get("video_duration"):
        board.set_video_duration(int(data["video_duration"]))
    if data.get("video_style"):
        board.set_style(data["video_style"])
    board.store.set_story_outline(data.get("story_outline", []))
    board.store.set_characters([Character.from_dict(c) for c in data.get("characters", [])])
    board.store.set_locations([Location.from_dict(loc) for loc in data.get("locations", [])])
    board.store.set_scenes(scenes)
    logger.debug("Loaded project from %s: %d scenes", path, len(scenes))
    return True


def _write_image(image: UploadedImage, target: Path) -> Path:
    data, mime_type = data_url_to_bytes(image.data_url)
    target = target.with_suffix(extension_for(mime_type or image.mime_type))
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return target


def export_images(store: EntityStore, out_dir: str | Path) -> list[Path]:
    """Write scene main images and reference images under ``out_dir``."""
    out_dir = Path(out_dir)
    written: list[Path] = []
    for i, scene in enumerate(store.scenes, start=1):
        if scene.main_image is not None:
            written.append(_write_image(scene.main_image, out_dir / "scenes" / f"scene_{i:02d}"))
    for i, character in enumerate(store.characters):
        if character.image is not None:
            stem = _UNSAFE.sub("_", character.name) or "character"
            written.append(_write_image(character.image, out_dir / "characters" / f"{stem}_{i}"))
    for i, location in enumerate(store.locations):
        if location.image is not None:
            stem = _UNSAFE.sub("_", location.name) or "location"
            written.append(_write_image(location.image, out_dir / "locations" / f"{stem}_{i}"))
    logger.info("Exported %d images to %s", len(written), out_dir)
    return written
