import io
import json

from fakes import FakeProvider, image, make_board
from PIL import Image

from storyboard.files import compress_image, data_url_to_bytes
from storyboard.models import Annotation, Character, Location, ProviderImageRef, Scene, UploadedImage, VideoStatus
from storyboard.project import export_images, load_project, save_project
from storyboard.providers.base import ProviderName


def board():
    return make_board({ProviderName.GOOGLE: FakeProvider(ProviderName.GOOGLE)})


def test_project_round_trip(tmp_path):
    original = board()
    original.idea = "Một robot cô đơn"
    original.set_video_duration(16)
    original.set_style("3d-pixar")
    hero = Character(name="Robot-7", description="rusty", image=image("robot.png"))
    original.store.set_characters([hero])
    original.store.set_locations([Location(name="Abandoned City")])
    original.store.set_story_outline(["wake up"])
    ref = ProviderImageRef("img-9", "https://cdn.example/img-9.png")
    main = UploadedImage.from_bytes(b"main", "image/png", "main.png", provider_ref=ref)
    original.store.set_scenes([
        Scene(
            id="s1", action="walks", character_ids=[hero.id], main_image=main, image_options=[main],
            sketch_annotations=[Annotation("look left", 10, 20, id="a1")],
            video_status=VideoStatus.DONE, video_url="https://videos.example/1.mp4",
        ),
        Scene(id="s2", video_status=VideoStatus.GENERATING, video_status_message="50%", task_id="t-2"),
    ])
    path = tmp_path / "project.json"
    save_project(path, original)

    restored = board()
    assert load_project(path, restored)

    assert restored.idea == "Một robot cô đơn"
    assert restored.settings.video_duration == 16
    assert restored.store.style.value == "3d-pixar"
    assert restored.store.characters == original.store.characters
    assert restored.store.story_outline == ["wake up"]
    first, second = restored.store.scenes
    assert first == original.store.scenes[0]
    assert first.main_image.provider_ref == ref
    assert second.video_status is VideoStatus.IDLE
    assert second.video_status_message is None
    assert "Một robot cô đơn" in path.read_text(encoding="utf-8")
    assert json.loads(path.read_text(encoding="utf-8"))["version"] == 1


def test_load_missing_project(tmp_path):
    assert not load_project(tmp_path / "missing.json", board())


def test_export_images(tmp_path):
    b = board()
    b.store.set_scenes([Scene(main_image=image("a.png", b"scene")), Scene()])
    b.store.set_characters([Character(name="Robot 7/alpha", image=image("r.png", b"robot"))])
    b.store.set_locations([Location(name="City")])

    written = export_images(b.store, tmp_path / "out")

    names = sorted(p.relative_to(tmp_path / "out").as_posix() for p in written)
    assert names == ["characters/Robot_7_alpha_0.png", "scenes/scene_01.png"]
    assert (tmp_path / "out" / "scenes" / "scene_01.png").read_bytes() == b"scene"


def test_compress_image_downscales_to_jpeg():
    buffer = io.BytesIO()
    Image.new("RGB", (2048, 1024), "red").save(buffer, format="PNG")
    original = UploadedImage.from_bytes(buffer.getvalue(), "image/png", "big.png")

    compressed = compress_image(original)

    assert compressed.mime_type == "image/jpeg"
    assert compressed.name == "big.jpeg"
    data, mime_type = data_url_to_bytes(compressed.data_url)
    assert mime_type == "image/jpeg"
    with Image.open(io.BytesIO(data)) as img:
        assert img.size == (1024, 512)


def test_compress_keeps_undecodable_images():
    broken = UploadedImage.from_bytes(b"not an image", "image/png", "x.png")
    assert compress_image(broken) is broken
