import asyncio

import pytest
from fakes import FakeAnalyzer, FakeProvider, TextOnlyProvider, image, make_board, ready_config

from storyboard.config import GenerationSettings
from storyboard.errors import IndexOutOfBoundsError, InvalidInputError, ProviderError
from storyboard.models import Character, EntityStatus, Location, Scene, UploadedImage, VideoStatus, VideoStyle
from storyboard.orchestrator import (
    ANALYSIS_FAILED_NOTE,
    IMAGE_FALLBACK_NOTICE,
    MANUAL_SCENE_SECONDS,
    MORE_OPTIONS_FAILED,
    NO_PROVIDER_MESSAGE,
    SCENES_FALLBACK_NOTICE,
    TEXT_FALLBACK_NOTICE,
    VIDEO_FALLBACK_NOTICE,
)
from storyboard.providers.base import ProviderName
from storyboard.vocabulary import image_style_prefix, video_style_instruction

GOOGLE = ProviderName.GOOGLE
OPENAI = ProviderName.OPENAI
AIVA = ProviderName.AIVIDEOAUTO

RATE_LIMITED = "Quá giới hạn, vui lòng thử lại sau."


def short_settings(**overrides):
    values = dict(video_duration=16, rate_limit_delay=2.0)
    values.update(overrides)
    return GenerationSettings(**values)


# ------------------------------------------------------------------
# Blueprint and scenes
# ------------------------------------------------------------------

def test_num_scenes_rounds_up():
    board = make_board({GOOGLE: FakeProvider(GOOGLE)}, settings=short_settings())
    assert board.num_scenes == 2
    board.set_video_duration(17)
    assert board.num_scenes == 3
    with pytest.raises(ValueError):
        board.set_video_duration(0)


def test_blueprint_falls_back_to_next_text_provider(robot_blueprint, notices, errors):
    google = FakeProvider(GOOGLE, text_error=ProviderError("503 UNAVAILABLE"))
    openai = FakeProvider(OPENAI, blueprint=robot_blueprint)
    board = make_board(
        {GOOGLE: google, OPENAI: openai}, settings=short_settings(), notify=notices.append, on_error=errors.append,
    )

    assert asyncio.run(board.generate_blueprint("A robot in a ruined city")) is robot_blueprint
    assert notices == [TEXT_FALLBACK_NOTICE.format(name="OpenAI")]
    assert errors == []
    assert openai.calls == [("blueprint", "A robot in a ruined city", 2)]
    assert [c.name for c in board.store.characters] == ["Robot-7"]
    assert board.store.characters[0].status is EntityStatus.SUGGESTED
    assert [loc.name for loc in board.store.locations] == ["Abandoned City"]
    assert board.store.story_outline == ["Robot-7 wakes up", "Robot-7 finds a flower"]
    assert not board.is_generating_blueprint


def test_blueprint_reports_first_error_when_every_provider_fails(notices, errors):
    google = FakeProvider(GOOGLE, text_error=ProviderError("429 quota exceeded"))
    openai = FakeProvider(OPENAI, text_error=RuntimeError("openai is down"))
    board = make_board({GOOGLE: google, OPENAI: openai}, notify=notices.append, on_error=errors.append)
    board.store.set_characters([Character(name="Old")])

    assert asyncio.run(board.generate_blueprint("idea")) is None
    assert errors == [RATE_LIMITED]
    assert len(notices) == 1
    assert board.store.characters == []
    assert not board.busy_state.any_busy


def test_unready_alternate_text_provider_is_not_tried(notices, errors):
    google = FakeProvider(GOOGLE, text_error=RuntimeError("boom"))
    openai = FakeProvider(OPENAI)
    board = make_board(
        {GOOGLE: google, OPENAI: openai}, config=ready_config(GOOGLE), notify=notices.append, on_error=errors.append,
    )
    asyncio.run(board.generate_blueprint("idea"))
    assert openai.calls == []
    assert notices == []
    assert errors == ["boom"]


def test_blank_idea_is_rejected():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    with pytest.raises(InvalidInputError):
        asyncio.run(board.generate_blueprint("   "))
    assert google.calls == []
    assert not board.is_generating_blueprint


def test_use_openai_for_prompt_drafts_with_openai_first(robot_blueprint, notices):
    google = FakeProvider(GOOGLE)
    openai = TextOnlyProvider(OPENAI, blueprint=robot_blueprint)
    config = ready_config(GOOGLE, OPENAI)
    config.use_openai_for_prompt = True
    board = make_board({GOOGLE: google, OPENAI: openai}, config=config, notify=notices.append)

    asyncio.run(board.generate_blueprint("a lonely robot"))

    assert board.providers.text_order(config) == [OPENAI, GOOGLE]
    assert openai.calls == [("blueprint", "a lonely robot", board.num_scenes)]
    assert google.count("blueprint") == 0
    assert notices == []


def test_use_openai_for_prompt_needs_a_ready_openai_key():
    config = ready_config(GOOGLE)
    config.use_openai_for_prompt = True
    board = make_board({GOOGLE: FakeProvider(GOOGLE), OPENAI: TextOnlyProvider(OPENAI)}, config=config)
    assert board.providers.text_order(config) == [GOOGLE]


def test_scenes_fall_back_and_link_entities(robot_blueprint, robot_scenes, notices):
    google = FakeProvider(GOOGLE, blueprint=robot_blueprint, text_error=None)
    openai = FakeProvider(OPENAI, scenes=robot_scenes)
    board = make_board({GOOGLE: google, OPENAI: openai}, settings=short_settings(), notify=notices.append)
    asyncio.run(board.generate_blueprint("robot"))
    google.text_error = ProviderError("Model gemini-2.5-flash not found")

    scenes = asyncio.run(board.generate_scenes_from_blueprint())

    assert notices == [SCENES_FALLBACK_NOTICE.format(name="OpenAI")]
    assert len(scenes) == 2
    robot_id = board.store.characters[0].id
    city_id = board.store.locations[0].id
    assert [s.title for s in scenes] == ["Cảnh 1", "Cảnh 2"]
    assert all(s.character_ids == [robot_id] for s in scenes)
    assert all(s.location_ids == [city_id] for s in scenes)
    assert board.store.scenes == scenes


def test_scenes_need_characters_or_locations():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    assert asyncio.run(board.generate_scenes_from_blueprint()) is None
    assert google.calls == []


def test_robot_story_end_to_end(robot_blueprint, robot_scenes, errors):
    google = FakeProvider(GOOGLE, blueprint=robot_blueprint, scenes=robot_scenes)
    board = make_board({GOOGLE: google}, settings=short_settings(), on_error=errors.append)

    async def run():
        await board.generate_blueprint("A lonely robot explores an abandoned city")
        await board.generate_all_reference_images()
        await board.generate_scenes_from_blueprint()
        await board.regenerate_all_images()
        await board.generate_all_scene_videos()

    asyncio.run(run())

    assert errors == []
    robot, city = board.store.characters[0], board.store.locations[0]
    assert robot.status is EntityStatus.DEFINED and robot.image is not None
    assert city.status is EntityStatus.DEFINED and city.image is not None

    scenes = board.store.scenes
    assert len(scenes) == 2
    for scene in scenes:
        assert scene.character_ids == [robot.id]
        assert scene.location_ids == [city.id]
        assert "Phong cách Điện ảnh" in scene.image_prompt
        assert "Abandoned City" in scene.image_prompt
        assert scene.duration == 8
        assert scene.main_image is not None
        assert scene.image_options == [scene.main_image]
        assert scene.video_status is VideoStatus.DONE
        assert scene.video_url == "https://videos.example/out.mp4"
    assert board.batch_progress is None
    assert not board.busy_state.any_busy


# ------------------------------------------------------------------
# Scene management
# ------------------------------------------------------------------

def test_blank_scene_defaults():
    board = make_board({GOOGLE: FakeProvider(GOOGLE)})
    board.add_blank_scene()
    scene = board.add_blank_scene()
    assert scene.title == "Cảnh 2"
    assert scene.duration == MANUAL_SCENE_SECONDS
    assert scene.image_prompt.startswith(image_style_prefix(VideoStyle.CINEMATIC))


def test_out_of_range_operations_raise():
    board = make_board({GOOGLE: FakeProvider(GOOGLE)})
    with pytest.raises(IndexOutOfBoundsError):
        asyncio.run(board.generate_image_for_scene(3))
    with pytest.raises(IndexOutOfBoundsError):
        board.update_scene(0, action="x")


def test_scenes_from_images_are_analyzed(errors):
    analyzer = FakeAnalyzer(GOOGLE, details={"action": "a robot waves", "cameraAngle": "Dolly In"})
    board = make_board({GOOGLE: analyzer}, on_error=errors.append)
    board.add_blank_scene()

    added = asyncio.run(board.add_scenes_from_images([image("a.png"), image("broken.png")]))

    assert [s.title for s in added] == ["Cảnh 2", "Cảnh 3"]
    assert added[0].action == "a robot waves"
    assert added[0].camera_angle == "Dolly In"
    assert "a robot waves" in added[0].image_prompt
    assert added[1].notes == ANALYSIS_FAILED_NOTE
    assert all(s.duration == MANUAL_SCENE_SECONDS for s in added)
    assert all(s.image_options == [s.main_image] for s in added)
    assert len(board.store.scenes) == 3
    assert errors == []


def test_scenes_from_images_without_analysis():
    analyzer = FakeAnalyzer(GOOGLE, details={"action": "ignored"})
    board = make_board({GOOGLE: analyzer})
    added = asyncio.run(board.add_scenes_from_images([image("a.png")], analyze=False))
    assert added[0].action == ""
    assert analyzer.count("describe") == 0


# ------------------------------------------------------------------
# Images
# ------------------------------------------------------------------

def test_scene_image_falls_back_to_other_image_provider(notices):
    google = FakeProvider(GOOGLE, image_error=RuntimeError("boom"))
    aiva = FakeProvider(AIVA)
    board = make_board({GOOGLE: google, AIVA: aiva}, notify=notices.append)
    board.store.set_scenes([Scene(id="s1", image_prompt="robot", image_model="gemini-x")])

    result = asyncio.run(board.generate_image_for_scene(0))

    assert notices == [IMAGE_FALLBACK_NOTICE.format(error="boom")]
    assert google.calls == [("image", "robot", "gemini-x")]
    assert aiva.calls == [("image", "robot", None)]
    assert board.store.scenes[0].main_image == result
    assert board.store.scenes[0].image_options == [result]


def test_failed_scene_image_restores_options(errors):
    google = FakeProvider(GOOGLE, image_error=RuntimeError("boom"))
    board = make_board({GOOGLE: google}, on_error=errors.append)
    old = image("old.png")
    board.store.set_scenes([Scene(id="s1", image_prompt="robot", main_image=old, image_options=[old])])

    assert asyncio.run(board.generate_image_for_scene(0)) is None
    assert board.store.scenes[0].image_options == [old]
    assert errors == ["boom"]


def test_more_options_survive_partial_failure():
    google = FakeProvider(GOOGLE, image_fails=lambda prompt: prompt.startswith("Cinematic Close-up"))
    aiva = FakeProvider(AIVA)
    board = make_board({GOOGLE: google, AIVA: aiva})
    main = image("main.png")
    board.store.set_scenes([Scene(id="s1", image_prompt="robot", main_image=main, image_options=[main])])

    added = asyncio.run(board.generate_more_image_options(0))

    assert len(added) == 1
    prompts = sorted(call[1] for call in google.calls)
    assert prompts == ["Cinematic Close-up Shot. robot", "Cinematic Medium Shot. robot"]
    assert aiva.calls == []
    assert board.store.scenes[0].image_options == [main, added[0]]


def test_more_options_use_advisor_shots_and_fail_when_none_render(errors):
    advisor = FakeAnalyzer(
        GOOGLE, shots=["Cinematic Wide Shot", "Low-angle Shot", "Two Shot", "Dutch Angle Shot"],
        image_error=RuntimeError("nope"),
    )
    board = make_board({GOOGLE: advisor}, on_error=errors.append)
    main = image("main.png")
    board.store.set_scenes([Scene(id="s1", image_prompt="robot", main_image=main, image_options=[main])])

    assert asyncio.run(board.generate_more_image_options(0)) is None
    assert sorted(call[1] for call in advisor.calls) == ["Low-angle Shot. robot", "Two Shot. robot"]
    assert errors == [MORE_OPTIONS_FAILED]
    assert board.store.scenes[0].image_options == [main]


def test_more_options_skipped_when_full():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    options = [image(f"{n}.png") for n in range(3)]
    board.store.set_scenes([Scene(main_image=options[0], image_options=options)])
    assert asyncio.run(board.generate_more_image_options(0)) is None
    assert google.calls == []


def test_edit_replaces_main_image_and_matching_option():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    main, other = image("main.png", b"main"), image("other.png", b"other")
    board.store.set_scenes([Scene(main_image=main, image_options=[main, other])])

    edited = asyncio.run(board.edit_image_for_scene(0, "add rain"))

    scene = board.store.scenes[0]
    assert scene.main_image == edited
    assert scene.image_options == [edited, other]
    assert google.calls == [("edit", "add rain")]



def test_text_only_image_selection_falls_back_to_aivideoauto(errors, notices):
    aiva = FakeProvider(AIVA)
    providers = {GOOGLE: FakeProvider(GOOGLE), OPENAI: TextOnlyProvider(OPENAI), AIVA: aiva}
    config = ready_config(OPENAI, AIVA, service=OPENAI)
    config.image_provider = OPENAI
    board = make_board(providers, config=config, on_error=errors.append, notify=notices.append)
    main = image("main.png")
    board.store.set_scenes([Scene(id="s1", image_prompt="robot", main_image=main, image_options=[main])])

    assert board.providers.image_provider(config) is AIVA
    edited = asyncio.run(board.edit_image_for_scene(0, "make it red"))
    generated = asyncio.run(board.generate_image_for_scene(0))

    assert edited is not None
    assert board.store.scenes[0].main_image == generated
    assert aiva.calls == [("edit", "make it red"), ("image", "robot", None)]
    assert errors == []
    assert notices == []

def test_regenerate_missing_images_only_touches_empty_scenes():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    done = image("done.png")
    board.store.set_scenes([
        Scene(id="s1", image_prompt="first", main_image=done, image_options=[done]),
        Scene(id="s2", image_prompt="second"),
    ])
    asyncio.run(board.regenerate_missing_images())
    assert [call[1] for call in google.calls] == ["second"]
    assert board.store.scenes[0].main_image == done
    assert board.store.scenes[1].main_image is not None


# ------------------------------------------------------------------
# Reference images
# ------------------------------------------------------------------

def test_reference_image_prompt_depends_on_provider_style():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    board.add_character("Robot-7", "rusty robot")
    board.add_location("Abandoned City", "")

    asyncio.run(board.generate_character_image(0))
    assert google.calls[0][1].startswith(image_style_prefix(VideoStyle.CINEMATIC))

    google.applies_style = True
    asyncio.run(board.generate_character_image(0))
    assert google.calls[1][1].startswith("Full-body reference shot")

    assert asyncio.run(board.generate_location_image(0)) is None
    assert len(google.calls) == 2
    assert board.store.characters[0].image is not None


def test_reference_batch_skips_rendered_and_undescribed_entities():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    board.store.set_characters([
        Character(name="A", description="has image", image=image("a.png")),
        Character(name="B", description="needs image", status=EntityStatus.SUGGESTED),
        Character(name="C"),
    ])
    board.store.set_locations([Location(name="L", description="foggy pier")])

    asyncio.run(board.generate_all_reference_images())

    assert google.count("image") == 2
    assert board.store.characters[1].status is EntityStatus.DEFINED
    assert board.store.characters[2].image is None
    assert board.store.locations[0].image is not None


def test_uploaded_reference_image_defines_entity():
    board = make_board({GOOGLE: FakeProvider(GOOGLE)})
    board.store.set_characters([Character(name="B", status=EntityStatus.SUGGESTED)])
    upload = UploadedImage.from_bytes(b"not really an image", "image/gif", "b.gif")
    character = board.set_character_image(0, upload)
    assert character.image == upload
    assert character.status is EntityStatus.DEFINED


# ------------------------------------------------------------------
# Video
# ------------------------------------------------------------------

def test_video_status_machine():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    board.api_config[GOOGLE].video_model = "veo-2.0-generate-001"
    board.store.set_scenes([Scene(id="s1", video_prompt="robot walks", video_url="https://old.example/v.mp4")])
    seen = []

    def observe(scene):
        current = board.store.scenes[0]
        seen.append((current.video_status, current.video_url, board.is_busy("s1")))

    google.video_hook = observe
    url = asyncio.run(board.generate_video_for_scene(0))

    assert seen == [(VideoStatus.GENERATING, None, True)]
    scene = board.store.scenes[0]
    assert url == "https://videos.example/out.mp4"
    assert scene.video_status is VideoStatus.DONE
    assert scene.video_url == url
    assert scene.video_status_message is None
    assert scene.task_id == "task-s1"
    assert scene.video_prompt == "robot walks"
    _, _, model, prompt = google.calls[0]
    assert model == "veo-2.0-generate-001"
    assert prompt == video_style_instruction(VideoStyle.CINEMATIC) + ". robot walks"
    assert not board.is_busy("s1")


def test_rate_limited_video_retries_once_then_errors(sleeps, errors, notices):
    google = FakeProvider(GOOGLE, video_error=ProviderError("429 Too Many Requests"))
    board = make_board(
        {GOOGLE: google}, settings=short_settings(), sleep=sleeps, on_error=errors.append, notify=notices.append,
    )
    board.store.set_scenes([Scene(id="s1", video_prompt="robot walks")])

    assert asyncio.run(board.generate_video_for_scene(0)) is None

    scene = board.store.scenes[0]
    assert scene.video_status is VideoStatus.ERROR
    assert scene.video_status_message == RATE_LIMITED
    assert scene.video_url is None
    assert errors == [RATE_LIMITED]
    assert google.count("video") == 2
    assert sleeps.delays == [2.0]
    assert notices == []


def test_video_falls_back_to_secondary_provider(sleeps, notices):
    google = FakeProvider(GOOGLE, video_error=ProviderError("Model veo-2 is not available"))
    aiva = FakeProvider(AIVA, video_url="https://aiva.example/v.mp4")
    board = make_board({GOOGLE: google, AIVA: aiva}, sleep=sleeps, notify=notices.append)
    board.store.set_scenes([Scene(id="s1")])

    assert asyncio.run(board.generate_video_for_scene(0)) == "https://aiva.example/v.mp4"

    assert notices == [VIDEO_FALLBACK_NOTICE.format(name="Aivideoauto", error="Model không khả dụng.")]
    assert google.count("video") == 1
    assert sleeps.delays == []
    assert board.store.scenes[0].video_status is VideoStatus.DONE


def test_rate_limited_primary_falls_back_after_retry(sleeps, notices):
    google = FakeProvider(GOOGLE, video_error=ProviderError("RESOURCE_EXHAUSTED"))
    aiva = FakeProvider(AIVA)
    board = make_board({GOOGLE: google, AIVA: aiva}, settings=short_settings(), sleep=sleeps, notify=notices.append)
    board.store.set_scenes([Scene(id="s1")])

    asyncio.run(board.generate_video_for_scene(0))

    assert google.count("video") == 2
    assert aiva.count("video") == 1
    assert sleeps.delays == [2.0]
    assert len(notices) == 1


def test_unready_secondary_is_not_used(errors, notices):
    google = FakeProvider(GOOGLE, video_error=RuntimeError("Failed to fetch"))
    aiva = FakeProvider(AIVA)
    board = make_board(
        {GOOGLE: google, AIVA: aiva}, config=ready_config(GOOGLE), on_error=errors.append, notify=notices.append,
    )
    board.store.set_scenes([Scene(id="s1")])

    asyncio.run(board.generate_video_for_scene(0))

    assert aiva.calls == []
    assert notices == []
    assert errors == ["Mạng lỗi hoặc máy chủ không phản hồi."]


def test_openai_service_renders_video_with_aivideoauto_first():
    google = FakeProvider(GOOGLE)
    aiva = FakeProvider(AIVA)
    board = make_board({GOOGLE: google, AIVA: aiva}, config=ready_config(OPENAI, GOOGLE, AIVA, service=OPENAI))
    board.store.set_scenes([Scene(id="s1")])
    asyncio.run(board.generate_video_for_scene(0))
    assert aiva.count("video") == 1
    assert google.calls == []


def test_video_result_follows_reordered_scene():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    board.store.set_scenes([Scene(id="s1"), Scene(id="s2")])
    google.video_hook = lambda scene: board.reorder_scenes(0, 1)

    asyncio.run(board.generate_video_for_scene(0))

    assert [s.id for s in board.store.scenes] == ["s2", "s1"]
    assert board.store.scenes[1].video_status is VideoStatus.DONE
    assert board.store.scenes[0].video_status is VideoStatus.IDLE


def test_video_for_removed_scene_is_dropped():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    board.store.set_scenes([Scene(id="s1")])
    google.video_hook = lambda scene: board.remove_scene(0)

    assert asyncio.run(board.generate_video_for_scene(0)) == "https://videos.example/out.mp4"
    assert board.store.scenes == []


def test_batch_video_skips_finished_scenes():
    google = FakeProvider(GOOGLE)
    board = make_board({GOOGLE: google})
    board.store.set_scenes([
        Scene(id="s1", video_status=VideoStatus.DONE, video_url="https://done.example/v.mp4"),
        Scene(id="s2", video_status=VideoStatus.ERROR),
        Scene(id="s3"),
    ])
    asyncio.run(board.generate_all_scene_videos())
    assert sorted(call[1] for call in google.calls) == ["s2", "s3"]
    assert board.store.scenes[0].video_url == "https://done.example/v.mp4"


# ------------------------------------------------------------------
# Sketches
# ------------------------------------------------------------------

class FakeSketcher(FakeProvider):
    async def generate_sketch(self, scene, style, aspect, name):
        self.calls.append(("sketch", scene.id))
        return image(name, b"sketch")


def test_sketch_requires_a_sketch_provider(errors):
    board = make_board({GOOGLE: FakeProvider(GOOGLE)}, on_error=errors.append)
    board.store.set_scenes([Scene(id="s1")])
    assert asyncio.run(board.generate_sketch_for_scene(0)) is None
    assert errors == [NO_PROVIDER_MESSAGE.format(task="phác thảo")]


def test_sketch_batch_fills_missing_sketches():
    sketcher = FakeSketcher(GOOGLE)
    board = make_board({GOOGLE: sketcher})
    board.store.set_scenes([Scene(id="s1"), Scene(id="s2", sketch_image=image("old.png"))])
    asyncio.run(board.generate_all_sketches())
    assert sketcher.calls == [("sketch", "s1")]
    assert board.store.scenes[0].sketch_image.name == "sketch_s1.png"
