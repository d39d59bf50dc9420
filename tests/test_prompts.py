from fakes import ScriptedRng

from storyboard.models import Character, Location, Scene, VideoStyle
from storyboard.prompts import (
    CALM_SPEED,
    NO_SHOTS_SEQUENCE,
    SIMPLE_VIDEO_CLOSING,
    URGENT_SPEED,
    camera_movement,
    character_reference_prompt,
    reference_preamble,
    synthesize_image_prompt,
    synthesize_video_prompt,
    tone_modifiers,
)
from storyboard.vocabulary import image_style_prefix, transition_phrase

ROBOT = Character(name="Robot-7", description="rusty", id="c1")
CITY = Location(name="Abandoned City", description="ruins", id="l1")


def robot_scene(**overrides):
    values = dict(
        action="Robot-7 walks alone",
        setting="street",
        lighting="dusk",
        color_palette="Cool",
        emotional_tone="lonely",
        character_ids=["c1"],
        location_ids=["l1"],
    )
    values.update(overrides)
    return Scene(**values)


def test_image_prompt_segments_in_order():
    prompt = synthesize_image_prompt(robot_scene(), [ROBOT], [CITY], VideoStyle.CINEMATIC)
    assert prompt == (
        image_style_prefix(VideoStyle.CINEMATIC)
        + ", Cinematic Wide Shot (Toàn cảnh điện ảnh)"
        + ", Robot-7 walks alone, Robot-7"
        + ", lonely"
        + ", Abandoned City, ánh sáng dusk"
        + ", bảng màu Cool"
    )


def test_image_prompt_falls_back_to_setting_and_skips_empty_segments():
    scene = Scene(setting="a quiet harbour", image_shot_type="", vfx="Lens Flare")
    prompt = synthesize_image_prompt(scene, [], [], VideoStyle.PIXAR_3D)
    assert prompt == (
        image_style_prefix(VideoStyle.PIXAR_3D) + ", a quiet harbour, hiệu ứng hình ảnh Lens Flare"
    )


def test_image_prompt_skips_dangling_references():
    scene = robot_scene(character_ids=["gone", "c1"], location_ids=["gone"])
    prompt = synthesize_image_prompt(scene, [ROBOT], [CITY])
    assert "Robot-7 walks alone, Robot-7" in prompt
    assert "street, ánh sáng dusk" in prompt
    assert "Abandoned City" not in prompt


def test_tone_modifiers_prefer_calm():
    assert tone_modifiers("urgent") == (URGENT_SPEED, "kịch tính")
    assert tone_modifiers("Urgent but romantic")[0] == CALM_SPEED
    assert tone_modifiers(None) == ("một cách mượt mà", "")


def test_unknown_camera_angle_uses_generic_movement():
    assert "một cú máy điện ảnh ghi lại cảnh" in camera_movement("Spin Cycle", "calm")


def test_video_prompt_with_scripted_rng():
    rng = ScriptedRng(draw=0.1, picks=["Dolly Left", "Dolly Right"])
    scene = robot_scene(camera_angle="Dolly In", transition="Fade to Black", color_palette="", emotional_tone="")
    prompt = synthesize_video_prompt(scene, [ROBOT], [CITY], rng)

    assert rng.samples == [2]
    assert prompt == (
        "Robot-7 walks alone với sự tham gia của Robot-7 trong bối cảnh Abandoned City. "
        "Video được dựng bằng các cú cắt thẳng, rõ ràng. Bắt đầu với "
        "máy quay di chuyển ngang sang trái, song song với hành động, tiết lộ các yếu tố mới "
        "hoặc theo chuyển động của nhân vật., sau đó chuyển trực tiếp sang "
        "máy quay di chuyển ngang sang phải, song song với hành động, giữ chủ thể trong khung "
        "hình trong khi hậu cảnh thay đổi.. "
        "Không khí được xác định bởi: ánh sáng dusk. "
        "Video dài 8 giây này kết thúc bằng hiệu ứng mờ dần sang màu đen để chuyển sang cảnh tiếp theo."
    )


def test_video_prompt_samples_three_shots_on_high_draw():
    rng = ScriptedRng(draw=0.9)
    synthesize_video_prompt(robot_scene(camera_angle="Orbit Left"), [ROBOT], [CITY], rng)
    assert rng.samples == [3]


def test_video_prompt_without_camera_angle_has_no_sub_shots():
    rng = ScriptedRng()
    prompt = synthesize_video_prompt(robot_scene(camera_angle="None"), [ROBOT], [CITY], rng)
    assert rng.samples == []
    assert NO_SHOTS_SEQUENCE in prompt


def test_simple_video_prompt_ends_with_fixed_closing():
    scene = robot_scene(use_advanced_video_settings=False, camera_angle="Dolly In", transition="Wipe")
    prompt = synthesize_video_prompt(scene, [ROBOT], [CITY], ScriptedRng())
    assert prompt.startswith("Robot-7 walks alone với sự tham gia của Robot-7")
    assert prompt.endswith(SIMPLE_VIDEO_CLOSING)
    assert "gạt màn hình" not in prompt


def test_video_prompt_without_action_uses_placeholder():
    prompt = synthesize_video_prompt(Scene(setting="desert"), [], [], ScriptedRng())
    assert prompt.startswith("Một cảnh diễn ra trong bối cảnh desert.")


def test_transition_phrase():
    assert transition_phrase("Whip Pan") == "cú lia máy cực nhanh"
    assert transition_phrase("Iris") == "một hiệu ứng iris"


def test_reference_prompts():
    styled = character_reference_prompt("tall knight", "Phong cách X")
    assert styled.startswith("Phong cách X, full-body reference shot")
    assert '"tall knight"' in character_reference_prompt("tall knight")

    preamble = reference_preamble(["Robot-7"], [])
    assert "For characters (Robot-7)" in preamble
    assert "For locations" not in preamble
    assert preamble.endswith("PROMPT: ")
