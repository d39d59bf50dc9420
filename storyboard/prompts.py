"""Prompt synthesis from a scene's structured attributes.

The image prompt is fully deterministic. The video prompt samples two or
three camera sub-shots from ``CAMERA_MOVEMENTS``; pass a seeded
``random.Random`` (or any object with ``random()`` and ``sample()``) as
``rng`` to make it reproducible.
"""

from __future__ import annotations

import random
import re
from typing import Protocol, Sequence

from storyboard.models import Character, Location, Scene, VideoStyle
from storyboard.vocabulary import (
    CAMERA_ANGLES,
    image_style_prefix,
    shot_type_label,
    transition_phrase,
)


class RandomSource(Protocol):
    def random(self) -> float: ...

    def sample(self, population: Sequence, k: int) -> list: ...


# ------------------------------------------------------------------
# Lookup tables
# ------------------------------------------------------------------

URGENT_TONES = (
    "urgent", "chaotic", "action", "dramatic", "intense",
    "khẩn cấp", "hỗn loạn", "hành động", "kịch tính", "dữ dội",
)
CALM_TONES = (
    "sad", "romantic", "calm", "serene", "somber", "gentle",
    "buồn", "lãng mạn", "yên bình", "thanh thản", "ảm đạm", "nhẹ nhàng",
)

DEFAULT_SPEED = "một cách mượt mà"
URGENT_SPEED, URGENT_INTENSITY = "một cách nhanh chóng", "kịch tính"
CALM_SPEED, CALM_INTENSITY = "một cách chậm rãi và duyên dáng", "tinh tế"

# Templates take {speed} and {intensity}.
CAMERA_MOVEMENTS: dict[str, str] = {
    "Bullet Time": "một cú máy {intensity} quay 360 độ quanh chủ thể theo hiệu ứng 'bullet time', ghi lại một khoảnh khắc quan trọng.",
    "Crane Overhead": "bắt đầu từ một cú máy trên cao, máy quay {speed} hạ xuống, tiết lộ chi tiết của cảnh từ trên cao.",
    "Crane Down": "máy quay bắt đầu từ trên cao và {speed} hạ xuống, tạo cảm giác về quy mô hoặc tiết lộ một chủ thể bên dưới.",
    "Crane Up": "máy quay bắt đầu từ thấp và {speed} nâng lên, nâng cao góc nhìn để lộ ra môi trường rộng lớn hơn hoặc tạo cảm giác khát vọng.",
    "Crash Zoom In": "một cú zoom cực nhanh {speed} từ góc rộng thẳng vào một chi tiết cụ thể, tạo cảm giác sốc hoặc nhận ra điều gì đó.",
    "Crash Zoom Out": "máy quay {speed} thực hiện một cú zoom cực nhanh ra ngoài, kéo từ cận cảnh ra góc rộng để tiết lộ bối cảnh lớn hơn.",
    "Dolly In": "một cú máy trung cảnh {speed} tiến vào phía chủ thể, tăng cường sự tập trung và thân mật.",
    "Dolly Out": "máy quay {speed} lùi ra xa, tạo khoảng cách với chủ thể hoặc tiết lộ môi trường xung quanh.",
    "Dolly Left": "máy quay di chuyển ngang sang trái, song song với hành động, tiết lộ các yếu tố mới hoặc theo chuyển động của nhân vật.",
    "Dolly Right": "máy quay di chuyển ngang sang phải, song song với hành động, giữ chủ thể trong khung hình trong khi hậu cảnh thay đổi.",
    "Orbit Left": "một cú máy {intensity} {speed} quay sang trái quanh chủ thể, tạo ra một góc nhìn năng động và ba chiều.",
    "Orbit Right": "một cú máy {intensity} {speed} quay sang phải quanh chủ thể, thêm chiều sâu và tập trung sự chú ý.",
    "Robo Arm": "một cánh tay robot thực hiện một chuyển động máy quay phức tạp và chính xác, có thể bắt đầu rộng, tiến vào, rồi quay quanh, tất cả trong một chuyển động mượt mà, độc đáo.",
    "Tilt Up": "từ một vị trí cố định, máy quay {speed} nghiêng lên trên, quét từ điểm thấp hơn đến điểm cao hơn, thường để tiết lộ một cái gì đó cao.",
    "Tilt Down": "từ một vị trí cố định, máy quay {speed} nghiêng xuống dưới, chuyển góc nhìn từ điểm cao hơn xuống điểm thấp hơn.",
    "Super Dolly In": "một cú super dolly dài, liên tục {speed} di chuyển qua môi trường, đi sâu vào cảnh về phía một tiêu điểm ở xa.",
    "Super Dolly Out": "một cú super dolly dài ra ngoài, kéo lùi rất xa khỏi chủ thể để nhấn mạnh sự cô lập hoặc sự rộng lớn của bối cảnh.",
    "Handheld": "một cú máy quay tay, sử dụng các chuyển động {intensity} và tự nhiên để theo dõi hành động, tạo cảm giác chân thực và tức thì.",
    "Lens Crack": "một cú máy được đóng khung như thể qua một ống kính bị nứt, và vết nứt trở nên tồi tệ hơn trong suốt cảnh quay.",
    "Medium Zoom In": "một cú zoom {intensity} {speed} từ góc rộng hơn vào góc trung cảnh, thắt chặt sự tập trung vào chủ thể.",
    "Eyes In": "một cú máy bắt đầu bằng cận cảnh và {speed} tiến vào cực tả đôi mắt của nhân vật, tiết lộ cảm xúc của họ.",
    "Flood": "máy quay đứng yên hoặc lia chậm khi mực nước dâng lên, tạo cảm giác về một thảm họa sắp xảy ra hoặc một sự thay đổi yên bình.",
    "Exploration": "máy quay di chuyển như thể từ góc nhìn của nhân vật (POV), khám phá một môi trường mới hoặc bí ẩn với cảm giác khám phá.",
    "Disintegration": "chủ thể hoặc toàn bộ cảnh bắt đầu tan rã thành các hạt, với máy quay giữ ổn định để ghi lại hiệu ứng.",
}
DEFAULT_CAMERA_MOVEMENT = "một cú máy điện ảnh ghi lại cảnh, có thể với chuyển động {intensity} và {speed} để phù hợp với tông màu."

# Templates take {first}, {second} and {all}.
CUTTING_SEQUENCES: dict[str, str] = {
    "Cutting on Action": "Video bắt đầu bằng {first}. Ngay tại đỉnh điểm của hành động chính, cảnh cắt một cách mượt mà sang {second} để theo dõi diễn biến.",
    "Jump Cut": 'Video sử dụng kỹ thuật cắt nhảy để thể hiện thời gian trôi qua. Cảnh bắt đầu bằng {first}, sau đó đột ngột "nhảy" tới một khoảnh khắc sau đó được thể hiện qua {second}.',
    "Match Cut": "Video sử dụng một cú cắt đồng nhất (match cut) đầy nghệ thuật. Nó bắt đầu với {first}, trong đó một hình ảnh hoặc hành động cụ thể được làm nổi bật, sau đó cắt sang {second}, nơi một hình ảnh hoặc hành động tương tự trong một bối cảnh khác được hiển thị, tạo ra một sự liên kết ý nghĩa.",
    "Cross Cut": "Video sử dụng kỹ thuật cắt chéo, chuyển đổi qua lại giữa hai góc nhìn hoặc hành động song song: {first} và {second}, nhằm xây dựng sự căng thẳng hoặc so sánh.",
    "Cutaway": "Cảnh chính được thể hiện qua {first}. Giữa chừng, có một cú cắt chèn (cutaway) sang một chi tiết cận cảnh quan trọng (ví dụ: một vật thể trên bàn, một biểu cảm trên khuôn mặt phụ), trước khi quay trở lại cảnh chính, có thể từ một góc máy hơi khác như {second}.",
    "Smash Cut": "Video sử dụng một cú cắt đột ngột (smash cut) để tạo sự tương phản mạnh. Cảnh chuyển từ một khoảnh khắc yên tĩnh (được gợi ý bởi {first}) sang một cảnh hỗn loạn hoặc đầy kịch tính ({second}) một cách đột ngột.",
    "None": "Video được quay với các cú máy {all}, tập trung vào việc truyền tải câu chuyện một cách tự nhiên.",
    "Hard Cut": "Video được dựng bằng các cú cắt thẳng, rõ ràng. Bắt đầu với {first}, sau đó chuyển trực tiếp sang {second}.",
}
DEFAULT_CUTTING_STYLE = "Hard Cut"
NO_SHOTS_SEQUENCE = "Video tập trung ghi lại hành động chính một cách rõ ràng."
SIMPLE_VIDEO_CLOSING = "Tạo một video điện ảnh 8 giây cho cảnh này."

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

_WHITESPACE = re.compile(r"\s+")


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def scene_characters(scene: Scene, characters: Sequence[Character]) -> list[Character]:
    """Characters referenced by the scene, in reference order; dangling ids are skipped."""
    by_id = {c.id: c for c in characters}
    return [by_id[cid] for cid in scene.character_ids if cid in by_id]


def scene_locations(scene: Scene, locations: Sequence[Location]) -> list[Location]:
    by_id = {loc.id: loc for loc in locations}
    return [by_id[lid] for lid in scene.location_ids if lid in by_id]


def tone_modifiers(emotional_tone: str | None) -> tuple[str, str]:
    """Return ``(speed, intensity)`` wording for an emotional tone.

    A calm match takes precedence over an urgent one.
    """
    tone = (emotional_tone or "").lower()
    speed, intensity = DEFAULT_SPEED, ""
    if any(word in tone for word in URGENT_TONES):
        speed, intensity = URGENT_SPEED, URGENT_INTENSITY
    if any(word in tone for word in CALM_TONES):
        speed, intensity = CALM_SPEED, CALM_INTENSITY
    return speed, intensity


def camera_movement(angle: str, emotional_tone: str | None = None) -> str:
    """Describe the camera movement for ``angle`` in the scene's tone."""
    speed, intensity = tone_modifiers(emotional_tone)
    template = CAMERA_MOVEMENTS.get(angle, DEFAULT_CAMERA_MOVEMENT)
    return template.format(speed=speed, intensity=intensity)


def cutting_sequence(style: str | None, shots: Sequence[str]) -> str:
    if not shots:
        return NO_SHOTS_SEQUENCE
    template = CUTTING_SEQUENCES.get(style or DEFAULT_CUTTING_STYLE, CUTTING_SEQUENCES[DEFAULT_CUTTING_STYLE])
    second = shots[1] if len(shots) > 1 else shots[0]
    return template.format(first=shots[0], second=second, all=" và ".join(shots))


def sample_sub_shots(scene: Scene, rng: RandomSource | None = None) -> list[str]:
    """Pick 2 (40%) or 3 (60%) distinct camera angles and describe each one."""
    if not scene.camera_angle or scene.camera_angle == "None":
        return []
    rng = rng or random
    count = 3 if rng.random() > 0.4 else 2
    available = [angle for angle in CAMERA_ANGLES if angle != "None"]
    angles = rng.sample(available, count)
    return [camera_movement(angle, scene.emotional_tone) for angle in angles]


# ------------------------------------------------------------------
# Synthesizers
# ------------------------------------------------------------------

def synthesize_image_prompt(
    scene: Scene,
    characters: Sequence[Character],
    locations: Sequence[Location],
    style: VideoStyle | str = VideoStyle.CINEMATIC,
) -> str:
    """Compose the still-image prompt for a scene.

    Segments, in order: style prefix, shot type, action and character
    names, emotional tone, location (or setting) with lighting, colour
    palette, visual effects. Empty segments are skipped.
    """
    chars = scene_characters(scene, characters)
    locs = scene_locations(scene, locations)

    parts: list[str] = [image_style_prefix(style)]

    if scene.image_shot_type:
        parts.append(shot_type_label(scene.image_shot_type))

    subject: list[str] = []
    if scene.action:
        subject.append(scene.action)
    if chars:
        subject.append(", ".join(c.name for c in chars))
    if subject:
        parts.append(", ".join(subject))

    if scene.emotional_tone:
        parts.append(scene.emotional_tone)

    place: list[str] = []
    location_names = " and ".join(loc.name for loc in locs) if locs else scene.setting
    if location_names:
        place.append(location_names)
    if scene.lighting:
        place.append(f"ánh sáng {scene.lighting}")
    if place:
        parts.append(", ".join(place))

    if scene.color_palette:
        parts.append(f"bảng màu {scene.color_palette}")

    if scene.vfx and scene.vfx != "None":
        parts.append(f"hiệu ứng hình ảnh {scene.vfx}")

    return ", ".join(p for p in parts if p and p.strip())


def core_action_clause(
    scene: Scene,
    characters: Sequence[Character],
    locations: Sequence[Location],
) -> str:
    chars = scene_characters(scene, characters)
    locs = scene_locations(scene, locations)
    clause = scene.action or "Một cảnh diễn ra"
    if chars:
        clause += " với sự tham gia của " + " và ".join(c.name for c in chars)
    place = " và ".join(loc.name for loc in locs) if locs else scene.setting
    clause += f" trong bối cảnh {place}"
    return _collapse(clause) + "."


def atmosphere_clause(scene: Scene) -> str:
    parts: list[str] = []
    if scene.lighting:
        parts.append(f"ánh sáng {scene.lighting}")
    if scene.emotional_tone:
        parts.append(f"tông màu cảm xúc là {scene.emotional_tone}")
    if scene.color_palette:
        parts.append(f"sử dụng bảng màu {scene.color_palette}")
    if scene.vfx and scene.vfx != "None":
        parts.append(f"với hiệu ứng hình ảnh {scene.vfx}")
    if not parts:
        return ""
    return f"Không khí được xác định bởi: {', '.join(parts)}."


def transition_clause(scene: Scene) -> str:
    if not scene.transition or scene.transition == "None":
        return ""
    return (
        f"Video dài 8 giây này kết thúc bằng {transition_phrase(scene.transition)} "
        "để chuyển sang cảnh tiếp theo."
    )


def synthesize_video_prompt(
    scene: Scene,
    characters: Sequence[Character],
    locations: Sequence[Location],
    rng: RandomSource | None = None,
) -> str:
    """Compose the video prompt for a scene.

    With advanced settings off, the prompt is the core action, the
    atmosphere and a fixed closing sentence. Otherwise sampled sub-shots
    are woven into the scene's cutting-style template, followed by the
    atmosphere and the transition to the next scene.
    """
    core = core_action_clause(scene, characters, locations)
    atmosphere = atmosphere_clause(scene)

    if scene.use_advanced_video_settings is False:
        return _collapse(" ".join(p for p in (core, atmosphere, SIMPLE_VIDEO_CLOSING) if p))

    shots = sample_sub_shots(scene, rng)
    sequence = cutting_sequence(scene.cutting_style, shots)
    clauses = (core, sequence, atmosphere, transition_clause(scene))
    return _collapse(" ".join(p for p in clauses if p))


# ------------------------------------------------------------------
# Reference-image prompts
# ------------------------------------------------------------------

def reference_preamble(character_names: Sequence[str], location_names: Sequence[str]) -> str:
    """Instruction block prepended when reference images are attached.

    Characters must match their reference exactly; locations keep the
    reference's style but get a new camera framing.
    """
    chars = ", ".join(n for n in character_names if n)
    locs = ", ".join(n for n in location_names if n)
    preamble = (
        "CRITICAL INSTRUCTION: Generate an image based on the prompt below, "
        "using the attached reference images with the following rules:\n"
    )
    if chars:
        preamble += (
            f"- For characters ({chars}): Adhere STRICTLY to their appearance, clothing, "
            "and details from their reference image.\n"
        )
    if locs:
        preamble += (
            f"- For locations ({locs}): Recreate the artistic STYLE, atmosphere, and key "
            "elements from the reference image, but compose a NEW camera angle or viewpoint "
            "that fits the scene's action. Do NOT just copy the reference shot.\n"
        )
    return preamble + "\nPROMPT: "


def character_reference_prompt(description: str, style_prefix: str | None = None) -> str:
    if style_prefix:
        return (
            f"{style_prefix}, full-body reference shot of a character on a plain background. "
            f'The character must be fully visible. Description: "{description}".'
        )
    return (
        "Full-body reference shot of a single character on a plain background. Only one "
        "character should be in the image. The character must be fully visible from head to "
        f'toe. Character description: "{description}". IMPORTANT: The image must not contain '
        "any text, subtitles, or words."
    )


def location_reference_prompt(description: str, style_prefix: str | None = None) -> str:
    if style_prefix:
        return (
            f"{style_prefix}, wide establishing shot of a location, focusing only on the "
            "environment. CRITICAL: Absolutely no characters or people should be visible in "
            f'the image. Description: "{description}".'
        )
    return (
        "CRITICAL INSTRUCTION: Create a wide, establishing shot of a location. The image's "
        "primary focus MUST be the environment. Absolutely no main characters or prominent "
        "figures should be visible. The scene should feel like an empty set, ready for "
        f'characters to enter. Location description: "{description}". IMPORTANT: The image '
        "must not contain any text, subtitles, or words."
    )
