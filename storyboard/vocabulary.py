"""Enumerated creative vocabulary shared by prompts, providers and the CLI."""

from __future__ import annotations

from storyboard.models import VideoStyle

# Camera angle / movement names. "None" disables sub-shot synthesis.
CAMERA_ANGLES: list[str] = [
    "None",
    "Bullet Time",
    "Crane Overhead",
    "Crane Down",
    "Crane Up",
    "Crash Zoom In",
    "Crash Zoom Out",
    "Dolly In",
    "Dolly Out",
    "Dolly Left",
    "Dolly Right",
    "Orbit Left",
    "Orbit Right",
    "Robo Arm",
    "Tilt Up",
    "Tilt Down",
    "Super Dolly In",
    "Super Dolly Out",
    "Handheld",
    "Lens Crack",
    "Medium Zoom In",
    "Eyes In",
    "Flood",
    "Exploration",
    "Disintegration",
]

CUTTING_STYLES: list[str] = [
    "Hard Cut",
    "Cutting on Action",
    "Jump Cut",
    "Match Cut",
    "Cross Cut",
    "Cutaway",
    "Smash Cut",
    "None",
]

# value -> "English – Vietnamese" label; the part after the dash is used
# in synthesized video prompts.
TRANSITIONS: dict[str, str] = {
    "None": "None – Không có",
    "Cut": "Cut – cú cắt thẳng",
    "Fade to Black": "Fade to Black – hiệu ứng mờ dần sang màu đen",
    "Fade to White": "Fade to White – hiệu ứng mờ dần sang màu trắng",
    "Dissolve": "Dissolve – hiệu ứng hòa tan",
    "Cross Dissolve": "Cross Dissolve – hiệu ứng hòa tan chéo",
    "Wipe": "Wipe – hiệu ứng gạt màn hình",
    "Whip Pan": "Whip Pan – cú lia máy cực nhanh",
    "Zoom Transition": "Zoom Transition – hiệu ứng chuyển cảnh bằng zoom",
    "Light Leak": "Light Leak – hiệu ứng lóa sáng",
    "Glitch": "Glitch – hiệu ứng nhiễu kỹ thuật số",
}

IMAGE_SHOT_TYPES: dict[str, str] = {
    "Cinematic Wide Shot": "Cinematic Wide Shot (Toàn cảnh điện ảnh)",
    "Cinematic Medium Shot": "Cinematic Medium Shot (Trung cảnh điện ảnh)",
    "Cinematic Close-up Shot": "Cinematic Close-up Shot (Cận cảnh điện ảnh)",
    "Extreme Close-up Shot": "Extreme Close-up Shot (Đặc tả)",
    "Establishing Shot": "Establishing Shot (Cảnh thiết lập)",
    "Over-the-shoulder Shot": "Over-the-shoulder Shot (Góc qua vai)",
    "Point of View (POV) Shot": "Point of View (POV) Shot (Góc nhìn nhân vật)",
    "High-angle Shot": "High-angle Shot (Góc máy cao)",
    "Low-angle Shot": "Low-angle Shot (Góc máy thấp)",
    "Dutch Angle Shot": "Dutch Angle Shot (Góc máy nghiêng)",
    "Bird's-eye View Shot": "Bird's-eye View Shot (Góc nhìn từ trên cao)",
    "Two Shot": "Two Shot (Cảnh hai nhân vật)",
}

DEFAULT_SHOT_TYPE = "Cinematic Wide Shot"

# Used for extra image options when no shot advisor is available.
FALLBACK_SHOT_TYPES = ["Cinematic Medium Shot", "Cinematic Close-up Shot", "High-angle Shot"]

COLOR_PALETTES: list[str] = [
    "Warm",
    "Cool",
    "Monochrome",
    "Pastel",
    "Vibrant",
    "Desaturated",
    "Teal and Orange",
    "Earthy",
    "Neon",
    "High Contrast",
]

IMAGE_STYLE_PREFIXES: dict[VideoStyle, str] = {
    VideoStyle.CINEMATIC: (
        "Phong cách Điện ảnh: bức ảnh điện ảnh, ánh sáng kịch tính, hạt phim, màu sắc "
        "được chỉnh sửa chuyên nghiệp, không khí trầm lắng, độ sâu trường ảnh nông."
    ),
    VideoStyle.HYPER_REALISTIC_3D: (
        "Phong cách 3D Siêu thực: Kết xuất 3D siêu thực, CGI chân thực như ảnh chụp, V-Ray, "
        "Octane Render, Unreal Engine 5, da siêu thực với Tán xạ dưới bề mặt (SSS), lỗ chân "
        "lông rõ ràng, vải dệt chi tiết, Ray Tracing, Độ sâu trường ảnh cực nông, bokeh mịn, "
        "8K, Ultra HD."
    ),
    VideoStyle.PIXAR_3D: (
        "Phong cách 3D Hoạt hình Pixar: kết xuất 3D, màu sắc rực rỡ và bão hòa, nhân vật biểu "
        "cảm và hấp dẫn với các đặc điểm phóng đại, họa tiết chi tiết nhưng sạch sẽ, ánh sáng "
        "dịu và ấm áp, bố cục điện ảnh, tập trung kể chuyện."
    ),
}

# Short prefixes used by the image provider itself.
PROVIDER_STYLE_TAGS: dict[VideoStyle, str] = {
    VideoStyle.CINEMATIC: "Phong cách Ảnh Điện ảnh:",
    VideoStyle.HYPER_REALISTIC_3D: "Phong cách 3D Siêu thực:",
    VideoStyle.PIXAR_3D: "Phong cách 3D Hoạt hình Pixar:",
}

VIDEO_STYLE_INSTRUCTIONS: dict[VideoStyle, str] = {
    VideoStyle.CINEMATIC: (
        "Cinematic shot, dramatic lighting, shallow depth of field, film grain, moody color "
        "grade, intentional and smooth camera movement."
    ),
    VideoStyle.HYPER_REALISTIC_3D: (
        "Hyper-Realistic 3D Render, Photorealistic CGI, Cinematic Quality, High Poly Count. "
        "Using render engines like V-Ray, Octane Render, or Unreal Engine 5. Materials show "
        "extreme micro-details: realistic skin with Subsurface Scattering (SSS), visible pores, "
        "and peach fuzz; detailed fabric weaves; metals with anisotropic reflections and "
        "micro-scratches. Lighting uses Accurate Global Illumination (GI) and Ray Tracing. "
        "Camera has an extremely shallow depth of field (like f/1.4) with creamy bokeh. 8K, "
        "Ultra HD, maximum render quality."
    ),
    VideoStyle.PIXAR_3D: (
        "Pixar animation style, vibrant colors, expressive characters, detailed textures, soft "
        "lighting, cinematic composition. Focus on storytelling through character emotion and "
        "beautifully rendered environments. 3D rendered, high quality, family-friendly aesthetic."
    ),
}

NEGATIVE_PROMPT_NO_TEXT = (
    "subtitles, text, words, letters, captions, watermark, signature, labels, typography, "
    "writing, logo, credits, title, branding, user interface elements, overlays"
)


def image_style_prefix(style: VideoStyle | str) -> str:
    return IMAGE_STYLE_PREFIXES[VideoStyle(style)]


def video_style_instruction(style: VideoStyle | str) -> str:
    return VIDEO_STYLE_INSTRUCTIONS[VideoStyle(style)]


def shot_type_label(value: str) -> str:
    return IMAGE_SHOT_TYPES.get(value, value)


def transition_phrase(value: str) -> str:
    """Lower-cased Vietnamese phrase naming a transition."""
    label = TRANSITIONS.get(value, "")
    parts = label.split("–")
    if len(parts) > 1 and parts[1].strip():
        return parts[1].strip().lower()
    return f"một hiệu ứng {value.lower()}"
