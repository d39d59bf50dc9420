"""Async HTTP client for the aivideoauto (gommo) image and video API."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

import httpx

from storyboard.errors import USER_MESSAGES, ErrorKind, ProviderError, StoryboardError
from storyboard.models import Character, Location, ProviderImageRef, Scene, UploadedImage, VideoStyle
from storyboard.progress import format_duration
from storyboard.providers.base import ModelCatalog, ModelInfo, ProgressCallback, ProviderName
from storyboard.vocabulary import NEGATIVE_PROMPT_NO_TEXT

if TYPE_CHECKING:
    from storyboard.config import GenerationSettings, ProviderCredentials

logger = logging.getLogger(__name__)

BASE_URL = "https://api.gommo.net/ai"
DOMAIN = "aivideoauto.com"
PROJECT_ID = "default"
_DEFAULT_TIMEOUT = 60.0
_DOWNLOAD_TIMEOUT = 300.0


@dataclass
class VideoTaskStatus:
    """Status of an aivideoauto video task."""
    video_id: str
    status: str
    download_url: str | None = None
    queue_position: int | None = None
    progress: float | None = None
    message: str | None = None

    @property
    def is_success(self) -> bool:
        s = self.status
        return ("success" in s or "completed" in s or "done" in s) and bool(self.download_url)

    @property
    def is_failure(self) -> bool:
        return "fail" in self.status or "error" in self.status

    def describe(self, elapsed: float) -> str:
        """Human-readable progress line, with an ETA once progress is known."""
        if not self.status:
            return ""
        text = f"Trạng thái: {self.status}"
        if self.queue_position:
            text += f" (hàng chờ: {self.queue_position})"
        elif self.progress is not None:
            pct = self.progress
            shown = int(pct) if float(pct).is_integer() else pct
            if pct > 0:
                eta = round(elapsed / (pct / 100) - elapsed)
                text += f" ({shown}%) (Còn lại ~{format_duration(eta)})"
            else:
                text += f" ({shown}%)"
        return text


def _ratio(aspect: str) -> str:
    return aspect.replace(":", "_")


def _refs_field(refs: Sequence[ProviderImageRef]) -> str:
    return json.dumps([{"id_base": r.id_base, "url": r.url} for r in refs])


class AivideoautoProvider:
    """Image and video generation through the gommo API.

    Every call is a form-encoded POST carrying ``access_token`` and
    ``domain``. Usage::

        async with AivideoautoProvider(creds, settings) as provider:
            url = await provider.generate_video(scene, None, print)
    """

    name = ProviderName.AIVIDEOAUTO
    applies_style = False

    def __init__(
        self,
        credentials: ProviderCredentials,
        settings: GenerationSettings,
        base_url: str = BASE_URL,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.credentials = credentials
        self.settings = settings
        self.base_url = base_url.rstrip("/")
        self._sleep = sleep
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> AivideoautoProvider:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post(self, endpoint: str, data: dict[str, Any], token: str | None = None) -> dict:
        token = token or self.credentials.key
        if not token:
            raise ProviderError(
                "Aivideoauto access token is not configured.", provider=self.name.value,
                kind=ErrorKind.UNAUTHORIZED,
            )
        form = {"access_token": token, "domain": DOMAIN}
        form.update({k: str(v) for k, v in data.items() if v is not None})
        logger.debug("POST %s%s", self.base_url, endpoint)
        try:
            response = await self._client.post(endpoint, data=form)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = exc.response.text
            try:
                message = exc.response.json().get("message") or message
            except ValueError:
                pass
            raise ProviderError(
                f"Lỗi API: {exc.response.status_code} {message}", provider=self.name.value,
                status_code=exc.response.status_code, body=exc.response.text,
            ) from exc
        except httpx.TimeoutException as exc:
            raise ProviderError(
                f"Request timeout: {exc}", provider=self.name.value, kind=ErrorKind.NETWORK_FAILURE,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderError(
                f"Network error: {exc}", provider=self.name.value, kind=ErrorKind.NETWORK_FAILURE,
            ) from exc
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Invalid JSON from {endpoint}", provider=self.name.value, body=response.text,
            ) from exc

    async def _fetch_image(self, url: str, name: str, ref: ProviderImageRef | None) -> UploadedImage:
        try:
            response = await self._client.get(url, timeout=_DOWNLOAD_TIMEOUT)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderError(f"Could not download the generated image: {exc}", provider=self.name.value) from exc
        mime_type = response.headers.get("content-type", "image/png").split(";")[0]
        return UploadedImage.from_bytes(response.content, mime_type, name, provider_ref=ref)

    async def upload_image(self, image: UploadedImage) -> ProviderImageRef:
        """Register ``image`` on the server and return its handle."""
        data = await self._post("/image-upload", {
            "data": image.base64_data,
            "project_id": PROJECT_ID,
            "file_name": image.name,
            "size": image.size,
        })
        info = data.get("imageInfo") or {}
        if data.get("success") and info.get("id_base"):
            logger.info("Uploaded %s -> %s", image.name, info["id_base"])
            return ProviderImageRef(id_base=info["id_base"], url=info.get("url", ""))
        raise ProviderError(data.get("message") or "Tải ảnh lên thất bại.", provider=self.name.value, body=data)

    async def _upload_all(self, images: Sequence[UploadedImage]) -> list[ProviderImageRef]:
        return list(await asyncio.gather(*(self._reuse_or_upload(img) for img in images)))

    async def _reuse_or_upload(self, image: UploadedImage) -> ProviderImageRef:
        if image.provider_ref is not None:
            return image.provider_ref
        return await self.upload_image(image)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def get_models(self, model_type: str, token: str | None = None) -> list[ModelInfo]:
        data = await self._post("/models", {"type": model_type}, token)
        raw = data.get("data")
        if not isinstance(raw, list):
            raise ProviderError(
                "Định dạng phản hồi từ API models không hợp lệ.", provider=self.name.value, body=data,
            )
        return [ModelInfo(m["model"], m.get("name", m["model"])) for m in raw if m.get("model")]

    async def list_models(self, key: str) -> ModelCatalog:
        image_models, video_models = await asyncio.gather(
            self.get_models("image", key), self.get_models("video", key),
        )
        return ModelCatalog(image_models=image_models, video_models=video_models)

    async def validate_credentials(self, key: str) -> None:
        catalog = await self.list_models(key)
        if not catalog.image_models and not catalog.video_models:
            raise ProviderError("Không tìm thấy model nào cho token này.", provider=self.name.value)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def _image_model(self, model: str | None) -> str:
        model = model or self.credentials.image_model
        if not model:
            raise ProviderError(
                "No aivideoauto image model selected", provider=self.name.value,
                kind=ErrorKind.MODEL_UNAVAILABLE,
            )
        return model

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
        """Create an image; the result keeps its server handle for video reuse."""
        payload: dict[str, Any] = {
            "action_type": "create",
            "model": self._image_model(model),
            "prompt": prompt,
            "negative_prompt": NEGATIVE_PROMPT_NO_TEXT,
            "editImage": "false",
            "project_id": PROJECT_ID,
            "ratio": _ratio(aspect),
        }
        ref_images = [e.image for e in (*location_refs, *character_refs) if e.image is not None]
        if ref_images:
            logger.info("Uploading %d reference images", len(ref_images))
            payload["subjects"] = _refs_field(await self._upload_all(ref_images))

        logger.info("Creating image: model=%s, prompt=%r", payload["model"], prompt[:80])
        data = await self._post("/generateImage", payload)
        info = data.get("imageInfo") or {}
        if data.get("success") and info.get("url") and info.get("id_base"):
            ref = ProviderImageRef(id_base=info["id_base"], url=info["url"])
            return await self._fetch_image(info["url"], name, ref)
        raise ProviderError(
            data.get("message") or "API không trả về dữ liệu ảnh hợp lệ.", provider=self.name.value, body=data,
        )

    async def edit_image(
        self,
        image: UploadedImage,
        prompt: str,
        refs: Sequence[UploadedImage] = (),
        aspect: str = "16:9",
        model: str | None = None,
    ) -> UploadedImage:
        payload: dict[str, Any] = {
            "action_type": "create",
            "model": self._image_model(model),
            "prompt": prompt,
            "negative_prompt": NEGATIVE_PROMPT_NO_TEXT,
            "editImage": "true",
            "base64Image": image.data_url,
            "project_id": PROJECT_ID,
            "ratio": _ratio(aspect),
        }
        if refs:
            payload["subjects"] = _refs_field(await self._upload_all(refs))

        logger.info("Editing image %s: %r", image.name, prompt[:80])
        data = await self._post("/generateImage", payload)
        info = data.get("imageInfo") or {}
        if data.get("success") and info.get("url"):
            # The edited pixels are no longer the registered upload.
            return await self._fetch_image(info["url"], image.name, None)
        raise ProviderError(
            data.get("message") or "API không trả về ảnh đã chỉnh sửa hợp lệ.",
            provider=self.name.value, body=data,
        )

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    async def create_video(self, scene: Scene, model: str | None = None) -> str:
        """Submit a video task for ``scene`` and return its id."""
        payload: dict[str, Any] = {
            "model": model or self.credentials.video_model,
            "privacy": "PRIVATE",
            "prompt": scene.video_prompt or "Animate this image based on its content.",
            "translate_to_en": "true",
        }
        if scene.main_image is not None:
            ref = await self._reuse_or_upload(scene.main_image)
            payload["images"] = _refs_field([ref])

        data = await self._post("/create-video", payload)
        info = data.get("videoInfo") or {}
        if info.get("id_base"):
            logger.info("Video task created: %s", info["id_base"])
            return info["id_base"]
        raise ProviderError(
            data.get("message") or "Không thể gửi yêu cầu tạo video.", provider=self.name.value, body=data,
        )

    async def get_video_status(self, video_id: str) -> VideoTaskStatus:
        data = await self._post("/video", {"videoId": video_id})
        info = data.get("videoInfo")
        if not (isinstance(info, dict) and info.get("status")):
            if not data.get("status"):
                raise ProviderError(
                    data.get("message") or "Không thể kiểm tra trạng thái video: Phản hồi không hợp lệ.",
                    provider=self.name.value, body=data,
                )
            info = data

        progress = info.get("progress")
        try:
            progress = float(progress) if progress not in (None, "") else None
        except (TypeError, ValueError):
            progress = None
        return VideoTaskStatus(
            video_id=video_id,
            status=str(info.get("status", "")).lower(),
            download_url=info.get("download_url"),
            queue_position=info.get("queue_position") or None,
            progress=progress,
            message=info.get("message") or data.get("message"),
        )

    async def wait_for_video(
        self,
        video_id: str,
        on_progress: ProgressCallback,
        poll_interval: float | None = None,
        max_wait: float | None = None,
    ) -> str:
        """Poll until the task finishes and return its download URL.

        Raises a TIMEOUT error once ``max_wait`` seconds have been spent.
        """
        poll_interval = self.settings.poll_interval if poll_interval is None else poll_interval
        max_wait = self.settings.max_wait if max_wait is None else max_wait
        started = self._clock()
        waited = 0.0
        while True:
            status = await self.get_video_status(video_id)
            logger.debug("Video %s: status=%s (%.0fs waited)", video_id, status.status, waited)
            message = status.describe(self._clock() - started)
            if message:
                on_progress(message)
            if status.is_success:
                on_progress("Hoàn thành!")
                return status.download_url
            if status.is_failure:
                raise ProviderError(status.message or "Tạo video thất bại.", provider=self.name.value)
            if waited >= max_wait:
                raise StoryboardError(USER_MESSAGES[ErrorKind.TIMEOUT], ErrorKind.TIMEOUT)
            await self._sleep(poll_interval)
            waited += poll_interval

    async def generate_video(
        self,
        scene: Scene,
        model: str | None,
        on_progress: ProgressCallback,
        on_task: Callable[[str], None] | None = None,
    ) -> str:
        video_id = await self.create_video(scene, model)
        if on_task is not None:
            on_task(video_id)
        on_progress("Đã gửi yêu cầu...")
        return await self.wait_for_video(video_id, on_progress)
