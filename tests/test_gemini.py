import asyncio
from types import SimpleNamespace

from storyboard.config import CredentialStatus, GenerationSettings, ProviderCredentials
from storyboard.models import Scene
from storyboard.providers import gemini
from storyboard.providers.gemini import GeminiProvider


class FakeModels:
    def __init__(self, operation):
        self.operation = operation
        self.requests = []

    async def generate_videos(self, **kwargs):
        self.requests.append(kwargs)
        return self.operation


def finished_operation(data):
    video = SimpleNamespace(uri=None, video_bytes=data)
    return SimpleNamespace(
        name="operations/op-1",
        done=True,
        error=None,
        response=SimpleNamespace(generated_videos=[SimpleNamespace(video=video)]),
    )


def test_veo_clip_is_written_off_the_event_loop(tmp_path, monkeypatch, sleeps):
    models = FakeModels(finished_operation(b"mp4-bytes"))
    client = SimpleNamespace(aio=SimpleNamespace(models=models))
    creds = ProviderCredentials(key="k", status=CredentialStatus.VALID, video_model="veo-test")
    provider = GeminiProvider(
        creds, GenerationSettings(videos_dir=tmp_path / "videos"),
        client_factory=lambda api_key: client, sleep=sleeps,
    )

    offloaded = []

    async def to_thread(func, *args):
        offloaded.append(func.__name__)
        return func(*args)

    monkeypatch.setattr(gemini.asyncio, "to_thread", to_thread)
    progress, tasks = [], []

    uri = asyncio.run(provider.generate_video(
        Scene(id="s1", video_prompt="robot walks"), None, progress.append, tasks.append,
    ))

    target = tmp_path / "videos" / "s1.mp4"
    assert uri == target.resolve().as_uri()
    assert target.read_bytes() == b"mp4-bytes"
    assert offloaded == ["write_bytes"]
    assert tasks == ["operations/op-1"]
    assert models.requests[0]["model"] == "veo-test"
    assert models.requests[0]["prompt"] == "robot walks"
    assert progress[-1] == "Đang tải xuống video..."
    assert sleeps.delays == []
