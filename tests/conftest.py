"""
Pytest configuration and fixtures for storystudio tests.
"""
import io
import os
import shutil
import tempfile
import wave
from pathlib import Path
from typing import List, Optional, Sequence

import pytest
from PIL import Image

# Set test environment before importing storystudio modules
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["DEBUG"] = "true"

from storystudio.config import AIConfig, AppConfig, GenerationConfig, PathsConfig, VideoConfig
from storystudio.models import AudioArtifact, ImageArtifact, ReferenceImage, StyleHint
from storystudio.persistence import InMemoryStoryRepository
from storystudio.providers.image.base import ImageSynthesizer
from storystudio.providers.text.base import TextGenerator
from storystudio.providers.voice.base import SpeechSynthesizer
from storystudio.services.asset_store import AssetStore


def png_bytes(color=(200, 120, 40), size=(64, 36)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def wav_bytes(seconds: float = 0.5, rate: int = 24000, channels: int = 1) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(b"\x00\x00" * channels * int(seconds * rate))
    return buffer.getvalue()


def find_ffmpeg() -> Optional[str]:
    path = PathsConfig._find_ffmpeg()
    if os.path.exists(path) or shutil.which(path):
        return path
    return None


class FakeTextGenerator(TextGenerator):
    """Returns queued responses in order and records prompts."""

    def __init__(self, responses: Sequence[str] = ()):
        self.responses = list(responses)
        self.prompts: List[str] = []

    @property
    def name(self) -> str:
        return "fake-text"

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeImageSynthesizer(ImageSynthesizer):
    """Raises queued errors first, then returns a PNG. Records every call."""

    def __init__(self, failures: Sequence[Exception] = ()):
        self.failures = list(failures)
        self.calls: List[dict] = []

    @property
    def name(self) -> str:
        return "fake-image"

    async def _next(self, prompt: str, references: Sequence[ReferenceImage]) -> ImageArtifact:
        self.calls.append({"prompt": prompt, "references": list(references)})
        if self.failures:
            raise self.failures.pop(0)
        return ImageArtifact(data=png_bytes(), mime_type="image/png")

    async def generate(self, prompt: str) -> ImageArtifact:
        return await self._next(prompt, [])

    async def generate_with_references(self, prompt: str, references: Sequence[ReferenceImage]) -> ImageArtifact:
        return await self._next(prompt, references)


class FakeSpeechSynthesizer(SpeechSynthesizer):
    """Half a second of silence per call."""

    def __init__(self, max_input_chars: int = 4000, failures: Sequence[Exception] = ()):
        self.max_input_chars = max_input_chars
        self.failures = list(failures)
        self.calls: List[tuple] = []

    @property
    def name(self) -> str:
        return "fake-tts"

    async def speak(self, text: str, voice: Optional[str] = None, style_hint: StyleHint = StyleHint.WARMLY) -> AudioArtifact:
        self.calls.append((text, voice, style_hint))
        if self.failures:
            raise self.failures.pop(0)
        return AudioArtifact(data=wav_bytes(0.5), mime_type="audio/wav")


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def app_config(temp_dir):
    """AppConfig built without touching the environment."""
    output_dir = temp_dir / "output"
    output_dir.mkdir()
    return AppConfig(
        ai=AIConfig(google_api_key="test-google-key"),
        paths=PathsConfig(
            data_dir=temp_dir,
            output_dir=output_dir,
            ffmpeg_path=find_ffmpeg() or "ffmpeg",
            ffprobe_path=None,
        ),
        generation=GenerationConfig(),
        video=VideoConfig(width=320, height=180, fps=30),
        storage_backend="memory",
    )


@pytest.fixture
def repository():
    return InMemoryStoryRepository()


@pytest.fixture
def assets(temp_dir):
    return AssetStore(temp_dir / "assets")


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def ffmpeg_path():
    path = find_ffmpeg()
    if path is None:
        pytest.skip("ffmpeg not available")
    return path


@pytest.fixture
def fake_text():
    return FakeTextGenerator()


@pytest.fixture
def fake_images():
    return FakeImageSynthesizer()


@pytest.fixture
def fake_speech():
    return FakeSpeechSynthesizer()


@pytest.fixture
def pipeline(app_config, repository, fake_text, fake_images, fake_speech, sleep_recorder):
    """StoryPipeline wired to fake capabilities and in-memory storage."""
    from storystudio.services import create_pipeline

    return create_pipeline(
        app_config,
        repository=repository,
        text_generator=fake_text,
        image_synthesizer=fake_images,
        speech_synthesizer=fake_speech,
        sleep=sleep_recorder,
    )


@pytest.fixture
def test_client(app_config, pipeline):
    """Create FastAPI test client around the fake-backed pipeline."""
    from fastapi.testclient import TestClient
    from storystudio.api.main import create_app

    app = create_app(config=app_config, pipeline=pipeline)
    with TestClient(app) as client:
        yield client
