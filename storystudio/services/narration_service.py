"""
Narration Synthesizer.

Long text is split on sentence boundaries into chunks under the provider's
input ceiling, each chunk is spoken separately and the results are joined
into one artifact. Chunks are joined by decoding, never by byte
concatenation: WAV chunks with matching parameters are merged frame-wise
with `wave`, anything else goes through the ffmpeg concat filter.
"""
import asyncio
import io
import logging
import re
import tempfile
import wave
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from storystudio.config import GenerationConfig
from storystudio.models import (
    EMOTION_STYLE_HINTS,
    AudioArtifact,
    GenerationState,
    Scene,
    SceneEmotion,
    StoryRecord,
    StyleHint,
)
from storystudio.persistence.base import StoryRepository
from storystudio.providers.exceptions import ConfigurationError, PreconditionError
from storystudio.providers.voice.base import SpeechSynthesizer
from storystudio.services.asset_store import AssetStore
from storystudio.services.media import run_ffmpeg
from storystudio.services.retry import Retrier, RetryPolicy, SleepFunc

logger = logging.getLogger(__name__)

SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


def style_hint_for(emotion: Optional[SceneEmotion]) -> StyleHint:
    if emotion is None:
        return StyleHint.WARMLY
    return EMOTION_STYLE_HINTS.get(emotion, StyleHint.WARMLY)


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in SENTENCE_PATTERN.findall(text or "") if s.strip()]


def _split_long_sentence(sentence: str, max_chars: int) -> List[str]:
    """Word-boundary split for a single sentence over the ceiling."""
    pieces: List[str] = []
    current = ""
    for word in sentence.split():
        while len(word) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_chars])
            word = word[max_chars:]
        candidate = f"{current} {word}".strip()
        if len(candidate) > max_chars:
            pieces.append(current)
            current = word
        else:
            current = candidate
    if current:
        pieces.append(current)
    return pieces


def chunk_text(text: str, max_chars: int) -> List[str]:
    """
    Pack whole sentences into chunks of at most `max_chars`.

    A sentence is only broken (at word boundaries) when it alone exceeds
    the ceiling.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    text = re.sub(r"\s+", " ", text or "").strip()
    if len(text) <= max_chars:
        return [text] if text else []

    chunks: List[str] = []
    current = ""
    for sentence in split_sentences(text):
        if len(sentence) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split_long_sentence(sentence, max_chars))
            continue

        candidate = f"{current} {sentence}".strip()
        if len(candidate) > max_chars:
            chunks.append(current)
            current = sentence
        else:
            current = candidate

    if current:
        chunks.append(current)
    return chunks


def is_wav(data: bytes) -> bool:
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def concat_wav(chunks: Sequence[bytes]) -> Optional[bytes]:
    """Merge WAV chunks frame-wise. None when their parameters differ."""
    params = None
    frames: List[bytes] = []
    for data in chunks:
        with wave.open(io.BytesIO(data), "rb") as wav:
            current = (wav.getnchannels(), wav.getsampwidth(), wav.getframerate())
            if params is None:
                params = current
            elif current != params:
                return None
            frames.append(wav.readframes(wav.getnframes()))

    channels, width, rate = params
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as out:
        out.setnchannels(channels)
        out.setsampwidth(width)
        out.setframerate(rate)
        out.writeframes(b"".join(frames))
    return buffer.getvalue()


async def concat_with_ffmpeg(artifacts: Sequence[AudioArtifact], ffmpeg_path: str) -> AudioArtifact:
    """Decode every chunk and re-encode the sequence as one WAV file."""
    with tempfile.TemporaryDirectory(prefix="storystudio_audio_") as work:
        work_dir = Path(work)
        cmd = [ffmpeg_path, "-y"]
        for index, artifact in enumerate(artifacts):
            chunk_path = work_dir / f"chunk_{index:03d}.{artifact.extension}"
            chunk_path.write_bytes(artifact.data)
            cmd.extend(["-i", str(chunk_path)])

        # The concat filter negotiates one sample rate and layout for all inputs.
        inputs = "".join(f"[{index}:a]" for index in range(len(artifacts)))
        output = work_dir / "joined.wav"
        cmd.extend([
            "-filter_complex", f"{inputs}concat=n={len(artifacts)}:v=0:a=1[out]",
            "-map", "[out]",
            "-c:a", "pcm_s16le",
            str(output),
        ])
        await run_ffmpeg(cmd, stage="audio-concat")
        return AudioArtifact(data=output.read_bytes(), mime_type="audio/wav")


async def concatenate_audio(artifacts: Sequence[AudioArtifact], ffmpeg_path: str) -> AudioArtifact:
    if not artifacts:
        raise ValueError("No audio chunks to concatenate")
    if len(artifacts) == 1:
        return artifacts[0]

    if all(is_wav(a.data) for a in artifacts):
        joined = concat_wav([a.data for a in artifacts])
        if joined is not None:
            return AudioArtifact(data=joined, mime_type="audio/wav")
        logger.info("[TTS] WAV chunks differ in format, re-encoding with ffmpeg")

    return await concat_with_ffmpeg(artifacts, ffmpeg_path)


class NarrationSynthesizer:
    """speak(text, voice, hint) with chunking, retry and safe concatenation."""

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        config: GenerationConfig,
        ffmpeg_path: str = "ffmpeg",
        sleep: Optional[SleepFunc] = None,
    ):
        self.synthesizer = synthesizer
        self.config = config
        self.ffmpeg_path = ffmpeg_path
        self.retrier = Retrier(RetryPolicy.from_config(config), sleep=sleep, label="TTS")

    @property
    def max_chunk_chars(self) -> int:
        return min(self.config.tts_chunk_chars, self.synthesizer.max_input_chars)

    async def speak(
        self,
        text: str,
        voice: Optional[str] = None,
        style_hint: StyleHint = StyleHint.WARMLY,
    ) -> AudioArtifact:
        chunks = chunk_text(text, self.max_chunk_chars)
        if not chunks:
            raise ValueError("Nothing to narrate")

        voice = voice or self.config.default_voice
        logger.info(f"[TTS] Narrating {len(text)} chars in {len(chunks)} chunk(s), hint={style_hint.value}")

        results: List[AudioArtifact] = []
        for chunk in chunks:
            results.append(await self.retrier.run(
                lambda chunk=chunk: self.synthesizer.speak(chunk, voice, style_hint)
            ))
        return await concatenate_audio(results, self.ffmpeg_path)


@dataclass
class AudioBatchResult:
    total: int = 0
    complete: int = 0
    error: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "total": self.total,
            "complete": self.complete,
            "error": self.error,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "errors": {str(k): v for k, v in self.errors.items()},
        }


class SceneNarrator:
    """Per-scene audio and the optional full-story narration track."""

    def __init__(self, narration: NarrationSynthesizer, repository: StoryRepository, assets: AssetStore):
        self.narration = narration
        self.repository = repository
        self.assets = assets

    async def narrate_story(self, story_id: str, voice: Optional[str] = None) -> StoryRecord:
        story = self.repository.require_story(story_id)
        if not story.narration_text:
            raise PreconditionError("Story has no narration text yet")

        artifact = await self.narration.speak(story.narration_text, voice, StyleHint.WARMLY)
        story.full_audio_url = await self.assets.save_audio(story_id, "narration_full", artifact)
        self.repository.update_story(story)
        self.repository.record_usage(story_id, "tts", "full_narration", "success")
        return story

    async def narrate_scene(self, story_id: str, order: int, voice: Optional[str] = None) -> Scene:
        """Generate or regenerate one scene's audio. Text fields are never modified."""
        self.repository.require_story(story_id)
        scene = self.repository.get_scene(story_id, order)
        status = scene.audio_status
        status.start()
        self.repository.update_scene_audio(story_id, order, status)
        try:
            artifact = await self.narration.speak(scene.narration_text, voice, style_hint_for(scene.emotion))
            url = await self.assets.save_audio(story_id, f"scene_{order:02d}", artifact)
        except Exception as e:
            status.fail(str(e))
            self.repository.update_scene_audio(story_id, order, status)
            self.repository.record_usage(story_id, "tts", "scene", "error")
            logger.error(f"[TTS] Scene {order} audio failed: {e}")
            raise

        status.complete()
        self.repository.update_scene_audio(story_id, order, status, audio_url=url)
        self.repository.record_usage(story_id, "tts", "scene", "success")
        scene.audio_url = url
        return scene

    async def narrate_all_scenes(
        self,
        story_id: str,
        voice: Optional[str] = None,
        only_missing: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        progress_callback: Optional[Callable[[int, int, Scene], None]] = None,
    ) -> AudioBatchResult:
        scenes = self.repository.get_scenes(story_id)
        result = AudioBatchResult(total=len(scenes))

        for index, scene in enumerate(scenes, start=1):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break
            if only_missing and scene.audio_url and scene.audio_status.state == GenerationState.COMPLETE:
                result.skipped += 1
                continue
            try:
                await self.narrate_scene(story_id, scene.order, voice)
                result.complete += 1
            except ConfigurationError:
                raise
            except Exception as e:
                result.error += 1
                result.errors[scene.order] = str(e)

            if progress_callback is not None:
                progress_callback(index, len(scenes), scene)

        logger.info(f"[TTS] Scene audio: {result.complete} complete, {result.error} failed")
        return result
