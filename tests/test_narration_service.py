"""
Tests for narration chunking, concatenation and scene audio.
"""
import asyncio
import io
import wave

import pytest

from storystudio.config import GenerationConfig
from storystudio.models import AudioArtifact, GenerationState, Scene, SceneEmotion, StoryConfig, StoryRecord, StyleHint
from storystudio.providers.exceptions import ContentPolicyError, PreconditionError, TransientServiceError
from storystudio.services.narration_service import (
    NarrationSynthesizer,
    SceneNarrator,
    chunk_text,
    concat_wav,
    concatenate_audio,
    is_wav,
    split_sentences,
    style_hint_for,
)
from tests.conftest import FakeSpeechSynthesizer, SleepRecorder, wav_bytes


def wav_seconds(data):
    with wave.open(io.BytesIO(data), "rb") as wav:
        return wav.getnframes() / wav.getframerate()


class TestChunking:
    """Sentence-boundary chunking."""

    def test_short_text_single_chunk(self):
        assert chunk_text("One. Two.", 100) == ["One. Two."]

    def test_sentences_packed_under_ceiling(self):
        text = " ".join(f"Sentence number {i} is here." for i in range(20))
        chunks = chunk_text(text, 80)

        assert len(chunks) > 1
        assert all(len(c) <= 80 for c in chunks)
        assert all(c.endswith(".") for c in chunks)
        assert " ".join(chunks) == text

    def test_long_sentence_split_on_words(self):
        sentence = " ".join(["word"] * 50) + "."
        chunks = chunk_text(sentence, 40)
        assert all(len(c) <= 40 for c in chunks)
        assert " ".join(chunks) == sentence

    def test_split_sentences_keeps_trailing_fragment(self):
        assert split_sentences("Hello there! Is it you? The end") == ["Hello there!", "Is it you?", "The end"]

    def test_empty_text(self):
        assert chunk_text("   ", 10) == []

    def test_invalid_ceiling(self):
        with pytest.raises(ValueError):
            chunk_text("text", 0)


class TestConcatenation:
    """Joining chunk audio without byte concatenation."""

    def test_matching_wavs_merged(self):
        joined = concat_wav([wav_bytes(0.5), wav_bytes(0.25)])
        assert is_wav(joined)
        assert wav_seconds(joined) == pytest.approx(0.75)

    def test_mismatched_wavs_rejected(self):
        assert concat_wav([wav_bytes(0.5, rate=24000), wav_bytes(0.5, rate=16000)]) is None

    def test_single_artifact_passthrough(self):
        artifact = AudioArtifact(data=wav_bytes(0.1))
        assert asyncio.run(concatenate_audio([artifact], "ffmpeg")) is artifact

    def test_mismatched_wavs_reencoded(self, ffmpeg_path):
        artifacts = [AudioArtifact(wav_bytes(0.5, rate=24000)), AudioArtifact(wav_bytes(0.5, rate=16000))]
        joined = asyncio.run(concatenate_audio(artifacts, ffmpeg_path))

        assert joined.mime_type == "audio/wav"
        assert wav_seconds(joined.data) == pytest.approx(1.0, abs=0.05)


class TestNarrationSynthesizer:
    """speak() over multiple chunks."""

    def test_long_text_is_chunked(self):
        speech = FakeSpeechSynthesizer(max_input_chars=60)
        narration = NarrationSynthesizer(speech, GenerationConfig(), sleep=SleepRecorder())
        text = " ".join(f"This is sentence {i}." for i in range(12))

        artifact = asyncio.run(narration.speak(text, style_hint=StyleHint.SADLY))

        assert len(speech.calls) > 1
        assert all(len(call[0]) <= 60 for call in speech.calls)
        assert all(call[2] == StyleHint.SADLY for call in speech.calls)
        assert speech.calls[0][1] == "Kore"
        assert wav_seconds(artifact.data) == pytest.approx(0.5 * len(speech.calls))

    def test_transient_chunk_retried(self):
        speech = FakeSpeechSynthesizer(failures=[TransientServiceError("gemini-tts", "overloaded", 503)])
        sleep = SleepRecorder()
        narration = NarrationSynthesizer(speech, GenerationConfig(), sleep=sleep)

        asyncio.run(narration.speak("Hello."))

        assert len(speech.calls) == 2
        assert sleep.delays == [2.0]

    def test_nothing_to_narrate(self):
        narration = NarrationSynthesizer(FakeSpeechSynthesizer(), GenerationConfig())
        with pytest.raises(ValueError):
            asyncio.run(narration.speak(" "))

    def test_style_hints(self):
        assert style_hint_for(SceneEmotion.SAD) == StyleHint.SADLY
        assert style_hint_for(SceneEmotion.JOYFUL) == StyleHint.CHEERFULLY
        assert style_hint_for(None) == StyleHint.WARMLY


class TestSceneNarrator:
    """Per-scene audio and the full narration track."""

    def make(self, repository, assets, speech):
        return SceneNarrator(NarrationSynthesizer(speech, GenerationConfig(), sleep=SleepRecorder()), repository, assets)

    def seed(self, repository, narration="Once upon a time."):
        story = StoryRecord(config=StoryConfig(title="Tide"), narration_text=narration)
        repository.create_story(story)
        repository.replace_scenes(story.story_id, [
            Scene(order=1, narration_text="The sea was calm.", visual_description="sea", emotion=SceneEmotion.CALM),
            Scene(order=2, narration_text="The boat was lost.", visual_description="boat", emotion=SceneEmotion.SAD),
        ])
        return story

    def test_scene_audio_uses_emotion_hint(self, repository, assets):
        speech = FakeSpeechSynthesizer()
        story = self.seed(repository)

        scene = asyncio.run(self.make(repository, assets, speech).narrate_scene(story.story_id, 2))

        assert speech.calls[0][2] == StyleHint.SADLY
        stored = repository.get_scene(story.story_id, 2)
        assert stored.audio_url == scene.audio_url
        assert stored.audio_status.state == GenerationState.COMPLETE
        assert stored.narration_text == "The boat was lost."

    def test_batch_continues_after_failure(self, repository, assets):
        speech = FakeSpeechSynthesizer(failures=[ContentPolicyError("gemini-tts", "SAFETY")])
        story = self.seed(repository)

        result = asyncio.run(self.make(repository, assets, speech).narrate_all_scenes(story.story_id))

        assert result.complete == 1
        assert result.error == 1
        assert repository.get_scene(story.story_id, 1).audio_status.state == GenerationState.ERROR
        assert repository.get_scene(story.story_id, 2).audio_url

    def test_batch_tolerates_unexpected_errors(self, repository, assets):
        speech = FakeSpeechSynthesizer(failures=[ValueError("corrupt audio")])
        story = self.seed(repository)

        result = asyncio.run(self.make(repository, assets, speech).narrate_all_scenes(story.story_id))

        assert result.complete == 1
        assert result.error == 1
        assert "corrupt audio" in result.errors[1]
        assert repository.get_scene(story.story_id, 2).audio_url

    def test_full_narration_track(self, repository, assets):
        story = self.seed(repository)
        updated = asyncio.run(self.make(repository, assets, FakeSpeechSynthesizer()).narrate_story(story.story_id))

        assert updated.full_audio_url
        assert repository.get_story(story.story_id).full_audio_url == updated.full_audio_url

    def test_full_narration_requires_text(self, repository, assets):
        story = self.seed(repository, narration=None)
        with pytest.raises(PreconditionError):
            asyncio.run(self.make(repository, assets, FakeSpeechSynthesizer()).narrate_story(story.story_id))
