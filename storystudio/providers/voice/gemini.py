"""
Gemini speech synthesis.

The TTS model returns raw 16-bit little-endian mono PCM, which is wrapped
in a WAV container here so every artifact is independently playable.
"""
import base64
import io
import logging
import re
import wave
from typing import Optional

import httpx

from storystudio.config import AIConfig
from storystudio.models import AudioArtifact, StyleHint
from storystudio.providers.exceptions import ProviderError
from storystudio.providers.gemini import GeminiClient, response_parts
from storystudio.providers.voice.base import SpeechSynthesizer

logger = logging.getLogger(__name__)

GEMINI_VOICES = ("Kore", "Charon", "Aoede", "Fenrir", "Puck")
DEFAULT_SAMPLE_RATE = 24000


def pcm_to_wav(pcm: bytes, sample_rate: int = DEFAULT_SAMPLE_RATE, channels: int = 1, sample_width: int = 2) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def _sample_rate_from_mime(mime_type: str) -> int:
    match = re.search(r"rate=(\d+)", mime_type or "")
    return int(match.group(1)) if match else DEFAULT_SAMPLE_RATE


class GeminiSpeechSynthesizer(SpeechSynthesizer):

    max_input_chars = 4000

    def __init__(
        self,
        config: AIConfig,
        default_voice: str = "Kore",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._gemini = GeminiClient(config, self.name, client)
        self.model = config.tts_model
        self.default_voice = default_voice if default_voice in GEMINI_VOICES else "Kore"

    @property
    def name(self) -> str:
        return "gemini-tts"

    async def speak(
        self,
        text: str,
        voice: Optional[str] = None,
        style_hint: StyleHint = StyleHint.WARMLY,
    ) -> AudioArtifact:
        voice_name = voice if voice in GEMINI_VOICES else self.default_voice
        logger.info(f"[TTS] Gemini voice={voice_name} hint={style_hint.value} chars={len(text)}")

        payload = {
            "contents": [{"parts": [{"text": f"Say {style_hint.value}: {text}"}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice_name}}
                },
            },
        }
        data = await self._gemini.generate_content(self.model, payload)

        for part in response_parts(data):
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                pcm = base64.b64decode(inline["data"])
                rate = _sample_rate_from_mime(inline.get("mimeType", ""))
                return AudioArtifact(data=pcm_to_wav(pcm, rate), mime_type="audio/wav")

        raise ProviderError(self.name, "No audio data in response")

    async def close(self):
        await self._gemini.close()
