"""
edge-tts speech synthesis. Free, keyless fallback voice.
"""
import logging
from typing import Optional

import edge_tts

from storystudio.models import AudioArtifact, StyleHint
from storystudio.providers.exceptions import ProviderError
from storystudio.providers.voice.base import SpeechSynthesizer

logger = logging.getLogger(__name__)


class EdgeSpeechSynthesizer(SpeechSynthesizer):
    """Maps style hints to speaking rate since edge-tts has no style prompt."""

    RATES = {
        StyleHint.WARMLY: "-5%",
        StyleHint.CHEERFULLY: "+5%",
        StyleHint.EXCITEDLY: "+10%",
        StyleHint.CALMLY: "-10%",
        StyleHint.MYSTERIOUSLY: "-8%",
        StyleHint.SADLY: "-15%",
    }

    max_input_chars = 5000

    def __init__(self, default_voice: str = "en-US-AnaNeural"):
        self.default_voice = default_voice

    @property
    def name(self) -> str:
        return "edge-tts"

    async def speak(
        self,
        text: str,
        voice: Optional[str] = None,
        style_hint: StyleHint = StyleHint.WARMLY,
    ) -> AudioArtifact:
        voice_name = voice if voice and voice.endswith("Neural") else self.default_voice
        rate = self.RATES.get(style_hint, "+0%")

        communicate = edge_tts.Communicate(text, voice_name, rate=rate)
        audio = bytearray()
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio.extend(chunk["data"])

        if not audio:
            raise ProviderError(self.name, "No audio received")

        logger.info(f"[TTS] edge-tts voice={voice_name} rate={rate} bytes={len(audio)}")
        return AudioArtifact(data=bytes(audio), mime_type="audio/mpeg")
