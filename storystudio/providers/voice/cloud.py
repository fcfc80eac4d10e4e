"""
Google Cloud Text-to-Speech (LINEAR16), used when Gemini speech is unavailable.
"""
import base64
import logging
from typing import Optional

import httpx

from storystudio.config import AIConfig
from storystudio.models import AudioArtifact, StyleHint
from storystudio.providers.exceptions import ConfigurationError, ProviderError, TransientServiceError
from storystudio.providers.gemini import raise_for_gemini_status
from storystudio.providers.voice.base import SpeechSynthesizer

logger = logging.getLogger(__name__)


class GoogleCloudSpeechSynthesizer(SpeechSynthesizer):

    API_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"
    SPEAKING_RATE = 0.9
    # Cloud TTS limits input to 5000 bytes; leave room for multi-byte characters.
    max_input_chars = 2400

    def __init__(
        self,
        config: AIConfig,
        voice_name: str = "en-US-Neural2-F",
        language_code: str = "en-US",
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not config.has_cloud_tts:
            raise ConfigurationError("[cloud-tts] GOOGLE_CLOUD_TTS_KEY is not configured")
        self.api_key = config.google_cloud_tts_key
        self.voice_name = voice_name
        self.language_code = language_code
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    @property
    def name(self) -> str:
        return "cloud-tts"

    async def speak(
        self,
        text: str,
        voice: Optional[str] = None,
        style_hint: StyleHint = StyleHint.WARMLY,
    ) -> AudioArtifact:
        # Cloud voices look like "en-US-Neural2-F"; anything else is a foreign preset.
        voice_name = voice if voice and voice.count("-") >= 2 else self.voice_name
        payload = {
            "input": {"text": text},
            "voice": {"languageCode": self.language_code, "name": voice_name},
            "audioConfig": {"audioEncoding": "LINEAR16", "speakingRate": self.SPEAKING_RATE},
        }

        try:
            response = await self.client.post(self.API_URL, params={"key": self.api_key}, json=payload)
        except httpx.TransportError as e:
            raise TransientServiceError(self.name, f"Network error: {e}")

        raise_for_gemini_status(self.name, response)

        content = response.json().get("audioContent")
        if not content:
            raise ProviderError(self.name, "No audioContent in response")

        logger.info(f"[TTS] Cloud TTS synthesized {len(text)} chars with {voice_name}")
        # LINEAR16 responses already carry a WAV header.
        return AudioArtifact(data=base64.b64decode(content), mime_type="audio/wav")

    async def close(self):
        await self.client.aclose()
