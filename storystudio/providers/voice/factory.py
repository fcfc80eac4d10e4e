"""
Speech synthesizer factory with ordered fallback.
"""
import logging
from typing import List, Optional

from storystudio.config import AppConfig
from storystudio.models import AudioArtifact, StyleHint
from storystudio.providers.exceptions import ContentPolicyError, ProviderError
from storystudio.providers.voice.base import SpeechSynthesizer
from storystudio.providers.voice.cloud import GoogleCloudSpeechSynthesizer
from storystudio.providers.voice.edge import EdgeSpeechSynthesizer
from storystudio.providers.voice.gemini import GeminiSpeechSynthesizer

logger = logging.getLogger(__name__)


class FallbackSpeechSynthesizer(SpeechSynthesizer):
    """Tries each provider in order. Policy refusals are not masked by a fallback."""

    def __init__(self, providers: List[SpeechSynthesizer]):
        if not providers:
            raise ValueError("At least one speech provider is required")
        self._providers = providers
        self.max_input_chars = min(p.max_input_chars for p in providers)

    @property
    def name(self) -> str:
        return "+".join(p.name for p in self._providers)

    async def speak(
        self,
        text: str,
        voice: Optional[str] = None,
        style_hint: StyleHint = StyleHint.WARMLY,
    ) -> AudioArtifact:
        last_error: Optional[ProviderError] = None
        for provider in self._providers:
            try:
                return await provider.speak(text, voice, style_hint)
            except ContentPolicyError:
                raise
            except ProviderError as e:
                logger.warning(f"[TTS] {provider.name} failed, trying next provider: {e}")
                last_error = e
        raise last_error

    async def close(self):
        for provider in self._providers:
            await provider.close()


def get_speech_synthesizer(config: AppConfig) -> SpeechSynthesizer:
    """Build the speech chain: Gemini, then Cloud TTS, then edge-tts."""
    providers: List[SpeechSynthesizer] = []
    if config.ai.has_google:
        providers.append(GeminiSpeechSynthesizer(config.ai, config.generation.default_voice))
    if config.ai.has_cloud_tts:
        providers.append(GoogleCloudSpeechSynthesizer(config.ai))
    providers.append(EdgeSpeechSynthesizer())

    if len(providers) == 1:
        return providers[0]
    return FallbackSpeechSynthesizer(providers)
