"""
Base class for speech synthesis providers.
"""
from abc import ABC, abstractmethod
from typing import Optional

from storystudio.models import AudioArtifact, StyleHint


class SpeechSynthesizer(ABC):
    """Abstract speech synthesis capability with a maximum input length."""

    max_input_chars: int = 4000

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        pass

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def speak(
        self,
        text: str,
        voice: Optional[str] = None,
        style_hint: StyleHint = StyleHint.WARMLY,
    ) -> AudioArtifact:
        """
        Synthesize speech for text no longer than `max_input_chars`.

        Args:
            text: Text to speak
            voice: Provider voice name, provider default when unknown
            style_hint: Delivery hint

        Returns:
            AudioArtifact holding one playable file
        """
        pass

    async def close(self):
        pass
