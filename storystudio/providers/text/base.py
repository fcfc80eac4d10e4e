"""
Base class for text generation providers.
"""
from abc import ABC, abstractmethod


class TextGenerator(ABC):
    """Abstract base class for text generation. Responses may carry prose or markdown noise."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        pass

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Return the raw model text for a prompt."""
        pass

    async def close(self):
        """Release any HTTP client held by the provider."""
        pass
