"""
Base class for image synthesis providers.
"""
from abc import ABC, abstractmethod
from typing import Sequence

from storystudio.models import ImageArtifact, ReferenceImage


class ImageSynthesizer(ABC):
    """
    Abstract image synthesis capability.

    Implementations must raise ContentPolicyError for safety refusals and
    TransientServiceError for overload/unavailability so callers can tell
    them apart.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def generate(self, prompt: str) -> ImageArtifact:
        """Unconditioned text-to-image."""
        pass

    @abstractmethod
    async def generate_with_references(
        self,
        prompt: str,
        references: Sequence[ReferenceImage],
    ) -> ImageArtifact:
        """
        Reference-conditioned synthesis.

        `references` is submitted as-is: weighting is expressed by repeating
        a reference, so the provider never deduplicates.
        """
        pass

    async def close(self):
        pass
