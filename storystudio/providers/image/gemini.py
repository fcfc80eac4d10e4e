"""
Gemini image synthesis.

Plain prompts go to the fast image model. Prompts with character references
go to the reference-capable model with a consistency preamble and a fixed
16:9 frame.
"""
import base64
import logging
from typing import Optional, Sequence

import httpx

from storystudio.config import AIConfig
from storystudio.models import ImageArtifact, ReferenceImage
from storystudio.providers.exceptions import ProviderError
from storystudio.providers.gemini import GeminiClient, response_parts
from storystudio.providers.image.base import ImageSynthesizer

logger = logging.getLogger(__name__)

CONSISTENCY_PREAMBLE = (
    "Use the attached reference images as the exact appearance of the characters. "
    "Keep species, colors, clothing and accessories identical to the references. "
    "Child-friendly illustration, no text or lettering in the image. Scene: "
)


class GeminiImageSynthesizer(ImageSynthesizer):

    ASPECT_RATIO = "16:9"
    IMAGE_SIZE = "2K"

    def __init__(self, config: AIConfig, client: Optional[httpx.AsyncClient] = None):
        self._gemini = GeminiClient(config, self.name, client)
        self.model = config.image_model
        self.reference_model = config.reference_image_model
        logger.info(f"[GEMINI-IMAGE] Initialized: {self.model} / {self.reference_model}")

    @property
    def name(self) -> str:
        return "gemini-image"

    async def generate(self, prompt: str) -> ImageArtifact:
        logger.info(f"[GEMINI-IMAGE] Generating: {prompt[:100]}...")
        payload = {
            "contents": [{"parts": [{"text": f"Generate an image: {prompt}"}]}],
            "generationConfig": {
                "responseModalities": ["IMAGE", "TEXT"],
                "imageConfig": {"aspectRatio": self.ASPECT_RATIO},
            },
        }
        data = await self._gemini.generate_content(self.model, payload)
        return self._extract_image(data)

    async def generate_with_references(
        self,
        prompt: str,
        references: Sequence[ReferenceImage],
    ) -> ImageArtifact:
        logger.info(f"[GEMINI-IMAGE] Generating with {len(references)} references: {prompt[:100]}...")
        parts = [{"text": CONSISTENCY_PREAMBLE + prompt}]
        for reference in references:
            parts.append({
                "inlineData": {
                    "mimeType": reference.mime_type,
                    "data": base64.b64encode(reference.data).decode("ascii"),
                }
            })

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE", "TEXT"],
                "imageConfig": {
                    "aspectRatio": self.ASPECT_RATIO,
                    "imageSize": self.IMAGE_SIZE,
                },
            },
        }
        data = await self._gemini.generate_content(self.reference_model, payload)
        return self._extract_image(data)

    def _extract_image(self, data) -> ImageArtifact:
        for part in response_parts(data):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return ImageArtifact(
                    data=base64.b64decode(inline["data"]),
                    mime_type=inline.get("mimeType") or inline.get("mime_type") or "image/png",
                )
        raise ProviderError(self.name, "No image data in response")

    async def close(self):
        await self._gemini.close()
