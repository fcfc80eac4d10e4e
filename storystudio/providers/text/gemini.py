"""
Gemini text generation over the generateContent REST endpoint.
"""
import logging
from typing import Optional

import httpx

from storystudio.config import AIConfig
from storystudio.providers.exceptions import ProviderError
from storystudio.providers.gemini import GeminiClient, response_parts
from storystudio.providers.text.base import TextGenerator

logger = logging.getLogger(__name__)


class GeminiTextGenerator(TextGenerator):

    def __init__(
        self,
        config: AIConfig,
        temperature: float = 0.8,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._gemini = GeminiClient(config, self.name, client)
        self.model = config.text_model
        self.temperature = temperature
        logger.info(f"[GEMINI-TEXT] Initialized with model: {self.model}")

    @property
    def name(self) -> str:
        return "gemini-text"

    async def generate(self, prompt: str) -> str:
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self.temperature},
        }
        data = await self._gemini.generate_content(self.model, payload)

        text = "".join(part.get("text", "") for part in response_parts(data))
        if not text.strip():
            raise ProviderError(self.name, "Empty text response")
        return text

    async def close(self):
        await self._gemini.close()
