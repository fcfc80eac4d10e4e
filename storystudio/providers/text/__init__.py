"""
Text generation providers.
"""
from .base import TextGenerator
from .gemini import GeminiTextGenerator

__all__ = ["TextGenerator", "GeminiTextGenerator"]
