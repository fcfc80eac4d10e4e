"""
Image synthesis providers.
"""
from .base import ImageSynthesizer
from .gemini import GeminiImageSynthesizer

__all__ = ["ImageSynthesizer", "GeminiImageSynthesizer"]
