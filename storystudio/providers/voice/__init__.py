"""
Speech synthesis providers.
"""
from .base import SpeechSynthesizer
from .gemini import GeminiSpeechSynthesizer, pcm_to_wav
from .cloud import GoogleCloudSpeechSynthesizer
from .edge import EdgeSpeechSynthesizer
from .factory import FallbackSpeechSynthesizer, get_speech_synthesizer

__all__ = [
    "SpeechSynthesizer",
    "GeminiSpeechSynthesizer",
    "GoogleCloudSpeechSynthesizer",
    "EdgeSpeechSynthesizer",
    "FallbackSpeechSynthesizer",
    "get_speech_synthesizer",
    "pcm_to_wav",
]
