"""
External capabilities: text generation, image synthesis, speech synthesis.
"""
from .exceptions import (
    StoryStudioError,
    ConfigurationError,
    ParseError,
    DecompositionError,
    ProviderError,
    ContentPolicyError,
    TransientServiceError,
    PreconditionError,
    NotFoundError,
    AssemblyError,
)

__all__ = [
    "StoryStudioError",
    "ConfigurationError",
    "ParseError",
    "DecompositionError",
    "ProviderError",
    "ContentPolicyError",
    "TransientServiceError",
    "PreconditionError",
    "NotFoundError",
    "AssemblyError",
]
