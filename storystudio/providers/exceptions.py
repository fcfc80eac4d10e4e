"""
Error hierarchy shared by providers, services and the API layer.
"""
from typing import Iterable, List, Optional


class StoryStudioError(Exception):
    """Base exception for all story studio errors."""
    pass


class ConfigurationError(StoryStudioError):
    """A capability is missing its credentials or settings. Never retried."""
    pass


class ParseError(StoryStudioError):
    """Model output could not be parsed after every repair attempt."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class DecompositionError(ParseError):
    """Scene decomposition produced no usable scene list."""
    pass


class ProviderError(StoryStudioError):
    """Non-transient failure reported by an external capability."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"[{provider}] {message}")


class ContentPolicyError(ProviderError):
    """Request refused on safety grounds. Requires a prompt change, never retried."""

    def __init__(self, provider: str, reason: str):
        super().__init__(provider, f"Content blocked: {reason}")
        self.reason = reason


class TransientServiceError(ProviderError):
    """Service overloaded or temporarily unavailable."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(provider, message)
        self.status_code = status_code


class PreconditionError(StoryStudioError):
    """An operation was requested before its inputs exist."""

    def __init__(self, message: str, missing: Iterable[int] = ()):
        super().__init__(message)
        self.missing: List[int] = list(missing)


class NotFoundError(StoryStudioError):
    """A story, scene or character record does not exist."""

    def __init__(self, resource: str, key: str):
        super().__init__(f"{resource} not found: {key}")
        self.resource = resource
        self.key = key


class AssemblyError(StoryStudioError):
    """An ffmpeg stage failed. The whole assembly is aborted."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
