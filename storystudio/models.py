"""
Domain models for story configuration, scenes, characters and artifacts.
"""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SceneEmotion(str, Enum):
    """Fixed emotion vocabulary for scenes."""
    JOYFUL = "joyful"
    CALM = "calm"
    ADVENTUROUS = "adventurous"
    SURPRISED = "surprised"
    SCARED = "scared"
    SAD = "sad"
    CURIOUS = "curious"


class StyleHint(str, Enum):
    """Delivery hints understood by the narration synthesizer."""
    WARMLY = "warmly"
    CHEERFULLY = "cheerfully"
    EXCITEDLY = "excitedly"
    CALMLY = "calmly"
    MYSTERIOUSLY = "mysteriously"
    SADLY = "sadly"


EMOTION_STYLE_HINTS: Dict[SceneEmotion, StyleHint] = {
    SceneEmotion.JOYFUL: StyleHint.CHEERFULLY,
    SceneEmotion.CALM: StyleHint.CALMLY,
    SceneEmotion.ADVENTUROUS: StyleHint.EXCITEDLY,
    SceneEmotion.SURPRISED: StyleHint.EXCITEDLY,
    SceneEmotion.SCARED: StyleHint.MYSTERIOUSLY,
    SceneEmotion.SAD: StyleHint.SADLY,
    SceneEmotion.CURIOUS: StyleHint.MYSTERIOUSLY,
}


class CharacterStatus(str, Enum):
    PROTAGONIST = "protagonist"
    SUPPORTING = "supporting"


class GenerationState(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


# Regeneration of a finished artifact re-enters GENERATING from COMPLETE.
# GENERATING -> GENERATING restarts a run interrupted by a process exit.
ALLOWED_TRANSITIONS = {
    GenerationState.PENDING: {GenerationState.GENERATING},
    GenerationState.GENERATING: {GenerationState.GENERATING, GenerationState.COMPLETE, GenerationState.ERROR},
    GenerationState.ERROR: {GenerationState.GENERATING},
    GenerationState.COMPLETE: {GenerationState.GENERATING},
}


class InvalidTransition(ValueError):
    pass


@dataclass
class GenerationStatus:
    """Inspectable progress of one artifact (scene image, scene audio, reference)."""
    state: GenerationState = GenerationState.PENDING
    error: Optional[str] = None
    attempts: int = 0
    updated_at: Optional[str] = None

    def _move(self, target: GenerationState):
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move from {self.state.value} to {target.value}")
        self.state = target
        self.updated_at = utc_now()

    def start(self):
        self._move(GenerationState.GENERATING)
        self.error = None

    def complete(self, attempts: int = 1):
        self._move(GenerationState.COMPLETE)
        self.attempts = attempts

    def fail(self, error: str, attempts: int = 1):
        self._move(GenerationState.ERROR)
        self.error = error
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "error": self.error,
            "attempts": self.attempts,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GenerationStatus":
        if not data:
            return cls()
        return cls(
            state=GenerationState(data.get("state", "pending")),
            error=data.get("error"),
            attempts=data.get("attempts", 0),
            updated_at=data.get("updated_at"),
        )


@dataclass
class StoryConfig:
    """What the user asked for."""
    title: str
    target_duration_minutes: float = 3.0
    target_scene_count: Optional[int] = None
    age_group: str = "6-8"
    tone: str = "calm"
    visual_style: str = "classic_storybook"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryConfig":
        return cls(
            title=data["title"],
            target_duration_minutes=float(data.get("target_duration_minutes", 3.0)),
            target_scene_count=data.get("target_scene_count"),
            age_group=data.get("age_group", "6-8"),
            tone=data.get("tone", "calm"),
            visual_style=data.get("visual_style", "classic_storybook"),
        )


@dataclass
class Scene:
    """One narrative beat. `order` is 1..N contiguous within a story.

    `image_prompt` is set only by the user and always wins. `generated_prompt`
    records what the last render was built from.
    """
    order: int
    narration_text: str
    visual_description: str
    emotion: SceneEmotion = SceneEmotion.CALM
    duration_estimate_seconds: int = 15
    character_names: List[str] = field(default_factory=list)
    image_prompt: Optional[str] = None
    generated_prompt: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    image_status: GenerationStatus = field(default_factory=GenerationStatus)
    audio_status: GenerationStatus = field(default_factory=GenerationStatus)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "narration_text": self.narration_text,
            "visual_description": self.visual_description,
            "emotion": self.emotion.value,
            "duration_estimate_seconds": self.duration_estimate_seconds,
            "character_names": list(self.character_names),
            "image_prompt": self.image_prompt,
            "generated_prompt": self.generated_prompt,
            "image_url": self.image_url,
            "audio_url": self.audio_url,
            "image_status": self.image_status.to_dict(),
            "audio_status": self.audio_status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scene":
        return cls(
            order=int(data["order"]),
            narration_text=data.get("narration_text", ""),
            visual_description=data.get("visual_description", ""),
            emotion=SceneEmotion(data.get("emotion", "calm")),
            duration_estimate_seconds=int(data.get("duration_estimate_seconds", 15)),
            character_names=list(data.get("character_names") or []),
            image_prompt=data.get("image_prompt"),
            generated_prompt=data.get("generated_prompt"),
            image_url=data.get("image_url"),
            audio_url=data.get("audio_url"),
            image_status=GenerationStatus.from_dict(data.get("image_status")),
            audio_status=GenerationStatus.from_dict(data.get("audio_status")),
        )


@dataclass
class CharacterDescriptor:
    """Canonical visual traits of one character. `name` is the key."""
    name: str
    species: str = ""
    main_colors: str = ""
    clothing: str = ""
    accessories: str = ""
    full_description: str = ""
    status: CharacterStatus = CharacterStatus.SUPPORTING
    reference_image_url: Optional[str] = None
    reference_status: GenerationStatus = field(default_factory=GenerationStatus)

    @property
    def has_reference(self) -> bool:
        return bool(self.reference_image_url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "species": self.species,
            "main_colors": self.main_colors,
            "clothing": self.clothing,
            "accessories": self.accessories,
            "full_description": self.full_description,
            "status": self.status.value,
            "reference_image_url": self.reference_image_url,
            "reference_status": self.reference_status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CharacterDescriptor":
        return cls(
            name=data["name"],
            species=data.get("species", ""),
            main_colors=data.get("main_colors", ""),
            clothing=data.get("clothing", ""),
            accessories=data.get("accessories", ""),
            full_description=data.get("full_description", ""),
            status=CharacterStatus(data.get("status", "supporting")),
            reference_image_url=data.get("reference_image_url"),
            reference_status=GenerationStatus.from_dict(data.get("reference_status")),
        )


@dataclass
class StoryRecord:
    """Story-level state. Scenes and characters are stored alongside, keyed by story_id."""
    config: StoryConfig
    story_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    narration_text: Optional[str] = None
    full_audio_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    ending_image_url: Optional[str] = None
    video_url: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "story_id": self.story_id,
            "config": self.config.to_dict(),
            "narration_text": self.narration_text,
            "full_audio_url": self.full_audio_url,
            "cover_image_url": self.cover_image_url,
            "ending_image_url": self.ending_image_url,
            "video_url": self.video_url,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/ogg": "ogg",
    "video/mp4": "mp4",
}


def extension_for(mime_type: str) -> str:
    return MIME_EXTENSIONS.get(mime_type.split(";")[0].strip().lower(), "bin")


@dataclass
class ImageArtifact:
    data: bytes
    mime_type: str = "image/png"

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)


@dataclass
class AudioArtifact:
    data: bytes
    mime_type: str = "audio/wav"

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)


@dataclass
class ReferenceImage:
    """A character's reference illustration as submitted to image synthesis."""
    character_name: str
    data: bytes
    mime_type: str = "image/png"


@dataclass
class ClipSpec:
    image_url: str
    duration_seconds: float


@dataclass
class VideoAssemblyJob:
    """Ordered (image, duration) pairs plus an optional full narration track."""
    clips: List[ClipSpec]
    narration_url: Optional[str] = None
    output_name: str = field(default_factory=lambda: f"{uuid.uuid4().hex[:12]}.mp4")

    @property
    def total_duration(self) -> float:
        return sum(clip.duration_seconds for clip in self.clips)


@dataclass
class AssemblyResult:
    output_path: str
    duration: float
    clip_count: int
    has_narration: bool
