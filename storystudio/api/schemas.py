"""
Request/response models for the story API.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from storystudio.models import CharacterDescriptor, CharacterStatus, Scene, StoryConfig, StoryRecord


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    gemini_configured: bool
    ffmpeg_path: str
    timestamp: datetime


class StoryConfigModel(BaseModel):
    """What to generate."""
    title: str = Field(..., min_length=1, max_length=200)
    target_duration_minutes: float = Field(3.0, gt=0, le=30)
    target_scene_count: Optional[int] = Field(None, ge=1, le=40)
    age_group: str = Field("6-8", description="3-5, 6-8 or 9-12")
    tone: str = Field("calm", description="calm, adventure or educational")
    visual_style: str = Field(
        "classic_storybook",
        description="pixar_3d, watercolor, retro_cartoon, anime, pencil_sketch, classic_storybook or free text",
    )

    def to_config(self) -> StoryConfig:
        return StoryConfig(**self.model_dump())


class CreateStoryRequest(StoryConfigModel):
    narration_text: Optional[str] = Field(None, description="Use this narration instead of generating one")


class NarrationRequest(BaseModel):
    text: Optional[str] = Field(None, description="Omit to generate from the story config")


class VoiceRequest(BaseModel):
    voice: Optional[str] = None
    only_missing: bool = False


class ImageBatchRequest(BaseModel):
    only_missing: bool = False


class AssembleRequest(BaseModel):
    use_narration: bool = True


class PositionalImageRequest(BaseModel):
    url: Optional[str] = Field(None, description="Image URL or path; null clears it")


class CoverRequest(BaseModel):
    character_names: Optional[List[str]] = Field(None, description="Characters to feature; null means all with a reference")


class SceneEditRequest(BaseModel):
    narration_text: Optional[str] = None
    visual_description: Optional[str] = None
    emotion: Optional[str] = None
    duration_estimate_seconds: Optional[int] = None
    character_names: Optional[List[str]] = None
    image_prompt: Optional[str] = None

    def changes(self) -> Dict[str, object]:
        return self.model_dump(exclude_unset=True)


class ReorderRequest(BaseModel):
    order: List[int] = Field(..., description="Current scene numbers in their new sequence")


class CharacterModel(BaseModel):
    name: str = Field(..., min_length=1)
    species: str = ""
    main_colors: str = ""
    clothing: str = ""
    accessories: str = ""
    full_description: str = ""
    status: CharacterStatus = CharacterStatus.SUPPORTING

    def to_descriptor(self) -> CharacterDescriptor:
        return CharacterDescriptor(**self.model_dump())


class StoryResponse(BaseModel):
    story_id: str
    config: Dict[str, object]
    narration_text: Optional[str]
    full_audio_url: Optional[str]
    cover_image_url: Optional[str]
    ending_image_url: Optional[str]
    video_url: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_record(cls, story: StoryRecord) -> "StoryResponse":
        return cls(**story.to_dict())


def scenes_payload(scenes: List[Scene]) -> List[Dict[str, object]]:
    return [scene.to_dict() for scene in scenes]


def characters_payload(characters: List[CharacterDescriptor]) -> List[Dict[str, object]]:
    return [c.to_dict() for c in characters]
