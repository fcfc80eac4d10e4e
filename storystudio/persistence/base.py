"""
Story repository interface.

Scene sets are replaced wholesale; character descriptors are upserted one
at a time; scene artifacts are attached without touching text fields.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from storystudio.models import CharacterDescriptor, GenerationStatus, Scene, StoryRecord
from storystudio.providers.exceptions import NotFoundError


class StoryRepository(ABC):

    def close(self) -> None:
        pass

    # Stories

    @abstractmethod
    def create_story(self, story: StoryRecord) -> StoryRecord:
        pass

    @abstractmethod
    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        pass

    @abstractmethod
    def update_story(self, story: StoryRecord) -> StoryRecord:
        pass

    @abstractmethod
    def delete_story(self, story_id: str) -> bool:
        pass

    @abstractmethod
    def list_stories(self, limit: int = 50) -> List[StoryRecord]:
        pass

    def require_story(self, story_id: str) -> StoryRecord:
        story = self.get_story(story_id)
        if story is None:
            raise NotFoundError("Story", story_id)
        return story

    # Scenes

    @abstractmethod
    def replace_scenes(self, story_id: str, scenes: List[Scene]) -> None:
        """Delete the story's scenes and insert the given set."""
        pass

    @abstractmethod
    def get_scenes(self, story_id: str) -> List[Scene]:
        """Scenes sorted by order."""
        pass

    def get_scene(self, story_id: str, order: int) -> Scene:
        for scene in self.get_scenes(story_id):
            if scene.order == order:
                return scene
        raise NotFoundError("Scene", f"{story_id}#{order}")

    @abstractmethod
    def update_scene_image(
        self,
        story_id: str,
        order: int,
        status: GenerationStatus,
        image_url: Optional[str] = None,
        generated_prompt: Optional[str] = None,
    ) -> None:
        """Set image status, and url/prompt when given."""
        pass

    @abstractmethod
    def update_scene_audio(
        self,
        story_id: str,
        order: int,
        status: GenerationStatus,
        audio_url: Optional[str] = None,
    ) -> None:
        pass

    # Characters

    @abstractmethod
    def upsert_character(self, story_id: str, descriptor: CharacterDescriptor) -> None:
        pass

    @abstractmethod
    def get_characters(self, story_id: str) -> List[CharacterDescriptor]:
        """Characters in first-registered order."""
        pass

    @abstractmethod
    def delete_character(self, story_id: str, name: str) -> bool:
        pass

    def get_character(self, story_id: str, name: str) -> CharacterDescriptor:
        for descriptor in self.get_characters(story_id):
            if descriptor.name == name:
                return descriptor
        raise NotFoundError("Character", f"{story_id}/{name}")

    # Usage counter

    @abstractmethod
    def record_usage(self, story_id: Optional[str], service: str, operation: str, status: str) -> None:
        pass

    @abstractmethod
    def count_usage(self, service: Optional[str] = None, since: Optional[str] = None, status: Optional[str] = None) -> int:
        pass
