"""
In-memory Story Repository for tests and STORAGE_BACKEND=memory.
"""
import copy
from threading import Lock
from typing import Dict, List, Optional, Tuple

from storystudio.models import CharacterDescriptor, GenerationStatus, Scene, StoryRecord, utc_now
from storystudio.providers.exceptions import NotFoundError

from .base import StoryRepository


class InMemoryStoryRepository(StoryRepository):
    """Stores deep copies so callers never share mutable state with the store."""

    def __init__(self):
        self._lock = Lock()
        self._stories: Dict[str, StoryRecord] = {}
        self._scenes: Dict[str, List[Scene]] = {}
        self._characters: Dict[str, Dict[str, CharacterDescriptor]] = {}
        self._usage: List[Tuple[Optional[str], str, str, str, str]] = []

    def create_story(self, story: StoryRecord) -> StoryRecord:
        with self._lock:
            if story.story_id in self._stories:
                raise ValueError(f"Story already exists: {story.story_id}")
            self._stories[story.story_id] = copy.deepcopy(story)
        return story

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        story = self._stories.get(story_id)
        return copy.deepcopy(story) if story else None

    def update_story(self, story: StoryRecord) -> StoryRecord:
        with self._lock:
            if story.story_id not in self._stories:
                raise NotFoundError("Story", story.story_id)
            story.updated_at = utc_now()
            self._stories[story.story_id] = copy.deepcopy(story)
        return story

    def delete_story(self, story_id: str) -> bool:
        with self._lock:
            self._scenes.pop(story_id, None)
            self._characters.pop(story_id, None)
            return self._stories.pop(story_id, None) is not None

    def list_stories(self, limit: int = 50) -> List[StoryRecord]:
        stories = sorted(self._stories.values(), key=lambda s: s.created_at, reverse=True)
        return [copy.deepcopy(s) for s in stories[:limit]]

    def replace_scenes(self, story_id: str, scenes: List[Scene]) -> None:
        with self._lock:
            self._scenes[story_id] = sorted(copy.deepcopy(scenes), key=lambda s: s.order)

    def get_scenes(self, story_id: str) -> List[Scene]:
        return copy.deepcopy(self._scenes.get(story_id, []))

    def _find_scene(self, story_id: str, order: int) -> Scene:
        for scene in self._scenes.get(story_id, []):
            if scene.order == order:
                return scene
        raise NotFoundError("Scene", f"{story_id}#{order}")

    def update_scene_image(
        self,
        story_id: str,
        order: int,
        status: GenerationStatus,
        image_url: Optional[str] = None,
        generated_prompt: Optional[str] = None,
    ) -> None:
        with self._lock:
            scene = self._find_scene(story_id, order)
            scene.image_status = copy.deepcopy(status)
            if image_url is not None:
                scene.image_url = image_url
            if generated_prompt is not None:
                scene.generated_prompt = generated_prompt

    def update_scene_audio(
        self,
        story_id: str,
        order: int,
        status: GenerationStatus,
        audio_url: Optional[str] = None,
    ) -> None:
        with self._lock:
            scene = self._find_scene(story_id, order)
            scene.audio_status = copy.deepcopy(status)
            if audio_url is not None:
                scene.audio_url = audio_url

    def upsert_character(self, story_id: str, descriptor: CharacterDescriptor) -> None:
        with self._lock:
            # dict preserves first-insertion position on overwrite
            self._characters.setdefault(story_id, {})[descriptor.name] = copy.deepcopy(descriptor)

    def get_characters(self, story_id: str) -> List[CharacterDescriptor]:
        return copy.deepcopy(list(self._characters.get(story_id, {}).values()))

    def delete_character(self, story_id: str, name: str) -> bool:
        with self._lock:
            return self._characters.get(story_id, {}).pop(name, None) is not None

    def record_usage(self, story_id: Optional[str], service: str, operation: str, status: str) -> None:
        with self._lock:
            self._usage.append((story_id, service, operation, status, utc_now()))

    def count_usage(self, service: Optional[str] = None, since: Optional[str] = None, status: Optional[str] = None) -> int:
        return sum(
            1 for _, svc, _, st, created in self._usage
            if (service is None or svc == service)
            and (since is None or created >= since)
            and (status is None or st == status)
        )
