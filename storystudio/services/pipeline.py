"""
Pipeline Orchestrator.

Stages: Config -> Narration(text) -> Characters -> Narration(audio, optional)
-> Scenes -> Images -> Assembly. Completion of every stage is computed from
the artifacts that currently exist, so any stage can be re-run at any
time. Re-running a stage never invalidates later artifacts; that is left
to the user.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from storystudio.models import (
    AssemblyResult,
    CharacterDescriptor,
    Scene,
    StoryConfig,
    StoryRecord,
)
from storystudio.persistence.base import StoryRepository
from storystudio.providers.exceptions import NotFoundError, PreconditionError
from storystudio.services.character_registry import CharacterRegistry
from storystudio.services.export_service import ExportService, ExportValidation
from storystudio.services.image_orchestrator import BatchResult, ImageOrchestrator
from storystudio.services.narration_service import AudioBatchResult, SceneNarrator
from storystudio.services.scene_decomposer import SceneDecomposer
from storystudio.services.scene_editor import delete_scene, edit_scene, reorder_scenes
from storystudio.services.story_writer import StoryWriter
from storystudio.services.video_assembler import VideoAssembler, job_from_scenes

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    CONFIG = "config"
    NARRATION_TEXT = "narration_text"
    CHARACTERS = "characters"
    NARRATION_AUDIO = "narration_audio"
    SCENES = "scenes"
    IMAGES = "images"
    ASSEMBLY = "assembly"


OPTIONAL_STAGES = {Stage.NARRATION_AUDIO}


@dataclass
class StorySnapshot:
    story: StoryRecord
    scenes: List[Scene] = field(default_factory=list)
    characters: List[CharacterDescriptor] = field(default_factory=list)


STAGE_CHECKS: Dict[Stage, Callable[[StorySnapshot], bool]] = {
    Stage.CONFIG: lambda s: bool(s.story.config.title.strip()),
    Stage.NARRATION_TEXT: lambda s: bool(s.story.narration_text and s.story.narration_text.strip()),
    Stage.CHARACTERS: lambda s: len(s.characters) > 0,
    Stage.NARRATION_AUDIO: lambda s: bool(s.story.full_audio_url),
    Stage.SCENES: lambda s: len(s.scenes) > 0,
    Stage.IMAGES: lambda s: bool(s.scenes) and all(scene.image_url for scene in s.scenes),
    Stage.ASSEMBLY: lambda s: bool(s.story.video_url),
}


def stage_completion(snapshot: StorySnapshot) -> Dict[Stage, bool]:
    return {stage: check(snapshot) for stage, check in STAGE_CHECKS.items()}


def current_stage(snapshot: StorySnapshot) -> Optional[Stage]:
    """First incomplete required stage, or None when everything is done."""
    completion = stage_completion(snapshot)
    for stage in Stage:
        if stage not in OPTIONAL_STAGES and not completion[stage]:
            return stage
    return None


class StoryPipeline:
    """Sequences the stages for one story at a time; stories are independent."""

    def __init__(
        self,
        repository: StoryRepository,
        writer: StoryWriter,
        decomposer: SceneDecomposer,
        registry: CharacterRegistry,
        images: ImageOrchestrator,
        narrator: SceneNarrator,
        assembler: VideoAssembler,
        exporter: ExportService,
    ):
        self.repository = repository
        self.writer = writer
        self.decomposer = decomposer
        self.registry = registry
        self.images = images
        self.narrator = narrator
        self.assembler = assembler
        self.exporter = exporter

    async def close(self) -> None:
        """Release provider clients, the asset store and the repository."""
        for resource in (
            self.registry.text_generator,
            self.images.synthesizer,
            self.narrator.narration.synthesizer,
            self.images.assets,
        ):
            await resource.close()
        self.repository.close()

    # Config

    def create_story(self, config: StoryConfig, narration_text: Optional[str] = None) -> StoryRecord:
        story = StoryRecord(config=config, narration_text=narration_text)
        return self.repository.create_story(story)

    def update_config(self, story_id: str, config: StoryConfig) -> StoryRecord:
        story = self.repository.require_story(story_id)
        story.config = config
        return self.repository.update_story(story)

    def snapshot(self, story_id: str) -> StorySnapshot:
        return StorySnapshot(
            story=self.repository.require_story(story_id),
            scenes=self.repository.get_scenes(story_id),
            characters=self.repository.get_characters(story_id),
        )

    def status(self, story_id: str) -> Dict[str, object]:
        snap = self.snapshot(story_id)
        current = current_stage(snap)
        return {
            "story_id": story_id,
            "stages": {stage.value: done for stage, done in stage_completion(snap).items()},
            "current_stage": current.value if current else None,
        }

    # Narration text

    async def write_narration(self, story_id: str, text: Optional[str] = None) -> StoryRecord:
        """Store user-supplied narration, or generate it from the config."""
        story = self.repository.require_story(story_id)
        story.narration_text = text.strip() if text else await self.writer.write(story.config)
        logger.info(f"[PIPELINE] Narration text set for {story_id} ({len(story.narration_text)} chars)")
        return self.repository.update_story(story)

    # Characters

    async def extract_characters(self, story_id: str) -> List[CharacterDescriptor]:
        self._require_narration(story_id)
        return await self.registry.register_from_story(story_id)

    async def generate_character_references(self, story_id: str, name: Optional[str] = None):
        if name:
            return await self.registry.create_reference(story_id, name)
        return await self.registry.create_all_references(story_id)

    # Narration audio

    async def narrate_story(self, story_id: str, voice: Optional[str] = None) -> StoryRecord:
        return await self.narrator.narrate_story(story_id, voice)

    # Scenes

    async def decompose(self, story_id: str) -> List[Scene]:
        """Replace the story's scene set with a fresh decomposition."""
        story = self._require_narration(story_id)
        names = [c.name for c in self.repository.get_characters(story_id)]
        scenes = await self.decomposer.decompose(
            story.narration_text,
            story.config.target_duration_minutes,
            story.config.target_scene_count,
            names,
        )
        self.repository.replace_scenes(story_id, scenes)
        return self.repository.get_scenes(story_id)

    def edit_scene(self, story_id: str, order: int, changes: Dict[str, object]) -> List[Scene]:
        return self._rewrite_scenes(story_id, lambda scenes: edit_scene(scenes, order, changes))

    def delete_scene(self, story_id: str, order: int) -> List[Scene]:
        return self._rewrite_scenes(story_id, lambda scenes: delete_scene(scenes, order))

    def reorder_scenes(self, story_id: str, new_order: Sequence[int]) -> List[Scene]:
        return self._rewrite_scenes(story_id, lambda scenes: reorder_scenes(scenes, new_order))

    # Images

    def set_cover_image(self, story_id: str, url: Optional[str]) -> StoryRecord:
        story = self.repository.require_story(story_id)
        story.cover_image_url = url
        return self.repository.update_story(story)

    async def generate_cover(self, story_id: str, character_names: Optional[Sequence[str]] = None) -> StoryRecord:
        return await self.images.generate_cover(story_id, character_names)

    def set_ending_image(self, story_id: str, url: Optional[str]) -> StoryRecord:
        story = self.repository.require_story(story_id)
        story.ending_image_url = url
        return self.repository.update_story(story)

    async def generate_images(
        self,
        story_id: str,
        only_missing: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        self._require_scenes(story_id)
        return await self.images.generate_all(story_id, only_missing=only_missing, cancel_event=cancel_event)

    async def regenerate_scene_image(self, story_id: str, order: int) -> Scene:
        return await self.images.generate_scene_image(story_id, order)

    # Scene audio

    async def generate_scene_audio(
        self,
        story_id: str,
        voice: Optional[str] = None,
        only_missing: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AudioBatchResult:
        self._require_scenes(story_id)
        return await self.narrator.narrate_all_scenes(
            story_id, voice, only_missing=only_missing, cancel_event=cancel_event
        )

    async def regenerate_scene_audio(self, story_id: str, order: int, voice: Optional[str] = None) -> Scene:
        return await self.narrator.narrate_scene(story_id, order, voice)

    # Assembly / export

    async def assemble_video(self, story_id: str, use_narration: bool = True) -> AssemblyResult:
        story = self.repository.require_story(story_id)
        scenes = self.repository.get_scenes(story_id)
        narration = story.full_audio_url if use_narration else None
        job = job_from_scenes(scenes, narration, output_name=f"{story_id}.mp4")

        result = await self.assembler.assemble(job)
        story.video_url = result.output_path
        self.repository.update_story(story)
        return result

    def validate_export(self, story_id: str) -> ExportValidation:
        return self.exporter.validate(story_id)

    async def export_bundle(self, story_id: str) -> Path:
        return await self.exporter.export_bundle(story_id)

    # Helpers

    def _require_narration(self, story_id: str) -> StoryRecord:
        story = self.repository.require_story(story_id)
        if not story.narration_text:
            raise PreconditionError("Story has no narration text yet")
        return story

    def _require_scenes(self, story_id: str) -> List[Scene]:
        scenes = self.repository.get_scenes(story_id)
        if not scenes:
            raise PreconditionError("Story has no scenes yet")
        return scenes

    def _rewrite_scenes(self, story_id: str, change: Callable[[List[Scene]], List[Scene]]) -> List[Scene]:
        self.repository.require_story(story_id)
        try:
            scenes = change(self._require_scenes(story_id))
        except KeyError as e:
            raise NotFoundError("Scene", f"{story_id}#{e.args[0]}")
        self.repository.replace_scenes(story_id, scenes)
        return self.repository.get_scenes(story_id)
