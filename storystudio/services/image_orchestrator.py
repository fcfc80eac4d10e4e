"""
Image Synthesis Orchestrator.

Per scene:
1. positional overrides (cover / ending image) short-circuit generation
2. prompt = user-set prompt, else built from description + emotion + characters
3. references are collected for the scene's characters and weighted by status
4. reference-conditioned synthesis when references exist, plain otherwise
5. transient failures are retried with backoff; policy refusals are not

The batch driver walks scenes strictly in order and records every outcome
on the scene's image status.
"""
import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from storystudio.config import GenerationConfig
from storystudio.models import (
    CharacterDescriptor,
    CharacterStatus,
    GenerationState,
    ImageArtifact,
    ReferenceImage,
    Scene,
    StoryRecord,
)
from storystudio.persistence.base import StoryRepository
from storystudio.providers.exceptions import ConfigurationError
from storystudio.providers.image.base import ImageSynthesizer
from storystudio.services.asset_store import AssetStore
from storystudio.services.prompt_builder import build_cover_prompt, build_scene_prompt
from storystudio.services.retry import Retrier, RetryPolicy, RetryState, SleepFunc

logger = logging.getLogger(__name__)

PROTAGONIST_MARKERS = {"protagonist", "main character", "the protagonist", "hero", "protagonista"}

# How many times each reference is submitted. Secondary characters drift
# more, so their reference is sent twice.
REFERENCE_WEIGHTS: Dict[CharacterStatus, int] = {
    CharacterStatus.PROTAGONIST: 1,
    CharacterStatus.SUPPORTING: 2,
}


@dataclass
class OverrideContext:
    story: StoryRecord
    scene_count: int


@dataclass
class OverrideHit:
    image_url: str
    source: str


ImageOverride = Callable[[Scene, OverrideContext], Optional[OverrideHit]]


def cover_image_override(scene: Scene, context: OverrideContext) -> Optional[OverrideHit]:
    if scene.order == 1 and context.story.cover_image_url:
        return OverrideHit(context.story.cover_image_url, "cover")
    return None


def ending_image_override(scene: Scene, context: OverrideContext) -> Optional[OverrideHit]:
    if context.scene_count > 1 and scene.order == context.scene_count and context.story.ending_image_url:
        return OverrideHit(context.story.ending_image_url, "ending")
    return None


DEFAULT_OVERRIDES: Tuple[ImageOverride, ...] = (cover_image_override, ending_image_override)


@dataclass
class BatchResult:
    total: int = 0
    complete: int = 0
    error: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "total": self.total,
            "complete": self.complete,
            "error": self.error,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "errors": {str(k): v for k, v in self.errors.items()},
        }


def resolve_scene_characters(scene: Scene, characters: Sequence[CharacterDescriptor]) -> List[CharacterDescriptor]:
    """
    Map the scene's character names to descriptors.

    A protagonist marker resolves to the first character that has a
    reference image. Unknown names are ignored.
    """
    by_name = {c.name.lower(): c for c in characters}
    resolved: List[CharacterDescriptor] = []

    for raw in scene.character_names:
        key = raw.strip().lower()
        if key in PROTAGONIST_MARKERS:
            descriptor = next((c for c in characters if c.has_reference), None)
        else:
            descriptor = by_name.get(key)
        if descriptor is not None and descriptor not in resolved:
            resolved.append(descriptor)
    return resolved


def weighted_reference_plan(
    descriptors: Sequence[CharacterDescriptor],
    max_references: int,
) -> List[CharacterDescriptor]:
    """
    Expand descriptors into the submission list: protagonists first, each
    repeated by its status weight, truncated to `max_references`.
    """
    with_reference = [d for d in descriptors if d.has_reference]
    with_reference.sort(key=lambda d: d.status != CharacterStatus.PROTAGONIST)

    plan: List[CharacterDescriptor] = []
    for descriptor in with_reference:
        plan.extend([descriptor] * REFERENCE_WEIGHTS.get(descriptor.status, 1))

    if len(plan) > max_references:
        logger.info(f"[IMAGES] Truncating {len(plan)} reference payloads to {max_references}")
    return plan[:max_references]


class ImageOrchestrator:

    def __init__(
        self,
        synthesizer: ImageSynthesizer,
        repository: StoryRepository,
        assets: AssetStore,
        config: GenerationConfig,
        overrides: Sequence[ImageOverride] = DEFAULT_OVERRIDES,
        sleep: Optional[SleepFunc] = None,
    ):
        self.synthesizer = synthesizer
        self.repository = repository
        self.assets = assets
        self.config = config
        self.overrides = list(overrides)
        self.retrier = Retrier(RetryPolicy.from_config(config), sleep=sleep, label="IMAGES")

    def resolve_prompt(
        self,
        scene: Scene,
        characters: Sequence[CharacterDescriptor],
        visual_style: Optional[str],
    ) -> str:
        if scene.image_prompt and scene.image_prompt.strip():
            return scene.image_prompt.strip()
        return build_scene_prompt(
            scene,
            characters,
            visual_style,
            max_chars=self.config.prompt_max_chars,
            descriptor_max_chars=self.config.descriptor_max_chars,
            scene_max_chars=self.config.scene_max_chars,
        )

    async def collect_references(self, descriptors: Sequence[CharacterDescriptor]) -> List[ReferenceImage]:
        plan = weighted_reference_plan(descriptors, self.config.max_reference_images)
        loaded: Dict[str, bytes] = {}
        references: List[ReferenceImage] = []

        for descriptor in plan:
            url = descriptor.reference_image_url
            if url not in loaded:
                loaded[url] = await self.assets.load(url)
            references.append(ReferenceImage(
                character_name=descriptor.name,
                data=loaded[url],
                mime_type=self.assets.guess_mime(url) if url else "image/png",
            ))
        return references

    async def synthesize(
        self,
        prompt: str,
        references: Sequence[ReferenceImage],
        state: Optional[RetryState] = None,
    ) -> ImageArtifact:
        if references:
            return await self.retrier.run(
                lambda: self.synthesizer.generate_with_references(prompt, references), state
            )
        return await self.retrier.run(lambda: self.synthesizer.generate(prompt), state)

    def check_overrides(self, scene: Scene, context: OverrideContext) -> Optional[OverrideHit]:
        for override in self.overrides:
            hit = override(scene, context)
            if hit is not None:
                return hit
        return None

    async def _render(
        self,
        story: StoryRecord,
        scene: Scene,
        scene_count: int,
        characters: Sequence[CharacterDescriptor],
    ) -> Scene:
        """Produce and persist one scene image. Raises after recording a failure."""
        status = scene.image_status
        status.start()
        self.repository.update_scene_image(story.story_id, scene.order, status)

        hit = self.check_overrides(scene, OverrideContext(story, scene_count))
        if hit is not None:
            status.complete(attempts=0)
            self.repository.update_scene_image(story.story_id, scene.order, status, image_url=hit.image_url)
            scene.image_url = hit.image_url
            logger.info(f"[IMAGES] Scene {scene.order}: reused {hit.source} image")
            return scene

        scene_characters = resolve_scene_characters(scene, characters)
        prompt = self.resolve_prompt(scene, scene_characters, story.config.visual_style)
        state = RetryState()

        try:
            references = await self.collect_references(scene_characters)
            logger.info(f"[IMAGES] Scene {scene.order}: {len(references)} reference payloads, {len(prompt)} char prompt")
            artifact = await self.synthesize(prompt, references, state)
            url = await self.assets.save_image(story.story_id, f"scene_{scene.order:02d}", artifact)
        except Exception as e:
            status.fail(str(e), state.attempt)
            self.repository.update_scene_image(story.story_id, scene.order, status)
            self.repository.record_usage(story.story_id, "image", "scene", "error")
            logger.error(f"[IMAGES] Scene {scene.order} failed: {e}")
            raise

        status.complete(state.attempt)
        self.repository.update_scene_image(story.story_id, scene.order, status, image_url=url, generated_prompt=prompt)
        self.repository.record_usage(story.story_id, "image", "scene", "success")
        scene.image_url = url
        scene.generated_prompt = prompt
        return scene

    async def generate_scene_image(self, story_id: str, order: int) -> Scene:
        """Generate or regenerate one scene's image. No other scene is touched."""
        story = self.repository.require_story(story_id)
        scenes = self.repository.get_scenes(story_id)
        scene = self.repository.get_scene(story_id, order)
        characters = self.repository.get_characters(story_id)
        return await self._render(story, scene, len(scenes), characters)

    async def generate_all(
        self,
        story_id: str,
        only_missing: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        progress_callback: Optional[Callable[[int, int, Scene], None]] = None,
    ) -> BatchResult:
        """
        Generate images for every scene, in order, one at a time.

        Per-scene failures are recorded and counted; ConfigurationError
        aborts the batch since no later scene could succeed either.
        Cancellation is honored between scenes.
        """
        story = self.repository.require_story(story_id)
        scenes = self.repository.get_scenes(story_id)
        characters = self.repository.get_characters(story_id)
        result = BatchResult(total=len(scenes))

        logger.info(f"[IMAGES] Generating images for {len(scenes)} scenes of story {story_id}")

        for index, scene in enumerate(scenes, start=1):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info(f"[IMAGES] Cancelled before scene {scene.order}")
                break

            if only_missing and scene.image_url and scene.image_status.state == GenerationState.COMPLETE:
                result.skipped += 1
                continue

            try:
                await self._render(story, scene, len(scenes), characters)
                result.complete += 1
            except ConfigurationError:
                raise
            except Exception as e:
                result.error += 1
                result.errors[scene.order] = str(e)

            if progress_callback is not None:
                progress_callback(index, len(scenes), scene)

        logger.info(
            f"[IMAGES] Batch done: {result.complete} complete, {result.error} failed, {result.skipped} skipped"
        )
        return result

    async def generate_cover(self, story_id: str, character_names: Optional[Sequence[str]] = None) -> StoryRecord:
        """
        Generate the title card and store it as the story's cover image.

        Every selected character with a reference is submitted at protagonist
        weight. `None` selects all characters; names without a reference are
        skipped. With no usable reference a plain title card is generated.
        """
        story = self.repository.require_story(story_id)
        characters = self.repository.get_characters(story_id)
        if character_names is not None:
            wanted = {name.strip().lower() for name in character_names}
            characters = [c for c in characters if c.name.lower() in wanted]
        selected = [
            replace(c, status=CharacterStatus.PROTAGONIST) for c in characters if c.has_reference
        ]

        prompt = build_cover_prompt(
            story.config.title,
            selected,
            story.config.visual_style,
            max_chars=self.config.prompt_max_chars,
            descriptor_max_chars=self.config.descriptor_max_chars,
        )
        state = RetryState()

        try:
            references = await self.collect_references(selected)
            logger.info(f"[IMAGES] Cover for story {story_id}: {len(references)} reference payloads")
            artifact = await self.synthesize(prompt, references, state)
            url = await self.assets.save_image(story_id, "cover", artifact)
        except Exception as e:
            self.repository.record_usage(story_id, "image", "cover", "error")
            logger.error(f"[IMAGES] Cover for story {story_id} failed after {state.attempt} attempts: {e}")
            raise

        self.repository.record_usage(story_id, "image", "cover", "success")
        story = self.repository.require_story(story_id)
        story.cover_image_url = url
        return self.repository.update_story(story)
