"""
Character Consistency Registry.

Extracts canonical character descriptors from story text and produces one
reference illustration per character. Descriptors live independently of
scenes: re-decomposing a story never touches them.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from storystudio.config import GenerationConfig
from storystudio.models import (
    CharacterDescriptor,
    CharacterStatus,
    GenerationState,
    ImageArtifact,
)
from storystudio.persistence.base import StoryRepository
from storystudio.providers.exceptions import ConfigurationError, ParseError, ProviderError
from storystudio.providers.image.base import ImageSynthesizer
from storystudio.providers.text.base import TextGenerator
from storystudio.services.asset_store import AssetStore
from storystudio.services.json_repair import parse_model_json
from storystudio.services.prompt_builder import build_reference_prompt
from storystudio.services.retry import Retrier, RetryPolicy, RetryState, SleepFunc

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Identify the main characters of this children's story (at most {limit}).
The first character listed must be the protagonist.

For each character give fixed visual traits that an illustrator needs to draw them
identically in every scene. Invent plausible traits when the story is silent, but never
contradict it. Write the traits in English.

Respond with JSON only:
{{"characters": [{{"name": "...", "status": "protagonist|supporting", "species": "...",
"main_colors": "...", "clothing": "...", "accessories": "...",
"full_description": "one sentence combining all traits"}}]}}

STORY:
{text}"""


@dataclass
class ReferenceBatchResult:
    complete: int = 0
    error: int = 0
    errors: Dict[str, str] = field(default_factory=dict)


def _text(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value if v)
    return str(value).strip() if value else ""


def descriptors_from_payload(items: List[Any], limit: int) -> Dict[str, CharacterDescriptor]:
    """Build descriptors keyed by name; exactly one protagonist, first listed wins."""
    descriptors: Dict[str, CharacterDescriptor] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        name = _text(item.get("name"))
        if not name or name in descriptors:
            continue
        descriptors[name] = CharacterDescriptor(
            name=name,
            species=_text(item.get("species")),
            main_colors=_text(item.get("main_colors") or item.get("colors")),
            clothing=_text(item.get("clothing")),
            accessories=_text(item.get("accessories")),
            full_description=_text(item.get("full_description") or item.get("description")),
            status=CharacterStatus.SUPPORTING,
        )
        if len(descriptors) >= limit:
            break

    if descriptors:
        declared = [
            _text(item.get("name")) for item in items
            if isinstance(item, dict) and _text(item.get("status")).lower() == "protagonist"
        ]
        protagonist = next((n for n in declared if n in descriptors), next(iter(descriptors)))
        descriptors[protagonist].status = CharacterStatus.PROTAGONIST
    return descriptors


class CharacterRegistry:

    def __init__(
        self,
        text_generator: TextGenerator,
        image_synthesizer: ImageSynthesizer,
        repository: StoryRepository,
        assets: AssetStore,
        config: GenerationConfig,
        sleep: Optional[SleepFunc] = None,
    ):
        self.text_generator = text_generator
        self.image_synthesizer = image_synthesizer
        self.repository = repository
        self.assets = assets
        self.config = config
        self.retrier = Retrier(RetryPolicy.from_config(config), sleep=sleep, label="REGISTRY")

    async def extract_characters(self, text: str) -> Dict[str, CharacterDescriptor]:
        """Extract descriptors from story text. Failures yield an empty map."""
        prompt = EXTRACTION_PROMPT.format(limit=self.config.max_characters, text=text)
        try:
            response = await self.text_generator.generate(prompt)
            data = parse_model_json(response, array_key="characters")
        except (ParseError, ProviderError) as e:
            logger.warning(f"[REGISTRY] Character extraction failed, continuing without references: {e}")
            return {}

        items = data.get("characters")
        if not isinstance(items, list):
            logger.warning("[REGISTRY] Extraction response has no characters list")
            return {}

        descriptors = descriptors_from_payload(items, self.config.max_characters)
        logger.info(f"[REGISTRY] Extracted {len(descriptors)} characters: {list(descriptors)}")
        return descriptors

    async def generate_reference(
        self,
        descriptor: CharacterDescriptor,
        visual_style: Optional[str] = None,
        state: Optional[RetryState] = None,
    ) -> ImageArtifact:
        prompt = build_reference_prompt(descriptor, visual_style, self.config.prompt_max_chars)
        return await self.retrier.run(lambda: self.image_synthesizer.generate(prompt), state)

    async def register_from_story(self, story_id: str) -> List[CharacterDescriptor]:
        """
        Extract characters from the story's narration and upsert them.

        Existing descriptors keep their reference image; only text traits
        are refreshed.
        """
        story = self.repository.require_story(story_id)
        if not story.narration_text:
            return self.repository.get_characters(story_id)

        extracted = await self.extract_characters(story.narration_text)
        existing = {c.name: c for c in self.repository.get_characters(story_id)}

        for name, descriptor in extracted.items():
            previous = existing.get(name)
            if previous is not None:
                descriptor.reference_image_url = previous.reference_image_url
                descriptor.reference_status = previous.reference_status
            self.repository.upsert_character(story_id, descriptor)

        return self.repository.get_characters(story_id)

    def save_descriptor(self, story_id: str, descriptor: CharacterDescriptor) -> CharacterDescriptor:
        """Manual edit of a descriptor. Keeps at most one protagonist."""
        self.repository.require_story(story_id)
        if descriptor.status == CharacterStatus.PROTAGONIST:
            for other in self.repository.get_characters(story_id):
                if other.name != descriptor.name and other.status == CharacterStatus.PROTAGONIST:
                    other.status = CharacterStatus.SUPPORTING
                    self.repository.upsert_character(story_id, other)
        self.repository.upsert_character(story_id, descriptor)
        return descriptor

    async def create_reference(self, story_id: str, name: str) -> CharacterDescriptor:
        """Generate (or regenerate) one character's reference. Failure is recorded, then raised."""
        story = self.repository.require_story(story_id)
        descriptor = self.repository.get_character(story_id, name)

        descriptor.reference_status.start()
        self.repository.upsert_character(story_id, descriptor)

        state = RetryState()
        try:
            artifact = await self.generate_reference(descriptor, story.config.visual_style, state)
        except Exception as e:
            descriptor.reference_status.fail(str(e), state.attempt)
            self.repository.upsert_character(story_id, descriptor)
            self.repository.record_usage(story_id, "image", "character_reference", "error")
            logger.error(f"[REGISTRY] Reference for {name} failed: {e}")
            raise

        descriptor.reference_image_url = await self.assets.save_image(
            story_id, f"character_{_slug(name)}", artifact
        )
        descriptor.reference_status.complete(state.attempt)
        self.repository.upsert_character(story_id, descriptor)
        self.repository.record_usage(story_id, "image", "character_reference", "success")
        logger.info(f"[REGISTRY] Reference ready for {name}")
        return descriptor

    async def create_all_references(self, story_id: str, only_missing: bool = True) -> ReferenceBatchResult:
        """Generate references one character at a time; a failure does not stop the rest."""
        result = ReferenceBatchResult()
        for descriptor in self.repository.get_characters(story_id):
            if only_missing and descriptor.has_reference and descriptor.reference_status.state == GenerationState.COMPLETE:
                continue
            try:
                await self.create_reference(story_id, descriptor.name)
                result.complete += 1
            except ConfigurationError:
                raise
            except Exception as e:
                result.error += 1
                result.errors[descriptor.name] = str(e)
        logger.info(f"[REGISTRY] References: {result.complete} complete, {result.error} failed")
        return result


def _slug(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "_" for ch in name).strip("_") or "character"
