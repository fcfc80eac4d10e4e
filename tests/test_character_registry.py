"""
Tests for the Character Consistency Registry.
"""
import asyncio
import json

import pytest

from storystudio.config import GenerationConfig
from storystudio.models import CharacterDescriptor, CharacterStatus, GenerationState, StoryConfig, StoryRecord
from storystudio.providers.exceptions import ConfigurationError, ContentPolicyError, TransientServiceError
from storystudio.services.character_registry import CharacterRegistry, descriptors_from_payload
from tests.conftest import FakeImageSynthesizer, FakeTextGenerator, SleepRecorder

CAST = json.dumps({"characters": [
    {"name": "Max", "status": "supporting", "species": "dog", "main_colors": "brown"},
    {"name": "Luna", "status": "protagonist", "species": "fox", "main_colors": ["orange", "white"],
     "full_description": "A small orange fox with a blue scarf"},
    {"name": "Pip", "species": "owl"},
    {"name": "Extra", "species": "cat"},
]})


def make_registry(repository, assets, responses=(), failures=()):
    text = FakeTextGenerator(responses)
    images = FakeImageSynthesizer(failures)
    registry = CharacterRegistry(text, images, repository, assets, GenerationConfig(), sleep=SleepRecorder())
    return registry, text, images


def seed_story(repository, narration="Luna the fox met Max the dog."):
    story = StoryRecord(config=StoryConfig(title="Moon Fox", visual_style="watercolor"), narration_text=narration)
    repository.create_story(story)
    return story


class TestDescriptors:
    """Payload to descriptor conversion."""

    def test_single_protagonist_and_limit(self):
        descriptors = descriptors_from_payload(json.loads(CAST)["characters"], limit=3)

        assert list(descriptors) == ["Max", "Luna", "Pip"]
        assert descriptors["Luna"].status == CharacterStatus.PROTAGONIST
        assert [d.status for d in descriptors.values()].count(CharacterStatus.PROTAGONIST) == 1
        assert descriptors["Luna"].main_colors == "orange, white"

    def test_first_listed_is_protagonist_when_undeclared(self):
        descriptors = descriptors_from_payload([{"name": "Pip"}, {"name": "Max"}], limit=3)
        assert descriptors["Pip"].status == CharacterStatus.PROTAGONIST

    def test_duplicates_and_junk_skipped(self):
        descriptors = descriptors_from_payload([{"name": "Pip"}, "junk", {"name": "Pip"}, {"species": "cat"}], limit=3)
        assert list(descriptors) == ["Pip"]


class TestExtraction:
    """Extraction through the text model."""

    def test_register_from_story(self, repository, assets):
        story = seed_story(repository)
        registry, text, _ = make_registry(repository, assets, [CAST])

        characters = asyncio.run(registry.register_from_story(story.story_id))

        assert [c.name for c in characters] == ["Max", "Luna", "Pip"]
        assert "Luna the fox" in text.prompts[0]

    def test_parse_failure_yields_empty(self, repository, assets):
        registry, _, _ = make_registry(repository, assets, ["no characters here, sorry"])
        assert asyncio.run(registry.extract_characters("story")) == {}

    def test_provider_failure_yields_empty(self, repository, assets):
        registry, _, _ = make_registry(repository, assets, [TransientServiceError("gemini", "overloaded")])
        assert asyncio.run(registry.extract_characters("story")) == {}

    def test_re_extraction_keeps_reference(self, repository, assets):
        story = seed_story(repository)
        repository.upsert_character(story.story_id, CharacterDescriptor(
            name="Luna", species="wolf", reference_image_url="/refs/luna.png"))
        registry, _, _ = make_registry(repository, assets, [CAST])

        asyncio.run(registry.register_from_story(story.story_id))

        luna = repository.get_character(story.story_id, "Luna")
        assert luna.species == "fox"
        assert luna.reference_image_url == "/refs/luna.png"

    def test_save_descriptor_demotes_previous_protagonist(self, repository, assets):
        story = seed_story(repository)
        registry, _, _ = make_registry(repository, assets)
        registry.save_descriptor(story.story_id, CharacterDescriptor(name="Luna", status=CharacterStatus.PROTAGONIST))
        registry.save_descriptor(story.story_id, CharacterDescriptor(name="Max", status=CharacterStatus.PROTAGONIST))

        statuses = {c.name: c.status for c in repository.get_characters(story.story_id)}
        assert statuses == {"Luna": CharacterStatus.SUPPORTING, "Max": CharacterStatus.PROTAGONIST}


class TestReferences:
    """Reference image generation."""

    def test_create_reference(self, repository, assets):
        story = seed_story(repository)
        repository.upsert_character(story.story_id, CharacterDescriptor(name="Luna", species="fox"))
        registry, _, images = make_registry(repository, assets)

        descriptor = asyncio.run(registry.create_reference(story.story_id, "Luna"))

        assert descriptor.has_reference
        assert assets.exists(descriptor.reference_image_url)
        assert descriptor.reference_status.state == GenerationState.COMPLETE
        assert "fox" in images.calls[0]["prompt"]
        assert "watercolor" in images.calls[0]["prompt"]
        assert repository.count_usage(service="image", status="success") == 1

    def test_failure_recorded_and_batch_continues(self, repository, assets):
        story = seed_story(repository)
        for name in ("Luna", "Max"):
            repository.upsert_character(story.story_id, CharacterDescriptor(name=name))
        registry, _, _ = make_registry(repository, assets, failures=[ContentPolicyError("gemini", "SAFETY")])

        result = asyncio.run(registry.create_all_references(story.story_id))

        assert result.complete == 1
        assert result.error == 1
        assert "Luna" in result.errors
        luna = repository.get_character(story.story_id, "Luna")
        assert luna.reference_status.state == GenerationState.ERROR
        assert repository.get_character(story.story_id, "Max").has_reference

    def test_unexpected_error_does_not_stop_batch(self, repository, assets):
        story = seed_story(repository)
        for name in ("Luna", "Max"):
            repository.upsert_character(story.story_id, CharacterDescriptor(name=name))
        registry, _, images = make_registry(repository, assets, failures=[ValueError("undecodable image")])

        result = asyncio.run(registry.create_all_references(story.story_id))

        assert result.complete == 1
        assert result.error == 1
        assert "undecodable image" in result.errors["Luna"]
        assert len(images.calls) == 2

    def test_configuration_error_aborts_batch(self, repository, assets):
        story = seed_story(repository)
        for name in ("Luna", "Max"):
            repository.upsert_character(story.story_id, CharacterDescriptor(name=name))
        registry, _, images = make_registry(repository, assets, failures=[ConfigurationError("GOOGLE_API_KEY not set")])

        with pytest.raises(ConfigurationError):
            asyncio.run(registry.create_all_references(story.story_id))
        assert len(images.calls) == 1

    def test_transient_failure_retried(self, repository, assets):
        story = seed_story(repository)
        repository.upsert_character(story.story_id, CharacterDescriptor(name="Luna"))
        registry, _, images = make_registry(repository, assets, failures=[TransientServiceError("gemini", "busy", 429)])

        descriptor = asyncio.run(registry.create_reference(story.story_id, "Luna"))

        assert len(images.calls) == 2
        assert descriptor.reference_status.attempts == 2

    def test_unknown_character(self, repository, assets):
        from storystudio.providers.exceptions import NotFoundError

        story = seed_story(repository)
        registry, _, _ = make_registry(repository, assets)
        with pytest.raises(NotFoundError):
            asyncio.run(registry.create_reference(story.story_id, "Nobody"))
