"""
Tests for the Pipeline Orchestrator.
"""
import asyncio
import json
import zipfile

import pytest

from storystudio.models import StoryConfig
from storystudio.providers.exceptions import NotFoundError, PreconditionError
from storystudio.services.pipeline import Stage, StorySnapshot, current_stage, stage_completion

NARRATION = (
    "Luna the little fox lived at the edge of the forest. Every night she looked at the moon. "
    "One evening the moon was gone. Luna asked Max the dog for help. Together they climbed the hill. "
    "At the top they found the moon hiding behind a cloud. They sang until the cloud floated away. "
    "Luna went home and slept soundly."
)

CAST = json.dumps({"characters": [
    {"name": "Luna", "status": "protagonist", "species": "fox", "main_colors": "orange"},
    {"name": "Max", "status": "supporting", "species": "dog", "main_colors": "brown"},
]})


def scenes_response(count=6):
    return json.dumps({"scenes": [
        {
            "order": i + 1,
            "narration_text": f"Part {i + 1} of the story.",
            "visual_description": f"Luna and Max, moment {i + 1}",
            "emotion": "curious",
            "duration_estimate_seconds": 12,
            "characters": ["Luna", "Max"] if i % 2 else ["protagonist"],
        }
        for i in range(count)
    ]})


def create(pipeline, narration=NARRATION):
    return pipeline.create_story(StoryConfig(title="Moon Fox", target_duration_minutes=3), narration)


class TestStageCompletion:
    """Stage status derived from artifacts."""

    def test_new_story(self, pipeline):
        story = create(pipeline, narration=None)
        status = pipeline.status(story.story_id)

        assert status["stages"]["config"] is True
        assert status["stages"]["narration_text"] is False
        assert status["current_stage"] == "narration_text"

    def test_optional_audio_stage_is_skipped(self, pipeline):
        story = create(pipeline)
        snapshot = pipeline.snapshot(story.story_id)
        snapshot.characters = [object()]

        assert stage_completion(snapshot)[Stage.NARRATION_AUDIO] is False
        assert current_stage(snapshot) == Stage.SCENES

    def test_images_require_every_scene(self, pipeline, fake_text):
        story = create(pipeline)
        fake_text.responses = [scenes_response()]
        asyncio.run(pipeline.decompose(story.story_id))

        snapshot = pipeline.snapshot(story.story_id)
        assert stage_completion(snapshot)[Stage.SCENES] is True
        assert stage_completion(snapshot)[Stage.IMAGES] is False

    def test_empty_snapshot(self):
        from storystudio.models import StoryRecord

        snapshot = StorySnapshot(story=StoryRecord(config=StoryConfig(title="X")))
        assert stage_completion(snapshot)[Stage.IMAGES] is False


class TestStages:
    """Individual stage operations."""

    def test_generated_narration(self, pipeline, fake_text):
        story = create(pipeline, narration=None)
        fake_text.responses = ["# Moon Fox\n\nLuna the **little** fox looked at the moon."]

        updated = asyncio.run(pipeline.write_narration(story.story_id))

        assert updated.narration_text == "Luna the little fox looked at the moon."
        assert "Moon Fox" in fake_text.prompts[0]

    def test_user_narration_is_stored(self, pipeline, fake_text):
        story = create(pipeline, narration=None)
        updated = asyncio.run(pipeline.write_narration(story.story_id, "  My own story.  "))
        assert updated.narration_text == "My own story."
        assert fake_text.prompts == []

    def test_decompose_requires_narration(self, pipeline):
        story = create(pipeline, narration=None)
        with pytest.raises(PreconditionError):
            asyncio.run(pipeline.decompose(story.story_id))

    def test_decompose_passes_character_names(self, pipeline, fake_text):
        story = create(pipeline)
        fake_text.responses = [CAST, scenes_response()]
        asyncio.run(pipeline.extract_characters(story.story_id))
        asyncio.run(pipeline.decompose(story.story_id))

        assert "Luna, Max" in fake_text.prompts[1]

    def test_redecomposition_keeps_characters(self, pipeline, fake_text, repository):
        story = create(pipeline)
        fake_text.responses = [CAST, scenes_response(6), scenes_response(7)]
        asyncio.run(pipeline.extract_characters(story.story_id))
        asyncio.run(pipeline.decompose(story.story_id))
        asyncio.run(pipeline.decompose(story.story_id))

        assert len(repository.get_scenes(story.story_id)) == 7
        assert [c.name for c in repository.get_characters(story.story_id)] == ["Luna", "Max"]

    def test_edit_unknown_scene(self, pipeline, fake_text):
        story = create(pipeline)
        fake_text.responses = [scenes_response()]
        asyncio.run(pipeline.decompose(story.story_id))

        with pytest.raises(NotFoundError):
            pipeline.edit_scene(story.story_id, 42, {"narration_text": "x"})

    def test_delete_and_reorder(self, pipeline, fake_text):
        story = create(pipeline)
        fake_text.responses = [scenes_response()]
        asyncio.run(pipeline.decompose(story.story_id))

        scenes = pipeline.delete_scene(story.story_id, 1)
        assert [s.order for s in scenes] == [1, 2, 3, 4, 5]
        scenes = pipeline.reorder_scenes(story.story_id, [5, 4, 3, 2, 1])
        assert scenes[0].narration_text == "Part 6 of the story."

    def test_images_require_scenes(self, pipeline):
        story = create(pipeline)
        with pytest.raises(PreconditionError):
            asyncio.run(pipeline.generate_images(story.story_id))

    def test_assembly_reports_scenes_without_images(self, pipeline, fake_text):
        story = create(pipeline)
        fake_text.responses = [scenes_response()]
        asyncio.run(pipeline.decompose(story.story_id))

        with pytest.raises(PreconditionError) as exc_info:
            asyncio.run(pipeline.assemble_video(story.story_id))
        assert exc_info.value.missing == [1, 2, 3, 4, 5, 6]

    def test_unknown_story(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.status("missing")


class TestFullRun:
    """Narration through export with fake capabilities."""

    def run_through_audio(self, pipeline, fake_text):
        story = create(pipeline)
        fake_text.responses = [CAST, scenes_response()]

        async def run():
            await pipeline.extract_characters(story.story_id)
            refs = await pipeline.generate_character_references(story.story_id)
            await pipeline.decompose(story.story_id)
            images = await pipeline.generate_images(story.story_id)
            audio = await pipeline.generate_scene_audio(story.story_id)
            return refs, images, audio

        return story, asyncio.run(run())

    def test_references_used_and_export_complete(self, pipeline, fake_text, fake_images):
        story, (refs, images, audio) = self.run_through_audio(pipeline, fake_text)

        assert refs.complete == 2
        assert images.complete == 6
        assert audio.complete == 6

        # two reference sheets, then one call per scene
        scene_calls = fake_images.calls[2:]
        assert [r.character_name for r in scene_calls[0]["references"]] == ["Luna"]
        assert [r.character_name for r in scene_calls[1]["references"]] == ["Luna", "Max", "Max"]

        validation = pipeline.validate_export(story.story_id)
        assert validation.is_complete is True

        path = asyncio.run(pipeline.export_bundle(story.story_id))
        with zipfile.ZipFile(path) as bundle:
            assert "images/scene_06.png" in bundle.namelist()

        assert pipeline.status(story.story_id)["current_stage"] == "assembly"

    def test_assembly_marks_story_done(self, pipeline, fake_text, app_config, ffmpeg_path):
        story, _ = self.run_through_audio(pipeline, fake_text)

        result = asyncio.run(pipeline.assemble_video(story.story_id, use_narration=False))

        assert result.clip_count == 6
        assert result.duration == pytest.approx(72, abs=0.3)
        status = pipeline.status(story.story_id)
        assert status["stages"]["assembly"] is True
        assert status["current_stage"] is None
