"""
Tests for export validation and bundle creation.
"""
import asyncio
import io
import zipfile

import pytest
from PIL import Image

from storystudio.models import AudioArtifact, ImageArtifact, Scene, StoryConfig, StoryRecord
from storystudio.providers.exceptions import PreconditionError
from storystudio.services.export_service import ExportService, build_script_text, to_png, validate_scenes
from tests.conftest import png_bytes, wav_bytes


def jpeg_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (32, 32), (10, 200, 30)).save(buffer, format="JPEG")
    return buffer.getvalue()


async def seed_complete(repository, assets, count=3):
    story = StoryRecord(config=StoryConfig(title="Star Garden"))
    repository.create_story(story)
    scenes = []
    for order in range(1, count + 1):
        image = ImageArtifact(jpeg_bytes(), "image/jpeg") if order == 1 else ImageArtifact(png_bytes())
        scenes.append(Scene(
            order=order,
            narration_text=f"Narration {order}.",
            visual_description=f"Garden {order}",
            image_url=await assets.save_image(story.story_id, f"scene_{order:02d}", image),
            audio_url=await assets.save_audio(story.story_id, f"scene_{order:02d}", AudioArtifact(wav_bytes(0.2))),
        ))
    repository.replace_scenes(story.story_id, scenes)
    return story


class TestValidation:
    """Completeness checks."""

    def test_missing_audio_reported(self):
        scenes = [
            Scene(order=1, narration_text="a", visual_description="a", image_url="/1.png", audio_url="/1.wav"),
            Scene(order=2, narration_text="b", visual_description="b", image_url="/2.png"),
        ]
        validation = validate_scenes(scenes)

        assert validation.is_complete is False
        assert validation.scenes_without_audio == [2]
        assert validation.scenes_without_images == []
        assert validation.completed_scenes == 1
        assert validation.total_scenes == 2

    def test_empty_story_is_incomplete(self):
        assert validate_scenes([]).is_complete is False

    def test_script_text(self):
        story = StoryRecord(config=StoryConfig(title="Star Garden"))
        scenes = [Scene(order=1, narration_text="Hello.", visual_description="Stars", duration_estimate_seconds=75)]
        script = build_script_text(story, scenes)
        assert "STAR GARDEN" in script
        assert "1:15" in script
        assert "SCENE 01" in script

    def test_jpeg_converted_to_png(self):
        with Image.open(io.BytesIO(to_png(jpeg_bytes()))) as image:
            assert image.format == "PNG"


class TestBundle:
    """ExportService.export_bundle."""

    def test_bundle_contents(self, repository, assets, temp_dir):
        service = ExportService(repository, assets, temp_dir / "exports")

        async def run():
            story = await seed_complete(repository, assets)
            return story, await service.export_bundle(story.story_id)

        story, path = asyncio.run(run())

        assert path.name == f"{story.story_id}_bundle.zip"
        with zipfile.ZipFile(path) as bundle:
            names = set(bundle.namelist())
            assert {"script.txt", "instructions.txt"} <= names
            assert {f"images/scene_{i:02d}.png" for i in (1, 2, 3)} <= names
            assert {f"narration/scene_{i:02d}.wav" for i in (1, 2, 3)} <= names
            with Image.open(io.BytesIO(bundle.read("images/scene_01.png"))) as image:
                assert image.format == "PNG"
        assert not list((temp_dir / "exports").glob("*.part"))

    def test_incomplete_story_refused(self, repository, assets, temp_dir):
        service = ExportService(repository, assets, temp_dir / "exports")

        async def run():
            story = await seed_complete(repository, assets)
            scenes = repository.get_scenes(story.story_id)
            scenes[1].audio_url = None
            repository.replace_scenes(story.story_id, scenes)
            return story

        story = asyncio.run(run())
        assert service.validate(story.story_id).scenes_without_audio == [2]

        with pytest.raises(PreconditionError) as exc_info:
            asyncio.run(service.export_bundle(story.story_id))
        assert exc_info.value.missing == [2]
        assert not (temp_dir / "exports" / f"{story.story_id}_bundle.zip").exists()
