"""
Export bundle: script text, per-scene images and narration, instructions.

A bundle is only produced for a complete story. Every scene must have both
an image and an audio asset.
"""
import io
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

from PIL import Image

from storystudio.models import Scene, StoryRecord
from storystudio.persistence.base import StoryRepository
from storystudio.providers.exceptions import PreconditionError
from storystudio.services.asset_store import AssetStore

logger = logging.getLogger(__name__)


@dataclass
class ExportValidation:
    is_complete: bool
    total_scenes: int
    completed_scenes: int
    scenes_without_images: List[int] = field(default_factory=list)
    scenes_without_audio: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_complete": self.is_complete,
            "total_scenes": self.total_scenes,
            "completed_scenes": self.completed_scenes,
            "scenes_without_images": self.scenes_without_images,
            "scenes_without_audio": self.scenes_without_audio,
        }


def validate_scenes(scenes: Sequence[Scene]) -> ExportValidation:
    without_images = [s.order for s in scenes if not s.image_url]
    without_audio = [s.order for s in scenes if not s.audio_url]
    completed = sum(1 for s in scenes if s.image_url and s.audio_url)
    return ExportValidation(
        is_complete=bool(scenes) and not without_images and not without_audio,
        total_scenes=len(scenes),
        completed_scenes=completed,
        scenes_without_images=without_images,
        scenes_without_audio=without_audio,
    )


def build_script_text(story: StoryRecord, scenes: Sequence[Scene]) -> str:
    lines = [story.config.title.upper(), "=" * len(story.config.title), ""]
    total = sum(s.duration_estimate_seconds for s in scenes)
    lines.append(f"Scenes: {len(scenes)}    Estimated length: {total // 60}:{total % 60:02d}")
    lines.append("")
    for scene in scenes:
        lines.append(f"SCENE {scene.order:02d}  [{scene.emotion.value}, ~{scene.duration_estimate_seconds}s]")
        lines.append(f"Narration: {scene.narration_text}")
        lines.append(f"Visual: {scene.visual_description}")
        if scene.character_names:
            lines.append(f"Characters: {', '.join(scene.character_names)}")
        lines.append("")
    return "\n".join(lines)


def build_instructions(story: StoryRecord, scenes: Sequence[Scene]) -> str:
    return "\n".join([
        f"Editing instructions - {story.config.title}",
        "",
        "1. Import the files from images/ and narration/ into your video editor.",
        "2. Place them on the timeline in numeric order (scene_01, scene_02, ...).",
        "3. Match each image's length to its narration clip.",
        "4. A slow zoom on each image (up to 1.5x) keeps still frames lively.",
        "5. Export at 1280x720 or higher, 30 fps.",
        "",
        f"Target age group: {story.config.age_group}. Tone: {story.config.tone}.",
        f"Total scenes: {len(scenes)}.",
        "",
    ])


def to_png(data: bytes) -> bytes:
    with Image.open(io.BytesIO(data)) as image:
        if image.format == "PNG":
            return data
        buffer = io.BytesIO()
        image.convert("RGBA" if image.mode in ("RGBA", "LA", "P") else "RGB").save(buffer, format="PNG")
        return buffer.getvalue()


class ExportService:

    def __init__(self, repository: StoryRepository, assets: AssetStore, output_dir: Path):
        self.repository = repository
        self.assets = assets
        self.output_dir = Path(output_dir)

    def validate(self, story_id: str) -> ExportValidation:
        self.repository.require_story(story_id)
        return validate_scenes(self.repository.get_scenes(story_id))

    async def export_bundle(self, story_id: str) -> Path:
        """
        Write `<output_dir>/<story_id>_bundle.zip`.

        Raises:
            PreconditionError: a scene is missing its image or audio
        """
        story = self.repository.require_story(story_id)
        scenes = self.repository.get_scenes(story_id)
        validation = validate_scenes(scenes)
        if not validation.is_complete:
            missing = sorted(set(validation.scenes_without_images) | set(validation.scenes_without_audio))
            raise PreconditionError(
                f"Export incomplete: images missing for {validation.scenes_without_images}, "
                f"audio missing for {validation.scenes_without_audio}",
                missing=missing,
            )

        self.output_dir.mkdir(parents=True, exist_ok=True)
        bundle_path = self.output_dir / f"{story_id}_bundle.zip"
        partial_path = bundle_path.with_suffix(".zip.part")

        try:
            await self._write_bundle(partial_path, story, scenes)
        except Exception:
            partial_path.unlink(missing_ok=True)
            raise
        partial_path.replace(bundle_path)

        logger.info(f"[EXPORT] Bundle written: {bundle_path} ({len(scenes)} scenes)")
        return bundle_path

    async def _write_bundle(self, path: Path, story: StoryRecord, scenes: Sequence[Scene]):
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
            bundle.writestr("script.txt", build_script_text(story, scenes))
            bundle.writestr("instructions.txt", build_instructions(story, scenes))
            for scene in scenes:
                image = to_png(await self.assets.load(scene.image_url))
                bundle.writestr(f"images/scene_{scene.order:02d}.png", image)

                audio_extension = self.assets.extension_of(scene.audio_url, "wav")
                bundle.writestr(
                    f"narration/scene_{scene.order:02d}.{audio_extension}",
                    await self.assets.load(scene.audio_url),
                )
