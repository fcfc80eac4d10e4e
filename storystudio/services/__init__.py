"""
Story generation services and the pipeline composition root.
"""
from typing import Optional

from storystudio.config import AppConfig
from storystudio.persistence import StoryRepository, create_story_repository
from storystudio.providers.image import GeminiImageSynthesizer, ImageSynthesizer
from storystudio.providers.text import GeminiTextGenerator, TextGenerator
from storystudio.providers.voice import SpeechSynthesizer, get_speech_synthesizer

from .asset_store import AssetStore
from .character_registry import CharacterRegistry
from .export_service import ExportService
from .image_orchestrator import ImageOrchestrator
from .narration_service import NarrationSynthesizer, SceneNarrator
from .pipeline import Stage, StoryPipeline
from .retry import SleepFunc
from .scene_decomposer import SceneDecomposer
from .story_writer import StoryWriter
from .video_assembler import VideoAssembler


def create_pipeline(
    config: AppConfig,
    repository: Optional[StoryRepository] = None,
    text_generator: Optional[TextGenerator] = None,
    image_synthesizer: Optional[ImageSynthesizer] = None,
    speech_synthesizer: Optional[SpeechSynthesizer] = None,
    sleep: Optional[SleepFunc] = None,
) -> StoryPipeline:
    """
    Wire every component from one AppConfig.

    Capabilities default to the Gemini providers; building them without a
    GOOGLE_API_KEY raises ConfigurationError.
    """
    repository = repository or create_story_repository(config)
    text_generator = text_generator or GeminiTextGenerator(config.ai)
    image_synthesizer = image_synthesizer or GeminiImageSynthesizer(config.ai)
    speech_synthesizer = speech_synthesizer or get_speech_synthesizer(config)
    assets = AssetStore(config.paths.assets_dir)

    narration = NarrationSynthesizer(speech_synthesizer, config.generation, config.paths.ffmpeg_path, sleep=sleep)

    return StoryPipeline(
        repository=repository,
        writer=StoryWriter(text_generator, config.generation.language),
        decomposer=SceneDecomposer(text_generator, config.generation.language),
        registry=CharacterRegistry(
            text_generator, image_synthesizer, repository, assets, config.generation, sleep=sleep
        ),
        images=ImageOrchestrator(image_synthesizer, repository, assets, config.generation, sleep=sleep),
        narrator=SceneNarrator(narration, repository, assets),
        assembler=VideoAssembler(
            config.video,
            assets,
            config.paths.output_dir,
            ffmpeg_path=config.paths.ffmpeg_path,
            ffprobe_path=config.paths.ffprobe_path,
        ),
        exporter=ExportService(repository, assets, config.paths.output_dir),
    )


__all__ = ["Stage", "StoryPipeline", "create_pipeline"]
