"""
Application Configuration - Environment Variable Management.

Configuration is loaded once by the entrypoint (`load_config()`) and handed to
each component at construction. Components never read the environment
themselves.
"""
import os
import shutil
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional

import imageio_ffmpeg
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

PLACEHOLDER_PREFIXES = ("PASTE_", "your_", "YOUR_")


def _is_real_key(value: Optional[str]) -> bool:
    return bool(value and value.strip() and not value.startswith(PLACEHOLDER_PREFIXES))


@dataclass
class AIConfig:
    """Generative service configuration (Gemini text, image and speech)."""
    google_api_key: Optional[str] = None
    google_cloud_tts_key: Optional[str] = None
    api_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    text_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image"
    reference_image_model: str = "gemini-3-pro-image-preview"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    timeout: float = 120.0

    @property
    def has_google(self) -> bool:
        return _is_real_key(self.google_api_key)

    @property
    def has_cloud_tts(self) -> bool:
        return _is_real_key(self.google_cloud_tts_key)


@dataclass
class PathsConfig:
    """File system paths configuration."""
    data_dir: Path
    output_dir: Path
    ffmpeg_path: str
    ffprobe_path: Optional[str] = None

    @property
    def assets_dir(self) -> Path:
        return self.data_dir / "assets"

    @classmethod
    def detect(cls, data_dir: Optional[str] = None) -> "PathsConfig":
        """Auto-detect paths based on environment and system."""
        root = Path(data_dir or os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
        root.mkdir(parents=True, exist_ok=True)

        output_dir = Path(os.getenv("OUTPUT_DIR", str(root / "output")))
        output_dir.mkdir(parents=True, exist_ok=True)

        return cls(
            data_dir=root,
            output_dir=output_dir,
            ffmpeg_path=cls._find_ffmpeg(),
            ffprobe_path=cls._find_ffprobe(),
        )

    @staticmethod
    def _find_ffmpeg() -> str:
        """Find FFmpeg executable."""
        env_path = os.getenv("FFMPEG_PATH")
        if env_path and os.path.exists(env_path):
            return env_path

        for path in ("/usr/bin/ffmpeg", "/usr/local/bin/ffmpeg", "/opt/homebrew/bin/ffmpeg"):
            if os.path.exists(path):
                return path

        # imageio-ffmpeg ships a static build
        try:
            return imageio_ffmpeg.get_ffmpeg_exe()
        except RuntimeError:
            logger.warning("imageio-ffmpeg has no bundled binary for this platform")

        return shutil.which("ffmpeg") or "ffmpeg"

    @staticmethod
    def _find_ffprobe() -> Optional[str]:
        """Find FFprobe executable. None means durations are read from ffmpeg output."""
        env_path = os.getenv("FFPROBE_PATH")
        if env_path and os.path.exists(env_path):
            return env_path

        for path in ("/usr/bin/ffprobe", "/usr/local/bin/ffprobe", "/opt/homebrew/bin/ffprobe"):
            if os.path.exists(path):
                return path

        return shutil.which("ffprobe")


@dataclass
class GenerationConfig:
    """Knobs for scene decomposition, image and narration generation."""
    retry_attempts: int = 5
    retry_base_delay: float = 2.0
    retry_multiplier: float = 2.0
    retry_max_delay: float = 60.0
    retry_jitter: float = 0.0
    max_reference_images: int = 5
    prompt_max_chars: int = 800
    descriptor_max_chars: int = 160
    scene_max_chars: int = 240
    max_characters: int = 3
    tts_chunk_chars: int = 4000
    default_voice: str = "Kore"
    language: str = "English"


@dataclass
class VideoConfig:
    """Clip rendering parameters shared by every scene clip."""
    width: int = 1280
    height: int = 720
    fps: int = 30
    max_zoom: float = 1.5
    video_codec: str = "libx264"
    preset: str = "fast"
    crf: int = 20
    pix_fmt: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"


@dataclass
class AppConfig:
    """Main Application Configuration."""
    ai: AIConfig
    paths: PathsConfig
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    video: VideoConfig = field(default_factory=VideoConfig)
    storage_backend: str = "sqlite"
    database_path: str = "data/storystudio.db"
    debug: bool = False

    def validate(self) -> List[str]:
        """Return human readable configuration warnings."""
        warnings = []
        if not self.ai.has_google:
            warnings.append("GOOGLE_API_KEY not set - text, image and Gemini speech generation disabled")
        if self.storage_backend not in ("sqlite", "memory"):
            warnings.append(f"Unknown STORAGE_BACKEND '{self.storage_backend}', using sqlite")
        if self.paths.ffmpeg_path == "ffmpeg" and not shutil.which("ffmpeg"):
            warnings.append("FFmpeg not found - video assembly will fail")
        return warnings

    def log_status(self):
        """Log configuration status (without exposing keys)."""
        logger.info("=" * 50)
        logger.info("Configuration Status:")
        logger.info(f"  Gemini API: {'OK' if self.ai.has_google else 'NOT CONFIGURED'}")
        logger.info(f"  Cloud TTS: {'OK' if self.ai.has_cloud_tts else 'NOT CONFIGURED'}")
        logger.info(f"  Storage: {self.storage_backend}")
        logger.info(f"  Data Dir: {self.paths.data_dir}")
        logger.info(f"  FFmpeg: {self.paths.ffmpeg_path}")
        logger.info("=" * 50)

        for warning in self.validate():
            logger.warning(warning)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def load_config(env_file: Optional[Path] = None) -> AppConfig:
    """Load configuration from .env and environment variables."""
    env_path = env_file or ENV_FILE
    if env_path.exists():
        load_dotenv(env_path)
        logger.info(f"Loaded environment from {env_path}")

    ai_config = AIConfig(
        google_api_key=os.getenv("GOOGLE_API_KEY"),
        google_cloud_tts_key=os.getenv("GOOGLE_CLOUD_TTS_KEY"),
        text_model=os.getenv("GEMINI_TEXT_MODEL", AIConfig.text_model),
        image_model=os.getenv("GEMINI_IMAGE_MODEL", AIConfig.image_model),
        reference_image_model=os.getenv("GEMINI_REFERENCE_IMAGE_MODEL", AIConfig.reference_image_model),
        tts_model=os.getenv("GEMINI_TTS_MODEL", AIConfig.tts_model),
        timeout=_env_float("AI_TIMEOUT", AIConfig.timeout),
    )

    generation = GenerationConfig(
        retry_attempts=_env_int("RETRY_ATTEMPTS", GenerationConfig.retry_attempts),
        retry_base_delay=_env_float("RETRY_BASE_DELAY", GenerationConfig.retry_base_delay),
        max_reference_images=_env_int("MAX_REFERENCE_IMAGES", GenerationConfig.max_reference_images),
        tts_chunk_chars=_env_int("TTS_CHUNK_CHARS", GenerationConfig.tts_chunk_chars),
        default_voice=os.getenv("DEFAULT_VOICE", GenerationConfig.default_voice),
        language=os.getenv("STORY_LANGUAGE", GenerationConfig.language),
    )

    video = VideoConfig(
        width=_env_int("VIDEO_WIDTH", VideoConfig.width),
        height=_env_int("VIDEO_HEIGHT", VideoConfig.height),
        fps=_env_int("VIDEO_FPS", VideoConfig.fps),
    )

    return AppConfig(
        ai=ai_config,
        paths=PathsConfig.detect(),
        generation=generation,
        video=video,
        storage_backend=os.getenv("STORAGE_BACKEND", "sqlite"),
        database_path=os.getenv("DATABASE_PATH", "data/storystudio.db"),
        debug=os.getenv("DEBUG", "false").lower() == "true",
    )
