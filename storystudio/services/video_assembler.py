"""
Video Assembler - per-scene zoom clips, container concat, narration mux.

Every clip is encoded with identical parameters so the concat demuxer can
join them with a stream copy. All intermediate files live in a temporary
directory scoped to one `assemble` call and are removed on success and on
failure alike. Any failed stage aborts the whole assembly.
"""
import logging
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from storystudio.config import VideoConfig
from storystudio.models import AssemblyResult, ClipSpec, Scene, VideoAssemblyJob
from storystudio.providers.exceptions import PreconditionError
from storystudio.services.asset_store import AssetStore
from storystudio.services.media import concat_list_line, probe_duration, run_ffmpeg

logger = logging.getLogger(__name__)


def job_from_scenes(
    scenes: Sequence[Scene],
    narration_url: Optional[str] = None,
    output_name: Optional[str] = None,
) -> VideoAssemblyJob:
    """
    Build an assembly job from scenes in order.

    Raises:
        PreconditionError: no scenes, or any scene lacks an image
    """
    if not scenes:
        raise PreconditionError("Story has no scenes to assemble")

    ordered = sorted(scenes, key=lambda s: s.order)
    missing = [s.order for s in ordered if not s.image_url]
    if missing:
        raise PreconditionError(f"Scenes without image: {missing}", missing=missing)

    clips = [ClipSpec(image_url=s.image_url, duration_seconds=float(s.duration_estimate_seconds)) for s in ordered]
    job = VideoAssemblyJob(clips=clips, narration_url=narration_url)
    if output_name:
        job.output_name = output_name
    return job


class VideoAssembler:

    def __init__(
        self,
        config: VideoConfig,
        assets: AssetStore,
        output_dir: Path,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: Optional[str] = None,
    ):
        self.config = config
        self.assets = assets
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    def frame_count(self, duration: float) -> int:
        return max(1, int(round(duration * self.config.fps)))

    def zoom_filter(self, duration: float) -> str:
        """
        Cover-crop to the output frame, then zoom linearly from 1.0 to
        `max_zoom`, reaching it on the clip's last frame.
        """
        width, height, fps = self.config.width, self.config.height, self.config.fps
        frames = self.frame_count(duration)
        step = (self.config.max_zoom - 1.0) / max(1, frames - 1)
        zoom_expr = f"min(1+{step:.8f}*on,{self.config.max_zoom})"

        return (
            f"scale={width}:{height}:force_original_aspect_ratio=increase,"
            f"crop={width}:{height},"
            f"scale={width * 2}:{height * 2},"
            f"zoompan=z='{zoom_expr}':x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)':"
            f"d={frames}:s={width}x{height}:fps={fps},"
            f"setsar=1"
        )

    def clip_command(self, image_path: str, duration: float, output_path: str) -> List[str]:
        cfg = self.config
        return [
            self.ffmpeg_path, "-y",
            "-loop", "1",
            "-framerate", str(cfg.fps),
            "-i", image_path,
            "-vf", self.zoom_filter(duration),
            "-frames:v", str(self.frame_count(duration)),
            "-r", str(cfg.fps),
            "-c:v", cfg.video_codec,
            "-preset", cfg.preset,
            "-crf", str(cfg.crf),
            "-pix_fmt", cfg.pix_fmt,
            "-an",
            output_path,
        ]

    def concat_command(self, list_path: str, output_path: str) -> List[str]:
        return [
            self.ffmpeg_path, "-y",
            "-f", "concat", "-safe", "0",
            "-i", list_path,
            "-c", "copy",
            "-movflags", "+faststart",
            output_path,
        ]

    def mux_command(self, video_path: str, audio_path: str, output_path: str, duration: float) -> List[str]:
        return [
            self.ffmpeg_path, "-y",
            "-i", video_path,
            "-i", audio_path,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
            "-c:a", self.config.audio_codec,
            "-b:a", self.config.audio_bitrate,
            "-shortest",
            "-t", f"{duration:.3f}",
            "-movflags", "+faststart",
            output_path,
        ]

    async def assemble(self, job: VideoAssemblyJob) -> AssemblyResult:
        if not job.clips:
            raise PreconditionError("Assembly job has no clips")
        missing = [index for index, clip in enumerate(job.clips, start=1) if not clip.image_url]
        if missing:
            raise PreconditionError(f"Clips without image: {missing}", missing=missing)
        if any(clip.duration_seconds <= 0 for clip in job.clips):
            raise PreconditionError("Clip durations must be positive")

        logger.info(
            f"[ASSEMBLER] Assembling {len(job.clips)} clips ({job.total_duration:.1f}s), "
            f"narration={'yes' if job.narration_url else 'no'}"
        )

        with tempfile.TemporaryDirectory(prefix="storystudio_video_") as work:
            work_dir = Path(work)

            clip_paths = []
            for index, clip in enumerate(job.clips, start=1):
                extension = self.assets.extension_of(clip.image_url, "png")
                image_path = await self.assets.copy_to(clip.image_url, work_dir / f"image_{index:03d}.{extension}")
                clip_path = work_dir / f"clip_{index:03d}.mp4"
                await run_ffmpeg(
                    self.clip_command(str(image_path), clip.duration_seconds, str(clip_path)),
                    stage=f"clip-{index}",
                )
                clip_paths.append(clip_path)
                logger.info(f"[ASSEMBLER] Clip {index}/{len(job.clips)} rendered ({clip.duration_seconds}s)")

            list_path = work_dir / "clips.txt"
            with open(list_path, "w", encoding="utf-8") as f:
                for clip_path in clip_paths:
                    f.write(concat_list_line(str(clip_path)))

            combined = work_dir / "combined.mp4"
            await run_ffmpeg(self.concat_command(str(list_path), str(combined)), stage="concat")
            video_duration = await probe_duration(str(combined), self.ffmpeg_path, self.ffprobe_path)

            final = combined
            duration = video_duration
            if job.narration_url:
                extension = self.assets.extension_of(job.narration_url, "wav")
                narration_path = await self.assets.copy_to(job.narration_url, work_dir / f"narration.{extension}")
                audio_duration = await probe_duration(str(narration_path), self.ffmpeg_path, self.ffprobe_path)

                duration = min(video_duration, audio_duration)
                if abs(video_duration - audio_duration) > 0.5:
                    logger.warning(
                        f"[ASSEMBLER] Video {video_duration:.1f}s vs narration {audio_duration:.1f}s, "
                        f"output truncated to {duration:.1f}s"
                    )

                final = work_dir / "final.mp4"
                await run_ffmpeg(self.mux_command(str(combined), str(narration_path), str(final), duration), stage="mux")

            output_path = self.output_dir / job.output_name
            shutil.move(str(final), str(output_path))

        logger.info(f"[ASSEMBLER] Output ready: {output_path} ({duration:.1f}s)")
        return AssemblyResult(
            output_path=str(output_path),
            duration=duration,
            clip_count=len(job.clips),
            has_narration=bool(job.narration_url),
        )
