"""
Tests for the Video Assembler.

Command construction is checked without ffmpeg; end-to-end assembly is
skipped when no ffmpeg binary is available.
"""
import asyncio

import pytest

from storystudio.config import VideoConfig
from storystudio.models import AudioArtifact, ClipSpec, ImageArtifact, Scene, VideoAssemblyJob
from storystudio.providers.exceptions import AssemblyError, PreconditionError
from storystudio.services.media import concat_list_line, probe_duration
from storystudio.services.video_assembler import VideoAssembler, job_from_scenes
from tests.conftest import png_bytes, wav_bytes


def make_assembler(temp_dir, assets, ffmpeg="ffmpeg"):
    return VideoAssembler(VideoConfig(width=320, height=180, fps=30), assets, temp_dir / "videos", ffmpeg_path=ffmpeg)


async def save_images(assets, count):
    return [
        await assets.save_image("video", f"scene_{i:02d}", ImageArtifact(png_bytes(color=(i * 40, 90, 160))))
        for i in range(1, count + 1)
    ]


class TestJobFromScenes:
    """Precondition checks."""

    def test_missing_images_reported(self):
        scenes = [
            Scene(order=1, narration_text="a", visual_description="a", image_url="/a.png"),
            Scene(order=2, narration_text="b", visual_description="b"),
            Scene(order=3, narration_text="c", visual_description="c"),
        ]
        with pytest.raises(PreconditionError) as exc_info:
            job_from_scenes(scenes)
        assert exc_info.value.missing == [2, 3]

    def test_no_scenes(self):
        with pytest.raises(PreconditionError):
            job_from_scenes([])

    def test_clips_follow_scene_order(self):
        scenes = [
            Scene(order=2, narration_text="b", visual_description="b", image_url="/b.png", duration_estimate_seconds=20),
            Scene(order=1, narration_text="a", visual_description="a", image_url="/a.png", duration_estimate_seconds=10),
        ]
        job = job_from_scenes(scenes, narration_url="/n.wav", output_name="story.mp4")

        assert [c.image_url for c in job.clips] == ["/a.png", "/b.png"]
        assert job.total_duration == 30
        assert job.output_name == "story.mp4"


class TestCommands:
    """ffmpeg argument construction."""

    def test_zoom_reaches_max_on_last_frame(self, temp_dir, assets):
        assembler = make_assembler(temp_dir, assets)
        assert assembler.frame_count(10) == 300
        zoom = assembler.zoom_filter(10)

        step = 0.5 / 299
        assert f"min(1+{step:.8f}*on,1.5)" in zoom
        assert "d=300" in zoom
        assert "s=320x180" in zoom

    def test_clip_command_limits_frames(self, temp_dir, assets):
        cmd = make_assembler(temp_dir, assets).clip_command("in.png", 15, "out.mp4")
        assert cmd[cmd.index("-frames:v") + 1] == "450"
        assert cmd[cmd.index("-r") + 1] == "30"
        assert cmd[-1] == "out.mp4"

    def test_concat_is_stream_copy(self, temp_dir, assets):
        cmd = make_assembler(temp_dir, assets).concat_command("list.txt", "out.mp4")
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[cmd.index("-f") + 1] == "concat"

    def test_mux_is_shortest_with_explicit_limit(self, temp_dir, assets):
        cmd = make_assembler(temp_dir, assets).mux_command("v.mp4", "a.wav", "out.mp4", 42.5)
        assert "-shortest" in cmd
        assert cmd[cmd.index("-t") + 1] == "42.500"

    def test_concat_list_line_escapes_quotes(self):
        assert concat_list_line("/tmp/it's.mp4") == "file '/tmp/it'\\''s.mp4'\n"

    def test_job_rejects_non_positive_durations(self, temp_dir, assets):
        job = VideoAssemblyJob(clips=[ClipSpec("/a.png", 0)])
        with pytest.raises(PreconditionError):
            asyncio.run(make_assembler(temp_dir, assets).assemble(job))

    def test_missing_ffmpeg_raises_assembly_error(self, temp_dir, assets):
        assembler = make_assembler(temp_dir, assets, ffmpeg="/nonexistent/ffmpeg")

        async def run():
            urls = await save_images(assets, 1)
            await assembler.assemble(VideoAssemblyJob(clips=[ClipSpec(urls[0], 10)]))

        with pytest.raises(AssemblyError):
            asyncio.run(run())


class TestAssembly:
    """End-to-end assembly with a real ffmpeg."""

    def test_video_length_is_sum_of_clips(self, temp_dir, assets, ffmpeg_path):
        """Clips of 10, 15, 20, 10 and 25 seconds make an 80 second video."""
        assembler = make_assembler(temp_dir, assets, ffmpeg_path)

        async def run():
            urls = await save_images(assets, 5)
            job = VideoAssemblyJob(clips=[ClipSpec(u, d) for u, d in zip(urls, [10, 15, 20, 10, 25])])
            result = await assembler.assemble(job)
            return result, await probe_duration(result.output_path, ffmpeg_path)

        result, measured = asyncio.run(run())

        assert result.clip_count == 5
        assert result.has_narration is False
        assert measured == pytest.approx(80, abs=0.2)
        assert list((temp_dir / "videos").iterdir()) == [temp_dir / "videos" / result.output_name]

    def test_shorter_narration_sets_length(self, temp_dir, assets, ffmpeg_path):
        assembler = make_assembler(temp_dir, assets, ffmpeg_path)

        async def run():
            urls = await save_images(assets, 2)
            narration = await assets.save_audio("video", "narration", AudioArtifact(wav_bytes(12.0)))
            job = VideoAssemblyJob(clips=[ClipSpec(u, 10) for u in urls], narration_url=narration)
            result = await assembler.assemble(job)
            return result, await probe_duration(result.output_path, ffmpeg_path)

        result, measured = asyncio.run(run())

        assert result.has_narration is True
        assert result.duration == pytest.approx(12.0, abs=0.1)
        assert measured == pytest.approx(12.0, abs=0.3)
