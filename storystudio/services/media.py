"""
FFmpeg helpers. Commands run through synchronous subprocess.run inside a
thread pool so the event loop stays free during encodes.
"""
import asyncio
import json
import logging
import re
import subprocess
from functools import partial
from typing import List, Optional

from storystudio.providers.exceptions import AssemblyError

logger = logging.getLogger(__name__)

DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")


def run_ffmpeg_sync(cmd: List[str], stage: str, timeout: float = 600) -> subprocess.CompletedProcess:
    logger.debug(f"[FFMPEG] {stage}: {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise AssemblyError(stage, f"timed out after {timeout}s")
    except FileNotFoundError:
        raise AssemblyError(stage, f"executable not found: {cmd[0]}")

    if result.returncode != 0:
        logger.error(f"[FFMPEG] {stage} failed (exit code {result.returncode}): {result.stderr[-1000:]}")
        raise AssemblyError(stage, f"exit code {result.returncode}: {result.stderr[-300:]}")
    return result


async def run_ffmpeg(cmd: List[str], stage: str, timeout: float = 600) -> subprocess.CompletedProcess:
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, partial(run_ffmpeg_sync, cmd, stage, timeout))


def probe_duration_sync(path: str, ffmpeg_path: str, ffprobe_path: Optional[str] = None) -> float:
    """Container duration in seconds, via ffprobe when present, else ffmpeg's banner."""
    if ffprobe_path:
        result = subprocess.run(
            [ffprobe_path, "-v", "quiet", "-print_format", "json", "-show_format", path],
            capture_output=True, text=True, timeout=60,
        )
        if result.returncode == 0:
            duration = json.loads(result.stdout or "{}").get("format", {}).get("duration")
            if duration is not None:
                return float(duration)

    # ffmpeg exits non-zero without an output file; the banner still carries Duration.
    result = subprocess.run([ffmpeg_path, "-hide_banner", "-i", path], capture_output=True, text=True, timeout=60)
    match = DURATION_PATTERN.search(result.stderr)
    if not match:
        raise AssemblyError("probe", f"could not read duration of {path}")
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


async def probe_duration(path: str, ffmpeg_path: str, ffprobe_path: Optional[str] = None) -> float:
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, partial(probe_duration_sync, path, ffmpeg_path, ffprobe_path))


def concat_list_line(path: str) -> str:
    """One line of a concat demuxer list file, with single quotes escaped."""
    return "file '" + path.replace("\\", "/").replace("'", "'\\''") + "'\n"
