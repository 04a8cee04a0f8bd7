"""Thumbnail extraction from a finished composite."""

import asyncio
import logging
import os
import subprocess

from scene_composer.config import Settings, get_settings
from scene_composer.exceptions import CompositionError
from scene_composer.render.graph import ms_to_seconds

logger = logging.getLogger(__name__)


def thumbnail_seek_ms(duration_ms: int, seek_ms: int) -> int:
    """Seek offset for the thumbnail frame.

    Composites shorter than the configured offset are sampled at their
    midpoint so a frame always exists.
    """
    if duration_ms > seek_ms:
        return seek_ms
    return max(0, duration_ms // 2)


def build_thumbnail_command(
    video_path: str,
    output_path: str,
    seek_ms: int,
    width: int,
    ffmpeg_path: str = "ffmpeg",
) -> list[str]:
    # -ss before -i enables fast seeking (input seeking)
    return [
        ffmpeg_path, "-hide_banner", "-nostdin", "-y",
        "-ss", ms_to_seconds(seek_ms),
        "-i", video_path,
        "-frames:v", "1",
        # -2 keeps the aspect ratio with an even height
        "-vf", f"scale={width}:-2",
        "-q:v", "2",
        output_path,
    ]


async def extract_thumbnail(
    video_path: str,
    output_path: str,
    duration_ms: int,
    settings: Settings | None = None,
) -> str:
    """
    Extract one JPEG frame from the composite.

    Args:
        video_path: Finished composite
        output_path: Destination JPEG
        duration_ms: Composite duration, used to clamp the seek offset

    Returns:
        output_path

    Raises:
        CompositionError: If FFmpeg fails or writes no image
    """
    settings = settings or get_settings()
    seek_ms = thumbnail_seek_ms(duration_ms, settings.thumbnail_seek_ms)
    cmd = build_thumbnail_command(
        video_path, output_path, seek_ms, settings.thumbnail_width, settings.ffmpeg_path
    )
    logger.debug(f"Thumbnail command: {' '.join(cmd)}")

    result = await asyncio.to_thread(subprocess.run, cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise CompositionError(f"Thumbnail extraction failed: {result.stderr[-2000:].strip()}")
    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise CompositionError("Thumbnail extraction produced no image")
    return output_path
