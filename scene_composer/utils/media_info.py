"""ffprobe helpers for source shots and finished composites."""

import json
import logging
import subprocess

from scene_composer.config import get_settings
from scene_composer.exceptions import CompositionError

logger = logging.getLogger(__name__)


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def get_media_duration(file_path: str) -> int:
    """
    Get media file duration in milliseconds, rounded to the nearest ms.

    Args:
        file_path: Path to media file

    Returns:
        Duration in milliseconds (always > 0)

    Raises:
        CompositionError: If ffprobe fails or the container has no usable duration
    """
    try:
        data = _run_ffprobe(file_path, "-show_format")
    except RuntimeError as e:
        raise CompositionError(f"Could not probe duration of {file_path}: {e}") from e

    raw = data.get("format", {}).get("duration")
    if raw is None:
        raise CompositionError(f"Duration not found in: {file_path}")

    try:
        duration_ms = round(float(raw) * 1000)
    except (TypeError, ValueError) as e:
        raise CompositionError(f"Unreadable duration {raw!r} in: {file_path}") from e

    if duration_ms <= 0:
        raise CompositionError(f"Non-positive duration {duration_ms}ms in: {file_path}")
    return duration_ms


def has_audio_track(file_path: str) -> bool:
    """
    Check if media file has an audio track.

    Args:
        file_path: Path to media file

    Returns:
        True if audio track exists, False otherwise
    """
    try:
        data = _run_ffprobe(file_path, "-show_streams", "-select_streams", "a")
        return len(data.get("streams", [])) > 0
    except RuntimeError:
        logger.warning(f"Could not probe audio streams of {file_path}; treating as silent")
        return False
