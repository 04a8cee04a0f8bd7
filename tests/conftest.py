"""
Pytest fixtures for scene composer tests.

Tests that need real ffmpeg/ffprobe binaries are marked with
@pytest.mark.requires_ffmpeg and skipped when they are not on PATH.
Run `pytest -m "not requires_ffmpeg"` to skip them explicitly.
"""

import re
import shutil
import subprocess
from pathlib import Path

import pytest

from scene_composer.config import Settings
from scene_composer.schemas import AudioTrack, CompositionRequest, Shot
from scene_composer.services.job_tracker import JobTracker


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


# Skip decorator for tests that run the real encoder
requires_ffmpeg = pytest.mark.skipif(
    not _ffmpeg_available(),
    reason="ffmpeg/ffprobe not available on PATH",
)


@pytest.fixture
def temp_output_dir(tmp_path: Path) -> Path:
    """Temporary directory for test outputs."""
    out = tmp_path / "output"
    out.mkdir()
    return out


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment and from other tests."""
    return Settings(
        _env_file=None,
        scratch_root=str(tmp_path / "scratch"),
        local_storage_path=str(tmp_path / "storage"),
        local_storage_base_url="http://testserver/files",
        api_secret="",
    )


@pytest.fixture
def tracker() -> JobTracker:
    return JobTracker(ttl_seconds=3600)


def make_shot(order: int, **overrides) -> Shot:
    data = {
        "id": f"shot-{order}",
        "order": order,
        "video_url": f"https://cdn.example.com/shots/{order}.mp4",
        "duration_ms": 5000,
    }
    data.update(overrides)
    return Shot(**data)


def make_track(track_id: str, **overrides) -> AudioTrack:
    data = {
        "id": track_id,
        "source_url": f"https://cdn.example.com/audio/{track_id}.mp3",
        "duration_ms": 3000,
    }
    data.update(overrides)
    return AudioTrack(**data)


@pytest.fixture
def example_request() -> CompositionRequest:
    """Two shots (8000ms with audio, 4000ms muted) and one half-volume track at 2000ms."""
    return CompositionRequest(
        job_id="job-1",
        project_id="proj-1",
        scene_id="scene-1",
        webhook_url="https://app.example.com/api/webhooks/compose",
        shots=[
            make_shot(0, id="shot-a", duration_ms=8000),
            make_shot(1, id="shot-b", duration_ms=5000, trim_start_ms=1000, audio_muted=True),
        ],
        audio_tracks=[
            make_track("bgm", start_time_ms=2000, duration_ms=6000, volume=0.5),
        ],
    )


def make_test_clip(path: Path, duration_s: float, with_audio: bool = True) -> Path:
    """Render a small synthetic clip (test pattern + sine tone) with ffmpeg."""
    cmd = [
        "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
        "-f", "lavfi", "-i", f"testsrc=size=320x240:rate=25:duration={duration_s}",
    ]
    if with_audio:
        cmd += ["-f", "lavfi", "-i", f"sine=frequency=440:sample_rate=48000:duration={duration_s}"]
    cmd += ["-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p"]
    if with_audio:
        cmd += ["-c:a", "aac", "-shortest"]
    cmd.append(str(path))
    subprocess.run(cmd, check=True, capture_output=True)
    return path


def make_test_tone(path: Path, duration_s: float, frequency: int = 880) -> Path:
    cmd = [
        "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
        "-f", "lavfi", "-i", f"sine=frequency={frequency}:sample_rate=44100:duration={duration_s}",
        "-c:a", "aac", str(path),
    ]
    subprocess.run(cmd, check=True, capture_output=True)
    return path


def mean_volume_db(path: Path, start_s: float, duration_s: float) -> float:
    """Mean volume (dBFS) of the first audio stream in [start_s, start_s + duration_s).

    volumedetect reports digital silence as -91.0 dB.
    """
    cmd = [
        "ffmpeg", "-hide_banner", "-nostats",
        "-i", str(path),
        "-ss", f"{start_s:.3f}", "-t", f"{duration_s:.3f}",
        "-map", "0:a:0", "-af", "volumedetect",
        "-f", "null", "-",
    ]
    result = subprocess.run(cmd, check=True, capture_output=True, text=True)
    match = re.search(r"mean_volume:\s*(\S+) dB", result.stderr)
    if match is None:
        raise AssertionError(f"volumedetect printed no mean_volume:\n{result.stderr[-2000:]}")
    return float(match.group(1))
