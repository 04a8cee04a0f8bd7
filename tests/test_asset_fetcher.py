"""Tests for downloading shot videos and audio tracks."""

import asyncio
from pathlib import Path

import httpx
import pytest

from conftest import make_shot, make_track
from scene_composer.config import Settings
from scene_composer.exceptions import DownloadError, JobCancelledError
from scene_composer.services.asset_fetcher import AssetFetcher, track_filename


def _transport(requests: list[str], failing: dict[str, int] | None = None) -> httpx.MockTransport:
    failing = failing or {}

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requests.append(url)
        if url in failing:
            return httpx.Response(failing[url])
        return httpx.Response(200, content=f"bytes of {url}".encode())

    return httpx.MockTransport(handler)


class TestFetchAll:
    @pytest.mark.asyncio
    async def test_downloads_shots_then_tracks(self, settings: Settings, tmp_path: Path):
        """Test one download per shot and per track, shots first, in order."""
        requests: list[str] = []
        fetcher = AssetFetcher(settings, transport=_transport(requests))
        shots = [make_shot(0), make_shot(1), make_shot(2)]
        tracks = [make_track("bgm"), make_track("sfx")]

        sources = await fetcher.fetch_all(shots, tracks, str(tmp_path))

        assert requests == [
            "https://cdn.example.com/shots/0.mp4",
            "https://cdn.example.com/shots/1.mp4",
            "https://cdn.example.com/shots/2.mp4",
            "https://cdn.example.com/audio/bgm.mp3",
            "https://cdn.example.com/audio/sfx.mp3",
        ]
        assert sources.shot_paths == {
            0: str(tmp_path / "shot-0.mp4"),
            1: str(tmp_path / "shot-1.mp4"),
            2: str(tmp_path / "shot-2.mp4"),
        }
        assert sources.track_paths["bgm"] == str(tmp_path / "audio-bgm.mp3")
        assert (tmp_path / "shot-1.mp4").read_bytes() == b"bytes of https://cdn.example.com/shots/1.mp4"

    @pytest.mark.asyncio
    async def test_reports_each_completed_file(self, settings: Settings, tmp_path: Path):
        fetcher = AssetFetcher(settings, transport=_transport([]))
        seen: list[tuple[int, int]] = []

        await fetcher.fetch_all(
            [make_shot(0), make_shot(1)],
            [make_track("bgm")],
            str(tmp_path),
            on_file_done=lambda done, total: seen.append((done, total)),
        )

        assert seen == [(1, 3), (2, 3), (3, 3)]

    @pytest.mark.asyncio
    async def test_fail_fast_on_http_error(self, settings: Settings, tmp_path: Path):
        """Test that the first failed download aborts the rest."""
        requests: list[str] = []
        fetcher = AssetFetcher(
            settings,
            transport=_transport(requests, failing={"https://cdn.example.com/shots/1.mp4": 404}),
        )

        with pytest.raises(DownloadError) as exc_info:
            await fetcher.fetch_all([make_shot(0), make_shot(1), make_shot(2)], [], str(tmp_path))

        assert "HTTP 404" in exc_info.value.message
        assert "shots/1.mp4" in exc_info.value.message
        assert requests == [
            "https://cdn.example.com/shots/0.mp4",
            "https://cdn.example.com/shots/1.mp4",
        ]

    @pytest.mark.asyncio
    async def test_transport_error(self, settings: Settings, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = AssetFetcher(settings, transport=httpx.MockTransport(handler))

        with pytest.raises(DownloadError, match="connection refused"):
            await fetcher.fetch_all([make_shot(0)], [], str(tmp_path))

    @pytest.mark.asyncio
    async def test_empty_body_rejected(self, settings: Settings, tmp_path: Path):
        fetcher = AssetFetcher(settings, transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        with pytest.raises(DownloadError, match="empty"):
            await fetcher.fetch_all([make_shot(0)], [], str(tmp_path))

    @pytest.mark.asyncio
    async def test_cancel_between_downloads(self, settings: Settings, tmp_path: Path):
        requests: list[str] = []
        fetcher = AssetFetcher(settings, transport=_transport(requests))
        event = asyncio.Event()

        with pytest.raises(JobCancelledError):
            await fetcher.fetch_all(
                [make_shot(0), make_shot(1)],
                [],
                str(tmp_path),
                on_file_done=lambda done, total: event.set(),
                cancel_event=event,
            )

        assert len(requests) == 1


class TestTrackFilename:
    def test_plain_id(self):
        assert track_filename(make_track("bgm-01")) == "audio-bgm-01.mp3"

    def test_id_cannot_escape_scratch_dir(self):
        name = track_filename(make_track("../../etc/passwd"))
        assert "/" not in name
        assert name.startswith("audio-")
