"""Downloads a request's source media into the job's scratch directory."""

import asyncio
import logging
import os
import re
from collections.abc import Callable

import httpx

from scene_composer.config import Settings, get_settings
from scene_composer.exceptions import DownloadError, JobCancelledError
from scene_composer.render.compositor import SourceFiles
from scene_composer.schemas import AudioTrack, Shot

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def shot_filename(shot: Shot) -> str:
    return f"shot-{shot.order}.mp4"


def track_filename(track: AudioTrack) -> str:
    # ids come from the caller; keep them from leaving the scratch directory
    safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", track.id).lstrip(".")
    return f"audio-{safe_id}.mp3"


class AssetFetcher:
    """Sequential, fail-fast downloader: shots first (by order), then tracks."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self.settings.download_timeout_seconds, connect=10.0)
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch_all(
        self,
        shots: list[Shot],
        tracks: list[AudioTrack],
        work_dir: str,
        on_file_done: Callable[[int, int], None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SourceFiles:
        """
        Download every shot video and every given audio track.

        Args:
            shots: Shots sorted by order
            tracks: Unmuted audio tracks
            work_dir: Scratch directory
            on_file_done: Called with (completed, total) after each download
            cancel_event: Checked between downloads

        Returns:
            SourceFiles mapping shot orders and track ids to local paths

        Raises:
            DownloadError: On the first failed download
            JobCancelledError: If cancel_event is set between downloads
        """
        sources = SourceFiles()
        total = len(shots) + len(tracks)
        done = 0

        async with self._client() as client:
            for item in [*shots, *tracks]:
                if cancel_event is not None and cancel_event.is_set():
                    raise JobCancelledError()

                if isinstance(item, Shot):
                    dest = os.path.join(work_dir, shot_filename(item))
                    sources.shot_paths[item.order] = await self.download(client, item.video_url, dest)
                else:
                    dest = os.path.join(work_dir, track_filename(item))
                    sources.track_paths[item.id] = await self.download(client, item.source_url, dest)

                done += 1
                if on_file_done is not None:
                    on_file_done(done, total)

        logger.info(f"Downloaded {len(shots)} shots and {len(tracks)} audio tracks to {work_dir}")
        return sources

    async def download(self, client: httpx.AsyncClient, url: str, dest: str) -> str:
        """Stream ``url`` to ``dest``. Raises DownloadError on any failure."""
        logger.debug(f"Downloading {url} -> {dest}")
        try:
            async with client.stream("GET", url) as resp:
                if resp.status_code >= 400:
                    raise DownloadError(url, f"HTTP {resp.status_code}")
                with open(dest, "wb") as f:
                    async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except httpx.HTTPError as e:
            raise DownloadError(url, str(e) or e.__class__.__name__) from e
        except OSError as e:
            raise DownloadError(url, f"could not write {dest}: {e}") from e

        if os.path.getsize(dest) == 0:
            raise DownloadError(url, "empty response body")
        return dest
