"""Per-job composition pipeline.

Drives one request through download -> compose -> thumbnail/duration ->
upload, mirrors every phase into the job tracker and reports the terminal
result through the webhook exactly once. The job's scratch directory is
owned by ``scratch_directory`` and removed on every exit path.
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from scene_composer.config import Settings, get_settings
from scene_composer.exceptions import ComposerError, JobCancelledError
from scene_composer.render.compositor import Compositor
from scene_composer.render.progress import (
    COMPOSITION_PHASES,
    DOWNLOAD,
    ENCODE,
    THUMBNAIL,
    UPLOAD,
    ProgressModel,
    download_stage,
    encode_stage,
)
from scene_composer.render.thumbnail import extract_thumbnail
from scene_composer.render.timeline import sort_shots, validate_shots, validate_tracks
from scene_composer.schemas import CompositionRequest, CompositionResult
from scene_composer.services.asset_fetcher import AssetFetcher
from scene_composer.services.job_tracker import JobStatus, JobTracker
from scene_composer.services.publisher import AssetPublisher
from scene_composer.services.webhook import WebhookNotifier
from scene_composer.utils.media_info import get_media_duration

logger = logging.getLogger(__name__)


@asynccontextmanager
async def scratch_directory(job_id: str, root: str | None = None) -> AsyncIterator[str]:
    """Create ``{root}/compose-{job_id}-XXXX`` and remove it however the block exits."""
    safe_id = re.sub(r"[^A-Za-z0-9_-]", "_", job_id)
    if root:
        os.makedirs(root, exist_ok=True)
    path = tempfile.mkdtemp(prefix=f"compose-{safe_id}-", dir=root or None)
    logger.debug(f"[JOB {job_id}] scratch directory {path}")
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[JOB {job_id}] failed to remove scratch directory {path}: {e}")


class CompositionOrchestrator:
    def __init__(
        self,
        tracker: JobTracker,
        *,
        settings: Settings | None = None,
        fetcher: AssetFetcher | None = None,
        compositor: Compositor | None = None,
        publisher: AssetPublisher | None = None,
        notifier: WebhookNotifier | None = None,
        progress: ProgressModel = COMPOSITION_PHASES,
    ):
        self.tracker = tracker
        self.settings = settings or get_settings()
        self.fetcher = fetcher or AssetFetcher(self.settings)
        self.compositor = compositor or Compositor(self.settings)
        self.publisher = publisher or AssetPublisher()
        self.notifier = notifier or WebhookNotifier(self.settings)
        self.progress = progress

    async def run(
        self,
        request: CompositionRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> CompositionResult:
        """
        Run one job to a terminal state and deliver its webhook.

        The job must already exist in the tracker. Every failure, expected or
        not, ends as a ``failed`` result; the only exception that escapes is
        task cancellation, after the job has been marked failed and reported.
        """
        job_id = request.job_id
        logger.info(f"[JOB {job_id}] starting: {len(request.shots)} shots, "
                    f"{len(request.active_audio_tracks)} audio tracks")
        try:
            async with scratch_directory(job_id, self.settings.scratch_root) as work_dir:
                result = await self._execute(request, work_dir, cancel_event)
        except asyncio.CancelledError:
            result = self._fail(job_id, JobCancelledError.message)
            await self.notifier.notify(request.webhook_url, result)
            raise
        except ComposerError as e:
            logger.error(f"[JOB {job_id}] failed: {e.message}")
            result = self._fail(job_id, e.message)
        except Exception as e:
            logger.exception(f"[JOB {job_id}] unexpected error")
            result = self._fail(job_id, str(e) or e.__class__.__name__)

        await self.notifier.notify(request.webhook_url, result)
        return result

    async def _execute(
        self,
        request: CompositionRequest,
        work_dir: str,
        cancel_event: asyncio.Event | None,
    ) -> CompositionResult:
        job_id = request.job_id
        shots = sort_shots(request.shots)
        tracks = request.active_audio_tracks

        # Timeline errors fail the job before anything is downloaded
        validate_shots(shots)
        validate_tracks(tracks)
        _check_cancelled(cancel_event)

        # Phase 1: downloads
        total = len(shots) + len(tracks)
        self.tracker.update(
            job_id,
            status=JobStatus.DOWNLOADING,
            stage=download_stage(0, total),
            progress=self.progress.start_of(DOWNLOAD),
        )

        def on_file_done(done: int, count: int) -> None:
            self.tracker.update(
                job_id,
                stage=download_stage(done, count),
                progress=self.progress.overall(DOWNLOAD, done / count * 100),
            )

        sources = await self.fetcher.fetch_all(
            shots, tracks, work_dir, on_file_done=on_file_done, cancel_event=cancel_event
        )
        _check_cancelled(cancel_event)

        # Phase 2: composite
        self.tracker.update(
            job_id,
            status=JobStatus.PROCESSING,
            stage="Compositing video...",
            progress=self.progress.start_of(ENCODE),
        )

        def on_encode_progress(raw_percent: float) -> None:
            self.tracker.update(
                job_id,
                stage=encode_stage(raw_percent),
                progress=self.progress.overall(ENCODE, raw_percent),
            )

        video_path = await self.compositor.compose(
            request,
            sources,
            os.path.join(work_dir, "composite.mp4"),
            on_progress=on_encode_progress,
            cancel_event=cancel_event,
        )
        _check_cancelled(cancel_event)

        # Phase 3: thumbnail and duration
        self.tracker.update(
            job_id,
            stage="Generating thumbnail...",
            progress=self.progress.start_of(THUMBNAIL),
        )
        duration_ms = await asyncio.to_thread(get_media_duration, video_path)
        thumbnail_path = await extract_thumbnail(
            video_path, os.path.join(work_dir, "thumbnail.jpg"), duration_ms, self.settings
        )
        _check_cancelled(cancel_event)

        # Phase 4: upload
        self.tracker.update(
            job_id,
            status=JobStatus.UPLOADING,
            stage="Uploading to cloud...",
            progress=self.progress.start_of(UPLOAD),
        )
        published = await self.publisher.publish(
            request.project_id, request.scene_id, job_id, video_path, thumbnail_path
        )

        self.tracker.update(job_id, status=JobStatus.COMPLETED, stage="Complete!", progress=100)
        logger.info(f"[JOB {job_id}] completed: {published.video_url} ({duration_ms}ms)")
        return CompositionResult(
            job_id=job_id,
            status="completed",
            video_url=published.video_url,
            thumbnail_url=published.thumbnail_url,
            duration_ms=duration_ms,
        )

    async def fail_unstarted(self, request: CompositionRequest, error: str) -> CompositionResult:
        """Fail a job that never reached ``run`` and deliver its webhook."""
        logger.info(f"[JOB {request.job_id}] failed before start: {error}")
        result = self._fail(request.job_id, error)
        await self.notifier.notify(request.webhook_url, result)
        return result

    def _fail(self, job_id: str, error: str) -> CompositionResult:
        try:
            self.tracker.update(job_id, status=JobStatus.FAILED, stage="Failed", error=error)
        except ComposerError as e:
            logger.warning(f"[JOB {job_id}] could not record failure: {e.message}")
        return CompositionResult(job_id=job_id, status="failed", error=error)


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelledError()
