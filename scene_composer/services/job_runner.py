"""Admission control and cancellation for composition jobs."""

import asyncio
import logging

from scene_composer.exceptions import JobCancelledError
from scene_composer.schemas import CompositionRequest
from scene_composer.services.job_tracker import Job, JobTracker
from scene_composer.services.orchestrator import CompositionOrchestrator

logger = logging.getLogger(__name__)


class JobRunner:
    """Runs accepted jobs as background tasks, at most ``max_concurrent_jobs`` at a time.

    Jobs waiting for a slot stay ``pending`` in the tracker.
    """

    def __init__(
        self,
        tracker: JobTracker,
        orchestrator: CompositionOrchestrator,
        max_concurrent_jobs: int = 2,
    ):
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        self.tracker = tracker
        self.orchestrator = orchestrator
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    def submit(self, request: CompositionRequest) -> Job:
        """Register the job as pending and schedule it.

        Raises:
            InvalidJobTransitionError: If the job id is already known
        """
        job = self.tracker.create(request.job_id)
        cancel_event = asyncio.Event()
        task = asyncio.create_task(self._run(request, cancel_event), name=f"compose-{request.job_id}")
        self._tasks[request.job_id] = task
        self._cancel_events[request.job_id] = cancel_event
        task.add_done_callback(lambda _t, job_id=request.job_id: self._forget(job_id))
        return job

    async def _run(self, request: CompositionRequest, cancel_event: asyncio.Event) -> None:
        try:
            await self._semaphore.acquire()
        except asyncio.CancelledError:
            # Cancelled while queued; the orchestrator never saw this job
            await self.orchestrator.fail_unstarted(request, JobCancelledError.message)
            raise
        try:
            await self.orchestrator.run(request, cancel_event)
        finally:
            self._semaphore.release()

    def cancel(self, job_id: str) -> bool:
        """Signal a running or queued job to stop. False if it is not active."""
        event = self._cancel_events.get(job_id)
        if event is None:
            return False
        logger.info(f"[JOB {job_id}] cancellation requested")
        event.set()
        return True

    def is_active(self, job_id: str) -> bool:
        return job_id in self._tasks

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def wait(self, job_id: str) -> None:
        """Wait for an active job's task to finish."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every active job and wait for them to finish."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        # Let freshly submitted tasks reach their first await so each one can report its failure
        await asyncio.sleep(0)
        logger.info(f"Cancelling {len(tasks)} active jobs")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, job_id: str) -> None:
        self._tasks.pop(job_id, None)
        self._cancel_events.pop(job_id, None)
