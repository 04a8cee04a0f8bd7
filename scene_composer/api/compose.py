"""Composition API endpoints.

Jobs run in the background; callers learn the outcome from the webhook and
may poll the in-memory job record while the process is alive.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from scene_composer.api.deps import Authorized, Runner, Tracker
from scene_composer.schemas import (
    CancelResponse,
    CompositionAccepted,
    CompositionRequest,
    JobResponse,
)
from scene_composer.services.job_tracker import Job

router = APIRouter()
logger = logging.getLogger(__name__)


def _job_response(job: Job) -> JobResponse:
    return JobResponse(
        job_id=job.id,
        status=job.status.value,
        stage=job.stage,
        progress=job.progress,
        error=job.error,
        started_at=job.started_at,
        updated_at=job.updated_at,
    )


@router.post("/compose", response_model=CompositionAccepted)
async def start_composition(
    composition_request: CompositionRequest,
    _auth: Authorized,
    runner: Runner,
) -> CompositionAccepted:
    """
    Accept a composition request and run it in the background.

    Returns immediately with ``{jobId, status: "processing"}``. Duplicate job
    ids are rejected with 409.
    """
    runner.submit(composition_request)
    logger.info(
        f"[JOB {composition_request.job_id}] accepted for project={composition_request.project_id} "
        f"scene={composition_request.scene_id}"
    )
    return CompositionAccepted(job_id=composition_request.job_id)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, tracker: Tracker) -> JobResponse:
    job = tracker.get(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {job_id}",
        )
    return _job_response(job)


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=CancelResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_job(job_id: str, _auth: Authorized, tracker: Tracker, runner: Runner) -> CancelResponse:
    """Signal a queued or running job to stop. ``cancelled`` is False once it has finished."""
    if tracker.get(job_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {job_id}",
        )
    return CancelResponse(job_id=job_id, cancelled=runner.cancel(job_id))
