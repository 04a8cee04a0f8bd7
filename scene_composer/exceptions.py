"""Custom exceptions for the scene composer.

Every failure that can end a job maps onto one of these classes, so the
orchestrator can turn any of them into the human-readable ``error`` that is
stored on the job and delivered through the webhook.
"""

from typing import Any


class ComposerError(Exception):
    """Base exception for all scene composer errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to the JSON error body used by the API."""
        return {"code": self.code, "message": self.message}


# =============================================================================
# Request / Job Errors
# =============================================================================


class RequestValidationFailed(ComposerError):
    """Composition request is malformed or incomplete."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid composition request"


class JobNotFoundError(ComposerError):
    """Job not found in the tracker."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class InvalidJobTransitionError(ComposerError):
    """Requested job state change is not allowed by the state machine."""

    code = "INVALID_JOB_TRANSITION"
    status_code = 409
    message = "Invalid job state transition"


class JobCancelledError(ComposerError):
    """Job was aborted through its cancellation signal."""

    code = "JOB_CANCELLED"
    message = "Job was cancelled"


# =============================================================================
# Pipeline Errors
# =============================================================================


class DownloadError(ComposerError):
    """A source video or audio file could not be fetched."""

    code = "DOWNLOAD_FAILED"
    status_code = 502
    message = "Failed to download source file"

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to download {_shorten(url)}: {reason}")


class CompositionError(ComposerError):
    """Processing graph could not be built or executed."""

    code = "COMPOSITION_FAILED"
    message = "Composition failed"


class InvalidTimelineError(CompositionError):
    """Timeline arithmetic is invalid (e.g. non-positive effective duration)."""

    code = "INVALID_TIMELINE"
    status_code = 400
    message = "Invalid timeline"


class EncoderError(CompositionError):
    """External encoder exited abnormally."""

    code = "ENCODER_FAILED"
    message = "FFmpeg encoding failed"

    def __init__(self, message: str | None = None, *, stderr: str = "", returncode: int | None = None):
        self.stderr = stderr
        self.returncode = returncode
        msg = message or self.message
        if stderr:
            msg = f"{msg}: {stderr.strip()}"
        super().__init__(msg)


class PublishError(ComposerError):
    """Durable storage write failed."""

    code = "PUBLISH_FAILED"
    status_code = 502
    message = "Failed to upload output"


class WebhookDeliveryError(ComposerError):
    """Webhook delivery failed. Logged only, never changes a job's outcome."""

    code = "WEBHOOK_FAILED"
    status_code = 502
    message = "Webhook delivery failed"


def _shorten(url: str, limit: int = 100) -> str:
    return url if len(url) <= limit else url[:limit] + "..."
