"""Wire models for composition requests, webhook results and job snapshots.

Attributes are snake_case in Python and camelCase on the wire, matching the
project-management app that submits requests and receives webhooks.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

FadeType = Literal["none", "black", "white"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Shot(CamelModel):
    id: str
    order: int
    video_url: str
    duration_ms: int
    trim_start_ms: int = 0
    trim_end_ms: int = 0
    audio_muted: bool = False
    fade_in_type: FadeType = "none"
    fade_out_type: FadeType = "none"
    fade_duration_ms: int | None = None


class AudioTrack(CamelModel):
    id: str
    source_url: str
    start_time_ms: int = 0
    duration_ms: int
    trim_start_ms: int = 0
    volume: float = 1.0
    muted: bool = False


class CompositionRequest(CamelModel):
    job_id: str
    project_id: str
    scene_id: str
    webhook_url: str
    shots: list[Shot]
    audio_tracks: list[AudioTrack] = Field(default_factory=list)
    master_volume: float = 1.0

    @field_validator("job_id", "project_id", "scene_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("shots")
    @classmethod
    def _has_shots(cls, v: list[Shot]) -> list[Shot]:
        if not v:
            raise ValueError("No shots provided")
        return v

    @property
    def active_audio_tracks(self) -> list[AudioTrack]:
        """Tracks that take part in the mix. Muted tracks are never downloaded."""
        return [t for t in self.audio_tracks if not t.muted]


class CompositionAccepted(CamelModel):
    job_id: str
    status: Literal["processing"] = "processing"


class CompositionResult(CamelModel):
    """Webhook payload. Success fields and ``error`` are mutually exclusive."""

    job_id: str
    status: Literal["completed", "failed"]
    video_url: str | None = None
    thumbnail_url: str | None = None
    duration_ms: int | None = None
    error: str | None = None

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class JobResponse(CamelModel):
    job_id: str
    status: str
    stage: str
    progress: int
    error: str | None = None
    started_at: datetime
    updated_at: datetime


class CancelResponse(CamelModel):
    job_id: str
    cancelled: bool
