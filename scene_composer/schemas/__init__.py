from scene_composer.schemas.composition import (
    AudioTrack,
    CancelResponse,
    CompositionAccepted,
    CompositionRequest,
    CompositionResult,
    JobResponse,
    Shot,
)

__all__ = [
    "Shot",
    "AudioTrack",
    "CompositionRequest",
    "CompositionAccepted",
    "CompositionResult",
    "JobResponse",
    "CancelResponse",
]
