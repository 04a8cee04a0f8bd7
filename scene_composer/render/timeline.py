"""Timeline arithmetic for shots and audio tracks.

All positions and durations are integer milliseconds. Nothing here knows
about FFmpeg; the compositor turns validated timelines into graph nodes.
"""

from scene_composer.exceptions import InvalidTimelineError
from scene_composer.schemas import AudioTrack, Shot


def effective_duration_ms(shot: Shot) -> int:
    """Shot length after trimming both ends."""
    return shot.duration_ms - shot.trim_start_ms - shot.trim_end_ms


def sort_shots(shots: list[Shot]) -> list[Shot]:
    """Shots in timeline order. Orders only need to be unique, not contiguous."""
    return sorted(shots, key=lambda s: s.order)


def validate_shots(shots: list[Shot]) -> None:
    """Raise InvalidTimelineError for the first shot that cannot be placed."""
    if not shots:
        raise InvalidTimelineError("No shots provided")

    seen: dict[int, str] = {}
    for shot in shots:
        if shot.order in seen:
            raise InvalidTimelineError(
                f"Shot {shot.id} has order {shot.order}, already used by shot {seen[shot.order]}"
            )
        seen[shot.order] = shot.id

        if shot.trim_start_ms < 0 or shot.trim_end_ms < 0:
            raise InvalidTimelineError(
                f"Shot {shot.id} has a negative trim "
                f"(trimStartMs={shot.trim_start_ms}, trimEndMs={shot.trim_end_ms})"
            )

        effective = effective_duration_ms(shot)
        if effective <= 0:
            raise InvalidTimelineError(
                f"Shot {shot.id} has non-positive effective duration {effective}ms "
                f"(durationMs={shot.duration_ms}, trimStartMs={shot.trim_start_ms}, "
                f"trimEndMs={shot.trim_end_ms})"
            )

        if shot.fade_duration_ms is not None and shot.fade_duration_ms < 0:
            raise InvalidTimelineError(f"Shot {shot.id} has a negative fade duration")


def validate_tracks(tracks: list[AudioTrack]) -> None:
    for track in tracks:
        if track.duration_ms <= 0:
            raise InvalidTimelineError(
                f"Audio track {track.id} has non-positive duration {track.duration_ms}ms"
            )
        if track.start_time_ms < 0 or track.trim_start_ms < 0:
            raise InvalidTimelineError(
                f"Audio track {track.id} has a negative offset "
                f"(startTimeMs={track.start_time_ms}, trimStartMs={track.trim_start_ms})"
            )
        if track.volume < 0:
            raise InvalidTimelineError(f"Audio track {track.id} has negative volume {track.volume}")


def total_duration_ms(shots: list[Shot]) -> int:
    return sum(effective_duration_ms(s) for s in shots)


def shot_offsets_ms(shots: list[Shot]) -> list[int]:
    """Start position of each shot on the final timeline, in the given order."""
    offsets = []
    position = 0
    for shot in shots:
        offsets.append(position)
        position += effective_duration_ms(shot)
    return offsets
