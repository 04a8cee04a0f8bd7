"""Scene compositor.

Turns an ordered shot list and a set of positioned audio tracks into one
encoded MP4:

    [i:v] trim -> setpts -> format -> (fades)            -> [v{i}]
    [i:a] atrim -> asetpts -> aformat   (or anullsrc)    -> [a{i}]
    [v0..vN] concat                                      -> [outv]
    [a0..aN] concat                                      -> [base]
    [N+j:a] atrim -> asetpts -> aformat -> adelay -> vol -> [t{j}]
    [base][t0..tM] amix -> volume|acopy                  -> [outa]

Graph construction is pure; ``Compositor.compose`` probes inputs, runs
FFmpeg and reports encoder progress.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field

from scene_composer.config import Settings, get_settings
from scene_composer.exceptions import (
    CompositionError,
    EncoderError,
    InvalidTimelineError,
    JobCancelledError,
)
from scene_composer.render.graph import (
    ACopy,
    ADelay,
    AFormat,
    AMix,
    ANullSrc,
    ASetPts,
    ATrim,
    Concat,
    Fade,
    FilterGraph,
    Format,
    SetPts,
    Trim,
    Volume,
    ms_to_seconds,
)
from scene_composer.render.timeline import (
    effective_duration_ms,
    shot_offsets_ms,
    sort_shots,
    total_duration_ms,
    validate_shots,
    validate_tracks,
)
from scene_composer.schemas import AudioTrack, CompositionRequest, Shot
from scene_composer.utils.media_info import has_audio_track

logger = logging.getLogger(__name__)

VIDEO_OUT = "outv"
AUDIO_OUT = "outa"

STDERR_TAIL_CHARS = 2000

# fadeInType/fadeOutType -> fade colour; black is FFmpeg's default
_FADE_COLORS = {"black": None, "white": "white"}


@dataclass(frozen=True)
class GraphOptions:
    """Canonical formats every segment is normalized to before concat/mix."""

    sample_rate: int = 44100
    channel_layout: str = "stereo"
    pixel_format: str = "yuv420p"
    default_fade_ms: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphOptions":
        return cls(
            sample_rate=settings.render_audio_sample_rate,
            channel_layout=settings.render_audio_channel_layout,
            pixel_format=settings.render_pixel_format,
            default_fade_ms=settings.default_fade_duration_ms,
        )


@dataclass
class CompositionGraph:
    graph: FilterGraph
    duration_ms: int
    video_label: str = VIDEO_OUT
    audio_label: str = AUDIO_OUT

    def render(self) -> str:
        return self.graph.render()


@dataclass
class SourceFiles:
    """Local copies of the request's media, keyed the way the graph needs them."""

    shot_paths: dict[int, str] = field(default_factory=dict)  # shot order -> path
    track_paths: dict[str, str] = field(default_factory=dict)  # track id -> path

    def ordered_inputs(self, shots: list[Shot], tracks: list[AudioTrack]) -> list[str]:
        """FFmpeg input list: shots first (graph input i), then tracks (N + j)."""
        try:
            return [self.shot_paths[s.order] for s in shots] + [self.track_paths[t.id] for t in tracks]
        except KeyError as e:
            raise CompositionError(f"No downloaded file for {e.args[0]!r}") from e


def _fade_filters(shot: Shot, duration_ms: int, default_fade_ms: int) -> list[Fade]:
    fades: list[Fade] = []
    fade_ms = shot.fade_duration_ms if shot.fade_duration_ms is not None else default_fade_ms
    if fade_ms <= 0:
        return fades
    fade_ms = min(fade_ms, duration_ms)

    if shot.fade_in_type != "none":
        fades.append(Fade("in", 0, fade_ms, _FADE_COLORS[shot.fade_in_type]))
    if shot.fade_out_type != "none":
        fades.append(Fade("out", max(0, duration_ms - fade_ms), fade_ms, _FADE_COLORS[shot.fade_out_type]))
    return fades


def build_composition_graph(
    shots: list[Shot],
    tracks: list[AudioTrack],
    *,
    silent_orders: frozenset[int] | set[int] = frozenset(),
    master_volume: float = 1.0,
    options: GraphOptions | None = None,
) -> CompositionGraph:
    """Build the processing graph for a scene.

    Args:
        shots: Shots in any order; they are placed by ``order``
        tracks: Audio tracks to overlay. Muted tracks are ignored
        silent_orders: Orders of shots whose file has no audio stream; they get
            synthesized silence like muted shots
        master_volume: Gain applied to the final mix
        options: Canonical formats

    Returns:
        CompositionGraph whose inputs are the shots (sorted) followed by the
        unmuted tracks, in the order given

    Raises:
        InvalidTimelineError: If any shot or track cannot be placed
    """
    options = options or GraphOptions()
    shots = sort_shots(shots)
    tracks = [t for t in tracks if not t.muted]
    validate_shots(shots)
    validate_tracks(tracks)
    if master_volume < 0:
        raise InvalidTimelineError(f"Negative master volume {master_volume}")

    graph = FilterGraph()
    video_segments: list[str] = []
    audio_segments: list[str] = []

    for i, shot in enumerate(shots):
        duration = effective_duration_ms(shot)

        v_label = f"v{i}"
        graph.add(
            [f"{i}:v"],
            [
                Trim(shot.trim_start_ms, duration),
                SetPts(),
                Format(options.pixel_format),
                *_fade_filters(shot, duration, options.default_fade_ms),
            ],
            [v_label],
        )
        video_segments.append(v_label)

        a_label = f"a{i}"
        aformat = AFormat(options.sample_rate, options.channel_layout)
        if shot.audio_muted or shot.order in silent_orders:
            graph.add(
                [],
                [ANullSrc(options.sample_rate, options.channel_layout), ATrim(duration), aformat],
                [a_label],
            )
        else:
            graph.add(
                [f"{i}:a"],
                [ATrim(duration, start_ms=shot.trim_start_ms), ASetPts(), aformat],
                [a_label],
            )
        audio_segments.append(a_label)

    n = len(shots)
    graph.add(video_segments, [Concat(n, video=1, audio=0)], [VIDEO_OUT])

    base_label = AUDIO_OUT if not tracks and master_volume == 1.0 else "base"
    graph.add(audio_segments, [Concat(n, video=0, audio=1)], [base_label])

    mixed_label = base_label
    if tracks:
        track_labels = []
        for j, track in enumerate(tracks):
            t_label = f"t{j}"
            graph.add(
                [f"{n + j}:a"],
                [
                    ATrim(track.duration_ms, start_ms=track.trim_start_ms),
                    ASetPts(),
                    AFormat(options.sample_rate, options.channel_layout),
                    ADelay(track.start_time_ms),
                    Volume(track.volume),
                ],
                [t_label],
            )
            track_labels.append(t_label)

        mixed_label = "mixed"
        graph.add([base_label, *track_labels], [AMix(len(track_labels) + 1)], [mixed_label])

    if mixed_label != AUDIO_OUT:
        final = Volume(master_volume) if master_volume != 1.0 else ACopy()
        graph.add([mixed_label], [final], [AUDIO_OUT])

    graph.validate([VIDEO_OUT, AUDIO_OUT])
    return CompositionGraph(graph=graph, duration_ms=total_duration_ms(shots))


class Compositor:
    """Runs the composition graph through FFmpeg."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.options = GraphOptions.from_settings(self.settings)

    def build_command(self, inputs: list[str], plan: CompositionGraph, output_path: str) -> list[str]:
        s = self.settings
        cmd = [s.ffmpeg_path, "-hide_banner", "-nostdin", "-y"]
        for path in inputs:
            cmd.extend(["-i", path])
        cmd.extend([
            "-filter_complex", plan.render(),
            "-map", f"[{plan.video_label}]",
            "-map", f"[{plan.audio_label}]",
            "-c:v", s.render_video_codec,
            "-preset", s.render_preset,
            "-crf", str(s.render_crf),
            "-c:a", s.render_audio_codec,
            "-b:a", s.render_audio_bitrate,
            "-ar", str(s.render_audio_sample_rate),
            "-movflags", "+faststart",
            # Tracks may run past the last shot; the video length is the timeline length
            "-t", ms_to_seconds(plan.duration_ms),
            "-progress", "pipe:1",
            "-nostats",
            output_path,
        ])
        return cmd

    async def compose(
        self,
        request: CompositionRequest,
        sources: SourceFiles,
        output_path: str,
        *,
        on_progress: Callable[[float], None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """
        Composite the request's shots and tracks into ``output_path``.

        Args:
            request: Composition request
            sources: Downloaded shot and track files
            output_path: Destination MP4
            on_progress: Called with the encoder's raw completion percentage
            cancel_event: When set, the encoder is killed

        Returns:
            output_path

        Raises:
            InvalidTimelineError: Timeline arithmetic is invalid
            EncoderError: FFmpeg exited abnormally or timed out
            JobCancelledError: cancel_event was set
        """
        shots = sort_shots(request.shots)
        tracks = request.active_audio_tracks
        validate_shots(shots)

        silent_orders = await self._shots_without_audio(shots, sources)
        plan = build_composition_graph(
            shots,
            tracks,
            silent_orders=silent_orders,
            master_volume=request.master_volume,
            options=self.options,
        )
        for shot, offset in zip(shots, shot_offsets_ms(shots)):
            logger.debug(
                f"[COMPOSE {request.job_id}] shot {shot.id} order={shot.order} "
                f"at {offset}ms for {effective_duration_ms(shot)}ms"
            )

        cmd = self.build_command(sources.ordered_inputs(shots, tracks), plan, output_path)
        logger.info(
            f"[COMPOSE {request.job_id}] encoding {len(shots)} shots, {len(tracks)} tracks, "
            f"{plan.duration_ms}ms"
        )
        logger.debug(f"[COMPOSE {request.job_id}] filter_complex: {plan.render()}")

        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError()

        await self._run_encoder(cmd, plan.duration_ms, on_progress, cancel_event)

        if not os.path.exists(output_path):
            raise EncoderError("FFmpeg reported success but produced no output file")
        return output_path

    async def _shots_without_audio(self, shots: list[Shot], sources: SourceFiles) -> set[int]:
        silent: set[int] = set()
        for shot in shots:
            if shot.audio_muted:
                continue
            path = sources.shot_paths.get(shot.order)
            if path is None:
                raise CompositionError(f"No downloaded file for shot {shot.id}")
            if not await asyncio.to_thread(has_audio_track, path):
                logger.info(f"Shot {shot.id} has no audio stream; using silence")
                silent.add(shot.order)
        return silent

    async def _run_encoder(
        self,
        cmd: list[str],
        duration_ms: int,
        on_progress: Callable[[float], None] | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        # Drain stderr concurrently so a chatty encoder never blocks on a full pipe
        stderr_task = asyncio.create_task(proc.stderr.read())
        progress_task = asyncio.create_task(_watch_progress(proc.stdout, duration_ms, on_progress))

        wait_task = asyncio.create_task(proc.wait())
        waiters = {wait_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.create_task(cancel_event.wait())
            waiters.add(cancel_task)

        timeout = self.settings.encode_timeout_seconds or None
        done: set[asyncio.Task] = set()
        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if wait_task not in done:
                _kill(proc)
                await proc.wait()
            for task in waiters:
                if not task.done():
                    task.cancel()
            await progress_task
            stderr_text = (await stderr_task).decode("utf-8", errors="replace")

        tail = stderr_text[-STDERR_TAIL_CHARS:]
        if wait_task not in done:
            if cancel_task is not None and cancel_task in done:
                logger.info("FFmpeg killed by cancellation")
                raise JobCancelledError()
            raise EncoderError(f"FFmpeg timed out after {timeout}s", stderr=tail)

        if proc.returncode != 0:
            logger.error(f"FFmpeg exited with {proc.returncode}: {tail}")
            raise EncoderError(
                f"FFmpeg exited with code {proc.returncode}", stderr=tail, returncode=proc.returncode
            )


async def _watch_progress(
    stream: asyncio.StreamReader,
    duration_ms: int,
    on_progress: Callable[[float], None] | None,
) -> None:
    """Parse ``-progress pipe:1`` output and report raw completion percentages."""
    last_reported = -1
    try:
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line.startswith("out_time_us="):
                try:
                    time_us = int(line.split("=", 1)[1])
                except ValueError:
                    # "N/A" before the first frame
                    continue
                if duration_ms <= 0 or on_progress is None:
                    continue
                raw_pct = time_us / 1000 / duration_ms * 100
                if int(raw_pct) != last_reported:
                    last_reported = int(raw_pct)
                    on_progress(raw_pct)
            elif line == "progress=end" and on_progress is not None and last_reported < 100:
                last_reported = 100
                on_progress(100.0)
    except Exception as e:
        logger.warning(f"Error reading FFmpeg progress: {e}")


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass
