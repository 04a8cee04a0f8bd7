"""Typed FFmpeg filter graph.

Filters are small dataclasses that know how to render their own options.
Chains link labeled streams through a sequence of filters, and the graph
serializes everything into a ``-filter_complex`` description. Timeline
arithmetic never touches strings: callers build nodes from integer
milliseconds and the renderer formats them.
"""

import re
from dataclasses import dataclass, field
from typing import ClassVar

from scene_composer.exceptions import CompositionError

# "0:v", "3:a" - streams taken straight from an input file
_INPUT_STREAM = re.compile(r"^\d+:[va]$")


def ms_to_seconds(ms: int | float) -> str:
    """Render milliseconds as seconds with exactly three decimals."""
    if isinstance(ms, int) or float(ms).is_integer():
        ms = int(ms)
        sign = "-" if ms < 0 else ""
        ms = abs(ms)
        return f"{sign}{ms // 1000}.{ms % 1000:03d}"
    return f"{ms / 1000:.3f}"


def _format_number(value: float) -> str:
    """Render a gain factor without float noise (0.5 -> '0.5', 1.0 -> '1')."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text or "0"


class Filter:
    """Base class for filter nodes."""

    name: ClassVar[str] = ""

    def options(self) -> list[tuple[str, str]]:
        return []

    def render(self) -> str:
        opts = self.options()
        if not opts:
            return self.name
        return f"{self.name}=" + ":".join(f"{k}={v}" for k, v in opts)


# ============================================================================
# Video filters
# ============================================================================


@dataclass(frozen=True)
class Trim(Filter):
    """Cut ``[start_ms, start_ms + duration_ms)`` out of a video stream."""

    name: ClassVar[str] = "trim"
    start_ms: int
    duration_ms: int

    def options(self) -> list[tuple[str, str]]:
        return [("start", ms_to_seconds(self.start_ms)), ("duration", ms_to_seconds(self.duration_ms))]


@dataclass(frozen=True)
class SetPts(Filter):
    """Reset video timestamps so the stream starts at zero."""

    name: ClassVar[str] = "setpts"

    def render(self) -> str:
        return "setpts=PTS-STARTPTS"


@dataclass(frozen=True)
class Format(Filter):
    name: ClassVar[str] = "format"
    pix_fmt: str = "yuv420p"

    def render(self) -> str:
        return f"format={self.pix_fmt}"


@dataclass(frozen=True)
class Fade(Filter):
    """Fade in from / out to a solid colour."""

    name: ClassVar[str] = "fade"
    direction: str  # "in" | "out"
    start_ms: int
    duration_ms: int
    color: str | None = None

    def options(self) -> list[tuple[str, str]]:
        opts = [
            ("t", self.direction),
            ("st", ms_to_seconds(self.start_ms)),
            ("d", ms_to_seconds(self.duration_ms)),
        ]
        if self.color:
            opts.append(("c", self.color))
        return opts


# ============================================================================
# Audio filters
# ============================================================================


@dataclass(frozen=True)
class ATrim(Filter):
    """Cut an audio window. ``start_ms=None`` keeps the stream start."""

    name: ClassVar[str] = "atrim"
    duration_ms: int
    start_ms: int | None = None

    def options(self) -> list[tuple[str, str]]:
        opts = []
        if self.start_ms is not None:
            opts.append(("start", ms_to_seconds(self.start_ms)))
        opts.append(("duration", ms_to_seconds(self.duration_ms)))
        return opts


@dataclass(frozen=True)
class ASetPts(Filter):
    name: ClassVar[str] = "asetpts"

    def render(self) -> str:
        return "asetpts=PTS-STARTPTS"


@dataclass(frozen=True)
class AFormat(Filter):
    """Normalize sample format, rate and channel layout."""

    name: ClassVar[str] = "aformat"
    sample_rate: int = 44100
    channel_layout: str = "stereo"
    sample_fmt: str = "fltp"

    def options(self) -> list[tuple[str, str]]:
        return [
            ("sample_fmts", self.sample_fmt),
            ("sample_rates", str(self.sample_rate)),
            ("channel_layouts", self.channel_layout),
        ]


@dataclass(frozen=True)
class ANullSrc(Filter):
    """Infinite digital silence. Always follow with ATrim."""

    name: ClassVar[str] = "anullsrc"
    sample_rate: int = 44100
    channel_layout: str = "stereo"

    def options(self) -> list[tuple[str, str]]:
        return [("channel_layout", self.channel_layout), ("sample_rate", str(self.sample_rate))]


@dataclass(frozen=True)
class ADelay(Filter):
    """Delay every channel by the same amount."""

    name: ClassVar[str] = "adelay"
    delay_ms: int

    def options(self) -> list[tuple[str, str]]:
        return [("delays", str(int(self.delay_ms))), ("all", "1")]


@dataclass(frozen=True)
class Volume(Filter):
    name: ClassVar[str] = "volume"
    gain: float

    def render(self) -> str:
        return f"volume={_format_number(self.gain)}"


@dataclass(frozen=True)
class AMix(Filter):
    """Linear mix; lasts as long as the longest input and never renormalizes."""

    name: ClassVar[str] = "amix"
    inputs: int
    duration: str = "longest"

    def options(self) -> list[tuple[str, str]]:
        return [
            ("inputs", str(self.inputs)),
            ("duration", self.duration),
            ("dropout_transition", "0"),
            ("normalize", "0"),
        ]


@dataclass(frozen=True)
class ACopy(Filter):
    name: ClassVar[str] = "acopy"


@dataclass(frozen=True)
class Concat(Filter):
    name: ClassVar[str] = "concat"
    segments: int
    video: int = 1
    audio: int = 0

    def options(self) -> list[tuple[str, str]]:
        return [("n", str(self.segments)), ("v", str(self.video)), ("a", str(self.audio))]


# ============================================================================
# Chains and graph
# ============================================================================


@dataclass
class FilterChain:
    """``[in1][in2]f1,f2,f3[out]``"""

    inputs: list[str]
    filters: list[Filter]
    outputs: list[str]

    def render(self) -> str:
        if not self.filters:
            raise CompositionError("Filter chain has no filters")
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return ins + ",".join(f.render() for f in self.filters) + outs


@dataclass
class FilterGraph:
    chains: list[FilterChain] = field(default_factory=list)

    def add(self, inputs: list[str], filters: list[Filter], outputs: list[str]) -> FilterChain:
        produced = self.produced_labels()
        for label in outputs:
            if _INPUT_STREAM.match(label):
                raise CompositionError(f"Output label shadows an input stream: {label}")
            if label in produced:
                raise CompositionError(f"Duplicate filter graph label: {label}")
        for label in inputs:
            if not _INPUT_STREAM.match(label) and label not in produced:
                raise CompositionError(f"Filter graph label used before it is produced: {label}")
        chain = FilterChain(list(inputs), list(filters), list(outputs))
        self.chains.append(chain)
        return chain

    def produced_labels(self) -> set[str]:
        return {label for chain in self.chains for label in chain.outputs}

    def validate(self, final_outputs: list[str]) -> None:
        """Every produced label must be consumed exactly once or mapped as a final output."""
        consumed: dict[str, int] = {}
        for chain in self.chains:
            for label in chain.inputs:
                if not _INPUT_STREAM.match(label):
                    consumed[label] = consumed.get(label, 0) + 1

        for label in self.produced_labels():
            uses = consumed.get(label, 0) + (1 if label in final_outputs else 0)
            if uses != 1:
                raise CompositionError(f"Filter graph label [{label}] is used {uses} times")
        for label in final_outputs:
            if label not in self.produced_labels():
                raise CompositionError(f"Final output [{label}] is never produced")

    def render(self) -> str:
        return ";".join(chain.render() for chain in self.chains)
