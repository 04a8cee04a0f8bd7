"""Phase-weighted progress model.

Overall job progress is composed from an ordered list of phases, each with a
weight. A phase reports its own 0-100% completion and the model maps it into
the phase's slice of the overall 0-100 range.
"""

import math
from dataclasses import dataclass


def round_half_up(value: float) -> int:
    """Round halves up (2.5 -> 3); the builtin round() sends them to even."""
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class Phase:
    name: str
    weight: int


class ProgressModel:
    """Maps per-phase completion onto overall job progress."""

    def __init__(self, phases: list[Phase]):
        total = sum(p.weight for p in phases)
        if total != 100:
            raise ValueError(f"Phase weights must sum to 100, got {total}")
        names = [p.name for p in phases]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate phase names: {names}")

        self.phases = list(phases)
        self._start: dict[str, int] = {}
        self._weight: dict[str, int] = {}
        offset = 0
        for phase in self.phases:
            self._start[phase.name] = offset
            self._weight[phase.name] = phase.weight
            offset += phase.weight

    def start_of(self, phase: str) -> int:
        return self._start[phase]

    def end_of(self, phase: str) -> int:
        return self._start[phase] + self._weight[phase]

    def overall(self, phase: str, percent: float) -> int:
        """Overall progress for ``percent`` (clamped to 0-100) through ``phase``."""
        if phase not in self._start:
            raise KeyError(f"Unknown phase: {phase}")
        clamped = max(0.0, min(100.0, float(percent)))
        return self._start[phase] + round_half_up(self._weight[phase] * clamped / 100)


DOWNLOAD = "download"
ENCODE = "encode"
THUMBNAIL = "thumbnail"
UPLOAD = "upload"

# Downloads 0-20%, encoding 20-90%, thumbnail 90-92%, upload 92-100%.
COMPOSITION_PHASES = ProgressModel(
    [
        Phase(DOWNLOAD, 20),
        Phase(ENCODE, 70),
        Phase(THUMBNAIL, 2),
        Phase(UPLOAD, 8),
    ]
)


def download_stage(done: int, total: int) -> str:
    return f"Downloading files ({done}/{total})"


def encode_stage(raw_percent: float) -> str:
    return f"Encoding video... {min(100, round_half_up(raw_percent))}%"
