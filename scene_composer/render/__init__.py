from scene_composer.render.compositor import (
    CompositionGraph,
    Compositor,
    GraphOptions,
    SourceFiles,
    build_composition_graph,
)
from scene_composer.render.progress import COMPOSITION_PHASES, Phase, ProgressModel
from scene_composer.render.thumbnail import extract_thumbnail

__all__ = [
    "COMPOSITION_PHASES",
    "CompositionGraph",
    "Compositor",
    "GraphOptions",
    "Phase",
    "ProgressModel",
    "SourceFiles",
    "build_composition_graph",
    "extract_thumbnail",
]
