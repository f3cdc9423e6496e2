"""
Composer module.

Final render of the pipeline. Builds an ffmpeg render graph from per-scene
motion clips and narration, runs it as a subprocess with progress
reporting, and produces the output video.
"""

from modules.composer.process import compose
from modules.composer.render_graph import ClipInput, CompositionSettings, build_render_graph

__all__ = ["compose", "ClipInput", "CompositionSettings", "build_render_graph"]
