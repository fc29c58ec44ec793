from reel_render.render.compiler import CompiledExport, compile_timeline
from reel_render.render.encoder import FfmpegRunner, build_export_command
from reel_render.render.executor import RenderExecutor
from reel_render.render.graph import Filter, FilterGraph

__all__ = [
    "CompiledExport",
    "compile_timeline",
    "FfmpegRunner",
    "build_export_command",
    "RenderExecutor",
    "Filter",
    "FilterGraph",
]
