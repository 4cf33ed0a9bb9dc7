from clipworks.render.frame_engine import FrameSynthesisEngine, RenderOutput
from clipworks.render.frame_renderer import FrameAssets, FrameInput, build_frame_assets, render_frame

__all__ = [
    "FrameSynthesisEngine",
    "RenderOutput",
    "FrameAssets",
    "FrameInput",
    "build_frame_assets",
    "render_frame",
]
