"""
Pipeline stages for the Visual Clutter node.

    FrameSource → [frame channel] → ProcessingStage(InferenceStage → TensorDecoder) → sink

The frame source captures on its own thread; processing runs on another,
so a slow model never stalls capture. With drop_late_frames the channel
holds a single frame and stale frames are replaced rather than queued.
"""
from .capture import FrameSource
from .inference import InferenceStage
from .processing import ProcessingStage

__all__ = ["FrameSource", "InferenceStage", "ProcessingStage"]
