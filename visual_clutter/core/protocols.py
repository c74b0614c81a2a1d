"""
Protocol definitions (interfaces) for the Visual Clutter pipeline.

These define the contracts that adapters must implement,
enabling dependency injection and test doubles.
"""
from dataclasses import dataclass
from typing import Protocol, Optional, Callable, runtime_checkable

import numpy as np

from visual_clutter.core.events import ImageBuffer, PixelFormat, Tensor, FrameResult


@runtime_checkable
class CaptureDevice(Protocol):
    """Interface for any frame-producing device (camera, video file, etc.)."""

    is_finite: bool

    def open(self) -> None:
        """Acquire the device. Raises AcquisitionError if it cannot be opened or configured."""
        ...

    def read_frame(self) -> Optional[np.ndarray]:
        """
        Read the next available frame.

        Returns:
            A BGR numpy array (OpenCV format), or None if no frame is available.
        """
        ...

    def close(self) -> None:
        """Release the device."""
        ...


@dataclass(frozen=True)
class InputSpec:
    """What a model accepts. A None width or height means any size (the model resizes)."""
    pixel_format: PixelFormat = PixelFormat.BGRA
    width: Optional[int] = None
    height: Optional[int] = None


@runtime_checkable
class ModelInterface(Protocol):
    """Opaque inference capability (YOLO detection or segmentation model)."""

    variant: str
    input_spec: InputSpec

    def run(self, buffer: ImageBuffer) -> Tensor:
        """
        Run one forward pass.

        Returns:
            Segmentation: [1, C, H, W] class scores.
            Detection: [1, N, 5 + C] rows of x, y, w, h, objectness, class scores.
        """
        ...


ResultSink = Callable[[FrameResult], None]
FrameConsumer = Callable[[ImageBuffer], None]
