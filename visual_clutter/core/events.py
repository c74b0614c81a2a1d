"""
Typed messages for the Visual Clutter pipeline.

Pipeline messages (ImageBuffer, Tensor, ClassMap, Detection, FrameResult)
flow through the stages; the dataclasses at the bottom are control-plane
events published on the EventBus.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import cv2
import numpy as np


class PixelFormat(str, Enum):
    """Pixel layouts an ImageBuffer can carry."""
    BGRA = "BGRA"
    BGR = "BGR"
    RGB = "RGB"
    GRAY = "GRAY"

    @property
    def channels(self) -> int:
        return _CHANNELS[self]


_CHANNELS = {
    PixelFormat.BGRA: 4,
    PixelFormat.BGR: 3,
    PixelFormat.RGB: 3,
    PixelFormat.GRAY: 1,
}

# cv2 conversion codes from BGR (what capture devices return) into each format
_FROM_BGR = {
    PixelFormat.BGRA: cv2.COLOR_BGR2BGRA,
    PixelFormat.RGB: cv2.COLOR_BGR2RGB,
    PixelFormat.GRAY: cv2.COLOR_BGR2GRAY,
}

_TO_BGR = {
    PixelFormat.BGRA: cv2.COLOR_BGRA2BGR,
    PixelFormat.RGB: cv2.COLOR_RGB2BGR,
    PixelFormat.GRAY: cv2.COLOR_GRAY2BGR,
}


def _read_only(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


# ─── Pipeline Messages ───────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class ImageBuffer:
    """An immutable captured frame with metadata."""
    image: np.ndarray
    pixel_format: PixelFormat = PixelFormat.BGRA
    timestamp: float = field(default_factory=time.time)
    sequence: int = 0
    source: str = "unknown"

    def __post_init__(self):
        fmt = PixelFormat(self.pixel_format)
        image = np.array(self.image, dtype=np.uint8, copy=True)

        if fmt is PixelFormat.GRAY and image.ndim == 3 and image.shape[2] == 1:
            image = image[:, :, 0]
        expected_ndim = 2 if fmt is PixelFormat.GRAY else 3
        if image.ndim != expected_ndim or (expected_ndim == 3 and image.shape[2] != fmt.channels):
            raise ValueError(
                f"Image of shape {image.shape} does not match pixel format {fmt.value}"
            )
        if image.shape[0] == 0 or image.shape[1] == 0:
            raise ValueError(f"Image has an empty dimension: {image.shape}")

        object.__setattr__(self, "pixel_format", fmt)
        object.__setattr__(self, "image", _read_only(image))

    @classmethod
    def from_bgr(cls, frame: np.ndarray, pixel_format: PixelFormat = PixelFormat.BGRA, **kwargs) -> "ImageBuffer":
        """Build a buffer from an OpenCV BGR frame, converting to the requested format."""
        fmt = PixelFormat(pixel_format)
        if fmt is not PixelFormat.BGR:
            frame = cv2.cvtColor(frame, _FROM_BGR[fmt])
        return cls(image=frame, pixel_format=fmt, **kwargs)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height)"""
        return self.width, self.height

    def to_bgr(self) -> np.ndarray:
        """Return a writable BGR copy for OpenCV-style consumers."""
        if self.pixel_format is PixelFormat.BGR:
            return self.image.copy()
        return cv2.cvtColor(self.image, _TO_BGR[self.pixel_format])

    def to_rgb(self) -> np.ndarray:
        return cv2.cvtColor(self.to_bgr(), cv2.COLOR_BGR2RGB)


@dataclass(frozen=True, eq=False)
class Tensor:
    """
    Immutable float32 model output.

    Segmentation tensors are [batch, channels, height, width];
    detection tensors are [batch, candidates, 5 + classes] or [candidates, 5 + classes].
    """
    data: np.ndarray

    def __post_init__(self):
        array = np.array(self.data, dtype=np.float32, copy=True)
        object.__setattr__(self, "data", _read_only(array))

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(int(d) for d in self.data.shape)

    @property
    def ndim(self) -> int:
        return self.data.ndim

    def _dim(self, axis: int) -> int:
        if self.ndim != 4:
            raise ValueError(f"Expected a [batch, channels, height, width] tensor, got shape {self.shape}")
        return self.shape[axis]

    @property
    def batch(self) -> int:
        return self._dim(0)

    @property
    def channels(self) -> int:
        return self._dim(1)

    @property
    def height(self) -> int:
        return self._dim(2)

    @property
    def width(self) -> int:
        return self._dim(3)


@dataclass(frozen=True, eq=False)
class ClassMap:
    """Per-pixel class indices, height x width."""
    indices: np.ndarray

    def __post_init__(self):
        indices = np.array(self.indices, dtype=np.int32, copy=True)
        if indices.ndim != 2:
            raise ValueError(f"ClassMap must be 2-D, got shape {indices.shape}")
        object.__setattr__(self, "indices", _read_only(indices))

    @property
    def height(self) -> int:
        return int(self.indices.shape[0])

    @property
    def width(self) -> int:
        return int(self.indices.shape[1])

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def __getitem__(self, key):
        return self.indices[key]

    def __eq__(self, other) -> bool:
        if not isinstance(other, ClassMap):
            return NotImplemented
        return np.array_equal(self.indices, other.indices)

    def tolist(self):
        return self.indices.tolist()

    def class_counts(self) -> Dict[int, int]:
        """Pixel count per class index present in the map."""
        values, counts = np.unique(self.indices, return_counts=True)
        return {int(v): int(c) for v, c in zip(values, counts)}

    def coverage(self, labels: Sequence[str]) -> Dict[str, float]:
        """Fraction of the frame covered by each label present in the map."""
        total = float(self.indices.size)
        return {labels[idx]: count / total for idx, count in self.class_counts().items()}

    def label_at(self, labels: Sequence[str], x: int, y: int) -> str:
        return labels[int(self.indices[y, x])]


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in destination (display) space."""
    x: float
    y: float
    width: float
    height: float

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    def xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.max_x, self.max_y


@dataclass(frozen=True)
class Detection:
    """One decoded candidate: box, label and confidence."""
    box: BoundingBox
    label: str
    confidence: float
    class_id: int = -1


@dataclass(frozen=True)
class FrameResult:
    """Decoded output for one processed frame, handed to the result sink."""
    sequence: int
    timestamp: float
    variant: str
    class_map: Optional[ClassMap] = None
    detections: Tuple[Detection, ...] = ()
    latency: float = 0.0
    source: str = "unknown"


# ─── Event Bus Events (control plane) ────────────────────────────────────

@dataclass
class PipelineStarted:
    """Published once the frame source and workers are running."""
    source: str = "unknown"
    variant: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass
class PipelineStopped:
    """Published after the pipeline has fully stopped."""
    reason: str = "user"
    timestamp: float = field(default_factory=time.time)


@dataclass
class FrameFailed:
    """A single frame failed in a stage; the pipeline keeps running."""
    sequence: int
    stage: str
    error: Exception
    timestamp: float = field(default_factory=time.time)


@dataclass
class SourceFailed:
    """The capture device was lost after start."""
    error: Exception
    timestamp: float = field(default_factory=time.time)


@dataclass
class SourceExhausted:
    """A finite source (video file) has delivered its last frame."""
    frames_produced: int = 0
    timestamp: float = field(default_factory=time.time)


@dataclass
class ShutdownRequested:
    """Published to signal a graceful shutdown of all components."""
    reason: str = "user"
    timestamp: float = field(default_factory=time.time)
