"""
Test doubles and helpers shared by the unit and integration tests.
"""
import threading
import time

import numpy as np

from visual_clutter.core.events import ImageBuffer, PixelFormat, Tensor
from visual_clutter.core.protocols import InputSpec
from visual_clutter.utils.failures import AcquisitionError

# 3 classes over a 2x2 grid; argmax gives [[0, 1], [2, 2]]
SCENARIO_SCORES = np.array([[
    [[9, 1], [1, 1]],
    [[1, 9], [1, 1]],
    [[1, 1], [9, 9]],
]], dtype=np.float32)
SCENARIO_LABELS = ["floor", "table", "clutter"]


def make_frame(value: int = 10, width: int = 4, height: int = 3) -> np.ndarray:
    """Uniform BGR frame; the value makes frames distinguishable."""
    return np.full((height, width, 3), value % 256, dtype=np.uint8)


def make_buffer(sequence: int = 0, width: int = 4, height: int = 3,
                pixel_format: PixelFormat = PixelFormat.BGRA) -> ImageBuffer:
    image = np.zeros((height, width, pixel_format.channels), dtype=np.uint8)
    return ImageBuffer(image=image, pixel_format=pixel_format, sequence=sequence, source="test")


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.005) -> bool:
    """Poll until predicate() is truthy or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class FakeDevice:
    """In-memory CaptureDevice. Finite devices return None once the frames run out."""

    def __init__(self, frames=None, count: int = 5, is_finite: bool = True, fail_open: bool = False):
        self.frames = list(frames) if frames is not None else [make_frame(i + 1) for i in range(count)]
        self.is_finite = is_finite
        self.fail_open = fail_open
        self.open_calls = 0
        self.close_calls = 0
        self.opened = False
        self._index = 0

    def open(self):
        self.open_calls += 1
        if self.fail_open:
            raise AcquisitionError("fake device unavailable")
        self.opened = True
        self._index = 0

    def read_frame(self):
        if not self.opened:
            return None
        if self._index >= len(self.frames):
            if self.is_finite:
                return None
            self._index = 0
        frame = self.frames[self._index]
        self._index += 1
        return frame

    def close(self):
        self.close_calls += 1
        self.opened = False


class LostDevice(FakeDevice):
    """Delivers a few frames, then reports the device as gone."""

    def __init__(self, frames_before_loss: int = 2):
        super().__init__(count=frames_before_loss, is_finite=False)
        self.frames_before_loss = frames_before_loss

    def read_frame(self):
        if self._index >= self.frames_before_loss:
            raise AcquisitionError("device unplugged")
        return super().read_frame()


class FakeModel:
    """ModelInterface double returning a fixed tensor and recording frame sequences."""

    def __init__(self, tensor=None, variant: str = "segmentation", delay: float = 0.0,
                 error: Exception = None, input_spec: InputSpec = None, num_classes: int = None):
        self.variant = variant
        self.input_spec = input_spec or InputSpec(pixel_format=PixelFormat.BGRA)
        self.tensor = tensor if tensor is not None else Tensor(SCENARIO_SCORES)
        self.delay = delay
        self.error = error
        self.num_classes = num_classes
        self.calls = []
        self._lock = threading.Lock()

    def run(self, buffer):
        with self._lock:
            self.calls.append(buffer.sequence)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.tensor


class BlockingModel(FakeModel):
    """Holds every call until release is set, so tests can observe the busy state."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def run(self, buffer):
        with self._lock:
            self.calls.append(buffer.sequence)
        self.entered.set()
        self.release.wait(timeout=5)
        return self.tensor


class ThreadRunner:
    """Runs a callable on a thread and keeps its return value or exception."""

    def __init__(self, target, *args):
        self.result = None
        self.error = None
        self._thread = threading.Thread(target=self._run, args=(target, args), daemon=True)

    def _run(self, target, args):
        try:
            self.result = target(*args)
        except Exception as e:
            self.error = e

    def start(self):
        self._thread.start()
        return self

    def join(self, timeout: float = 3.0):
        self._thread.join(timeout)
        return not self._thread.is_alive()


