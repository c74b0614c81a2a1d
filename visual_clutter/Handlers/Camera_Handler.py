"""
Camera Handler - opens a live camera through OpenCV and reads BGR frames.

Implements the CaptureDevice protocol. Threading lives in FrameSource;
this class only owns the hardware handle.
"""
import time
from typing import Optional, Sequence

import cv2
import numpy as np

from visual_clutter.utils.constants import (
    CAMERA_WARMUP_FRAMES, DEFAULT_FPS, DEFAULT_HEIGHT, DEFAULT_WIDTH,
    MAX_EMPTY_FRAMES, SUPPORTED_ROTATIONS,
)
from visual_clutter.utils.failures import AcquisitionError, ConfigError
from visual_clutter.utils.logger import Logger

_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


class CameraHandler:
    """Exclusive owner of one camera device between open() and close()."""

    is_finite = False

    def __init__(self, config: dict):
        """
        Args:
            config: Camera section of the configuration. Keys:
                    device_candidates (preference-ordered indices), width, height,
                    fps, rotation, warmup_frames.
        """
        self.config = config
        self.logger = Logger("CameraHandler")
        self.cap: Optional[cv2.VideoCapture] = None
        self.device_index: Optional[int] = None
        self.empty_frame_count = 0

        candidates = config.get('device_candidates', [0])
        if isinstance(candidates, int):
            candidates = [candidates]
        self.candidates: Sequence[int] = list(candidates)
        if not self.candidates:
            raise ConfigError("camera.device_candidates must list at least one device index")

        self.width = int(config.get('width', DEFAULT_WIDTH))
        self.height = int(config.get('height', DEFAULT_HEIGHT))
        self.fps = float(config.get('fps', DEFAULT_FPS))
        self.warmup_frames = int(config.get('warmup_frames', CAMERA_WARMUP_FRAMES))

        self.rotation = int(config.get('rotation', 0))
        if self.rotation not in SUPPORTED_ROTATIONS:
            raise ConfigError(f"camera.rotation must be one of {SUPPORTED_ROTATIONS}, got {self.rotation}")

    # ── CaptureDevice protocol ────────────────────────────────────────

    def open(self) -> None:
        """
        Open the first available device from the preference list and configure it.

        Raises:
            AcquisitionError: No candidate device could be opened, or the opened
                device reports no usable frame size.
        """
        if self.cap is not None:
            return

        for index in self.candidates:
            cap = cv2.VideoCapture(index)
            if cap.isOpened():
                self.cap = cap
                self.device_index = index
                break
            cap.release()
            self.logger.debug(f"Camera {index} not available")
        else:
            raise AcquisitionError(f"No camera could be opened (tried {list(self.candidates)})")

        try:
            self._configure()
        except AcquisitionError:
            self.close()
            raise
        self.empty_frame_count = 0
        self.logger.info(f"Camera {self.device_index} opened at {self.width}x{self.height} @ {self.fps:g}fps")

    def read_frame(self) -> Optional[np.ndarray]:
        """
        Read one frame, rotated per configuration.

        Returns None for empty frames. After MAX_EMPTY_FRAMES in a row the
        device is reopened once.

        Raises:
            AcquisitionError: The device is closed or could not be reopened.
        """
        if self.cap is None:
            raise AcquisitionError("Camera is not open")

        ok, frame = self.cap.read()
        if not ok or not self._is_valid_frame(frame):
            self.empty_frame_count += 1
            if self.empty_frame_count == 1:
                self.logger.warning("Captured empty frame, waiting for camera stream...")
            if self.empty_frame_count >= MAX_EMPTY_FRAMES:
                self.logger.warning(f"{MAX_EMPTY_FRAMES} consecutive empty frames. Restarting camera...")
                self.close()
                self.open()
            return None

        if self.empty_frame_count > 0:
            self.logger.info(
                f"Camera stream recovered after {self.empty_frame_count} empty frame(s). "
                f"Frame shape: {frame.shape}"
            )
            self.empty_frame_count = 0

        if self.rotation:
            frame = cv2.rotate(frame, _ROTATE_CODES[self.rotation])
        return frame

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info(f"Camera {self.device_index} released")

    # ── Internals ─────────────────────────────────────────────────────

    def _configure(self) -> None:
        """Apply resolution and frame rate, then drain warm-up frames."""
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        actual_w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        actual_h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        if not actual_w or not actual_h:
            raise AcquisitionError(
                f"Camera {self.device_index} could not be configured (reports {actual_w}x{actual_h})"
            )
        if (actual_w, actual_h) != (self.width, self.height):
            self.logger.warning(
                f"Camera {self.device_index} delivers {actual_w}x{actual_h}, "
                f"requested {self.width}x{self.height}"
            )

        for _ in range(self.warmup_frames):
            self.cap.read()
            time.sleep(0.01)

    def _is_valid_frame(self, frame) -> bool:
        """Check whether a captured frame contains actual image data."""
        if frame is None or not isinstance(frame, np.ndarray):
            return False
        if frame.size == 0:
            return False
        # Fully black frames: sensor not streaming yet
        return bool(frame.max() > 0)
