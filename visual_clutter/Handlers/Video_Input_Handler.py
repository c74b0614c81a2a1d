"""Video Input Handler - reads frames from a video file.

Implements the CaptureDevice protocol, same interface as CameraHandler.
Used when the --video flag is passed to the node.
"""
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from visual_clutter.utils.failures import AcquisitionError
from visual_clutter.utils.logger import Logger


class VideoInputHandler:
    """Finite capture device backed by a video file."""

    is_finite = True

    def __init__(self, video_path: str):
        self.video_path = video_path
        self.logger = Logger("VideoInputHandler")
        self.cap: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        """
        Open the video file for reading.

        Raises:
            AcquisitionError: File missing or not decodable.
        """
        if self.cap is not None:
            return
        if not Path(self.video_path).exists():
            raise AcquisitionError(f"Video file not found: {self.video_path}")

        cap = cv2.VideoCapture(self.video_path)
        if not cap.isOpened():
            cap.release()
            raise AcquisitionError(f"Failed to open video file: {self.video_path}")

        self.cap = cap
        self.logger.info(f"Video file opened: {self.video_path}")

    @property
    def native_fps(self) -> float:
        """Frame rate recorded in the file, 0 when unknown."""
        if self.cap is None:
            return 0.0
        return float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)

    def read_frame(self) -> Optional[np.ndarray]:
        """Next frame, or None at the end of the file."""
        if self.cap is None:
            return None

        ret, frame = self.cap.read()
        if not ret:
            return None
        return frame

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Video capture released")
