"""
Error taxonomy and failure tracking for the Visual Clutter pipeline.

Per-frame errors (InferenceError, DecodeError) never stop the pipeline;
AcquisitionError and ConfigError are raised at startup and are critical.
"""
import threading
import time
from typing import Dict, List, Optional

from visual_clutter.utils.logger import Logger


class VisualClutterError(Exception):
    """Base class for all Visual Clutter exceptions."""
    def __init__(self, message: str, critical: bool = False):
        super().__init__(message)
        self.message = message
        self.critical = critical
        self.timestamp = time.time()


class ConfigError(VisualClutterError):
    """Invalid configuration, including a label table that does not fit the model."""
    def __init__(self, message: str, critical: bool = True):
        super().__init__(message, critical)


class AcquisitionError(VisualClutterError):
    """The capture device could not be opened, configured, or was lost."""
    def __init__(self, message: str, critical: bool = True):
        super().__init__(message, critical)


class InferenceError(VisualClutterError):
    """The model failed to produce a usable tensor for one frame."""
    pass


class InvalidInputError(InferenceError):
    """Buffer dimensions or pixel format do not match the model input."""
    pass


class BusyError(InferenceError):
    """An inference call is already in flight."""
    pass


class SupersededError(BusyError):
    """A queued frame was replaced by a newer one before it started."""
    pass


class DecodeError(VisualClutterError):
    """The tensor could not be decoded into a result."""
    pass


class ShapeMismatchError(DecodeError):
    """Tensor layout does not match the label table."""
    pass


class EmptyTensorError(DecodeError):
    """Tensor has a zero spatial (or batch) dimension."""
    pass


class FailureManager:
    """Tracks recurring per-frame failures inside a sliding time window."""

    def __init__(self, settings: Optional[dict] = None):
        """
        Args:
            settings: Dictionary with 'threshold', 'window_seconds', 'max_history'.
        """
        self.logger = Logger("FailureManager")

        self.settings = settings or {}
        self.threshold = int(self.settings.get('threshold', 5))
        self.window_seconds = float(self.settings.get('window_seconds', 60))
        self._max_history = int(self.settings.get('max_history', 100))

        self.failures: Dict[str, List[float]] = {}
        self.history: List[Exception] = []
        self._lock = threading.Lock()

    def record_failure(self, error: Exception) -> bool:
        """
        Record a failure incident (thread-safe).

        Returns:
            True if this error type has now reached the alert threshold.
        """
        with self._lock:
            error_type = type(error).__name__
            now = time.time()

            stamps = self.failures.setdefault(error_type, [])
            stamps.append(now)
            cutoff = now - self.window_seconds
            self.failures[error_type] = [t for t in stamps if t > cutoff]

            self.history.append(error)
            if len(self.history) > self._max_history:
                self.history = self.history[-self._max_history:]

            if isinstance(error, VisualClutterError):
                msg = f"Failure detected: {error_type} - {error.message}"
                if error.critical:
                    self.logger.error(f"CRITICAL: {msg}")
                else:
                    self.logger.warning(msg)
            else:
                self.logger.error(f"Unexpected failure: {error_type} - {error}")

            exceeded = len(self.failures[error_type]) >= self.threshold
            if exceeded:
                self.logger.warning(
                    f"Resilience Alert: '{error_type}' reached threshold "
                    f"({self.threshold} in {self.window_seconds:g}s)"
                )
            return exceeded

    def is_threshold_exceeded(self, error_type: str) -> bool:
        """Check whether an error type is at or above the threshold right now."""
        with self._lock:
            now = time.time()
            recent = [t for t in self.failures.get(error_type, []) if now - t < self.window_seconds]
            self.failures[error_type] = recent
            return len(recent) >= self.threshold

    def count(self, error_type: str) -> int:
        with self._lock:
            return len(self.failures.get(error_type, []))

    def get_recent_history(self, count: int = 10) -> List[Exception]:
        with self._lock:
            return self.history[-count:]

    def clear(self):
        """Reset all tracked failures."""
        with self._lock:
            self.failures = {}
            self.history = []
        self.logger.info("Failure history cleared.")
