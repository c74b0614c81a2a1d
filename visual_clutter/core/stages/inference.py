"""
Inference Stage — runs one model pass per admitted ImageBuffer.

At most one model call is in flight per stage, so the injected model
does not need to be thread-safe. A call arriving while the stage is busy
is handled by the busy policy:

    replace  wait in a single pending slot; a newer call supersedes it
    reject   fail immediately with BusyError
    block    wait, served in arrival order (no frame is ever skipped)
"""
import time
from dataclasses import dataclass
from threading import Condition
from typing import Optional

from visual_clutter.core.events import ImageBuffer, Tensor
from visual_clutter.core.protocols import ModelInterface
from visual_clutter.utils.constants import (
    BUSY_POLICIES, POLICY_BLOCK, POLICY_REJECT, POLICY_REPLACE,
    VARIANT_DETECTION, VARIANT_SEGMENTATION,
)
from visual_clutter.utils.failures import (
    BusyError, ConfigError, InferenceError, InvalidInputError, SupersededError,
)
from visual_clutter.utils.logger import Logger

# Accepted output ranks per model variant
_OUTPUT_RANKS = {
    VARIANT_SEGMENTATION: (4,),
    VARIANT_DETECTION: (2, 3),
}


@dataclass(frozen=True)
class InferenceStats:
    calls: int = 0
    completed: int = 0
    failed: int = 0
    rejected: int = 0
    last_latency: float = 0.0


def resolve_busy_policy(drop_late_frames: bool, busy_policy: str = POLICY_REPLACE) -> str:
    """The frame source's drop knob decides: keeping every frame forces 'block'."""
    if not drop_late_frames:
        return POLICY_BLOCK
    if busy_policy not in BUSY_POLICIES:
        raise ConfigError(f"Unknown busy policy '{busy_policy}' (expected one of {BUSY_POLICIES})")
    return busy_policy


class InferenceStage:
    """Idle ⇄ busy wrapper around an opaque ModelInterface."""

    def __init__(self, model: ModelInterface, busy_policy: str = POLICY_REPLACE):
        """
        Args:
            model: Object implementing ModelInterface (run, input_spec, variant).
            busy_policy: 'replace', 'reject' or 'block'.
        """
        if busy_policy not in BUSY_POLICIES:
            raise ConfigError(f"Unknown busy policy '{busy_policy}' (expected one of {BUSY_POLICIES})")
        variant = getattr(model, "variant", None)
        if variant not in _OUTPUT_RANKS:
            raise ConfigError(f"Model declares unknown variant '{variant}'")

        self.model = model
        self.busy_policy = busy_policy
        self.logger = Logger("InferenceStage")

        self._cond = Condition()
        self._busy = False
        self._pending: Optional[object] = None
        self._next_ticket = 0
        self._now_serving = 0
        self._waiting = 0

        self._calls = 0
        self._completed = 0
        self._failed = 0
        self._rejected = 0
        self._last_latency = 0.0

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._busy

    @property
    def waiting(self) -> int:
        """Number of calls waiting for admission."""
        with self._cond:
            return self._waiting

    @property
    def stats(self) -> InferenceStats:
        with self._cond:
            return InferenceStats(
                self._calls, self._completed, self._failed, self._rejected, self._last_latency
            )

    def infer(self, buffer: ImageBuffer) -> Tensor:
        """
        Run the model on one buffer.

        Raises:
            InvalidInputError: Buffer does not match the model's input spec.
            BusyError: Rejected (or superseded) because another call is in flight.
            InferenceError: The model failed or returned an unusable output.
        """
        with self._cond:
            self._calls += 1

        try:
            self._validate(buffer)
        except InvalidInputError:
            with self._cond:
                self._failed += 1
            raise

        self._acquire(buffer)
        started = time.monotonic()
        try:
            tensor = self._check_output(self.model.run(buffer))
        except InferenceError as e:
            self._release(started, ok=False)
            self.logger.warning(f"Inference failed on frame {buffer.sequence}: {e.message}")
            raise
        except Exception as e:
            self._release(started, ok=False)
            self.logger.error(f"Model execution error on frame {buffer.sequence}: {e}")
            raise InferenceError(f"Model execution failed on frame {buffer.sequence}: {e}") from e

        self._release(started, ok=True)
        return tensor

    # ── Admission ─────────────────────────────────────────────────────

    def _acquire(self, buffer: ImageBuffer) -> None:
        with self._cond:
            if self.busy_policy == POLICY_REJECT:
                if self._busy:
                    self._rejected += 1
                    raise BusyError(f"Inference busy, frame {buffer.sequence} rejected")

            elif self.busy_policy == POLICY_BLOCK:
                ticket = self._next_ticket
                self._next_ticket += 1
                self._waiting += 1
                try:
                    while self._busy or ticket != self._now_serving:
                        self._cond.wait()
                finally:
                    self._waiting -= 1
                self._now_serving += 1

            elif self._busy or self._pending is not None:
                token = object()
                self._pending = token
                self._cond.notify_all()
                self._waiting += 1
                try:
                    while self._pending is token and self._busy:
                        self._cond.wait()
                finally:
                    self._waiting -= 1
                if self._pending is not token:
                    self._rejected += 1
                    raise SupersededError(f"Frame {buffer.sequence} superseded by a newer frame")
                self._pending = None

            self._busy = True

    def _release(self, started: float, ok: bool) -> None:
        with self._cond:
            self._busy = False
            self._last_latency = time.monotonic() - started
            if ok:
                self._completed += 1
            else:
                self._failed += 1
            self._cond.notify_all()

    # ── Contract checks ───────────────────────────────────────────────

    def _validate(self, buffer: ImageBuffer) -> None:
        if not isinstance(buffer, ImageBuffer):
            raise InvalidInputError(f"Expected an ImageBuffer, got {type(buffer).__name__}")

        spec = self.model.input_spec
        if buffer.pixel_format != spec.pixel_format:
            raise InvalidInputError(
                f"Pixel format {buffer.pixel_format.value} does not match model input {spec.pixel_format.value}"
            )
        if spec.width is not None and buffer.width != spec.width:
            raise InvalidInputError(f"Buffer width {buffer.width} != model input width {spec.width}")
        if spec.height is not None and buffer.height != spec.height:
            raise InvalidInputError(f"Buffer height {buffer.height} != model input height {spec.height}")

    def _check_output(self, output) -> Tensor:
        if not isinstance(output, Tensor):
            try:
                output = Tensor(output)
            except (TypeError, ValueError) as e:
                raise InferenceError(f"Model returned a non-numeric output: {e}") from e

        ranks = _OUTPUT_RANKS[self.model.variant]
        if output.ndim not in ranks:
            raise InferenceError(
                f"{self.model.variant} model returned shape {output.shape}, expected rank {ranks}"
            )
        return output
