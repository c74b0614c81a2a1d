"""
Frame Source — reads frames from a CaptureDevice on a dedicated thread
and hands them to a consumer as ImageBuffers.

With drop_late_frames (the default) frames pass through a single replacing
slot, so a slow consumer always receives the freshest frame and stale
ones are dropped. Without it every frame is queued and delivered in order,
at the cost of latency that grows without bound when the consumer lags.
"""
import threading
import time
from dataclasses import dataclass
from queue import Empty
from threading import Thread, Event, RLock, Lock
from typing import Iterator, List, Optional

import cv2

from visual_clutter.core.bus import EventBus
from visual_clutter.core.channel import new_frame_channel
from visual_clutter.core.events import ImageBuffer, PixelFormat, SourceExhausted, SourceFailed
from visual_clutter.core.protocols import CaptureDevice, FrameConsumer
from visual_clutter.utils.constants import DEFAULT_FPS, QUEUE_POLL_SECONDS, THREAD_JOIN_SECONDS
from visual_clutter.utils.failures import AcquisitionError
from visual_clutter.utils.logger import Logger


@dataclass(frozen=True)
class FrameStats:
    produced: int = 0
    dropped: int = 0
    delivered: int = 0


class FrameSource:
    """
    Stopped ⇄ running producer of ImageBuffers.

    Frames are pulled with get()/frames(), or pushed to a consumer
    registered with set_consumer(), which is called on its own delivery thread.
    """

    def __init__(
        self,
        device: CaptureDevice,
        drop_late_frames: bool = True,
        fps: float = DEFAULT_FPS,
        pixel_format: PixelFormat = PixelFormat.BGRA,
        loop_video: bool = False,
        source_type: str = "camera",
        bus: Optional[EventBus] = None,
    ):
        """
        Args:
            device: Any object implementing the CaptureDevice protocol.
            drop_late_frames: Replace undelivered frames instead of queueing them.
            fps: Target capture rate; 0 or less reads as fast as the device allows.
            pixel_format: Format of the delivered buffers.
            loop_video: Reopen a finite device when it runs out of frames.
            source_type: Tag attached to each buffer ("camera", "video", ...).
            bus: Optional event bus for SourceFailed / SourceExhausted events.
        """
        self.device = device
        self.drop_late_frames = drop_late_frames
        self.fps = fps
        self.pixel_format = PixelFormat(pixel_format)
        self.loop_video = loop_video
        self.source_type = source_type
        self.bus = bus
        self.logger = Logger("FrameSource")

        self._channel = new_frame_channel(drop_late_frames)
        self._stop_event = Event()
        self._end_of_stream = Event()
        self._state_lock = Lock()
        self._delivery_lock = RLock()
        self._stats_lock = Lock()
        self._running = False
        self._capture_thread: Optional[Thread] = None
        self._delivery_thread: Optional[Thread] = None
        self._stale_threads: List[Thread] = []
        self._consumer: Optional[FrameConsumer] = None
        self._sequence = 0
        self._produced = 0
        self._dropped = 0
        self._delivered = 0
        self.last_error: Optional[Exception] = None

    # ── Lifecycle ─────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """
        Open the device and begin producing frames. No-op while running.

        Raises:
            AcquisitionError: The device could not be opened or configured, or a capture
                thread from the previous run still holds it.
        """
        with self._state_lock:
            if self._running and self._capture_thread is not None and self._capture_thread.is_alive():
                return
            if self._running:
                # Capture thread died (device lost or stream ended): clean up first
                self._halt()
            self._reap_stale_threads()

            self.device.open()

            self.last_error = None
            self._stop_event = Event()
            self._end_of_stream.clear()
            self._channel = new_frame_channel(self.drop_late_frames)
            self._running = True

            self._capture_thread = Thread(
                target=self._capture_loop, args=(self._stop_event,), name="FrameSource", daemon=True,
            )
            self._capture_thread.start()
            if self._consumer is not None:
                self._delivery_thread = Thread(
                    target=self._delivery_loop, args=(self._stop_event,), name="FrameDelivery", daemon=True,
                )
                self._delivery_thread.start()

        mode = "drop late frames" if self.drop_late_frames else "keep every frame"
        self.logger.info(f"Frame source running ({self.source_type}, {self.fps} FPS target, {mode})")

    def stop(self) -> None:
        """Halt production. Once this returns no further frames are delivered. Idempotent."""
        with self._state_lock:
            if not self._running:
                return
            self._halt()
        self.logger.info(f"Frame source stopped ({self.stats})")

    def _halt(self) -> None:
        self._running = False
        # Waits for an in-progress delivery to finish
        with self._delivery_lock:
            self._stop_event.set()

        current = threading.current_thread()
        for thread in (self._capture_thread, self._delivery_thread):
            if thread is not None and thread is not current and thread.is_alive():
                thread.join(timeout=THREAD_JOIN_SECONDS)
                if thread.is_alive():
                    self.logger.warning(f"{thread.name} did not exit within {THREAD_JOIN_SECONDS}s")
                    self._stale_threads.append(thread)
        self._capture_thread = None
        self._delivery_thread = None
        self._drain()

    def _reap_stale_threads(self) -> None:
        """Give threads left over from a timed-out stop() one more chance to exit."""
        for thread in self._stale_threads:
            thread.join(timeout=THREAD_JOIN_SECONDS)
        self._stale_threads = [t for t in self._stale_threads if t.is_alive()]
        if self._stale_threads:
            names = ", ".join(t.name for t in self._stale_threads)
            raise AcquisitionError(f"Device still held by a previous capture run ({names})")

    def set_consumer(self, consumer: Optional[FrameConsumer]) -> None:
        """Register the push-mode consumer. Must be called while stopped."""
        with self._state_lock:
            if self._running:
                raise RuntimeError("Cannot change the frame consumer while the source is running")
            self._consumer = consumer

    # ── Pull interface ────────────────────────────────────────────────

    def get(self, timeout: Optional[float] = None) -> Optional[ImageBuffer]:
        """
        Take the next frame, waiting up to timeout seconds.

        Returns None on timeout, after stop(), or once a finite source is exhausted.
        """
        if self._stop_event.is_set():
            return None
        try:
            buffer = self._channel.get(timeout=timeout)
        except Empty:
            return None
        with self._delivery_lock:
            if self._stop_event.is_set():
                return None
            self._count(delivered=1)
            return buffer

    def frames(self, timeout: float = QUEUE_POLL_SECONDS) -> Iterator[ImageBuffer]:
        """Iterate over frames until the source is stopped or exhausted."""
        while True:
            buffer = self.get(timeout=timeout)
            if buffer is not None:
                yield buffer
            elif self._stop_event.is_set() or self.exhausted:
                return

    @property
    def exhausted(self) -> bool:
        """True once a finite source has ended and every frame has been taken."""
        return self._end_of_stream.is_set() and self._channel.empty()

    @property
    def stats(self) -> FrameStats:
        with self._stats_lock:
            return FrameStats(self._produced, self._dropped, self._delivered)

    # ── Threads ───────────────────────────────────────────────────────

    def _capture_loop(self, stop_event: Event) -> None:
        """Read the device until stopped, the stream ends, or the device is lost."""
        frame_interval = 1.0 / self.fps if self.fps and self.fps > 0 else 0.0

        try:
            while not stop_event.is_set():
                loop_start = time.monotonic()

                try:
                    raw_frame = self.device.read_frame()
                except AcquisitionError as e:
                    self._fail(e)
                    break
                if stop_event.is_set():
                    break

                if raw_frame is None:
                    if not getattr(self.device, "is_finite", False):
                        # Camera glitch: brief retry
                        stop_event.wait(QUEUE_POLL_SECONDS)
                        continue
                    if self.loop_video:
                        self.logger.info("Video ended, looping back to start")
                        self.device.close()
                        try:
                            self.device.open()
                        except AcquisitionError as e:
                            self._fail(e)
                            break
                        continue
                    self._finish()
                    break

                try:
                    buffer = ImageBuffer.from_bgr(
                        raw_frame,
                        self.pixel_format,
                        timestamp=time.time(),
                        sequence=self._sequence,
                        source=self.source_type,
                    )
                except (ValueError, cv2.error) as e:
                    self.logger.warning(f"Discarding malformed frame: {e}")
                    continue

                self._sequence += 1
                self._publish(buffer)

                if frame_interval:
                    sleep_time = frame_interval - (time.monotonic() - loop_start)
                    if sleep_time > 0:
                        stop_event.wait(sleep_time)
        finally:
            self.device.close()

    def _delivery_loop(self, stop_event: Event) -> None:
        """Push frames to the registered consumer; consumer errors never stop delivery."""
        while not stop_event.is_set():
            try:
                buffer = self._channel.get(timeout=QUEUE_POLL_SECONDS)
            except Empty:
                if self.exhausted:
                    break
                continue

            with self._delivery_lock:
                if stop_event.is_set():
                    break
                self._count(delivered=1)
                try:
                    self._consumer(buffer)
                except Exception as e:
                    self.logger.error(f"Frame consumer failed on frame {buffer.sequence}: {e}")

    def _publish(self, buffer: ImageBuffer) -> None:
        self._count(produced=1)
        if self.drop_late_frames:
            displaced = self._channel.put_latest(buffer)
            if displaced is not None:
                self._count(dropped=1)
                self.logger.debug(f"Dropped late frame {displaced.sequence}")
        else:
            self._channel.put(buffer)

    def _finish(self) -> None:
        self._end_of_stream.set()
        produced = self.stats.produced
        self.logger.info(f"Source exhausted after {produced} frame(s)")
        if self.bus is not None:
            self.bus.publish(SourceExhausted(frames_produced=produced))

    def _fail(self, error: AcquisitionError) -> None:
        self.last_error = error
        self._end_of_stream.set()
        self.logger.error(f"Capture device lost: {error.message}")
        if self.bus is not None:
            self.bus.publish(SourceFailed(error=error))

    def _count(self, produced: int = 0, dropped: int = 0, delivered: int = 0) -> None:
        with self._stats_lock:
            self._produced += produced
            self._dropped += dropped
            self._delivered += delivered

    def _drain(self) -> None:
        while True:
            try:
                self._channel.get_nowait()
            except Empty:
                return
