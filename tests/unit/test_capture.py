"""
Unit tests for FrameSource lifecycle and frame delivery.
"""
import threading
import time

import numpy as np
import pytest

from tests.helpers import FakeDevice, LostDevice, wait_for
from visual_clutter.core.bus import EventBus
from visual_clutter.core.events import PixelFormat, SourceExhausted, SourceFailed
from visual_clutter.core.stages import capture
from visual_clutter.core.stages.capture import FrameSource
from visual_clutter.utils.failures import AcquisitionError


class StuckDevice(FakeDevice):
    """Blocks inside read_frame until released, like a camera that stops answering."""

    def __init__(self):
        super().__init__(is_finite=False)
        self.reading = threading.Event()
        self.release = threading.Event()

    def read_frame(self):
        self.reading.set()
        self.release.wait(timeout=5)
        return super().read_frame()


class TestLifecycle:
    """Tests for start/stop transitions"""

    def test_open_failure_leaves_source_stopped(self):
        device = FakeDevice(fail_open=True)
        source = FrameSource(device, fps=0)

        with pytest.raises(AcquisitionError):
            source.start()
        assert not source.running

        # A later start succeeds once the device is available
        device.fail_open = False
        source.start()
        assert source.running
        source.stop()

    def test_start_and_stop_are_idempotent(self):
        device = FakeDevice(is_finite=False)
        source = FrameSource(device, fps=100)

        source.start()
        source.start()
        assert device.open_calls == 1

        source.stop()
        source.stop()
        assert not source.running
        assert device.close_calls == 1

    def test_get_returns_none_after_stop(self):
        source = FrameSource(FakeDevice(is_finite=False), fps=100)
        source.start()
        assert source.get(timeout=1) is not None
        source.stop()
        assert source.get(timeout=0.05) is None

    def test_set_consumer_while_running(self):
        source = FrameSource(FakeDevice(is_finite=False), fps=100)
        source.start()
        try:
            with pytest.raises(RuntimeError):
                source.set_consumer(lambda buffer: None)
        finally:
            source.stop()

    def test_restart_waits_for_capture_thread_stuck_in_read(self, monkeypatch):
        monkeypatch.setattr(capture, "THREAD_JOIN_SECONDS", 0.05)
        device = StuckDevice()
        source = FrameSource(device, fps=0)
        before = set(threading.enumerate())
        source.start()
        assert device.reading.wait(2)

        source.stop()
        with pytest.raises(AcquisitionError):
            source.start()
        assert device.open_calls == 1
        assert not source.running

        device.release.set()
        monkeypatch.setattr(capture, "THREAD_JOIN_SECONDS", 2.0)
        source.start()
        readers = [t for t in set(threading.enumerate()) - before if t.name == "FrameSource"]
        source.stop()

        assert device.open_calls == 2
        assert device.close_calls == 2
        assert len(readers) == 1


class TestPullDelivery:
    """Tests for get()/frames() in both channel modes"""

    def test_keep_every_frame_in_order(self):
        source = FrameSource(FakeDevice(count=20), drop_late_frames=False, fps=0)
        source.start()

        sequences = [buffer.sequence for buffer in source.frames(timeout=0.05)]
        source.stop()

        assert sequences == list(range(20))
        stats = source.stats
        assert (stats.produced, stats.dropped, stats.delivered) == (20, 0, 20)

    def test_drop_late_frames_keeps_only_latest(self):
        source = FrameSource(FakeDevice(count=20), drop_late_frames=True, fps=0)
        source.start()
        assert wait_for(lambda: source.stats.produced == 20)

        sequences = [buffer.sequence for buffer in source.frames(timeout=0.05)]
        source.stop()

        assert sequences == [19]
        assert source.stats.dropped == 19
        assert source.stats.delivered == 1

    def test_buffers_carry_requested_format(self):
        frame = np.zeros((3, 4, 3), dtype=np.uint8)
        frame[:, :, 0] = 1   # blue
        frame[:, :, 2] = 250  # red
        source = FrameSource(FakeDevice(frames=[frame]), fps=0, pixel_format=PixelFormat.RGB, source_type="video")
        source.start()

        buffer = source.get(timeout=1)
        source.stop()

        assert buffer.pixel_format is PixelFormat.RGB
        assert buffer.image[0, 0].tolist() == [250, 0, 1]
        assert buffer.source == "video"

    def test_malformed_frames_are_skipped(self):
        frames = [np.zeros((3, 4, 3), dtype=np.uint8), np.zeros((0, 4, 3), dtype=np.uint8),
                  np.zeros((3, 4, 3), dtype=np.uint8)]
        source = FrameSource(FakeDevice(frames=frames), drop_late_frames=False, fps=0,
                             pixel_format=PixelFormat.BGR)
        source.start()

        sequences = [buffer.sequence for buffer in source.frames(timeout=0.05)]
        source.stop()

        assert sequences == [0, 1]

    def test_loop_video_restarts_finite_device(self):
        device = FakeDevice(count=3)
        source = FrameSource(device, drop_late_frames=False, fps=0, loop_video=True)
        source.start()
        assert wait_for(lambda: source.stats.produced >= 7)
        source.stop()

        assert device.open_calls >= 3
        assert not source.exhausted


class TestPushDelivery:
    """Tests for the registered consumer"""

    def test_consumer_receives_frames_in_order(self):
        received = []
        source = FrameSource(FakeDevice(count=10), drop_late_frames=False, fps=0)
        source.set_consumer(lambda buffer: received.append(buffer.sequence))
        source.start()

        assert wait_for(lambda: len(received) == 10)
        source.stop()
        assert received == list(range(10))

    def test_no_delivery_after_stop(self):
        received = []
        source = FrameSource(FakeDevice(is_finite=False), fps=200)
        source.set_consumer(lambda buffer: received.append(buffer.sequence))
        source.start()
        assert wait_for(lambda: len(received) >= 3)

        source.stop()
        delivered = len(received)
        time.sleep(0.1)
        assert len(received) == delivered

    def test_consumer_errors_do_not_stop_delivery(self):
        received = []

        def consumer(buffer):
            if buffer.sequence == 0:
                raise RuntimeError("display closed")
            received.append(buffer.sequence)

        source = FrameSource(FakeDevice(count=5), drop_late_frames=False, fps=0)
        source.set_consumer(consumer)
        source.start()

        assert wait_for(lambda: len(received) == 4)
        source.stop()
        assert received == [1, 2, 3, 4]


class TestEndOfStream:
    """Tests for finite sources and lost devices"""

    def test_finite_source_exhausts(self):
        bus = EventBus()
        events = []
        bus.subscribe(SourceExhausted, events.append)
        source = FrameSource(FakeDevice(count=3), drop_late_frames=False, fps=0, bus=bus)
        source.start()

        assert len(list(source.frames(timeout=0.05))) == 3
        assert source.exhausted
        assert wait_for(lambda: len(events) == 1)
        assert events[0].frames_produced == 3
        source.stop()

    def test_lost_device_publishes_source_failed(self):
        bus = EventBus()
        failures = []
        bus.subscribe(SourceFailed, failures.append)
        device = LostDevice(frames_before_loss=2)
        source = FrameSource(device, drop_late_frames=False, fps=0, bus=bus)
        source.start()

        assert len(list(source.frames(timeout=0.05))) == 2
        assert wait_for(lambda: len(failures) == 1 and device.close_calls == 1)
        assert isinstance(source.last_error, AcquisitionError)

        # Restart after the loss reopens the device
        source.stop()
        source.start()
        assert device.open_calls == 2
        source.stop()
