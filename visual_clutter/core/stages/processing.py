"""
Processing Stage — pulls frames from the FrameSource, runs inference and
decoding, and hands each FrameResult to the result sink.

Runs in its own thread so the model never blocks frame capture.
Per-frame failures are published as FrameFailed events and the loop
moves on to the next frame.
"""
import time
from threading import Thread, Event

from visual_clutter.core.bus import EventBus
from visual_clutter.core.decoder import TensorDecoder
from visual_clutter.core.events import FrameFailed, FrameResult, ImageBuffer
from visual_clutter.core.protocols import ResultSink
from visual_clutter.core.stages.capture import FrameSource
from visual_clutter.core.stages.inference import InferenceStage
from visual_clutter.utils.constants import QUEUE_POLL_SECONDS
from visual_clutter.utils.failures import DecodeError, InferenceError
from visual_clutter.utils.logger import Logger


class ProcessingStage(Thread):
    """
    FrameSource → InferenceStage → TensorDecoder → sink, one frame at a time.

    Exits when stop_event is set or a finite source has been fully consumed.
    """

    def __init__(
        self,
        source: FrameSource,
        inference: InferenceStage,
        decoder: TensorDecoder,
        sink: ResultSink,
        bus: EventBus,
        stop_event: Event,
    ):
        """
        Args:
            source: Running FrameSource to pull buffers from.
            inference: InferenceStage wrapping the model.
            decoder: Decoder for the model's variant.
            sink: Callable receiving each FrameResult.
            bus: EventBus for FrameFailed events.
            stop_event: Shutdown signal for this run; no inference starts once it is set.
        """
        super().__init__(name="ProcessingStage", daemon=True)
        self.source = source
        self.inference = inference
        self.decoder = decoder
        self.sink = sink
        self.bus = bus
        self.stop_event = stop_event
        self.logger = Logger("ProcessingStage")
        self.processed = 0
        self.failed = 0

    def run(self) -> None:
        """Main loop. Blocks on the frame source with a timeout so stop_event is checked."""
        self.logger.info(f"Processing stage running ({self.decoder.variant})")

        while not self.stop_event.is_set():
            buffer = self.source.get(timeout=QUEUE_POLL_SECONDS)
            if buffer is None:
                if self.source.exhausted:
                    self.logger.info("Frame source exhausted")
                    break
                continue

            if self.stop_event.is_set():
                break
            self._process(buffer)

        self.logger.info(f"Processing stage stopped ({self.processed} processed, {self.failed} failed)")

    def _process(self, buffer: ImageBuffer) -> None:
        started = time.monotonic()
        try:
            tensor = self.inference.infer(buffer)
            class_map, detections = self.decoder.decode(tensor, buffer)
        except InferenceError as e:
            self._report(buffer, "inference", e)
            return
        except DecodeError as e:
            self._report(buffer, "decode", e)
            return

        result = FrameResult(
            sequence=buffer.sequence,
            timestamp=buffer.timestamp,
            variant=self.decoder.variant,
            class_map=class_map,
            detections=detections,
            latency=time.monotonic() - started,
            source=buffer.source,
        )

        try:
            self.sink(result)
        except Exception as e:
            self.logger.error(f"Result sink failed on frame {buffer.sequence}: {e}")
            self._report(buffer, "sink", e)
            return
        self.processed += 1

    def _report(self, buffer: ImageBuffer, stage: str, error: Exception) -> None:
        """Skip the frame and tell the control plane about it."""
        self.failed += 1
        self.logger.debug(f"Frame {buffer.sequence} skipped at {stage}: {error}")
        self.bus.publish(FrameFailed(sequence=buffer.sequence, stage=stage, error=error))
