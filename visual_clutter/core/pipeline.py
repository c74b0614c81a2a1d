"""
Inference pipeline: wires FrameSource → InferenceStage → TensorDecoder → sink.

Pipeline data flows through the stages; failures and lifecycle changes
go over the EventBus, where the FailureManager records them.
"""
import threading
from dataclasses import dataclass
from threading import Event
from typing import Optional, Sequence

from visual_clutter.core.bus import EventBus
from visual_clutter.core.decoder import TensorDecoder
from visual_clutter.core.events import FrameFailed, PipelineStarted, PipelineStopped, SourceFailed
from visual_clutter.core.protocols import ModelInterface, ResultSink
from visual_clutter.core.stages.capture import FrameSource, FrameStats
from visual_clutter.core.stages.inference import InferenceStage, InferenceStats
from visual_clutter.core.stages.processing import ProcessingStage
from visual_clutter.utils.constants import THREAD_JOIN_SECONDS
from visual_clutter.utils.failures import BusyError, ConfigError, FailureManager
from visual_clutter.utils.logger import Logger


@dataclass(frozen=True)
class PipelineStats:
    frames: FrameStats
    inference: InferenceStats
    processed: int = 0
    failed: int = 0


def validate_labels(model: ModelInterface, labels: Sequence[str]) -> None:
    """
    Check the label table against the model's class count, when the model declares one.

    Raises:
        ConfigError: The table does not match the model.
    """
    expected = getattr(model, "num_classes", None)
    if expected is not None and expected != len(labels):
        raise ConfigError(
            f"Label table has {len(labels)} entries but the {model.variant} model produces {expected} classes"
        )


class InferencePipeline:
    """Owns the processing worker and the start/stop ordering of the stages."""

    def __init__(
        self,
        source: FrameSource,
        inference: InferenceStage,
        decoder: TensorDecoder,
        sink: ResultSink,
        bus: Optional[EventBus] = None,
        failures: Optional[FailureManager] = None,
    ):
        validate_labels(inference.model, decoder.labels)
        if decoder.variant != inference.model.variant:
            raise ConfigError(
                f"Decoder variant '{decoder.variant}' does not match model variant '{inference.model.variant}'"
            )

        self.source = source
        self.inference = inference
        self.decoder = decoder
        self.sink = sink
        self.bus = bus or EventBus()
        self.failures = failures or FailureManager()
        self.logger = Logger("InferencePipeline")

        if self.source.bus is None:
            self.source.bus = self.bus
        self.stop_event = Event()
        self._worker: Optional[ProcessingStage] = None
        self._last_worker: Optional[ProcessingStage] = None
        self._lock = threading.Lock()

        self.bus.subscribe(FrameFailed, self._on_frame_failed)
        self.bus.subscribe(SourceFailed, self._on_source_failed)

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """
        Start capture and processing. No-op while running.

        Raises:
            AcquisitionError: The capture device could not be opened; nothing is started.
            BusyError: The worker from the previous run is still inside an inference call.
        """
        with self._lock:
            if self.running:
                return
            self._wait_for_previous_worker()
            # One stop signal per run
            self.stop_event = Event()
            self.source.start()

            self._worker = ProcessingStage(
                source=self.source,
                inference=self.inference,
                decoder=self.decoder,
                sink=self.sink,
                bus=self.bus,
                stop_event=self.stop_event,
            )
            self._worker.start()
            self._last_worker = self._worker

        self.logger.info("Pipeline running")
        self.bus.publish(PipelineStarted(source=self.source.source_type, variant=self.decoder.variant))

    def stop(self, reason: str = "user", timeout: Optional[float] = THREAD_JOIN_SECONDS) -> None:
        """
        Stop issuing inference calls and halt the source.

        An inference call already in flight is allowed to finish. Idempotent.
        """
        with self._lock:
            worker = self._worker
            if worker is None:
                return
            self._worker = None

            worker.stop_event.set()
            self.source.stop()
            if worker is not threading.current_thread():
                worker.join(timeout=timeout)
                if worker.is_alive():
                    self.logger.warning("Processing stage still finishing an inference call")

        self.logger.info(f"Pipeline stopped ({reason})")
        self.bus.publish(PipelineStopped(reason=reason))

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the processing worker exits (finite source consumed, or stopped).

        Returns:
            True if the worker has exited.
        """
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout=timeout)
        return not worker.is_alive()

    @property
    def stats(self) -> PipelineStats:
        worker = self._last_worker
        return PipelineStats(
            frames=self.source.stats,
            inference=self.inference.stats,
            processed=worker.processed if worker else 0,
            failed=worker.failed if worker else 0,
        )

    def _wait_for_previous_worker(self) -> None:
        previous = self._last_worker
        if previous is None or previous is threading.current_thread() or not previous.is_alive():
            return
        self.logger.info("Waiting for the previous processing stage to finish its inference call")
        previous.join(timeout=THREAD_JOIN_SECONDS)
        if previous.is_alive():
            raise BusyError("Previous processing stage is still inside an inference call")

    def _on_frame_failed(self, event: FrameFailed) -> None:
        self.failures.record_failure(event.error)

    def _on_source_failed(self, event: SourceFailed) -> None:
        self.failures.record_failure(event.error)
        self.logger.error("Capture device lost; restart the pipeline once it is available again")
