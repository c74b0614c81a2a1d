"""
Visual Clutter Node — Entry Point

    FrameSource → [latest-frame slot] → ProcessingStage(InferenceStage → TensorDecoder) → ResultLogger
                                              ↕ EventBus (FrameFailed, SourceFailed, lifecycle)
"""
import argparse
import signal
import sys
from threading import Event
from typing import Optional, Sequence

from visual_clutter.core.bus import EventBus
from visual_clutter.core.decoder import TensorDecoder
from visual_clutter.core.events import PixelFormat, ShutdownRequested, SourceFailed
from visual_clutter.core.labels import LabelTable
from visual_clutter.core.pipeline import InferencePipeline
from visual_clutter.core.protocols import CaptureDevice, ModelInterface
from visual_clutter.core.stages.capture import FrameSource
from visual_clutter.core.stages.inference import InferenceStage, resolve_busy_policy
from visual_clutter.utils.config import Config
from visual_clutter.utils.constants import (
    DEFAULT_CONFIDENCE, DEFAULT_FPS, DEFAULT_PIXEL_FORMAT, MODEL_VARIANTS,
)
from visual_clutter.utils.failures import AcquisitionError, ConfigError, FailureManager
from visual_clutter.utils.logger import Logger


def parse_args(argv: Optional[Sequence[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Visual Clutter - real-time YOLO inference pipeline")
    parser.add_argument(
        '--video', '-v',
        type=str,
        default=None,
        help='Path to video file for testing (bypasses camera)'
    )
    parser.add_argument(
        '--model', '-m',
        type=str,
        default=None,
        help='Path to the YOLO model file (overrides model.path)'
    )
    parser.add_argument(
        '--variant',
        choices=MODEL_VARIANTS,
        default=None,
        help='Model output variant (overrides model.variant)'
    )
    parser.add_argument(
        '--configs', '-c',
        type=str,
        default=None,
        help='Directory of JSON config files'
    )
    parser.add_argument(
        '--keep-late-frames',
        action='store_true',
        help='Process every frame in order instead of dropping stale ones (latency may grow)'
    )
    return parser.parse_args(argv)


class VisualClutterNode:
    """
    Orchestrator: builds the pipeline from configuration and runs it
    until interrupted, the source ends, or the capture device is lost.
    """

    def __init__(
        self,
        video_path: Optional[str] = None,
        model_path: Optional[str] = None,
        variant: Optional[str] = None,
        configs_dir: Optional[str] = None,
        keep_late_frames: bool = False,
        model: Optional[ModelInterface] = None,
        device: Optional[CaptureDevice] = None,
    ):
        # ── 1. Foundation ────────────────────────────────────────────
        self.config = Config(configs_dir)
        if model_path:
            self.config.set('model.path', model_path)
        if variant:
            self.config.set('model.variant', variant)
        if keep_late_frames:
            self.config.set('pipeline.drop_late_frames', False)

        Logger.setup(self.config.get('logging', {}))
        self.logger = Logger("VisualClutterNode")
        self.logger.info("Initializing Visual Clutter node...")

        self.bus = EventBus()
        self.failures = FailureManager(self.config.get('failures', {}))
        self._shutdown = Event()
        self._source_lost = False

        # ── 2. Capture device (camera or video) ──────────────────────
        self.source_type = "video" if video_path else "camera"
        if device is not None:
            self.device = device
        elif video_path:
            from visual_clutter.Handlers.Video_Input_Handler import VideoInputHandler
            self.device = VideoInputHandler(video_path)
            self.logger.info(f"Video test mode: {video_path}")
        else:
            from visual_clutter.Handlers.Camera_Handler import CameraHandler
            self.device = CameraHandler(self.config.get('camera', {}))

        # ── 3. Model and labels ──────────────────────────────────────
        self.model = model if model is not None else self._load_model()
        model_conf = self.config.get('model', {})
        labels = LabelTable.from_config(model_conf)
        if labels is None:
            if not hasattr(self.model, "labels"):
                raise ConfigError("No labels configured and the model does not provide any")
            labels = self.model.labels()
        self.labels = labels

        # ── 4. Pipeline stages ───────────────────────────────────────
        drop_late_frames = self.config.get_bool('pipeline.drop_late_frames', True)
        busy_policy = resolve_busy_policy(
            drop_late_frames, self.config.get('pipeline.busy_policy', 'replace')
        )

        try:
            pixel_format = PixelFormat(self.config.get('camera.pixel_format', DEFAULT_PIXEL_FORMAT))
        except ValueError as e:
            raise ConfigError(f"Unsupported camera.pixel_format: {e}") from e

        self.source = FrameSource(
            device=self.device,
            drop_late_frames=drop_late_frames,
            fps=self.config.get_float('camera.fps', DEFAULT_FPS),
            pixel_format=pixel_format,
            loop_video=self.config.get_bool('camera.loop_video', False),
            source_type=self.source_type,
            bus=self.bus,
        )
        self.inference = InferenceStage(self.model, busy_policy=busy_policy)

        display_w = self.config.get_int('pipeline.display_width', 0)
        display_h = self.config.get_int('pipeline.display_height', 0)
        iou = model_conf.get('iou_threshold')
        self.decoder = TensorDecoder(
            variant=self.model.variant,
            labels=self.labels,
            confidence_threshold=float(model_conf.get('confidence', DEFAULT_CONFIDENCE)),
            iou_threshold=float(iou) if iou is not None else None,
            display_size=(display_w, display_h) if display_w > 0 and display_h > 0 else None,
        )

        from visual_clutter.Handlers.Result_Logger_Handler import ResultLogger
        self.sink = ResultLogger(self.labels, every=self.config.get_int('pipeline.log_every', 1))

        self.pipeline = InferencePipeline(
            source=self.source,
            inference=self.inference,
            decoder=self.decoder,
            sink=self.sink,
            bus=self.bus,
            failures=self.failures,
        )

        # ── 5. Control plane ─────────────────────────────────────────
        self.bus.subscribe(SourceFailed, self._on_source_failed)
        self.bus.subscribe(ShutdownRequested, self._on_shutdown_requested)

        self.logger.info(
            f"Visual Clutter node initialized ({self.model.variant}, {len(self.labels)} labels, "
            f"busy policy '{busy_policy}')"
        )

    def _load_model(self) -> ModelInterface:
        """Load the configured YOLO model and wrap it for its variant."""
        from visual_clutter.Handlers.Model_Loader_Handler import ModelLoader
        from visual_clutter.Handlers.Model_Inference_Handler import create_model

        model_conf = self.config.get('model', {})
        model_path = model_conf.get('path')
        if not model_path:
            raise ConfigError("model.path is not configured")

        loader = ModelLoader(model_conf.get('device'))
        yolo = loader.load_model(model_path)
        return create_model(yolo, model_conf, device=loader.device)

    def _on_source_failed(self, event: SourceFailed) -> None:
        self._source_lost = True
        self.bus.publish(ShutdownRequested(reason="capture device lost"))

    def _on_shutdown_requested(self, event: ShutdownRequested) -> None:
        self.logger.info(f"Shutdown requested: {event.reason}")
        self._shutdown.set()

    def run(self) -> int:
        """
        Start the pipeline and block until shutdown.

        Returns:
            Process exit code: 0 on a clean stop, 1 when the capture device failed.
        """
        previous = self._setup_signals()
        try:
            try:
                self.pipeline.start()
            except AcquisitionError as e:
                self.logger.critical(f"Cannot start capture: {e.message}")
                return 1

            while not self._shutdown.is_set() and self.pipeline.running:
                self._shutdown.wait(0.5)
        finally:
            self.stop()
            self._restore_signals(previous)

        return 1 if self._source_lost else 0

    def stop(self, reason: str = "user") -> None:
        """Gracefully shut down the pipeline."""
        self.pipeline.stop(reason=reason)
        stats = self.pipeline.stats
        self.logger.info(
            f"Frames produced {stats.frames.produced}, dropped {stats.frames.dropped}, "
            f"processed {stats.processed}, failed {stats.failed}"
        )

    def _setup_signals(self):
        """Route SIGINT/SIGTERM to a graceful shutdown. Returns the previous handlers."""
        def handler(sig, frame):
            self.bus.publish(ShutdownRequested(reason=signal.Signals(sig).name))

        previous = {}
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                previous[sig] = signal.signal(sig, handler)
        except ValueError:
            # Not on the main thread: rely on stop() from the caller
            self.logger.debug("Signal handlers not installed (not on main thread)")
        return previous

    def _restore_signals(self, previous) -> None:
        for sig, old in previous.items():
            signal.signal(sig, old)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        node = VisualClutterNode(
            video_path=args.video,
            model_path=args.model,
            variant=args.variant,
            configs_dir=args.configs,
            keep_late_frames=args.keep_late_frames,
        )
    except ConfigError as e:
        Logger("VisualClutterNode").critical(f"Configuration error: {e.message}")
        return 2
    return node.run()


if __name__ == "__main__":
    sys.exit(main())
