"""Result Logger Handler — default result sink.

Summarises each FrameResult in the log: the labels covering the most
of the frame for segmentation, the strongest boxes for detection.
"""
from typing import Optional, Sequence

from visual_clutter.core.events import FrameResult
from visual_clutter.utils.logger import Logger


class ResultLogger:
    """Callable sink that logs one line per frame (every Nth frame if asked)."""

    def __init__(self, labels: Sequence[str], every: int = 1, top: int = 3):
        """
        Args:
            labels: Label table used to name class indices.
            every: Log one frame out of every N.
            top: Number of labels / detections listed per line.
        """
        self.labels = labels
        self.every = max(int(every), 1)
        self.top = top
        self.logger = Logger("ResultLogger")
        self.count = 0
        self.last_result: Optional[FrameResult] = None

    def __call__(self, result: FrameResult) -> None:
        self.count += 1
        self.last_result = result
        if (self.count - 1) % self.every:
            return
        self.logger.info(self.summarise(result))

    def summarise(self, result: FrameResult) -> str:
        head = f"Frame {result.sequence} ({result.latency * 1000:.0f} ms)"

        if result.class_map is not None:
            coverage = result.class_map.coverage(self.labels)
            ranked = sorted(coverage.items(), key=lambda kv: kv[1], reverse=True)[:self.top]
            parts = ", ".join(f"{label} {share:.0%}" for label, share in ranked)
            return f"{head}: {parts}"

        if not result.detections:
            return f"{head}: no detections"
        parts = ", ".join(
            f"{d.label} {d.confidence:.2f}" for d in result.detections[:self.top]
        )
        return f"{head}: {len(result.detections)} detection(s): {parts}"
