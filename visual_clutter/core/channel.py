"""
Frame channels between the capture thread and its consumer.

LatestFrameQueue is the freshness-first channel: capacity 1, and a new
frame replaces one the consumer has not taken yet. The order-preserving
alternative is a plain unbounded queue.Queue.
"""
from queue import Queue
from typing import Any, Optional


class LatestFrameQueue(Queue):
    """Single-slot queue whose put_latest() replaces the waiting item."""

    def __init__(self):
        super().__init__(maxsize=1)

    def put_latest(self, item: Any) -> Optional[Any]:
        """
        Store item, displacing any item still waiting.

        Returns:
            The displaced item, or None if the slot was empty.
        """
        with self.mutex:
            displaced = None
            if self._qsize() > 0:
                displaced = self._get()
            else:
                self.unfinished_tasks += 1
            self._put(item)
            self.not_empty.notify()
            return displaced


def new_frame_channel(drop_late_frames: bool) -> Queue:
    """Single replacing slot when dropping late frames, otherwise an unbounded FIFO."""
    return LatestFrameQueue() if drop_late_frames else Queue()
