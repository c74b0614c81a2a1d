"""
Ultralytics bindings for the ModelInterface.

Both adapters take an already-loaded YOLO model (see ModelLoader) and turn
its predictions into the raw tensors the decoders expect:

    YoloDetectionModel      [1, N, 5 + C]  x, y, w, h, objectness, class scores
    YoloSegmentationModel   [1, 1 + C, H, W]  per-pixel scores, channel 0 = background
"""
from typing import Any, Dict, List, Sequence, Tuple

import cv2
import numpy as np
import supervision as sv

from visual_clutter.core.events import ImageBuffer, PixelFormat, Tensor
from visual_clutter.core.labels import LabelTable
from visual_clutter.core.protocols import InputSpec
from visual_clutter.utils.constants import (
    BACKGROUND_LABEL, DEFAULT_BACKGROUND_SCORE, DEFAULT_CONFIDENCE, DEFAULT_MASK_SIZE,
    DETECTION_BOX_FIELDS, VARIANT_DETECTION, VARIANT_SEGMENTATION,
)
from visual_clutter.utils.failures import ConfigError
from visual_clutter.utils.logger import Logger


def _to_numpy(value) -> np.ndarray:
    """Accept torch tensors or numpy arrays."""
    if hasattr(value, "cpu"):
        value = value.cpu().numpy()
    return np.asarray(value)


def _ordered_names(names: Any) -> List[str]:
    """YOLO exposes names as {index: name}; return them in index order."""
    if isinstance(names, dict):
        return [str(names[i]) for i in sorted(names)]
    return [str(n) for n in names]


def detections_to_tensor(detections: sv.Detections, num_classes: int) -> Tensor:
    """Pack sv.Detections into [1, N, 5 + C] rows with objectness 1 and a one-hot class score."""
    n = len(detections)
    rows = np.zeros((1, n, DETECTION_BOX_FIELDS + num_classes), dtype=np.float32)
    if n == 0:
        return Tensor(rows)

    xyxy = np.asarray(detections.xyxy, dtype=np.float32)
    rows[0, :, 0] = (xyxy[:, 0] + xyxy[:, 2]) / 2
    rows[0, :, 1] = (xyxy[:, 1] + xyxy[:, 3]) / 2
    rows[0, :, 2] = xyxy[:, 2] - xyxy[:, 0]
    rows[0, :, 3] = xyxy[:, 3] - xyxy[:, 1]
    rows[0, :, 4] = 1.0

    confidence = detections.confidence if detections.confidence is not None else np.ones(n)
    class_id = detections.class_id if detections.class_id is not None else np.zeros(n, dtype=int)
    rows[0, np.arange(n), DETECTION_BOX_FIELDS + class_id.astype(int)] = confidence
    return Tensor(rows)


def masks_to_tensor(
    result: Any,
    num_classes: int,
    mask_size: Tuple[int, int] = DEFAULT_MASK_SIZE,
    background_score: float = DEFAULT_BACKGROUND_SCORE,
) -> Tensor:
    """
    Fold instance masks into per-pixel class scores.

    Channel 0 holds a constant background score; channel 1 + k holds, per pixel,
    the highest mask-weighted confidence among instances of class k.
    """
    width, height = mask_size
    scores = np.zeros((1, 1 + num_classes, height, width), dtype=np.float32)
    scores[0, 0] = background_score

    masks = getattr(result, "masks", None)
    boxes = getattr(result, "boxes", None)
    if masks is None or boxes is None or len(boxes) == 0:
        return Tensor(scores)

    mask_data = _to_numpy(masks.data).astype(np.float32)
    class_ids = _to_numpy(boxes.cls).astype(int)
    confidences = _to_numpy(boxes.conf).astype(np.float32)

    for mask, class_id, confidence in zip(mask_data, class_ids, confidences):
        resized = cv2.resize(mask, (width, height), interpolation=cv2.INTER_LINEAR)
        channel = scores[0, 1 + class_id]
        np.maximum(channel, resized * confidence, out=channel)
    return Tensor(scores)


class _YoloAdapter:
    """Shared plumbing: predict() on the BGR view of the buffer."""

    variant = ""

    def __init__(self, model: Any, device: str = "cpu", confidence: float = DEFAULT_CONFIDENCE):
        self.model = model
        self.device = device
        self.confidence = confidence
        self.class_names = _ordered_names(model.names)
        self.input_spec = InputSpec(pixel_format=PixelFormat.BGRA)
        self.logger = Logger(type(self).__name__)

    def _predict(self, buffer: ImageBuffer, **kwargs):
        results = self.model.predict(
            buffer.to_bgr(), conf=self.confidence, device=self.device, verbose=False, **kwargs
        )
        return results[0]


class YoloDetectionModel(_YoloAdapter):
    """Detection variant; boxes stay in frame pixel space."""

    variant = VARIANT_DETECTION

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    def labels(self) -> LabelTable:
        return LabelTable(self.class_names)

    def run(self, buffer: ImageBuffer) -> Tensor:
        detections = sv.Detections.from_ultralytics(self._predict(buffer))
        self.logger.debug(f"Frame {buffer.sequence}: {len(detections)} candidate(s)")
        return detections_to_tensor(detections, self.num_classes)


class YoloSegmentationModel(_YoloAdapter):
    """Segmentation variant built on an instance-segmentation YOLO model."""

    variant = VARIANT_SEGMENTATION

    def __init__(
        self,
        model: Any,
        device: str = "cpu",
        confidence: float = DEFAULT_CONFIDENCE,
        mask_size: Sequence[int] = DEFAULT_MASK_SIZE,
        background_score: float = DEFAULT_BACKGROUND_SCORE,
    ):
        super().__init__(model, device, confidence)
        self.mask_size = (int(mask_size[0]), int(mask_size[1]))
        self.background_score = background_score

    @property
    def num_classes(self) -> int:
        return 1 + len(self.class_names)

    def labels(self) -> LabelTable:
        return LabelTable([BACKGROUND_LABEL, *self.class_names])

    def run(self, buffer: ImageBuffer) -> Tensor:
        result = self._predict(buffer, retina_masks=True)
        return masks_to_tensor(result, len(self.class_names), self.mask_size, self.background_score)


def create_model(model: Any, model_conf: Dict[str, Any], device: str = "cpu"):
    """Wrap a loaded YOLO model in the adapter for the configured variant."""
    variant = model_conf.get("variant", VARIANT_SEGMENTATION)
    confidence = float(model_conf.get("confidence", DEFAULT_CONFIDENCE))

    if variant == VARIANT_DETECTION:
        return YoloDetectionModel(model, device=device, confidence=confidence)
    if variant == VARIANT_SEGMENTATION:
        return YoloSegmentationModel(
            model,
            device=device,
            confidence=confidence,
            mask_size=model_conf.get("mask_size") or DEFAULT_MASK_SIZE,
            background_score=float(model_conf.get("background_score", DEFAULT_BACKGROUND_SCORE)),
        )
    raise ConfigError(f"Unknown model variant '{variant}'")
