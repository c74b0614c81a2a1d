"""
Tensor decoding: raw model output -> ClassMap or detections.

Decoders are stateless; every call is independent.
"""
from typing import List, Optional, Sequence, Tuple

import numpy as np
import supervision as sv

from visual_clutter.core.events import BoundingBox, ClassMap, Detection, ImageBuffer, Tensor
from visual_clutter.core.geometry import AffineTransform
from visual_clutter.utils.constants import (
    DEFAULT_CONFIDENCE, DETECTION_BOX_FIELDS, MODEL_VARIANTS, VARIANT_SEGMENTATION,
)
from visual_clutter.utils.failures import ConfigError, DecodeError, EmptyTensorError, ShapeMismatchError


class SegmentationDecoder:
    """Per-pixel argmax over the channel axis of a [batch, channels, height, width] tensor."""

    def __init__(self, batch_index: int = 0):
        self.batch_index = batch_index

    def decode(self, tensor: Tensor, labels: Sequence[str]) -> ClassMap:
        """
        Assign each cell the index of its highest-scoring channel.

        Ties go to the lowest channel index. NaN scores never win.

        Raises:
            ShapeMismatchError: Tensor is not 4-D or channels != len(labels).
            EmptyTensorError: Batch, height or width is zero.
        """
        if tensor.ndim != 4:
            raise ShapeMismatchError(
                f"Segmentation tensor must be [batch, channels, height, width], got {tensor.shape}"
            )
        if tensor.channels != len(labels):
            raise ShapeMismatchError(
                f"Tensor has {tensor.channels} channels but the label table has {len(labels)} entries"
            )
        if tensor.batch == 0 or tensor.height == 0 or tensor.width == 0:
            raise EmptyTensorError(f"Tensor has an empty dimension: {tensor.shape}")
        if not 0 <= self.batch_index < tensor.batch:
            raise ShapeMismatchError(f"Batch index {self.batch_index} out of range for {tensor.shape}")

        scores = tensor.data[self.batch_index]
        nan_mask = np.isnan(scores)
        if nan_mask.any():
            scores = np.where(nan_mask, -np.inf, scores)

        # np.argmax returns the first maximum, which gives the lowest-index tie-break
        return ClassMap(np.argmax(scores, axis=0))


class DetectionDecoder:
    """
    Decodes rows of [x_center, y_center, w, h, objectness, class scores...].

    Box coordinates are in model-input pixels. They are normalised by the
    input size, flipped on the vertical axis (y' = 1 - y_max) and mapped
    into destination space through the caller's AffineTransform.
    """

    def __init__(self, confidence_threshold: float = DEFAULT_CONFIDENCE, iou_threshold: Optional[float] = None):
        self.confidence_threshold = confidence_threshold
        self.iou_threshold = iou_threshold

    def decode(
        self,
        tensor: Tensor,
        labels: Sequence[str],
        input_size: Tuple[int, int],
        transform: Optional[AffineTransform] = None,
    ) -> List[Detection]:
        """
        Args:
            tensor: [1, N, 5 + C] or [N, 5 + C] candidates.
            labels: Class names, len(labels) == C.
            input_size: (width, height) of the model input space.
            transform: Normalised -> destination mapping (identity keeps [0, 1] coordinates).

        Returns:
            Detections above the confidence threshold, highest confidence first.
        """
        rows = tensor.data
        if rows.ndim == 3:
            if rows.shape[0] == 0:
                return []
            rows = rows[0]
        elif rows.ndim != 2:
            raise ShapeMismatchError(f"Detection tensor must be [batch, N, 5 + C] or [N, 5 + C], got {tensor.shape}")

        expected = DETECTION_BOX_FIELDS + len(labels)
        if rows.shape[1] != expected:
            raise ShapeMismatchError(
                f"Detection rows have {rows.shape[1]} values, expected {expected} for {len(labels)} labels"
            )

        in_w, in_h = input_size
        if in_w <= 0 or in_h <= 0:
            raise DecodeError(f"Invalid model input size {input_size}")
        if rows.shape[0] == 0:
            return []

        class_scores = np.nan_to_num(rows[:, DETECTION_BOX_FIELDS:], nan=-np.inf)
        class_ids = np.argmax(class_scores, axis=1)
        confidence = rows[:, 4] * class_scores[np.arange(len(rows)), class_ids]
        keep = confidence >= self.confidence_threshold
        if not keep.any():
            return []

        xc, yc, w, h = (rows[keep, i] for i in range(4))
        xyxy = np.stack([xc - w / 2, yc - h / 2, xc + w / 2, yc + h / 2], axis=1)
        candidates = sv.Detections(
            xyxy=xyxy.astype(np.float32),
            confidence=confidence[keep].astype(np.float32),
            class_id=class_ids[keep].astype(int),
        )
        if self.iou_threshold is not None:
            candidates = candidates.with_nms(threshold=self.iou_threshold, class_agnostic=False)

        transform = transform or AffineTransform.identity()
        detections = []
        for (x1, y1, x2, y2), conf, class_id in zip(candidates.xyxy, candidates.confidence, candidates.class_id):
            normalised = BoundingBox(
                x=float(x1) / in_w,
                y=1.0 - float(y2) / in_h,
                width=float(x2 - x1) / in_w,
                height=float(y2 - y1) / in_h,
            )
            detections.append(Detection(
                box=transform.apply_rect(normalised),
                label=labels[int(class_id)],
                confidence=float(conf),
                class_id=int(class_id),
            ))

        detections.sort(key=lambda d: d.confidence, reverse=True)
        return detections


class TensorDecoder:
    """Variant dispatch used by the processing stage."""

    def __init__(
        self,
        variant: str,
        labels: Sequence[str],
        confidence_threshold: float = DEFAULT_CONFIDENCE,
        iou_threshold: Optional[float] = None,
        display_size: Optional[Tuple[int, int]] = None,
    ):
        """
        Args:
            variant: 'segmentation' or 'detection'.
            labels: Label table matching the model's classes.
            confidence_threshold: Detection cut-off.
            iou_threshold: Detection NMS threshold, None to skip NMS.
            display_size: (width, height) boxes are mapped onto; defaults to the frame size.
        """
        if variant not in MODEL_VARIANTS:
            raise ConfigError(f"Unknown model variant '{variant}' (expected one of {MODEL_VARIANTS})")
        self.variant = variant
        self.labels = labels
        self.display_size = display_size
        self.segmentation = SegmentationDecoder()
        self.detection = DetectionDecoder(confidence_threshold, iou_threshold)

    def decode(self, tensor: Tensor, buffer: ImageBuffer) -> Tuple[Optional[ClassMap], Tuple[Detection, ...]]:
        if self.variant == VARIANT_SEGMENTATION:
            return self.segmentation.decode(tensor, self.labels), ()

        width, height = self.display_size or buffer.size
        detections = self.detection.decode(
            tensor, self.labels, buffer.size, AffineTransform.to_display(width, height)
        )
        return None, tuple(detections)


def decode(tensor: Tensor, labels: Sequence[str]) -> ClassMap:
    """Decode a segmentation tensor into a ClassMap."""
    return SegmentationDecoder().decode(tensor, labels)


def to_supervision(detections: Sequence[Detection]) -> sv.Detections:
    """Convert decoded detections into sv.Detections for overlay collaborators."""
    if not detections:
        return sv.Detections.empty()
    return sv.Detections(
        xyxy=np.array([d.box.xyxy() for d in detections], dtype=np.float32),
        confidence=np.array([d.confidence for d in detections], dtype=np.float32),
        class_id=np.array([d.class_id for d in detections], dtype=int),
        data={"class_name": np.array([d.label for d in detections])},
    )
