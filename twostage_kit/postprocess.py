from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .errors import InvalidInput, InvalidState
from .letterbox import LetterboxTransform
from .nms import NMSConfig, nms
from .types import Box, DetectedRegion, Size

logger = logging.getLogger(__name__)


BOX_UNITS = ("normalized", "pixels")
BOX_FORMS = ("center", "corner")


@dataclass(frozen=True)
class DecoderConfig:
    """
    Detector output contract + filtering policy.

    The raw box encoding must match what the detector documents:
    - box_units="normalized": coordinates are fractions of the canvas (0..1)
    - box_units="pixels": coordinates are canvas pixels
    - box_form="center": [cx, cy, w, h]; "corner": [x1, y1, x2, y2]

    The default matches detectors exported with built-in NMS (normalized, center form).
    """

    # Keep a detection iff score > conf_threshold.
    conf_threshold: float = 0.25
    box_units: str = "normalized"
    box_form: str = "center"
    # For (N, C) score arrays: which column is the confidence. None = best class.
    score_column: Optional[int] = None
    # Only for engines that do not suppress overlaps themselves.
    apply_nms: bool = False
    iou_threshold: float = 0.5
    max_detections: int = 300

    def __post_init__(self) -> None:
        if self.box_units not in BOX_UNITS:
            raise InvalidInput(f"box_units must be one of {BOX_UNITS}, got {self.box_units!r}")
        if self.box_form not in BOX_FORMS:
            raise InvalidInput(f"box_form must be one of {BOX_FORMS}, got {self.box_form!r}")
        if not 0.0 <= self.conf_threshold < 1.0:
            raise InvalidInput("conf_threshold must be in [0, 1)")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise InvalidInput("iou_threshold must be in [0, 1]")
        if self.max_detections < 1:
            raise InvalidInput("max_detections must be >= 1")


class DetectionDecoder:
    """
    Turns raw detector arrays into `DetectedRegion`s in original-image pixels.

    Steps: confidence filter -> canvas-pixel corner form -> optional NMS ->
    inverse letterbox -> clamp. Output keeps the detector's emission order.
    """

    def __init__(self, cfg: DecoderConfig = DecoderConfig()):
        self.cfg = cfg

    def decode(
        self,
        raw_boxes: np.ndarray,
        raw_scores: np.ndarray,
        transform: LetterboxTransform,
        original_size: Size,
    ) -> List[DetectedRegion]:
        """
        Args:
            raw_boxes: (N, 4) box encodings as documented by `DecoderConfig`
            raw_scores: (N,) confidences, or (N, C) per-class scores
            transform: letterbox used to build the detector input
            original_size: (width, height) of the original image
        """

        if not transform.scale > 0:
            raise InvalidState(f"letterbox scale must be > 0, got {transform.scale}")
        orig_w, orig_h = original_size
        if orig_w <= 0 or orig_h <= 0:
            raise InvalidInput(f"original_size must be positive, got {original_size!r}")

        boxes = self._as_boxes(raw_boxes)
        scores, class_ids = self._as_scores(raw_scores)
        if boxes.shape[0] != scores.shape[0]:
            raise InvalidInput(f"Got {boxes.shape[0]} boxes but {scores.shape[0]} scores")

        # NaN compares False, so non-finite scores are dropped here too.
        keep = np.where(scores > self.cfg.conf_threshold)[0]
        boxes, scores, class_ids = boxes[keep], scores[keep], class_ids[keep]
        above = int(keep.size)
        if boxes.shape[0] == 0:
            logger.debug("No detections above %.2f", self.cfg.conf_threshold)
            return []

        boxes_xyxy = self._to_canvas_xyxy(boxes, transform.canvas_size)

        if self.cfg.apply_nms:
            nms_cfg = NMSConfig(iou_threshold=self.cfg.iou_threshold, max_detections=self.cfg.max_detections)
            kept = nms(boxes_xyxy, scores, nms_cfg)
            boxes_xyxy, scores, class_ids = boxes_xyxy[kept], scores[kept], class_ids[kept]

        restored = self._scale_boxes(boxes_xyxy, (orig_w, orig_h), transform)

        regions = [
            DetectedRegion(
                index=i,
                box=Box(x=float(x), y=float(y), width=float(w), height=float(h)),
                confidence=float(min(1.0, score)),
                class_id=None if cls_id < 0 else int(cls_id),
            )
            for i, ((x, y, w, h), score, cls_id) in enumerate(zip(restored, scores, class_ids))
        ]
        logger.debug("Decoded %d/%d detections above threshold", len(regions), above)
        return regions

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _as_boxes(self, raw_boxes: np.ndarray) -> np.ndarray:
        try:
            b = np.asarray(raw_boxes, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"raw_boxes is not a numeric array: {e}") from e
        if b.ndim == 3 and b.shape[0] == 1:
            b = b[0]
        if b.size == 0:
            return b.reshape((0, 4))
        if b.ndim == 1 and b.size % 4 == 0:
            b = b.reshape((-1, 4))
        if b.ndim != 2 or b.shape[1] != 4:
            raise InvalidInput(f"raw_boxes must have shape (N, 4), got {b.shape}")
        return b

    def _as_scores(self, raw_scores: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        try:
            s = np.asarray(raw_scores, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"raw_scores is not a numeric array: {e}") from e
        if s.ndim == 3 and s.shape[0] == 1:
            s = s[0]
        if s.ndim == 2 and s.shape[1] == 1:
            s = s[:, 0]
        if s.ndim == 1:
            return s, np.full(s.shape, -1, dtype=np.int64)
        if s.ndim != 2:
            raise InvalidInput(f"raw_scores must have shape (N,) or (N, C), got {s.shape}")

        if self.cfg.score_column is not None:
            if not 0 <= self.cfg.score_column < s.shape[1]:
                raise InvalidInput(f"score_column {self.cfg.score_column} out of range for {s.shape}")
            col = int(self.cfg.score_column)
            return s[:, col], np.full(s.shape[0], col, dtype=np.int64)

        if s.shape[0] == 0:
            return np.empty((0,)), np.empty((0,), dtype=np.int64)
        class_ids = np.argmax(np.nan_to_num(s, nan=-np.inf), axis=1)
        return s[np.arange(s.shape[0]), class_ids], class_ids.astype(np.int64)

    def _to_canvas_xyxy(self, boxes: np.ndarray, canvas_size: Size) -> np.ndarray:
        b = np.nan_to_num(boxes, nan=0.0, posinf=0.0, neginf=0.0)
        if self.cfg.box_units == "normalized":
            cw, ch = canvas_size
            b = b * np.array([cw, ch, cw, ch], dtype=np.float64)

        if self.cfg.box_form == "center":
            cx, cy, w_box, h_box = b.T
            w_box = np.abs(w_box)
            h_box = np.abs(h_box)
            return np.stack([cx - w_box / 2, cy - h_box / 2, cx + w_box / 2, cy + h_box / 2], axis=1)

        x1 = np.minimum(b[:, 0], b[:, 2])
        y1 = np.minimum(b[:, 1], b[:, 3])
        x2 = np.maximum(b[:, 0], b[:, 2])
        y2 = np.maximum(b[:, 1], b[:, 3])
        return np.stack([x1, y1, x2, y2], axis=1)

    def _scale_boxes(
        self,
        boxes: np.ndarray,
        orig_size: Tuple[int, int],
        transform: LetterboxTransform,
    ) -> np.ndarray:
        """
        Map canvas xyxy boxes to original-image xywh, clamped inside the image.
        """

        orig_w, orig_h = orig_size
        dw, dh = transform.content_offset_x, transform.content_offset_y
        r = transform.scale
        x1 = (boxes[:, 0] - dw) / r
        y1 = (boxes[:, 1] - dh) / r
        x2 = (boxes[:, 2] - dw) / r
        y2 = (boxes[:, 3] - dh) / r

        # Extent is measured between the clipped edges, so a box wholly outside
        # the image (e.g. inside the letterbox padding) ends up with zero size.
        x1, x2 = np.clip(x1, 0, orig_w), np.clip(x2, 0, orig_w)
        y1, y2 = np.clip(y1, 0, orig_h), np.clip(y2, 0, orig_h)
        w = x2 - x1
        h = y2 - y1
        # Origin stays a valid pixel.
        x = np.minimum(x1, orig_w - 1)
        y = np.minimum(y1, orig_h - 1)
        return np.stack([x, y, w, h], axis=1)
