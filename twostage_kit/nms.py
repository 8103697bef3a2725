from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.5
    max_detections: int = 300


def pairwise_iou(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """IoU of one xyxy box against an (M, 4) array of xyxy boxes."""
    ix1 = np.maximum(box[0], others[:, 0])
    iy1 = np.maximum(box[1], others[:, 1])
    ix2 = np.minimum(box[2], others[:, 2])
    iy2 = np.minimum(box[3], others[:, 3])
    inter = np.clip(ix2 - ix1, 0.0, None) * np.clip(iy2 - iy1, 0.0, None)

    area = max(0.0, box[2] - box[0]) * max(0.0, box[3] - box[1])
    areas = np.clip(others[:, 2] - others[:, 0], 0.0, None) * np.clip(others[:, 3] - others[:, 1], 0.0, None)
    return inter / np.maximum(area + areas - inter, 1e-6)


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS over (N, 4) xyxy boxes and (N,) scores.

    Suppression visits boxes by descending score (equal scores in emission
    order). The surviving indices are returned ascending, so callers keep the
    detector's emission order.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    pending = np.argsort(-scores, kind="stable")
    survivors = []
    while pending.size and len(survivors) < cfg.max_detections:
        best, rest = pending[0], pending[1:]
        survivors.append(int(best))
        pending = rest[pairwise_iou(boxes[best], boxes[rest]) <= cfg.iou_threshold]

    return np.sort(np.asarray(survivors, dtype=np.int64))
