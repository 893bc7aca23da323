from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np


@dataclass
class NMSConfig:
    iou_threshold: float = 0.6
    max_detections: Optional[int] = None


def iou(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Intersection-over-Union of two xyxy boxes.
    """

    left = max(a[0], b[0])
    top = max(a[1], b[1])
    right = min(a[2], b[2])
    bottom = min(a[3], b[3])
    if left >= right or top >= bottom:
        return 0.0

    inter = (right - left) * (bottom - top)
    area_a = (a[2] - a[0]) * (a[3] - a[1])
    area_b = (b[2] - b[0]) * (b[3] - b[1])
    union = area_a + area_b - inter
    if union <= 0:
        return 0.0
    return float(inter / union)


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of kept boxes in acceptance (descending score) order.

    Equal scores keep their input order. A candidate is dropped when its IoU with
    any already accepted box is strictly greater than `cfg.iou_threshold`.
    """

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if boxes.shape[0] != scores.shape[0]:
        raise ValueError(f"boxes and scores disagree in length ({boxes.shape[0]} vs {scores.shape[0]})")
    if boxes.shape[0] == 0:
        return np.empty((0,), dtype=np.int32)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    for i in order:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        candidate = boxes[i]
        if any(iou(candidate, boxes[k]) > cfg.iou_threshold for k in keep):
            continue
        keep.append(int(i))

    return np.array(keep, dtype=np.int32)
