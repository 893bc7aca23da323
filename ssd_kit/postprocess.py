from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np

from .nms import NMSConfig, nms
from .types import Detection, RawDetectionRow, RawDetections


logger = logging.getLogger(__name__)


@dataclass
class SsdPostConfig:
    """
    Post-processing settings for single-class SSD output.

    `target_class_id` has no default: label maps differ between exports
    (COCO "person" is 0 in some, 1 in others).
    """

    target_class_id: int
    conf_threshold: float = 0.6
    iou_threshold: float = 0.6
    # Boxes whose width or height is <= this (in image pixels) are dropped.
    min_box_pixels: float = 10.0
    # Upper bound on rows read from the engine; rows past it are ignored.
    max_detections: Optional[int] = 10
    # If False, skip NMS and return candidates sorted by score.
    apply_nms: bool = True


class SsdPostprocessor:
    """
    Raw SSD rows -> filtered, de-duplicated detections in image pixel space.

    Row layout (per candidate):
    - box: [y_min, x_min, y_max, x_max], normalized to the model input square
    - class id (float)
    - score

    Since the input was squashed (not letterboxed) the normalized box maps
    directly onto the original frame by scaling with its width/height.
    """

    def __init__(self, cfg: SsdPostConfig):
        self.cfg = cfg

    def process(self, raw: RawDetections, orig_size: Tuple[int, int]) -> List[Detection]:
        """
        Args:
            raw: engine outputs for a single image
            orig_size: (width, height) of the original frame
        """

        rows = list(raw.rows())
        if self.cfg.max_detections is not None:
            rows = rows[: self.cfg.max_detections]
        self._log_raw(rows)
        return self.process_rows(rows, orig_size)

    def process_rows(self, rows: Iterable[RawDetectionRow], orig_size: Tuple[int, int]) -> List[Detection]:
        """
        Filter and de-duplicate rows that are already bounded by the valid count.
        """

        candidates = self._filter(rows, orig_size)
        if not candidates:
            return []

        if not self.cfg.apply_nms:
            return sorted(candidates, key=lambda d: -d.confidence)

        kept = self._apply_nms(candidates)
        logger.debug("NMS: %d -> %d detections", len(candidates), len(kept))
        return kept

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _filter(self, rows: Iterable[RawDetectionRow], orig_size: Tuple[int, int]) -> List[Detection]:
        orig_w, orig_h = orig_size
        out: List[Detection] = []
        for row in rows:
            if not np.isfinite(row.class_id) or int(row.class_id) != self.cfg.target_class_id:
                continue
            # Written as "not >=" so NaN scores are rejected too.
            if not row.score >= self.cfg.conf_threshold:
                continue

            left, top, right, bottom = self._scale_box(row, orig_w, orig_h)
            if not (right - left > self.cfg.min_box_pixels and bottom - top > self.cfg.min_box_pixels):
                continue

            out.append(Detection(left=left, top=top, right=right, bottom=bottom, confidence=row.score))
        return out

    @staticmethod
    def _scale_box(row: RawDetectionRow, orig_w: int, orig_h: int) -> Tuple[float, float, float, float]:
        """
        Map a normalized [y_min, x_min, y_max, x_max] box to clamped pixel xyxy.
        """

        top = float(np.clip(row.y_min * orig_h, 0.0, orig_h))
        left = float(np.clip(row.x_min * orig_w, 0.0, orig_w))
        bottom = float(np.clip(row.y_max * orig_h, 0.0, orig_h))
        right = float(np.clip(row.x_max * orig_w, 0.0, orig_w))
        return left, top, right, bottom

    def _apply_nms(self, candidates: List[Detection]) -> List[Detection]:
        boxes = np.array([d.as_xyxy() for d in candidates], dtype=np.float64)
        scores = np.array([d.confidence for d in candidates], dtype=np.float64)
        keep_idx = nms(boxes, scores, NMSConfig(iou_threshold=self.cfg.iou_threshold))
        return [candidates[i] for i in keep_idx]

    def _log_raw(self, rows: List[RawDetectionRow]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        scores = [r.score for r in rows]
        logger.debug(
            "Raw rows: %d valid, max score %.3f, >0.1: %d, >0.5: %d",
            len(rows),
            max(scores) if scores else 0.0,
            sum(1 for s in scores if s > 0.1),
            sum(1 for s in scores if s > 0.5),
        )


def postprocess(
    rows: Iterable[RawDetectionRow],
    image_width: int,
    image_height: int,
    target_class_id: int,
    confidence_threshold: float,
    min_box_pixels: float,
    nms_iou_threshold: float,
) -> List[Detection]:
    """
    Functional form of `SsdPostprocessor.process` over already-bounded rows.
    """

    post = SsdPostprocessor(
        SsdPostConfig(
            target_class_id=target_class_id,
            conf_threshold=confidence_threshold,
            iou_threshold=nms_iou_threshold,
            min_box_pixels=min_box_pixels,
            max_detections=None,
        )
    )
    return post.process_rows(rows, (image_width, image_height))
