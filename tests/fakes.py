from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from ssd_kit.engine import EngineInfo, TensorSpec
from ssd_kit.types import Accelerator


def ssd_outputs(
    boxes: Sequence[Sequence[float]],
    class_ids: Sequence[float],
    scores: Sequence[float],
    count: Optional[float] = None,
    max_detections: int = 10,
) -> List[np.ndarray]:
    """Build TFLite-style SSD outputs padded to `max_detections` rows."""

    n = len(scores)
    b = np.zeros((1, max_detections, 4), dtype=np.float32)
    c = np.zeros((1, max_detections), dtype=np.float32)
    s = np.zeros((1, max_detections), dtype=np.float32)
    if n:
        b[0, :n] = np.asarray(boxes, dtype=np.float32)
        c[0, :n] = np.asarray(class_ids, dtype=np.float32)
        s[0, :n] = np.asarray(scores, dtype=np.float32)
    cnt = np.array([n if count is None else count], dtype=np.float32)
    return [b, c, s, cnt]


class FakeEngine:
    """In-memory engine returning canned outputs."""

    def __init__(
        self,
        outputs: Optional[List[np.ndarray]] = None,
        *,
        input_shape: Tuple[Optional[int], ...] = (1, 300, 300, 3),
        dtype=np.uint8,
        output_names: Sequence[str] = ("boxes", "classes", "scores", "count"),
        error: Optional[Exception] = None,
    ):
        self.outputs = outputs if outputs is not None else ssd_outputs([], [], [])
        self.input_shape = tuple(input_shape)
        self.dtype = np.dtype(dtype)
        self.output_names = tuple(output_names)
        self.error = error
        self.loaded = False
        self.load_calls = 0
        self.release_calls = 0
        self.seen: List[np.ndarray] = []

    @property
    def is_loaded(self) -> bool:
        return self.loaded

    def load(self) -> EngineInfo:
        self.load_calls += 1
        self.loaded = True
        return EngineInfo(
            inputs=(TensorSpec(name="image", shape=self.input_shape, dtype=self.dtype),),
            outputs=tuple(TensorSpec(name=n, shape=(), dtype=np.dtype(np.float32)) for n in self.output_names),
            accelerator=Accelerator.CPU,
        )

    def run(self, tensor: np.ndarray) -> Sequence[np.ndarray]:
        self.seen.append(tensor.copy())
        if self.error is not None:
            raise self.error
        return self.outputs

    def release(self) -> None:
        self.release_calls += 1
        self.loaded = False
