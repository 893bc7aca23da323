from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, NamedTuple, Optional, Tuple

import numpy as np

from .errors import UnsupportedEncoding


_ENCODING_ALIASES = {
    "uint8": "uint8",
    "u8": "uint8",
    "quantized": "uint8",
    "float32": "float32",
    "float": "float32",
    "fp32": "float32",
}


class TensorEncoding(str, Enum):
    """
    Element encoding of the model input tensor.

    UINT8 carries raw 0-255 channel values; FLOAT32 carries `v / 127.5 - 1.0`.
    """

    UINT8 = "uint8"
    FLOAT32 = "float32"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @classmethod
    def parse(cls, value: object) -> "TensorEncoding":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = _ENCODING_ALIASES.get(value.strip().lower())
            if key is not None:
                return cls(key)
            raise UnsupportedEncoding(f"Unsupported tensor encoding: {value!r}")
        try:
            dtype = np.dtype(value)  # type: ignore[arg-type]
        except TypeError as e:
            raise UnsupportedEncoding(f"Unsupported tensor encoding: {value!r}") from e
        if dtype == np.uint8:
            return cls.UINT8
        if dtype == np.float32:
            return cls.FLOAT32
        raise UnsupportedEncoding(f"Unsupported tensor element type: {dtype}")


class Accelerator(str, Enum):
    CPU = "cpu"
    GPU = "gpu"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: object) -> "Accelerator":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key == "cuda":
                key = "gpu"
            try:
                return cls(key)
            except ValueError:
                pass
        raise ValueError(f"Unsupported accelerator: {value!r} (expected cpu / gpu / auto)")


class RawDetectionRow(NamedTuple):
    """One candidate row; box is normalized to the model input square."""

    y_min: float
    x_min: float
    y_max: float
    x_max: float
    class_id: float
    score: float


@dataclass(frozen=True)
class RawDetections:
    """
    The four parallel outputs of an SSD-style detector for a single image.

    boxes: (N, 4) as [y_min, x_min, y_max, x_max], normalized to [0, 1]
    class_ids: (N,) float class ids
    scores: (N,) confidence scores
    count: number of leading rows that are valid
    """

    boxes: np.ndarray
    class_ids: np.ndarray
    scores: np.ndarray
    count: int

    @property
    def valid_count(self) -> int:
        n = min(int(self.boxes.shape[0]), int(self.class_ids.shape[0]), int(self.scores.shape[0]))
        return max(0, min(int(self.count), n))

    def rows(self) -> Iterator[RawDetectionRow]:
        for i in range(self.valid_count):
            y_min, x_min, y_max, x_max = (float(v) for v in self.boxes[i])
            yield RawDetectionRow(y_min, x_min, y_max, x_max, float(self.class_ids[i]), float(self.scores[i]))

    @classmethod
    def empty(cls) -> "RawDetections":
        return cls(
            boxes=np.zeros((0, 4), dtype=np.float32),
            class_ids=np.zeros((0,), dtype=np.float32),
            scores=np.zeros((0,), dtype=np.float32),
            count=0,
        )


@dataclass(frozen=True)
class Detection:
    """
    A single detection in the original image's pixel coordinates.

    `tracking_id` is carried through untouched; nothing here assigns it.
    """

    left: float
    top: float
    right: float
    bottom: float
    confidence: float
    tracking_id: Optional[int] = None

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.left, self.top, self.right, self.bottom

    def with_tracking_id(self, tracking_id: Optional[int]) -> "Detection":
        return replace(self, tracking_id=tracking_id)


@dataclass(frozen=True)
class DetectionResult:
    detections: Tuple[Detection, ...]
    inference_time_ms: float
    image_width: int
    image_height: int
    # Set when the frame failed inside the engine; detections is then empty.
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def count(self) -> int:
        return len(self.detections)
