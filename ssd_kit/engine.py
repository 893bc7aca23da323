"""
Inference adapter: a thin layer between the pipeline and an opaque engine.

An engine only needs `load()`, `run()` and `release()`; the adapter checks what
the engine declares, feeds it one tensor per call and hands back the four SSD
outputs as `RawDetections`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigurationMismatch, EngineNotReady, InferenceError
from .types import Accelerator, RawDetections, TensorEncoding


logger = logging.getLogger(__name__)

OutputKey = Union[int, str]


@dataclass(frozen=True)
class TensorSpec:
    name: str
    # Dynamic dimensions are reported as None.
    shape: Tuple[Optional[int], ...]
    dtype: np.dtype


@dataclass(frozen=True)
class EngineInfo:
    inputs: Tuple[TensorSpec, ...]
    outputs: Tuple[TensorSpec, ...]
    accelerator: Accelerator = Accelerator.CPU


class InferenceEngine(Protocol):
    @property
    def is_loaded(self) -> bool:
        ...

    def load(self) -> EngineInfo:
        ...

    def run(self, tensor: np.ndarray) -> Sequence[np.ndarray]:
        ...

    def release(self) -> None:
        ...


def _resolve_output_order(order: Sequence[OutputKey], outputs: Sequence[TensorSpec]) -> Tuple[int, ...]:
    names = [o.name for o in outputs]
    resolved: List[int] = []
    for key in order:
        if isinstance(key, str):
            if key not in names:
                raise ConfigurationMismatch(f"Output {key!r} not found. Available: {names}")
            resolved.append(names.index(key))
        else:
            idx = int(key)
            if idx < 0 or idx >= len(outputs):
                raise ConfigurationMismatch(f"Output index {idx} out of range (num outputs={len(outputs)}).")
            resolved.append(idx)
    return tuple(resolved)


class InferenceAdapter:
    """
    Wraps an `InferenceEngine` producing SSD-style outputs.

    `output_order` names (or indexes) the boxes, classes, scores and count
    outputs, in that order. Exporters disagree on output order, so it is
    configurable.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        *,
        max_detections: int = 10,
        output_order: Sequence[OutputKey] = (0, 1, 2, 3),
    ):
        if max_detections <= 0:
            raise ValueError("max_detections must be > 0")
        if len(output_order) != 4:
            raise ValueError("output_order must list exactly 4 outputs (boxes, classes, scores, count).")
        self.engine = engine
        self.max_detections = int(max_detections)
        self.output_order = tuple(output_order)
        self.info: Optional[EngineInfo] = None
        self._outputs: Tuple[int, ...] = ()

    @property
    def is_ready(self) -> bool:
        return self.info is not None and self.engine.is_loaded

    @property
    def input_spec(self) -> TensorSpec:
        if self.info is None:
            raise EngineNotReady("Inference engine is not initialized.")
        return self.info.inputs[0]

    @property
    def input_encoding(self) -> TensorEncoding:
        return TensorEncoding.parse(self.input_spec.dtype)

    def open(self) -> EngineInfo:
        if self.info is not None:
            return self.info

        info = self.engine.load()
        if len(info.inputs) != 1:
            raise ConfigurationMismatch(f"Expected exactly one input tensor, engine declares {len(info.inputs)}.")
        if len(info.outputs) < 4:
            raise ConfigurationMismatch(
                f"Expected 4 outputs (boxes, classes, scores, count), engine declares {len(info.outputs)}."
            )
        # Raises UnsupportedEncoding for anything but uint8 / float32.
        encoding = TensorEncoding.parse(info.inputs[0].dtype)
        self._outputs = _resolve_output_order(self.output_order, info.outputs)

        logger.info(
            "Engine loaded on %s: input %s %s %s",
            info.accelerator.value,
            info.inputs[0].name,
            info.inputs[0].shape,
            encoding.value,
        )
        for spec in info.outputs:
            logger.debug("Engine output %s %s %s", spec.name, spec.shape, spec.dtype)

        self.info = info
        return info

    def infer(self, tensor: np.ndarray) -> RawDetections:
        if not self.is_ready:
            raise EngineNotReady("Inference engine is not initialized.")

        try:
            outputs = self.engine.run(tensor)
        except Exception as e:
            raise InferenceError(f"Engine run failed: {e}") from e

        try:
            return self._collect(outputs)
        except (IndexError, ValueError, TypeError) as e:
            raise InferenceError(f"Malformed engine outputs: {e}") from e

    def _collect(self, outputs: Sequence[np.ndarray]) -> RawDetections:
        i_boxes, i_classes, i_scores, i_count = self._outputs
        boxes = np.asarray(outputs[i_boxes], dtype=np.float32).reshape(-1, 4)
        class_ids = np.asarray(outputs[i_classes], dtype=np.float32).reshape(-1)
        scores = np.asarray(outputs[i_scores], dtype=np.float32).reshape(-1)
        count_arr = np.asarray(outputs[i_count], dtype=np.float64).reshape(-1)

        n = self.max_detections
        count = 0
        if count_arr.size and np.isfinite(count_arr[0]):
            count = max(0, min(int(count_arr[0]), n))

        return RawDetections(boxes=boxes[:n], class_ids=class_ids[:n], scores=scores[:n], count=count)

    def close(self) -> None:
        if self.info is None and not self.engine.is_loaded:
            return
        self.engine.release()
        self.info = None
        logger.debug("Engine released")

    def __enter__(self) -> "InferenceAdapter":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
