from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .metadata import load_class_names, resolve_class_id
from .postprocess import SsdPostConfig
from .types import Accelerator, TensorEncoding


@dataclass(frozen=True)
class PipelineConfig:
    """
    Settings fixed when a pipeline is built.

    `encoding=None` takes the element type the engine declares for its input.
    """

    target_class_id: int
    model_input_size: int = 300
    max_detections: int = 10
    confidence_threshold: float = 0.6
    nms_iou_threshold: float = 0.6
    min_box_pixels: float = 10.0
    encoding: Optional[TensorEncoding] = None
    accelerator: Accelerator = Accelerator.AUTO
    channel_order: str = "rgb"
    interpolation: str = "bilinear"
    num_threads: int = 4
    output_order: Tuple[Union[int, str], ...] = (0, 1, 2, 3)

    def __post_init__(self) -> None:
        if isinstance(self.target_class_id, bool) or not isinstance(self.target_class_id, int):
            raise ValueError("target_class_id must be an integer")
        if self.target_class_id < 0:
            raise ValueError("target_class_id must be >= 0")
        if self.model_input_size <= 0:
            raise ValueError("model_input_size must be > 0")
        if self.max_detections <= 0:
            raise ValueError("max_detections must be > 0")
        if not (0.0 <= self.confidence_threshold <= 1.0):
            raise ValueError("confidence_threshold must be within [0, 1]")
        if not (0.0 <= self.nms_iou_threshold <= 1.0):
            raise ValueError("nms_iou_threshold must be within [0, 1]")
        if self.min_box_pixels < 0:
            raise ValueError("min_box_pixels must be >= 0")
        if self.channel_order not in ("rgb", "bgr"):
            raise ValueError("channel_order must be 'rgb' or 'bgr'")
        if self.interpolation not in ("bilinear", "area", "nearest"):
            raise ValueError("interpolation must be 'bilinear', 'area' or 'nearest'")
        if self.num_threads < 0:
            raise ValueError("num_threads must be >= 0")
        if len(self.output_order) != 4:
            raise ValueError("output_order must list exactly 4 outputs")
        if self.encoding is not None:
            object.__setattr__(self, "encoding", TensorEncoding.parse(self.encoding))
        object.__setattr__(self, "accelerator", Accelerator.parse(self.accelerator))
        object.__setattr__(self, "output_order", tuple(self.output_order))

    def post_config(self) -> SsdPostConfig:
        return SsdPostConfig(
            target_class_id=self.target_class_id,
            conf_threshold=self.confidence_threshold,
            iou_threshold=self.nms_iou_threshold,
            min_box_pixels=self.min_box_pixels,
            max_detections=self.max_detections,
        )


def _require_int(payload: Dict[str, Any], key: str) -> int:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_number(payload: Dict[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_int(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value.strip()


_ALLOWED_KEYS = {
    "schema_version",
    "target_class_id",
    "target_label",
    "labels",
    "model_input_size",
    "max_detections",
    "confidence_threshold",
    "nms_iou_threshold",
    "min_box_pixels",
    "encoding",
    "accelerator",
    "channel_order",
    "interpolation",
    "num_threads",
    "output_order",
    "notes",
}


def load_pipeline_config(path: Path) -> PipelineConfig:
    """
    Load a `PipelineConfig` from JSON.

    The target class is given either as `target_class_id` or as `target_label`
    plus a `labels` file (resolved relative to the config file).
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid pipeline config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Pipeline config must be a JSON object")

    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise ValueError(f"Unknown pipeline config keys: {unknown}")
    if _require_int(payload, "schema_version") != 1:
        raise ValueError("pipeline config schema_version must be 1")

    target_label = _optional_str(payload, "target_label")
    if "target_class_id" in payload and target_label is not None:
        raise ValueError("Use either target_class_id or target_label, not both.")
    if target_label is not None:
        labels = _optional_str(payload, "labels")
        if labels is None:
            raise ValueError("target_label requires a labels file")
        labels_path = Path(labels)
        if not labels_path.is_absolute():
            labels_path = path.parent / labels_path
        target_class_id = resolve_class_id(load_class_names(str(labels_path)), target_label)
    else:
        target_class_id = _require_int(payload, "target_class_id")

    kwargs: Dict[str, Any] = {"target_class_id": target_class_id}
    for key in ("model_input_size", "max_detections", "num_threads"):
        value = _optional_int(payload, key)
        if value is not None:
            kwargs[key] = value
    for key in ("confidence_threshold", "nms_iou_threshold", "min_box_pixels"):
        value = _optional_number(payload, key)
        if value is not None:
            kwargs[key] = value
    for key in ("encoding", "accelerator", "channel_order", "interpolation"):
        value = _optional_str(payload, key)
        if value is not None:
            kwargs[key] = value.lower()

    output_order = payload.get("output_order")
    if output_order is not None:
        if not isinstance(output_order, list) or not all(
            isinstance(v, str) or (isinstance(v, int) and not isinstance(v, bool)) for v in output_order
        ):
            raise ValueError("output_order must be a list of output names or indices")
        kwargs["output_order"] = tuple(output_order)

    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValueError("notes must be a string if provided")

    return PipelineConfig(**kwargs)
