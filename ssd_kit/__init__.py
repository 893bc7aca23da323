"""
Lightweight single-class SSD detection pipeline.

Squash-resize a frame into the model's square input, run an opaque inference
engine, then turn the boxes / classes / scores / count outputs into image-space
detections with greedy NMS. Core pre/post-processing needs NumPy and OpenCV;
inference runtimes are optional and live in `ssd_kit.backends`.
"""

from .errors import (
    ConfigurationMismatch,
    DetectionError,
    EngineNotReady,
    InferenceError,
    InvalidImage,
    UnsupportedEncoding,
)
from .types import Accelerator, Detection, DetectionResult, RawDetectionRow, RawDetections, TensorEncoding
from .preprocess import Preprocessor, TensorBuffer, encode
from .nms import NMSConfig, iou, nms
from .postprocess import SsdPostConfig, SsdPostprocessor, postprocess
from .engine import EngineInfo, InferenceAdapter, InferenceEngine, TensorSpec
from .config import PipelineConfig, load_pipeline_config
from .runtime import SsdPipeline, build_pipeline, load_pipeline, find_project_root, resolve_path
from .metadata import load_class_names, resolve_class_id

__all__ = [
    "ConfigurationMismatch",
    "DetectionError",
    "EngineNotReady",
    "InferenceError",
    "InvalidImage",
    "UnsupportedEncoding",
    "Accelerator",
    "Detection",
    "DetectionResult",
    "RawDetectionRow",
    "RawDetections",
    "TensorEncoding",
    "Preprocessor",
    "TensorBuffer",
    "encode",
    "NMSConfig",
    "iou",
    "nms",
    "SsdPostConfig",
    "SsdPostprocessor",
    "postprocess",
    "EngineInfo",
    "InferenceAdapter",
    "InferenceEngine",
    "TensorSpec",
    "PipelineConfig",
    "load_pipeline_config",
    "SsdPipeline",
    "build_pipeline",
    "load_pipeline",
    "find_project_root",
    "resolve_path",
    "load_class_names",
    "resolve_class_id",
]
