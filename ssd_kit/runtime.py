from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .config import PipelineConfig
from .engine import InferenceAdapter, InferenceEngine
from .errors import ConfigurationMismatch, EngineNotReady, InferenceError
from .postprocess import SsdPostprocessor
from .preprocess import Preprocessor, image_size
from .types import DetectionResult, TensorEncoding


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery.

    Useful when models live in `<root>/models` and scripts run from elsewhere.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, the project root otherwise.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


def _check_input_shape(declared: Tuple[Optional[int], ...], size: int) -> bool:
    """
    Compare a declared NHWC (or HWC) input shape with the buffer; dynamic dims match anything.

    Returns True when the engine expects a batch axis.
    """

    if len(declared) == 4:
        expected: Tuple[int, ...] = (1, size, size, 3)
    elif len(declared) == 3:
        expected = (size, size, 3)
    else:
        raise ConfigurationMismatch(f"Engine input rank {len(declared)} is not NHWC/HWC: {declared}")
    for d, e in zip(declared, expected):
        if d is not None and int(d) != e:
            raise ConfigurationMismatch(f"Engine input shape {declared} does not match buffer shape {expected}")
    return len(declared) == 4


class SsdPipeline:
    """
    Single-class detection pipeline: preprocess -> inference -> postprocess.

    One frame at a time: the input buffer and engine handle are owned by the
    pipeline and a second concurrent `detect()` is refused.
    """

    def __init__(self, adapter: InferenceAdapter, cfg: PipelineConfig):
        self.cfg = cfg
        self.adapter = adapter
        info = adapter.open()

        declared = adapter.input_encoding
        if cfg.encoding is not None and cfg.encoding != declared:
            raise ConfigurationMismatch(
                f"Configured encoding {cfg.encoding.value} does not match engine input {declared.value}"
            )
        self._batched = _check_input_shape(info.inputs[0].shape, cfg.model_input_size)

        self.pre = Preprocessor(
            cfg.model_input_size,
            declared,
            channel_order=cfg.channel_order,
            interpolation=cfg.interpolation,
        )
        self.post = SsdPostprocessor(cfg.post_config())
        self._lock = threading.Lock()

    @property
    def encoding(self) -> TensorEncoding:
        return self.pre.encoding

    def detect(self, image: np.ndarray) -> DetectionResult:
        if not self._lock.acquire(blocking=False):
            raise RuntimeError("SsdPipeline.detect() is not reentrant; a frame is already in flight.")
        try:
            return self._detect(image)
        finally:
            self._lock.release()

    __call__ = detect

    def _detect(self, image: np.ndarray) -> DetectionResult:
        start = time.perf_counter()
        if not self.adapter.is_ready:
            raise EngineNotReady("Inference engine is not initialized.")

        width, height = image_size(image)
        tensor = self.pre.encode(image)
        if not self._batched:
            tensor = tensor[0]

        try:
            raw = self.adapter.infer(tensor)
        except InferenceError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            logger.warning("Inference failed after %.1f ms: %s", elapsed_ms, e, exc_info=True)
            return DetectionResult(
                detections=(),
                inference_time_ms=elapsed_ms,
                image_width=width,
                image_height=height,
                error=str(e),
            )

        detections = self.post.process(raw, (width, height))
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug("Inference completed in %.1f ms, found %d detections", elapsed_ms, len(detections))
        return DetectionResult(
            detections=tuple(detections),
            inference_time_ms=elapsed_ms,
            image_width=width,
            image_height=height,
        )

    def close(self) -> None:
        self.adapter.close()

    def __enter__(self) -> "SsdPipeline":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def build_pipeline(engine: InferenceEngine, cfg: PipelineConfig) -> SsdPipeline:
    adapter = InferenceAdapter(engine, max_detections=cfg.max_detections, output_order=cfg.output_order)
    try:
        return SsdPipeline(adapter, cfg)
    except Exception:
        adapter.close()
        raise


def load_pipeline(
    model_path: PathLike,
    cfg: PipelineConfig,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
) -> SsdPipeline:
    """
    Create a pipeline for a model on disk.

    Typical usage:
        pipe = load_pipeline("models/ssd_mobilenet_v1.onnx", PipelineConfig(target_class_id=1))

    Args:
        model_path: path to the model file; relative paths resolve against project root by default
        cfg: pipeline settings (target class, thresholds, accelerator, ...)
        backend: "onnxruntime" / "torchscript", or None to infer from extension
        root: base directory for resolving relative model paths ("auto" uses best-effort project root)
    """

    resolved = resolve_path(model_path, root=root)
    chosen = backend
    if chosen is None:
        suffix = resolved.suffix.lower()
        if suffix == ".onnx":
            chosen = "onnxruntime"
        elif suffix in {".torchscript", ".ts", ".pt"}:
            chosen = "torchscript"
        else:
            raise ValueError(
                f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly."
            )

    chosen = chosen.lower()
    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeEngine, OnnxRuntimeEngineConfig

        engine: InferenceEngine = OnnxRuntimeEngine(
            resolved,
            OnnxRuntimeEngineConfig(
                accelerator=cfg.accelerator,
                providers=onnx_providers,
                num_threads=cfg.num_threads,
                input_name=onnx_input_name,
            ),
        )
    elif chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptEngine, TorchScriptEngineConfig

        engine = TorchScriptEngine(
            resolved,
            TorchScriptEngineConfig(
                input_size=cfg.model_input_size,
                encoding=cfg.encoding or TensorEncoding.FLOAT32,
                accelerator=cfg.accelerator,
            ),
        )
    else:
        raise ValueError(f"Unsupported backend: {backend!r}")

    logger.info("Loading %s model from %s", chosen, resolved)
    return build_pipeline(engine, cfg)
