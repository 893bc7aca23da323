from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from ..engine import EngineInfo, TensorSpec
from ..errors import ConfigurationMismatch, EngineNotReady
from ..types import Accelerator


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CPU_PROVIDER = "CPUExecutionProvider"
GPU_PROVIDERS = ("CUDAExecutionProvider", "TensorrtExecutionProvider", "ROCMExecutionProvider", "DmlExecutionProvider")

_ORT_TYPES = {
    "tensor(uint8)": np.uint8,
    "tensor(int8)": np.int8,
    "tensor(float)": np.float32,
    "tensor(float16)": np.float16,
    "tensor(double)": np.float64,
    "tensor(int32)": np.int32,
    "tensor(int64)": np.int64,
}


@dataclass(frozen=True)
class OnnxRuntimeEngineConfig:
    """
    Configuration for ONNX Runtime inference.

    - accelerator: cpu / gpu / auto, resolved once into execution providers
    - providers: explicit ORT providers; overrides `accelerator` when given
    - num_threads: intra-op threads (0 lets ORT decide)
    - input_name: override the auto-selected input if needed
    """

    accelerator: Accelerator = Accelerator.AUTO
    providers: Optional[Sequence[str]] = None
    num_threads: int = 4
    input_name: Optional[str] = None


def _dtype_from_ort(type_str: str) -> np.dtype:
    # Unknown element types map to object so the adapter rejects them.
    return np.dtype(_ORT_TYPES.get(type_str, object))


def _shape_from_ort(shape: Sequence[object]) -> Tuple[Optional[int], ...]:
    return tuple(int(d) if isinstance(d, int) else None for d in (shape or ()))


def resolve_providers(accelerator: Accelerator, available: Sequence[str]) -> Tuple[List[str], Accelerator]:
    """
    Map an accelerator choice onto ORT execution providers.

    GPU fails fast when no GPU provider is installed; AUTO falls back to CPU.
    """

    gpu = [p for p in GPU_PROVIDERS if p in available]
    if accelerator == Accelerator.CPU:
        return [CPU_PROVIDER], Accelerator.CPU
    if gpu:
        return [gpu[0], CPU_PROVIDER], Accelerator.GPU
    if accelerator == Accelerator.GPU:
        raise ConfigurationMismatch(f"GPU execution requested but no GPU provider is available ({list(available)}).")
    logger.info("No GPU execution provider available, using CPU")
    return [CPU_PROVIDER], Accelerator.CPU


class OnnxRuntimeEngine:
    """
    ONNX Runtime engine returning every model output.

    Works with SSD exports that take an NHWC uint8 or float32 image and emit
    boxes / classes / scores / count.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeEngineConfig = OnnxRuntimeEngineConfig()):
        self.model_path = Path(model_path)
        self.cfg = cfg
        self.session = None
        self.input_name: Optional[str] = None
        self.output_names: List[str] = []

    @property
    def is_loaded(self) -> bool:
        return self.session is not None

    @property
    def providers_in_use(self) -> Sequence[str]:
        if self.session is None:
            return ()
        return tuple(self.session.get_providers())

    def load(self) -> EngineInfo:
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX engine. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        if self.cfg.providers is not None:
            providers = list(self.cfg.providers)
            accelerator = Accelerator.GPU if any(p in GPU_PROVIDERS for p in providers) else Accelerator.CPU
        else:
            providers, accelerator = resolve_providers(self.cfg.accelerator, ort.get_available_providers())

        sess_opts = ort.SessionOptions()
        if self.cfg.num_threads > 0:
            sess_opts.intra_op_num_threads = int(self.cfg.num_threads)
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        inputs = [
            TensorSpec(name=i.name, shape=_shape_from_ort(i.shape), dtype=_dtype_from_ort(i.type))
            for i in self.session.get_inputs()
        ]
        outputs = [
            TensorSpec(name=o.name, shape=_shape_from_ort(o.shape), dtype=_dtype_from_ort(o.type))
            for o in self.session.get_outputs()
        ]

        names = [i.name for i in inputs]
        self.input_name = self.cfg.input_name or names[0]
        if self.input_name not in names:
            raise ValueError(f"Input name {self.input_name!r} not found. Available: {names}")
        self.output_names = [o.name for o in outputs]

        # Only the fed input is declared; extra inputs are not supported.
        chosen = tuple(i for i in inputs if i.name == self.input_name)
        return EngineInfo(inputs=chosen, outputs=tuple(outputs), accelerator=accelerator)

    def run(self, tensor: np.ndarray) -> Sequence[np.ndarray]:
        if self.session is None:
            raise EngineNotReady("ONNX Runtime session is not loaded.")
        return self.session.run(self.output_names, {self.input_name: tensor})

    def release(self) -> None:
        # ORT sessions have no explicit close; dropping the reference frees them.
        self.session = None
