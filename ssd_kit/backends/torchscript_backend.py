from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import numpy as np

from ..engine import EngineInfo, TensorSpec
from ..errors import ConfigurationMismatch, EngineNotReady
from ..types import Accelerator, TensorEncoding


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptEngineConfig:
    """
    Configuration for TorchScript inference.

    TorchScript modules carry no I/O metadata, so the input is declared here.
    - input_size: square side of the NHWC input
    - encoding: uint8 or float32 input
    - accelerator: cpu / gpu ("cuda") / auto
    - output_names: names reported for the returned tensors, in order
    """

    input_size: int = 300
    encoding: TensorEncoding = TensorEncoding.FLOAT32
    accelerator: Accelerator = Accelerator.AUTO
    output_names: Tuple[str, ...] = ("boxes", "classes", "scores", "count")


class TorchScriptEngine:
    """
    Minimal TorchScript engine using `torch.jit.load`.

    The module must map one (1, S, S, 3) tensor to a tuple/list (or dict) of
    boxes, classes, scores and count tensors.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptEngineConfig = TorchScriptEngineConfig()):
        self.model_path = Path(model_path)
        self.cfg = cfg
        self.model = None
        self.device = None
        self._torch = None

    @property
    def is_loaded(self) -> bool:
        return self.model is not None

    def _select_device(self, torch) -> Tuple[object, Accelerator]:
        accelerator = Accelerator.parse(self.cfg.accelerator)
        cuda_ok = bool(torch.cuda.is_available())
        if accelerator == Accelerator.CPU:
            return torch.device("cpu"), Accelerator.CPU
        if cuda_ok:
            return torch.device("cuda"), Accelerator.GPU
        if accelerator == Accelerator.GPU:
            raise ConfigurationMismatch("GPU execution requested but CUDA is not available in this torch install.")
        logger.info("CUDA not available, running TorchScript on CPU")
        return torch.device("cpu"), Accelerator.CPU

    def load(self) -> EngineInfo:
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript engine. Install with `pip install torch`.") from e

        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self._torch = torch
        self.device, accelerator = self._select_device(torch)
        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

        size = int(self.cfg.input_size)
        encoding = TensorEncoding.parse(self.cfg.encoding)
        inputs = (TensorSpec(name="image", shape=(1, size, size, 3), dtype=encoding.dtype),)
        outputs = tuple(TensorSpec(name=n, shape=(), dtype=np.dtype(np.float32)) for n in self.cfg.output_names)
        return EngineInfo(inputs=inputs, outputs=outputs, accelerator=accelerator)

    def run(self, tensor: np.ndarray) -> Sequence[np.ndarray]:
        if self.model is None:
            raise EngineNotReady("TorchScript module is not loaded.")
        torch = self._torch
        x = torch.as_tensor(tensor, device=self.device).contiguous()

        with torch.no_grad():
            y = self.model(x)

        if isinstance(y, dict):
            y = [y[n] for n in self.cfg.output_names]
        elif not isinstance(y, (tuple, list)):
            y = [y]

        out: List[np.ndarray] = []
        for t in y:
            if hasattr(t, "detach"):
                t = t.detach().to("cpu").numpy()
            out.append(np.asarray(t))
        return out

    def release(self) -> None:
        self.model = None
        self._torch = None
