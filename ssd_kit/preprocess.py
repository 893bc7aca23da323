from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

import numpy as np

from .errors import ConfigurationMismatch, InvalidImage, UnsupportedEncoding
from .types import TensorEncoding


logger = logging.getLogger(__name__)

_INTERPOLATIONS = ("bilinear", "area", "nearest")
_CHANNEL_ORDERS = ("rgb", "bgr")


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for resizing. Install with `pip install opencv-python`.") from e
    return cv2


def image_size(image: np.ndarray) -> Tuple[int, int]:
    """
    Return (width, height) of a frame, raising `InvalidImage` for anything
    that is not a non-empty 2-D pixel grid.
    """

    if image is None or not hasattr(image, "shape"):
        raise InvalidImage("image must be a NumPy array.")
    if image.ndim not in (2, 3):
        raise InvalidImage(f"Expected image shape (H, W), (H, W, 3) or (H, W, 4), got {image.shape}")
    h, w = int(image.shape[0]), int(image.shape[1])
    if w == 0 or h == 0:
        raise InvalidImage(f"Image has zero area ({w}x{h}).")
    return w, h


def unpack_argb(pixels: np.ndarray) -> np.ndarray:
    """
    Split packed 32-bit ARGB pixels (H, W) into an (H, W, 3) uint8 RGB array.
    """

    p = np.asarray(pixels).astype(np.uint32, copy=False)
    rgb = np.empty(p.shape + (3,), dtype=np.uint8)
    rgb[..., 0] = (p >> 16) & 0xFF
    rgb[..., 1] = (p >> 8) & 0xFF
    rgb[..., 2] = p & 0xFF
    return rgb


def as_rgb(image: np.ndarray, channel_order: str = "rgb") -> np.ndarray:
    """
    Normalize an incoming frame to (H, W, 3) uint8 in RGB order.

    Accepted layouts:
    - (H, W) packed 32-bit ARGB integers
    - (H, W, 3) in `channel_order`
    - (H, W, 4) in `channel_order` plus a trailing alpha channel
    """

    if channel_order not in _CHANNEL_ORDERS:
        raise ValueError(f"channel_order must be one of {_CHANNEL_ORDERS}, got {channel_order!r}")
    image_size(image)

    if image.ndim == 2:
        if not np.issubdtype(image.dtype, np.integer):
            raise InvalidImage(f"Packed ARGB frames must be integer typed, got {image.dtype}")
        if image.dtype.itemsize < 4:
            raise InvalidImage(f"Packed ARGB frames need 32-bit pixels, got {image.dtype}")
        return unpack_argb(image)

    channels = image.shape[2]
    if channels not in (3, 4):
        raise InvalidImage(f"Expected 3 or 4 channels, got {channels}")
    if image.dtype != np.uint8:
        raise InvalidImage(f"Expected uint8 channels, got {image.dtype}")

    rgb = image[:, :, :3]
    if channel_order == "bgr":
        rgb = rgb[:, :, ::-1]
    return rgb


def resize_square(rgb: np.ndarray, size: int, interpolation: str = "bilinear") -> np.ndarray:
    """
    Squash a frame into a `size x size` square. Aspect ratio is not preserved.
    """

    if interpolation not in _INTERPOLATIONS:
        raise ValueError(f"interpolation must be one of {_INTERPOLATIONS}, got {interpolation!r}")
    h, w = rgb.shape[:2]
    if (w, h) == (size, size):
        return rgb

    cv2 = _cv2()
    flag = {
        "bilinear": cv2.INTER_LINEAR,
        "area": cv2.INTER_AREA,
        "nearest": cv2.INTER_NEAREST,
    }[interpolation]
    # cv2.resize wants a contiguous buffer; BGR->RGB slicing yields a negative-stride view.
    return cv2.resize(np.ascontiguousarray(rgb), (size, size), interpolation=flag)


def _write_uint8(src: np.ndarray, dst: np.ndarray) -> None:
    np.copyto(dst, src, casting="unsafe")


def _write_float32(src: np.ndarray, dst: np.ndarray) -> None:
    np.divide(src, 127.5, out=dst, casting="unsafe")
    np.subtract(dst, 1.0, out=dst)


_WRITERS = {
    TensorEncoding.UINT8: _write_uint8,
    TensorEncoding.FLOAT32: _write_float32,
}


class TensorBuffer:
    """
    Pre-sized NHWC input buffer (1, size, size, 3), allocated once and
    rewritten in place for every frame.
    """

    def __init__(self, size: int, encoding: TensorEncoding):
        if size <= 0:
            raise ValueError("size must be > 0")
        self.size = int(size)
        self.encoding = TensorEncoding.parse(encoding)
        self.array = np.zeros((1, self.size, self.size, 3), dtype=self.encoding.dtype)
        self._write: Callable[[np.ndarray, np.ndarray], None] = _WRITERS[self.encoding]

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.array.shape)

    @property
    def nbytes(self) -> int:
        return int(self.array.nbytes)

    def fill(self, rgb_square: np.ndarray) -> np.ndarray:
        if rgb_square.shape != (self.size, self.size, 3):
            raise ConfigurationMismatch(
                f"Expected a {self.size}x{self.size}x3 frame for the input buffer, got {rgb_square.shape}"
            )
        self._write(rgb_square, self.array[0])
        return self.array


class Preprocessor:
    """
    Frame -> model input tensor.

    `encode()` returns the owned buffer itself; the next call overwrites it.
    """

    def __init__(
        self,
        size: int,
        encoding: TensorEncoding,
        *,
        channel_order: str = "rgb",
        interpolation: str = "bilinear",
    ):
        if channel_order not in _CHANNEL_ORDERS:
            raise ValueError(f"channel_order must be one of {_CHANNEL_ORDERS}, got {channel_order!r}")
        if interpolation not in _INTERPOLATIONS:
            raise ValueError(f"interpolation must be one of {_INTERPOLATIONS}, got {interpolation!r}")
        self.buffer = TensorBuffer(size, encoding)
        self.channel_order = channel_order
        self.interpolation = interpolation
        logger.debug(
            "Input buffer %s (%s), %d bytes",
            self.buffer.shape,
            self.buffer.encoding.value,
            self.buffer.nbytes,
        )

    @property
    def size(self) -> int:
        return self.buffer.size

    @property
    def encoding(self) -> TensorEncoding:
        return self.buffer.encoding

    def encode(self, image: np.ndarray) -> np.ndarray:
        rgb = as_rgb(image, self.channel_order)
        square = resize_square(rgb, self.size, self.interpolation)
        return self.buffer.fill(square)


def encode(
    image: np.ndarray,
    target_size: int,
    encoding: object,
    *,
    out: Optional[np.ndarray] = None,
    channel_order: str = "rgb",
    interpolation: str = "bilinear",
) -> np.ndarray:
    """
    Functional form of `Preprocessor.encode`.

    If `out` is given it must already be shaped (1, target_size, target_size, 3)
    with the encoding's dtype; it is overwritten and returned.
    """

    if not isinstance(encoding, (TensorEncoding, str)):
        raise UnsupportedEncoding(f"Unsupported tensor encoding: {encoding!r}")
    enc = TensorEncoding.parse(encoding)
    if int(target_size) <= 0:
        raise ValueError("target_size must be > 0")
    expected = (1, int(target_size), int(target_size), 3)
    if out is None:
        out = np.zeros(expected, dtype=enc.dtype)
    elif tuple(out.shape) != expected or out.dtype != enc.dtype:
        raise ConfigurationMismatch(
            f"Output buffer {tuple(out.shape)}/{out.dtype} does not match {expected}/{enc.dtype}"
        )

    rgb = as_rgb(image, channel_order)
    square = resize_square(rgb, int(target_size), interpolation)
    _WRITERS[enc](square, out[0])
    return out
