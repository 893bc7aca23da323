"""
Error taxonomy for the detection pipeline.

Caller bugs (`InvalidImage`, `UnsupportedEncoding`) surface immediately.
`InferenceError` is a per-frame fault that `SsdPipeline` absorbs into an empty,
flagged result. `ConfigurationMismatch` is raised while wiring the pipeline,
before any frame is processed.
"""

from __future__ import annotations


class DetectionError(Exception):
    """Base class for every error raised by `ssd_kit`."""


class InvalidImage(DetectionError, ValueError):
    pass


class UnsupportedEncoding(DetectionError, ValueError):
    pass


class EngineNotReady(DetectionError, RuntimeError):
    pass


class InferenceError(DetectionError, RuntimeError):
    pass


class ConfigurationMismatch(DetectionError, ValueError):
    pass
