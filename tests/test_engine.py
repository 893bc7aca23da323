import unittest

import numpy as np

from fakes import FakeEngine, ssd_outputs
from ssd_kit.engine import InferenceAdapter
from ssd_kit.errors import ConfigurationMismatch, EngineNotReady, InferenceError, UnsupportedEncoding
from ssd_kit.types import TensorEncoding


class TestInferenceAdapter(unittest.TestCase):
    def test_infer_before_open(self) -> None:
        adapter = InferenceAdapter(FakeEngine())
        with self.assertRaises(EngineNotReady):
            adapter.infer(np.zeros((1, 300, 300, 3), dtype=np.uint8))

    def test_collects_four_outputs(self) -> None:
        outputs = ssd_outputs([[0.1, 0.2, 0.3, 0.4], [0.5, 0.5, 0.9, 0.9]], [1, 2], [0.9, 0.4])
        adapter = InferenceAdapter(FakeEngine(outputs), max_detections=10)
        adapter.open()
        raw = adapter.infer(np.zeros((1, 300, 300, 3), dtype=np.uint8))
        self.assertEqual(raw.count, 2)
        self.assertEqual(raw.boxes.shape, (10, 4))
        rows = list(raw.rows())
        self.assertEqual(len(rows), 2)
        self.assertAlmostEqual(rows[0].x_min, 0.2, places=6)
        self.assertEqual(rows[1].class_id, 2.0)

    def test_count_clamped_to_max_detections(self) -> None:
        outputs = ssd_outputs([[0, 0, 1, 1]] * 3, [1, 1, 1], [0.9, 0.8, 0.7], count=25)
        adapter = InferenceAdapter(FakeEngine(outputs), max_detections=2)
        adapter.open()
        raw = adapter.infer(np.zeros((1, 300, 300, 3), dtype=np.uint8))
        self.assertEqual(raw.count, 2)
        self.assertEqual(len(list(raw.rows())), 2)

    def test_non_finite_count_is_zero(self) -> None:
        outputs = ssd_outputs([[0, 0, 1, 1]], [1], [0.9], count=float("nan"))
        adapter = InferenceAdapter(FakeEngine(outputs))
        adapter.open()
        self.assertEqual(adapter.infer(np.zeros((1, 300, 300, 3), dtype=np.uint8)).count, 0)

    def test_engine_fault_becomes_inference_error(self) -> None:
        adapter = InferenceAdapter(FakeEngine(error=RuntimeError("boom")))
        adapter.open()
        with self.assertRaises(InferenceError) as ctx:
            adapter.infer(np.zeros((1, 300, 300, 3), dtype=np.uint8))
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_malformed_outputs_become_inference_error(self) -> None:
        engine = FakeEngine([np.zeros((1, 10, 3), dtype=np.float32)] * 4)
        adapter = InferenceAdapter(engine)
        adapter.open()
        with self.assertRaises(InferenceError):
            adapter.infer(np.zeros((1, 300, 300, 3), dtype=np.uint8))

    def test_output_order_by_name(self) -> None:
        b, c, s, n = ssd_outputs([[0.1, 0.1, 0.5, 0.5]], [1], [0.9])
        engine = FakeEngine([c, n, b, s], output_names=("classes", "count", "boxes", "scores"))
        adapter = InferenceAdapter(engine, output_order=("boxes", "classes", "scores", "count"))
        adapter.open()
        raw = adapter.infer(np.zeros((1, 300, 300, 3), dtype=np.uint8))
        self.assertEqual(raw.count, 1)
        self.assertAlmostEqual(raw.scores[0], 0.9, places=6)

    def test_unknown_output_name(self) -> None:
        adapter = InferenceAdapter(FakeEngine(), output_order=("boxes", "classes", "scores", "num"))
        with self.assertRaises(ConfigurationMismatch):
            adapter.open()

    def test_declared_encoding(self) -> None:
        adapter = InferenceAdapter(FakeEngine(dtype=np.float32))
        adapter.open()
        self.assertEqual(adapter.input_encoding, TensorEncoding.FLOAT32)

    def test_unsupported_input_type(self) -> None:
        adapter = InferenceAdapter(FakeEngine(dtype=np.int16))
        with self.assertRaises(UnsupportedEncoding):
            adapter.open()

    def test_too_few_outputs(self) -> None:
        adapter = InferenceAdapter(FakeEngine(output_names=("boxes", "scores")))
        with self.assertRaises(ConfigurationMismatch):
            adapter.open()

    def test_open_once_and_close_idempotent(self) -> None:
        engine = FakeEngine()
        with InferenceAdapter(engine) as adapter:
            adapter.open()
            self.assertTrue(adapter.is_ready)
        self.assertEqual(engine.load_calls, 1)
        self.assertEqual(engine.release_calls, 1)
        adapter.close()
        self.assertEqual(engine.release_calls, 1)
        with self.assertRaises(EngineNotReady):
            adapter.infer(np.zeros((1, 300, 300, 3), dtype=np.uint8))

    def test_invalid_arguments(self) -> None:
        with self.assertRaises(ValueError):
            InferenceAdapter(FakeEngine(), max_detections=0)
        with self.assertRaises(ValueError):
            InferenceAdapter(FakeEngine(), output_order=(0, 1, 2))


if __name__ == "__main__":
    unittest.main()
