import unittest

import numpy as np

from ssd_kit.nms import NMSConfig, iou, nms


class TestIoU(unittest.TestCase):
    def test_identical_boxes(self) -> None:
        self.assertAlmostEqual(iou((0, 0, 10, 10), (0, 0, 10, 10)), 1.0)

    def test_disjoint_and_touching_boxes(self) -> None:
        self.assertEqual(iou((0, 0, 10, 10), (20, 20, 30, 30)), 0.0)
        # Shared edge only: no area in common.
        self.assertEqual(iou((0, 0, 10, 10), (10, 0, 20, 10)), 0.0)
        # Overlap on x only.
        self.assertEqual(iou((0, 0, 10, 10), (5, 20, 15, 30)), 0.0)

    def test_partial_overlap(self) -> None:
        # inter = 5 * 10 = 50, union = 100 + 100 - 50 = 150
        self.assertAlmostEqual(iou((0, 0, 10, 10), (5, 0, 15, 10)), 50.0 / 150.0)

    def test_contained_box(self) -> None:
        self.assertAlmostEqual(iou((0, 0, 100, 100), (0, 0, 70, 100)), 0.7)

    def test_degenerate_union(self) -> None:
        self.assertEqual(iou((0, 0, 0, 0), (0, 0, 0, 0)), 0.0)


class TestNms(unittest.TestCase):
    def test_empty(self) -> None:
        keep = nms(np.zeros((0, 4)), np.zeros((0,)), NMSConfig())
        self.assertEqual(keep.shape, (0,))

    def test_suppresses_overlap_above_threshold(self) -> None:
        boxes = np.array([[0, 0, 70, 100], [0, 0, 100, 100]], dtype=np.float32)
        scores = np.array([0.85, 0.9], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.6))
        self.assertEqual(keep.tolist(), [1])

    def test_iou_equal_to_threshold_is_kept(self) -> None:
        # IoU exactly 0.5; only strictly greater suppresses.
        boxes = np.array([[0, 0, 100, 100], [0, 0, 50, 100]], dtype=np.float64)
        scores = np.array([0.9, 0.8])
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [0, 1])

    def test_ties_keep_input_order(self) -> None:
        boxes = np.array(
            [[0, 0, 10, 10], [100, 100, 110, 110], [200, 200, 210, 210]],
            dtype=np.float32,
        )
        scores = np.array([0.7, 0.9, 0.7], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [1, 0, 2])

    def test_tie_breaking_decides_survivor(self) -> None:
        # Two equal-score duplicates: the first row wins.
        boxes = np.array([[0, 0, 10, 10], [0, 0, 10, 10]], dtype=np.float32)
        scores = np.array([0.8, 0.8], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [0])

    def test_compares_against_accepted_boxes_only(self) -> None:
        # B overlaps A heavily and is dropped; C overlaps B but not A, so C survives.
        boxes = np.array(
            [[0, 0, 100, 100], [40, 0, 140, 100], [90, 0, 190, 100]],
            dtype=np.float64,
        )
        scores = np.array([0.9, 0.8, 0.7])
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.3))
        self.assertEqual(keep.tolist(), [0, 2])

    def test_idempotent(self) -> None:
        rng = np.random.default_rng(7)
        xy = rng.uniform(0, 200, size=(30, 2))
        wh = rng.uniform(20, 80, size=(30, 2))
        boxes = np.hstack([xy, xy + wh])
        scores = rng.uniform(0, 1, size=30)
        cfg = NMSConfig(iou_threshold=0.4)

        keep = nms(boxes, scores, cfg)
        again = nms(boxes[keep], scores[keep], cfg)
        self.assertEqual(again.tolist(), list(range(len(keep))))
        for i in keep:
            for j in keep:
                if i != j:
                    self.assertLessEqual(iou(boxes[i], boxes[j]), 0.4)

    def test_max_detections_caps_output(self) -> None:
        boxes = np.array([[i * 20, 0, i * 20 + 10, 10] for i in range(5)], dtype=np.float32)
        scores = np.array([0.5, 0.6, 0.7, 0.8, 0.9], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.5, max_detections=2))
        self.assertEqual(keep.tolist(), [4, 3])

    def test_length_mismatch_rejected(self) -> None:
        with self.assertRaises(ValueError):
            nms(np.zeros((2, 4)), np.zeros((3,)), NMSConfig())


if __name__ == "__main__":
    unittest.main()
