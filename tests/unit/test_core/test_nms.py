"""Unit tests for IoU and hard non-maximum suppression."""
import numpy as np
import pytest

from cardocr.core.entities import Size
from cardocr.core.nms import extract_predictions, hard_nms
from cardocr.utils.geometry import area_of, iou_corner


class TestIoU:

    def test_symmetry(self):
        rng = np.random.default_rng(1)
        for _ in range(50):
            a = np.sort(rng.random(4).reshape(2, 2), axis=0).T.ravel()[[0, 2, 1, 3]]
            b = np.sort(rng.random(4).reshape(2, 2), axis=0).T.ravel()[[0, 2, 1, 3]]
            assert iou_corner(a, b) == pytest.approx(iou_corner(b, a))

    def test_self_overlap_is_one(self):
        box = (10.0, 10.0, 20.0, 30.0)
        assert iou_corner(box, box) == pytest.approx(1.0, abs=1e-6)

    def test_disjoint_boxes(self):
        assert iou_corner((0, 0, 1, 1), (2, 2, 3, 3)) == 0.0

    def test_half_overlap(self):
        # overlap 50, union 150
        assert iou_corner((0, 0, 10, 10), (5, 0, 15, 10)) == pytest.approx(1 / 3, rel=1e-5)

    def test_degenerate_box_has_no_area(self):
        assert area_of((5, 5), (1, 1)) == 0.0
        assert iou_corner((5, 5, 1, 1), (5, 5, 1, 1)) == 0.0

    def test_sides_are_clamped(self):
        assert area_of((0, 0), (5000, 2)) == 2000.0


class TestHardNms:

    BOXES = np.array([
        [0, 0, 10, 10],
        [1, 1, 11, 11],
        [20, 20, 30, 30],
        [21, 21, 31, 31],
        [50, 50, 60, 60],
    ], dtype=np.float32)

    def test_overlapping_boxes_are_suppressed(self):
        picked = hard_nms(self.BOXES, [0.9, 0.8, 0.7, 0.95, 0.6], iou_threshold=0.5, top_k=-1)
        assert picked == [3, 0, 4]

    def test_top_k_limits_picks(self):
        picked = hard_nms(self.BOXES, [0.9, 0.8, 0.7, 0.95, 0.6], top_k=2)
        assert picked == [3, 0]

    def test_non_positive_top_k_keeps_all(self):
        probs = [0.9, 0.8, 0.7, 0.6, 0.5]
        assert len(hard_nms(self.BOXES, probs, iou_threshold=1.1, top_k=0)) == 5

    def test_ties_keep_index_order(self):
        boxes = np.array([[0, 0, 1, 1], [5, 5, 6, 6], [10, 10, 11, 11]], dtype=np.float32)
        assert hard_nms(boxes, [0.5, 0.5, 0.5]) == [0, 1, 2]

    def test_candidate_cap(self):
        boxes = np.array([[i * 10, 0, i * 10 + 5, 5] for i in range(5)], dtype=np.float32)
        assert hard_nms(boxes, [0.1, 0.2, 0.3, 0.4, 0.5], candidate_cap=2) == [4, 3]

    def test_empty_input(self):
        assert hard_nms(np.zeros((0, 4), dtype=np.float32), []) == []

    def test_random_boxes_respect_threshold_and_top_k(self):
        rng = np.random.default_rng(3)
        for _ in range(20):
            corners = rng.random((60, 2)) * 100
            sizes = rng.random((60, 2)) * 30 + 1
            boxes = np.hstack([corners, corners + sizes]).astype(np.float32)
            probs = rng.random(60)
            picked = hard_nms(boxes, probs, iou_threshold=0.5, top_k=20)
            assert len(picked) <= 20
            assert len(set(picked)) == len(picked)
            for i, a in enumerate(picked):
                for b in picked[i + 1:]:
                    assert iou_corner(boxes[a], boxes[b]) < 0.5


class TestExtractPredictions:

    def test_background_and_threshold(self):
        boxes = np.array([[0.1, 0.1, 0.2, 0.2], [0.5, 0.5, 0.6, 0.6], [0.7, 0.7, 0.8, 0.8]],
                         dtype=np.float32)
        scores = np.array([
            [0.9, 0.1, 0.0],   # background only
            [0.2, 0.8, 0.0],   # class 1
            [0.5, 0.0, 0.5],   # class 2 at exactly the threshold
        ], dtype=np.float32)
        detections = extract_predictions(boxes, scores, Size(200, 100))
        assert len(detections) == 1
        box = detections[0]
        assert box.label == 1
        assert box.confidence == pytest.approx(0.8)
        assert box.rect == pytest.approx((100.0, 50.0, 120.0, 60.0))

    def test_grouped_by_class(self):
        boxes = np.array([[0.0, 0.0, 0.1, 0.1], [0.5, 0.5, 0.6, 0.6]], dtype=np.float32)
        scores = np.array([[0.0, 0.0, 1.0], [0.0, 0.9, 0.1]], dtype=np.float32)
        labels = [d.label for d in extract_predictions(boxes, scores, Size(100, 100))]
        assert labels == [1, 2]

    def test_nothing_above_threshold(self):
        boxes = np.zeros((3, 4), dtype=np.float32)
        scores = np.full((3, 11), 1 / 11, dtype=np.float32)
        assert extract_predictions(boxes, scores, Size(600, 375)) == []
