"""Hard non-maximum suppression and per-class prediction extraction."""
from __future__ import annotations
import logging
from typing import List, Sequence

import numpy as np

from ..utils.geometry import iou_corner
from .entities import DetectionBox, Size

logger = logging.getLogger(__name__)

PROB_THRESHOLD = 0.5
IOU_THRESHOLD = 0.5
TOP_K = 20
CANDIDATE_CAP = 200


def hard_nms(boxes: Sequence, probabilities: Sequence[float], iou_threshold: float = IOU_THRESHOLD,
             top_k: int = TOP_K, candidate_cap: int = CANDIDATE_CAP) -> List[int]:
    """Hard (not soft) NMS over boxes of a single class.

    Args:
        boxes: corner-form boxes, indexable as ``boxes[i] -> [xmin, ymin, xmax, ymax]``
        probabilities: one probability per box
        iou_threshold: boxes overlapping a picked box at or above this are dropped
        top_k: keep at most this many picks; ``<= 0`` keeps all
        candidate_cap: only the ``candidate_cap`` most probable boxes are considered

    Returns:
        Picked indices into ``boxes``, highest probability first. Ties keep the
        original index order.
    """
    probs = np.asarray(probabilities, dtype=np.float32)
    if probs.size == 0:
        return []

    order = np.argsort(-probs, kind="stable")[:candidate_cap]
    remaining = [int(i) for i in order]
    picked: List[int] = []

    while remaining:
        current = remaining.pop(0)
        picked.append(current)
        if 0 < top_k <= len(picked):
            break
        current_box = boxes[current]
        remaining = [i for i in remaining if iou_corner(current_box, boxes[i]) < iou_threshold]

    return picked


def extract_predictions(boxes: np.ndarray, scores: np.ndarray, image_size: Size,
                        prob_threshold: float = PROB_THRESHOLD,
                        iou_threshold: float = IOU_THRESHOLD,
                        top_k: int = TOP_K,
                        background_class: int = 0,
                        candidate_cap: int = CANDIDATE_CAP) -> List[DetectionBox]:
    """Apply NMS to each non-background class and scale survivors to pixels.

    ``boxes`` are normalized corner-form boxes (N, 4), ``scores`` are class
    probabilities (N, C). The result is grouped by class, and within a class
    ordered by descending probability.
    """
    detections: List[DetectionBox] = []
    for class_index in range(scores.shape[1]):
        if class_index == background_class:
            continue
        class_scores = scores[:, class_index]
        mask = class_scores > prob_threshold
        if not np.any(mask):
            continue
        subset_boxes = boxes[mask]
        subset_probs = class_scores[mask]
        for index in hard_nms(subset_boxes, subset_probs, iou_threshold, top_k, candidate_cap):
            xmin, ymin, xmax, ymax = (float(v) for v in subset_boxes[index])
            detections.append(DetectionBox(
                left=xmin * image_size.width,
                top=ymin * image_size.height,
                right=xmax * image_size.width,
                bottom=ymax * image_size.height,
                confidence=float(subset_probs[index]),
                label=class_index,
            ))

    logger.debug(f"NMS kept {len(detections)} boxes")
    return detections
