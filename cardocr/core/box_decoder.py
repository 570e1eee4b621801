"""Decoding of raw SSD detector output into corner-form boxes and class probabilities."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .entities import DetectorOutput, FeatureMapSizes
from .exceptions import ContractViolationError
from .priors import PRIORS_PER_ACTIVATION, combine_priors, prior_count

logger = logging.getLogger(__name__)

NUM_COORDINATES = 4
NUM_CLASSES = 11
CENTER_VARIANCE = 0.1
SIZE_VARIANCE = 0.2


def rearrange_layer_output(values: np.ndarray, feature_maps: FeatureMapSizes,
                           priors_per_activation: int, values_per_prior: int) -> np.ndarray:
    """Permute a flat detector output from layer-output order into prior order.

    Within each layer of ``T = h * w * priors * values_per_prior`` values, output
    position ``s * (T / h) + k`` takes input position ``k * h + s``.
    """
    flat = np.asarray(values, dtype=np.float32).ravel()
    expected = sum(w * h * priors_per_activation * values_per_prior for w, h in feature_maps.layers())
    if flat.size != expected:
        raise ContractViolationError(f"expected {expected} values in detector output, got {flat.size}")

    chunks = []
    offset = 0
    for width, height in feature_maps.layers():
        total = width * height * priors_per_activation * values_per_prior
        layer = flat[offset:offset + total]
        chunks.append(layer.reshape(total // height, height).T.ravel())
        offset += total
    return np.concatenate(chunks)


def decode_locations(locations: np.ndarray, priors: np.ndarray,
                     center_variance: float = CENTER_VARIANCE,
                     size_variance: float = SIZE_VARIANCE) -> np.ndarray:
    """Convert regression offsets into center-form boxes ``(cx, cy, w, h)``."""
    if locations.shape != priors.shape:
        raise ContractViolationError(
            f"locations shape {locations.shape} does not match priors shape {priors.shape}"
        )
    boxes = np.empty_like(locations, dtype=np.float32)
    boxes[:, :2] = locations[:, :2] * center_variance * priors[:, 2:] + priors[:, :2]
    boxes[:, 2:] = np.exp(locations[:, 2:] * size_variance) * priors[:, 2:]
    return boxes


def center_form_to_corner_form(boxes: np.ndarray) -> np.ndarray:
    """Convert ``(cx, cy, w, h)`` to ``(xmin, ymin, xmax, ymax)``."""
    corners = np.empty_like(boxes)
    corners[:, :2] = boxes[:, :2] - boxes[:, 2:] / 2
    corners[:, 2:] = boxes[:, :2] + boxes[:, 2:] / 2
    return corners


def softmax_2d(scores: np.ndarray) -> np.ndarray:
    """Row-wise softmax, exponentiate then normalize.

    No max subtraction. Exponentials are taken in double precision and the row
    sum is accumulated column by column in single precision, so large logits
    overflow to inf/nan exactly like the unguarded formula would.
    """
    with np.errstate(over="ignore", invalid="ignore"):
        exps = np.exp(np.asarray(scores, dtype=np.float64))
        row_sums = np.zeros((exps.shape[0], 1), dtype=np.float32)
        for col in range(exps.shape[1]):
            row_sums = (row_sums + exps[:, col:col + 1]).astype(np.float32)
        return (exps / row_sums).astype(np.float32)


@dataclass(frozen=True, slots=True)
class DecodedPredictions:
    """Per-prior corner-form boxes (normalized) and class probabilities."""
    boxes: np.ndarray  # (NumPriors, 4)
    scores: np.ndarray  # (NumPriors, NumClasses)

    def __len__(self) -> int:
        return int(self.boxes.shape[0])


class BoxDecoder:
    """Turns a frame's raw detector tensors into decoded boxes and probabilities."""

    def __init__(self, feature_maps: FeatureMapSizes = FeatureMapSizes(),
                 num_classes: int = NUM_CLASSES,
                 center_variance: float = CENTER_VARIANCE,
                 size_variance: float = SIZE_VARIANCE,
                 priors: Optional[np.ndarray] = None):
        self.feature_maps = feature_maps
        self.num_classes = num_classes
        self.center_variance = center_variance
        self.size_variance = size_variance
        self.priors = priors if priors is not None else combine_priors(feature_maps)
        self.num_priors = prior_count(feature_maps)
        if self.priors.shape != (self.num_priors, NUM_COORDINATES):
            raise ContractViolationError(
                f"prior table shape {self.priors.shape} != ({self.num_priors}, {NUM_COORDINATES})"
            )

    def decode(self, output: DetectorOutput) -> DecodedPredictions:
        locations = rearrange_layer_output(
            output.locations, self.feature_maps, PRIORS_PER_ACTIVATION, NUM_COORDINATES
        ).reshape(self.num_priors, NUM_COORDINATES)
        boxes = center_form_to_corner_form(
            decode_locations(locations, self.priors, self.center_variance, self.size_variance)
        )

        logits = rearrange_layer_output(
            output.class_logits, self.feature_maps, PRIORS_PER_ACTIVATION, self.num_classes
        ).reshape(self.num_priors, self.num_classes)
        scores = softmax_2d(logits)

        logger.debug(f"Decoded {self.num_priors} priors into corner-form boxes")
        return DecodedPredictions(boxes=boxes, scores=scores)
