"""Prior (anchor) box generation for the SSD digit detector.

Priors are built once, in center form ``(cx, cy, w, h)`` normalized to the
detector input, and shared read-only across frames.
"""
from __future__ import annotations
import math
from typing import Tuple

import numpy as np

from .entities import FeatureMapSizes, Size

TRAINED_IMAGE_SIZE = Size(600, 375)
PRIORS_PER_ACTIVATION = 3
ASPECT_RATIO = 3.0

# (shrinkage, box size min, box size max) for each detector layer
LAYER_PRIOR_SPECS: Tuple[Tuple[int, float, float], ...] = (
    (16, 14.0, 30.0),
    (31, 30.0, 45.0),
)


def generate_priors(feature_map_width: int, feature_map_height: int, shrinkage: int,
                    box_size_min: float, box_size_max: float,
                    aspect_ratio: float = ASPECT_RATIO,
                    image_size: Size = TRAINED_IMAGE_SIZE) -> np.ndarray:
    """Priors for one layer, ordered row-major by activation then by prior kind."""
    scale_w = image_size.width / float(shrinkage)
    scale_h = image_size.height / float(shrinkage)
    ratio = math.sqrt(aspect_ratio)
    kinds = (
        (box_size_min, 1.0),
        (math.sqrt(box_size_max * box_size_min), ratio),
        (box_size_min, ratio),
    )

    count = feature_map_width * feature_map_height * PRIORS_PER_ACTIVATION
    priors = np.empty((count, 4), dtype=np.float32)
    for index in range(count):
        activation = index // PRIORS_PER_ACTIVATION
        row = activation // feature_map_width
        col = activation % feature_map_width
        size, r = kinds[index % PRIORS_PER_ACTIVATION]
        priors[index] = (
            (col + 0.5) / scale_w,
            (row + 0.5) / scale_h,
            size / image_size.width,
            size / image_size.height * r,
        )
    return priors


def combine_priors(feature_maps: FeatureMapSizes = FeatureMapSizes()) -> np.ndarray:
    """Prior table for both detector layers, clamped to [0, 1]."""
    tables = []
    for (width, height), (shrinkage, size_min, size_max) in zip(feature_maps.layers(), LAYER_PRIOR_SPECS):
        tables.append(generate_priors(width, height, shrinkage, size_min, size_max))
    priors = np.concatenate(tables, axis=0)
    np.clip(priors, 0.0, 1.0, out=priors)
    priors.setflags(write=False)
    return priors


def prior_count(feature_maps: FeatureMapSizes = FeatureMapSizes()) -> int:
    return sum(w * h * PRIORS_PER_ACTIVATION for w, h in feature_maps.layers())
