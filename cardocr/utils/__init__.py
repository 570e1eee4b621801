"""Utility functions package."""

from .geometry import clamp, area_of, iou_corner
from .image_utils import crop_image, resize_to, aspect_ratio_deviation, to_normalized_blob

__all__ = [
    "clamp", "area_of", "iou_corner",
    "crop_image", "resize_to", "aspect_ratio_deviation", "to_normalized_blob",
]
