"""Image processing utilities used to feed the backends."""

import cv2
import numpy as np
from typing import Tuple

IMAGE_MEAN = 127.5
IMAGE_STD = 128.5


def crop_image(image: np.ndarray, bbox: Tuple[float, float, float, float]) -> np.ndarray:
    """Crop image using bounding box coordinates, rounded and clipped to the image."""
    x1, y1, x2, y2 = (int(round(v)) for v in bbox)
    h, w = image.shape[:2]

    x1 = max(0, min(x1, w))
    y1 = max(0, min(y1, h))
    x2 = max(x1, min(x2, w))
    y2 = max(y1, min(y2, h))

    return image[y1:y2, x1:x2]


def resize_to(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resize image to an exact model input size."""
    h, w = image.shape[:2]
    if w == width and h == height:
        return image
    return cv2.resize(image, (width, height), interpolation=cv2.INTER_LINEAR)


def aspect_ratio_deviation(image_shape, target_width: int, target_height: int) -> float:
    """Relative deviation of the image aspect ratio from the target one (0.1 == 10%)."""
    h, w = image_shape[:2]
    if h == 0:
        return float("inf")
    return abs(1.0 - (w / h) / (target_width / target_height))


def to_normalized_blob(image: np.ndarray, width: int, height: int,
                       mean: float = IMAGE_MEAN, std: float = IMAGE_STD) -> np.ndarray:
    """Resize a BGR image and return an NCHW float32 RGB blob normalized by mean/std."""
    resized = resize_to(image, width, height)
    return cv2.dnn.blobFromImage(
        resized,
        scalefactor=1.0 / std,
        size=(width, height),
        mean=(mean, mean, mean),
        swapRB=True,
        crop=False,
    )
