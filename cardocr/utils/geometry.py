"""Geometry and bounding box utilities."""

IOU_EPS = 1e-5
MAX_SIDE = 1000.0


def clamp(value, lo, hi):
    """Clamp the value between lo and hi."""
    return max(lo, min(hi, value))


def area_of(left_top, right_bottom):
    """Area of the rectangle given by two corners, each side clamped to [0, MAX_SIDE]."""
    w = clamp(right_bottom[0] - left_top[0], 0.0, MAX_SIDE)
    h = clamp(right_bottom[1] - left_top[1], 0.0, MAX_SIDE)
    return w * h


def iou_corner(box_a, box_b, eps: float = IOU_EPS) -> float:
    """Intersection over union (Jaccard index) of two corner-form boxes.

    boxes: [xmin, ymin, xmax, ymax]. ``eps`` keeps the denominator non-zero.
    """
    overlap_lt = (max(box_a[0], box_b[0]), max(box_a[1], box_b[1]))
    overlap_rb = (min(box_a[2], box_b[2]), min(box_a[3], box_b[3]))
    overlap = area_of(overlap_lt, overlap_rb)
    area_a = area_of(box_a[:2], box_a[2:4])
    area_b = area_of(box_b[:2], box_b[2:4])
    return float(overlap / (area_a + area_b - overlap + eps))

