"""Mapping of detections onto the logical card grid."""
from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Tuple

import numpy as np

from .entities import ClassLayout, DetectionBox, GridDetection, GridGeometry, Size
from .exceptions import ContractViolationError

logger = logging.getLogger(__name__)

PRESENCE_THRESHOLD = 0.5


class GridMapper:
    """Builds grid-cell detections for one frame.

    Two front ends feed it: the grid classifier, which already scores every
    cell per class, and the SSD detector, whose NMS survivors are bucketed into
    the cell their box starts in.
    """

    def __init__(self, geometry: GridGeometry = GridGeometry(),
                 class_layout: ClassLayout = ClassLayout(),
                 presence_threshold: float = PRESENCE_THRESHOLD):
        self.geometry = geometry
        self.class_layout = class_layout
        self.presence_threshold = presence_threshold

    def from_class_grid(self, class_grid: np.ndarray, image_size: Size,
                        classes: Iterable[int]) -> List[GridDetection]:
        """Emit one detection per cell whose score for a class in ``classes`` passes the threshold.

        ``class_grid`` has shape (rows, cols, num_classes), optionally with a
        leading batch dimension of 1. Cells are visited row-major; when several
        of ``classes`` pass in one cell, the highest scoring one is kept.
        """
        grid = np.asarray(class_grid, dtype=np.float32)
        if grid.ndim == 4 and grid.shape[0] == 1:
            grid = grid[0]
        if grid.ndim != 3 or grid.shape[:2] != (self.geometry.rows, self.geometry.cols):
            raise ContractViolationError(
                f"class grid shape {grid.shape} does not match "
                f"{self.geometry.rows}x{self.geometry.cols} card grid"
            )
        classes = tuple(classes)
        for class_id in classes:
            if not 0 <= class_id < grid.shape[2]:
                raise ContractViolationError(f"class {class_id} not in grid with {grid.shape[2]} classes")

        detections: List[GridDetection] = []
        for row in range(self.geometry.rows):
            for col in range(self.geometry.cols):
                best_class = None
                best_conf = 0.0
                for class_id in classes:
                    conf = float(grid[row, col, class_id])
                    if conf >= self.presence_threshold and (best_class is None or conf > best_conf):
                        best_class, best_conf = class_id, conf
                if best_class is not None:
                    detections.append(GridDetection(
                        row=row, col=col, confidence=best_conf,
                        geometry=self.geometry, image_size=image_size, class_id=best_class,
                    ))
        return detections

    def cell_of(self, box: DetectionBox, image_size: Size) -> Tuple[int, int]:
        """Grid cell whose box origin is nearest to the detection's top-left corner."""
        step_x, step_y = self.geometry.cell_step(image_size)
        col = int(round(box.left / step_x)) if step_x > 0 else 0
        row = int(round(box.top / step_y)) if step_y > 0 else 0
        row = max(0, min(self.geometry.rows - 1, row))
        col = max(0, min(self.geometry.cols - 1, col))
        return row, col

    def from_detections(self, boxes: Iterable[DetectionBox], image_size: Size,
                        classes: Iterable[int]) -> List[GridDetection]:
        """Bucket pixel-space detections of ``classes`` onto the grid.

        At most one detection survives per cell: the most confident one, the
        earliest on ties. Output keeps first-seen cell order.
        """
        wanted = set(classes)
        cells: Dict[Tuple[int, int], GridDetection] = {}
        for box in boxes:
            if box.label not in wanted:
                continue
            row, col = self.cell_of(box, image_size)
            current = cells.get((row, col))
            if current is None or box.confidence > current.confidence:
                cells[(row, col)] = GridDetection(
                    row=row, col=col, confidence=box.confidence,
                    geometry=self.geometry, image_size=image_size, class_id=box.label,
                )
        return list(cells.values())

    def number_cells(self, class_grid: np.ndarray, image_size: Size) -> List[GridDetection]:
        return self.from_class_grid(class_grid, image_size, self.class_layout.number_classes)

    def expiry_cells(self, class_grid: np.ndarray, image_size: Size) -> List[GridDetection]:
        return self.from_class_grid(class_grid, image_size, self.class_layout.expiry_classes)
