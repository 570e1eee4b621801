"""Card layout detection for one frame.

Turns detector output into a card layout: which grid cells hold the card
number, how they are arranged, and where the expiry date is. Two detector
front ends are supported:

* the SSD digit detector, whose raw tensors are decoded, suppressed with hard
  NMS and bucketed onto the card grid (``process_tensors``);
* the grid classifier, which scores every grid cell directly
  (``process_grid``).

Both paths end in the same sequence search, tried in the fallback order
horizontal, vertical, Amex.
"""

import logging
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..config.settings import Config
from ..core.box_decoder import NUM_CLASSES, BoxDecoder
from ..core.entities import (
    CardNumber, DetectionBox, DetectorOutput, GridDetection, LayoutKind, LayoutResult, Size,
)
from ..core.grid import GridMapper
from ..core.nms import extract_predictions
from ..core.performance import PerformanceTimer
from ..core.post_detection import Line, PostDetectionAlgorithm, select_expiry
from ..core.validators import is_valid_card_number

logger = logging.getLogger(__name__)

LAYOUT_FALLBACK_ORDER = (LayoutKind.HORIZONTAL, LayoutKind.VERTICAL, LayoutKind.AMEX)

Cells = Tuple[List[GridDetection], List[GridDetection]]


class CardLayoutService:
    """Stateless layout search apart from the prior table built at construction."""

    def __init__(self, config: Optional[Config] = None, decoder: Optional[BoxDecoder] = None):
        self.config = config or Config()
        self.geometry = self.config.grid_geometry()
        self.params = self.config.search_parameters()
        self.decoder = decoder or BoxDecoder(
            feature_maps=self.config.feature_map_sizes(),
            num_classes=NUM_CLASSES,
            center_variance=self.config.center_variance,
            size_variance=self.config.size_variance,
        )
        self.grid_mapper = GridMapper(self.geometry, self.config.grid_class_layout(),
                                      self.config.grid_presence_threshold)
        self.detector_mapper = GridMapper(self.geometry, self.config.detector_class_layout())

    # -- front ends -------------------------------------------------------

    def detect(self, output: DetectorOutput, image_size: Size) -> List[DetectionBox]:
        """Decode raw SSD tensors and keep the NMS survivors, in pixels of ``image_size``."""
        with PerformanceTimer("layout.decode"):
            decoded = self.decoder.decode(output)
        with PerformanceTimer("layout.nms"):
            boxes = extract_predictions(
                decoded.boxes, decoded.scores, image_size,
                prob_threshold=self.config.prob_threshold,
                iou_threshold=self.config.iou_threshold,
                top_k=self.config.top_k,
                candidate_cap=self.config.nms_candidate_cap,
            )
        logger.debug(f"SSD detector: {len(boxes)} boxes after NMS")
        return boxes

    def detector_cells(self, boxes: Sequence[DetectionBox], image_size: Size) -> Cells:
        """Number and expiry cells for NMS survivors of the SSD detector."""
        layout = self.detector_mapper.class_layout
        number_cells = self.detector_mapper.from_detections(boxes, image_size, layout.number_classes)
        expiry_cells = self.detector_mapper.from_detections(boxes, image_size, layout.expiry_classes)
        return number_cells, expiry_cells

    def grid_cells(self, class_grid: np.ndarray, image_size: Size) -> Cells:
        """Number and expiry cells from a grid classifier confidence grid."""
        with PerformanceTimer("layout.grid"):
            number_cells = self.grid_mapper.number_cells(class_grid, image_size)
            expiry_cells = self.grid_mapper.expiry_cells(class_grid, image_size)
        logger.debug(f"Grid classifier: {len(number_cells)} number cells, {len(expiry_cells)} expiry cells")
        return number_cells, expiry_cells

    # -- search -----------------------------------------------------------

    def candidate_layouts(self, number_cells: Sequence[GridDetection]) -> Iterator[Tuple[LayoutKind, List[Line]]]:
        """Yield accepted lines per layout kind, lazily, in fallback order."""
        algorithm = PostDetectionAlgorithm(number_cells, self.geometry, self.params)
        searches = {
            LayoutKind.HORIZONTAL: algorithm.horizontal_numbers,
            LayoutKind.VERTICAL: algorithm.vertical_numbers,
            LayoutKind.AMEX: algorithm.amex_numbers,
        }
        for kind in LAYOUT_FALLBACK_ORDER:
            with PerformanceTimer(f"layout.search.{kind.value}"):
                lines = searches[kind]()
            yield kind, lines

    def find_layout(self, number_cells: Sequence[GridDetection],
                    expiry_cells: Sequence[GridDetection] = ()) -> LayoutResult:
        """First layout kind with at least one accepted line, plus the expiry cell.

        No number cells, or no accepted line in any layout, gives
        ``LayoutKind.NONE``; the expiry cell is still reported.
        """
        expiry = select_expiry(expiry_cells)
        if not number_cells:
            logger.debug("No number cells, no layout")
            return LayoutResult(LayoutKind.NONE, expiry=expiry)

        for kind, lines in self.candidate_layouts(number_cells):
            if lines:
                logger.debug(f"Layout {kind.value}: {len(lines)} candidate lines")
                return LayoutResult(kind, tuple(lines), expiry)
            logger.debug(f"No {kind.value} line found")

        return LayoutResult(LayoutKind.NONE, expiry=expiry)

    def process_tensors(self, output: DetectorOutput, image_size: Size) -> LayoutResult:
        boxes = self.detect(output, image_size)
        return self.find_layout(*self.detector_cells(boxes, image_size))

    def process_grid(self, class_grid: np.ndarray, image_size: Size) -> LayoutResult:
        return self.find_layout(*self.grid_cells(class_grid, image_size))

    # -- direct read ------------------------------------------------------

    def read_ssd_digits(self, boxes: Sequence[DetectionBox]) -> Optional[CardNumber]:
        """Read the number straight off the SSD digit boxes, left to right.

        Label 10 is the digit 0. Returns None unless the digits form a valid
        card number.
        """
        digit_labels = set(self.detector_mapper.class_layout.number_classes)
        digit_boxes = sorted((b for b in boxes if b.label in digit_labels), key=lambda b: b.left)
        number = ''.join(str(b.label % 10) for b in digit_boxes)
        if not is_valid_card_number(number):
            logger.debug(f"SSD direct read rejected ({len(number)} digits)")
            return None
        return CardNumber(number=number, boxes=tuple(digit_boxes))
