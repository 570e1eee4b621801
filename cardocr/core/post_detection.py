"""Organize grid detections into plausible card-number lines.

After the detector runs, this stage looks for sequences of grid cells that
could be a printed card number. It suppresses near-duplicate cells around
confident ones, runs a depth first search over the remaining cells for
adjacency-constrained chains of a fixed length, and filters the chains with
spacing heuristics. Three layouts are supported: a horizontal number, a
vertical number and the grouped Amex number.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .entities import GridDetection, GridGeometry
from .validators import has_amex_gaps, is_evenly_spaced

logger = logging.getLogger(__name__)

Line = Tuple[GridDetection, ...]
Predicate = Callable[[GridDetection, GridDetection], bool]


@dataclass(frozen=True, slots=True)
class SearchParameters:
    number_word_count: int = 4
    amex_word_count: int = 5
    max_boxes_to_detect: int = 20
    delta_row_for_combine: int = 2
    delta_col_for_combine: int = 2
    delta_col_for_amex_combine: int = 1
    delta_row_for_horizontal_numbers: int = 1
    delta_col_for_vertical_numbers: int = 1


def sort_by_confidence(boxes: Iterable[GridDetection]) -> List[GridDetection]:
    """Descending confidence; equal confidences keep their original order."""
    return sorted(boxes, key=lambda b: -b.confidence)


def select_expiry(boxes: Sequence[GridDetection]) -> Optional[GridDetection]:
    """Most confident expiry cell, the earliest one on ties."""
    best: Optional[GridDetection] = None
    for box in boxes:
        if best is None or box.confidence > best.confidence:
            best = box
    return best


class PostDetectionAlgorithm:
    """Post-processing for one frame's number-class grid detections."""

    def __init__(self, boxes: Iterable[GridDetection], geometry: GridGeometry = GridGeometry(),
                 params: SearchParameters = SearchParameters()):
        self.geometry = geometry
        self.params = params
        self.sorted_boxes: List[GridDetection] = sort_by_confidence(boxes)[:params.max_boxes_to_detect]

    # -- predicates -------------------------------------------------------

    def horizontal_predicate(self, current: GridDetection, nxt: GridDetection) -> bool:
        delta_row = self.params.delta_row_for_horizontal_numbers
        return nxt.col > current.col and abs(nxt.row - current.row) <= delta_row

    def vertical_predicate(self, current: GridDetection, nxt: GridDetection) -> bool:
        delta_col = self.params.delta_col_for_vertical_numbers
        return nxt.row > current.row and abs(nxt.col - current.col) <= delta_col

    # -- region suppression ----------------------------------------------

    def combine_close_boxes(self, delta_row: int, delta_col: int,
                            boxes: Optional[Sequence[GridDetection]] = None) -> List[GridDetection]:
        """Combine close boxes favoring high confidence boxes.

        Boxes are visited by descending confidence. A still-occupied box clears
        its neighbourhood and keeps its own cell. Clearing is never undone, so a
        box just outside one cluster can survive next to another cluster.
        """
        boxes = self.sorted_boxes if boxes is None else list(boxes)
        rows, cols = self.geometry.rows, self.geometry.cols
        card_grid = [[False] * cols for _ in range(rows)]

        for box in boxes:
            card_grid[box.row][box.col] = True

        for box in boxes:
            if not card_grid[box.row][box.col]:
                continue
            for row in range(max(0, box.row - delta_row), min(rows, box.row + delta_row + 1)):
                for col in range(max(0, box.col - delta_col), min(cols, box.col + delta_col + 1)):
                    card_grid[row][col] = False
            card_grid[box.row][box.col] = True

        return [box for box in boxes if card_grid[box.row][box.col]]

    # -- search -----------------------------------------------------------

    def _find_numbers(self, current_line: List[GridDetection], words: List[GridDetection],
                      predicate: Predicate, number_of_boxes: int, lines: List[Line]) -> None:
        if len(current_line) == number_of_boxes:
            lines.append(tuple(current_line))
            return
        if not words:
            return

        current = current_line[-1]
        for idx, word in enumerate(words):
            if predicate(current, word):
                self._find_numbers(current_line + [word], words[idx + 1:], predicate, number_of_boxes, lines)

    def find_numbers(self, words: Sequence[GridDetection], horizontal: bool,
                     number_of_boxes: int) -> List[Line]:
        """All chains of ``number_of_boxes`` cells, each extending only to later cells.

        Simple but exhaustive; fine for the capped candidate list.
        """
        if horizontal:
            ordered = sorted(words, key=lambda b: b.col)
            predicate = self.horizontal_predicate
        else:
            ordered = sorted(words, key=lambda b: b.row)
            predicate = self.vertical_predicate

        lines: List[Line] = []
        for idx, word in enumerate(ordered):
            self._find_numbers([word], ordered[idx + 1:], predicate, number_of_boxes, lines)
        return lines

    # -- layouts ----------------------------------------------------------

    def horizontal_numbers(self) -> List[Line]:
        p = self.params
        boxes = self.combine_close_boxes(p.delta_row_for_combine, p.delta_col_for_combine)
        lines = self.find_numbers(boxes, True, p.number_word_count)
        accepted = [line for line in lines if is_evenly_spaced([b.col for b in line])]
        logger.debug(f"horizontal: {len(boxes)} boxes, {len(lines)} lines, {len(accepted)} evenly spaced")
        return accepted

    def vertical_numbers(self) -> List[Line]:
        p = self.params
        boxes = self.combine_close_boxes(p.delta_row_for_combine, p.delta_col_for_combine)
        lines = self.find_numbers(boxes, False, p.number_word_count)
        accepted = [line for line in lines if is_evenly_spaced([b.row for b in line])]
        logger.debug(f"vertical: {len(boxes)} boxes, {len(lines)} lines, {len(accepted)} evenly spaced")
        return accepted

    def amex_numbers(self) -> List[Line]:
        # One box for the group of four, then the first and last few digits of
        # the six and five digit groups.
        p = self.params
        boxes = self.combine_close_boxes(p.delta_row_for_combine, p.delta_col_for_amex_combine)
        lines = self.find_numbers(boxes, True, p.amex_word_count)
        accepted = [line for line in lines if has_amex_gaps([b.col for b in line])]
        logger.debug(f"amex: {len(boxes)} boxes, {len(lines)} lines, {len(accepted)} with group gaps")
        return accepted
