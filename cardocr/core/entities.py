"""Domain entities (data-only structures) used across the pipeline.

Everything here is per-frame and value-like: instances are frozen and carry no
identity beyond their fields.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Any

from .exceptions import ContractViolationError

BBox = Tuple[float, float, float, float]  # (left, top, right, bottom)


class LayoutKind(str, Enum):
    """Arrangement of the card number on the card face."""
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    AMEX = "amex"
    NONE = "none"


class FrameStatus(str, Enum):
    OK = "ok"
    NO_LAYOUT = "no_layout"
    UNREADABLE = "unreadable"
    UNRECOVERABLE = "unrecoverable"


@dataclass(frozen=True, slots=True)
class Size:
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class FeatureMapSizes:
    """Widths/heights of the two detector output layers, in layer order."""
    layer_one_width: int = 38
    layer_one_height: int = 24
    layer_two_width: int = 19
    layer_two_height: int = 12

    def layers(self) -> Tuple[Tuple[int, int], ...]:
        return (
            (self.layer_one_width, self.layer_one_height),
            (self.layer_two_width, self.layer_two_height),
        )


@dataclass(frozen=True, slots=True)
class DetectorOutput:
    """Raw tensors produced by the inference engine for one frame.

    Both arrays are flat and still in network layer-output order.
    """
    locations: Any  # numpy ndarray, NumPriors * 4
    class_logits: Any  # numpy ndarray, NumPriors * NumClasses


@dataclass(frozen=True, slots=True)
class DetectionBox:
    left: float
    top: float
    right: float
    bottom: float
    confidence: float
    label: int

    @property
    def rect(self) -> BBox:
        return (self.left, self.top, self.right, self.bottom)

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top


@dataclass(frozen=True, slots=True)
class GridGeometry:
    """Logical card grid of the grid classifier.

    ``box_size`` is the size of one cell's box and ``card_size`` the size of the
    card image, both in the classifier's trained coordinates.
    """
    rows: int = 34
    cols: int = 51
    box_size: Size = Size(80, 36)
    card_size: Size = Size(480, 302)

    def contains(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    def box_size_in(self, image_size: Size) -> Tuple[float, float]:
        w = self.box_size.width * image_size.width / self.card_size.width
        h = self.box_size.height * image_size.height / self.card_size.height
        return w, h

    def cell_step(self, image_size: Size) -> Tuple[float, float]:
        """Pixel distance between the origins of two neighbouring cells (x, y)."""
        w, h = self.box_size_in(image_size)
        step_x = (image_size.width - w) / float(max(1, self.cols - 1))
        step_y = (image_size.height - h) / float(max(1, self.rows - 1))
        return step_x, step_y

    def cell_bounds(self, row: int, col: int, image_size: Size) -> BBox:
        """Resize a cell's box from the model's coordinates into the image's coordinates."""
        w, h = self.box_size_in(image_size)
        step_x, step_y = self.cell_step(image_size)
        x = step_x * col
        y = step_y * row
        return (x, y, x + w, y + h)


@dataclass(frozen=True, slots=True)
class GridDetection:
    """One detection pinned to a (row, col) cell of the card grid."""
    row: int
    col: int
    confidence: float
    geometry: GridGeometry
    image_size: Size
    class_id: int = 1

    def __post_init__(self):
        if not self.geometry.contains(self.row, self.col):
            raise ContractViolationError(
                f"cell ({self.row}, {self.col}) outside {self.geometry.rows}x{self.geometry.cols} grid"
            )

    @property
    def rows(self) -> int:
        return self.geometry.rows

    @property
    def cols(self) -> int:
        return self.geometry.cols

    @property
    def rect(self) -> BBox:
        return self.geometry.cell_bounds(self.row, self.col, self.image_size)


@dataclass(frozen=True, slots=True)
class ClassLayout:
    """Which detector classes play the number and expiry roles."""
    number_classes: Tuple[int, ...] = (1,)
    expiry_classes: Tuple[int, ...] = (2,)
    background_class: int = 0


@dataclass(frozen=True, slots=True)
class LayoutResult:
    kind: LayoutKind
    lines: Tuple[Tuple[GridDetection, ...], ...] = ()
    expiry: Optional[GridDetection] = None

    @property
    def found(self) -> bool:
        return self.kind is not LayoutKind.NONE and bool(self.lines)

    @property
    def number_boxes(self) -> Tuple[GridDetection, ...]:
        """Best line for the layout: the first accepted one in search order."""
        return self.lines[0] if self.lines else ()


@dataclass(frozen=True, slots=True)
class CardNumber:
    number: str
    boxes: Tuple[Any, ...] = ()


@dataclass(frozen=True, slots=True)
class CardExpiry:
    month: str
    year: str
    box: Optional[GridDetection] = None


@dataclass(frozen=True, slots=True)
class OcrResult:
    status: FrameStatus
    layout: LayoutKind = LayoutKind.NONE
    number: Optional[CardNumber] = None
    expiry: Optional[CardExpiry] = None
    attempts: int = 1
    latency_ms: float = 0.0
    candidates: Tuple[Tuple[GridDetection, ...], ...] = field(default=())
