"""Services package for frame-level card OCR."""

from .layout_service import CardLayoutService, LAYOUT_FALLBACK_ORDER
from .ocr_service import CardOcrService

__all__ = ["CardLayoutService", "CardOcrService", "LAYOUT_FALLBACK_ORDER"]
