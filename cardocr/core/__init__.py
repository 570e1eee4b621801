"""Core domain entities and pipeline stages."""

from .entities import (
    BBox, Size, FeatureMapSizes, DetectorOutput, DetectionBox, GridGeometry, GridDetection,
    ClassLayout, LayoutKind, LayoutResult, CardNumber, CardExpiry, FrameStatus, OcrResult,
)
from .exceptions import (
    ApplicationError, DetectionError, ContractViolationError, ConfigError, ModelError,
    UnrecoverableInferenceError,
)

__all__ = [
    "BBox", "Size", "FeatureMapSizes", "DetectorOutput", "DetectionBox", "GridGeometry",
    "GridDetection", "ClassLayout", "LayoutKind", "LayoutResult", "CardNumber", "CardExpiry",
    "FrameStatus", "OcrResult",
    "ApplicationError", "DetectionError", "ContractViolationError", "ConfigError", "ModelError",
    "UnrecoverableInferenceError",
]
