"""Backend implementations for the detector and digit models."""

from .base_backend import BaseBackend, DigitClassifier, EngineOutput, InferenceEngine
from .opencv_dnn_backend import (
    OpenCVDnnDetector, OpenCVDnnDigitClassifier, OpenCVDnnGridClassifier, digits_from_scores,
    load_dnn_net,
)

__all__ = [
    "BaseBackend", "InferenceEngine", "DigitClassifier", "EngineOutput",
    "OpenCVDnnDetector", "OpenCVDnnGridClassifier", "OpenCVDnnDigitClassifier",
    "digits_from_scores", "load_dnn_net",
]
