"""Base backend interfaces for the models the pipeline calls into."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

import numpy as np

from ..core.entities import DetectorOutput

EngineOutput = Union[DetectorOutput, np.ndarray]


class BaseBackend(ABC):
    """Abstract base class for model backends."""

    def __init__(self, config):
        self.config = config
        self.is_loaded = False
        self.model_info: Dict[str, Any] = {}

    @abstractmethod
    def load_model(self, model_path: str) -> bool:
        """Load a model from path."""
        pass

    @abstractmethod
    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the loaded model."""
        pass

    def is_model_loaded(self) -> bool:
        """Check if a model is currently loaded."""
        return self.is_loaded

    def unload_model(self) -> None:
        """Unload the current model to free memory."""
        self.is_loaded = False
        self.model_info = {}

    def get_supported_formats(self) -> List[str]:
        return []


class InferenceEngine(BaseBackend):
    """Detector front end.

    ``infer`` returns either the raw SSD tensors as a ``DetectorOutput`` or a
    per-cell class confidence grid of shape (rows, cols, num_classes). It may
    raise on malformed input; recovering is the caller's job.
    """

    @abstractmethod
    def infer(self, image: np.ndarray) -> EngineOutput:
        pass


class DigitClassifier(BaseBackend):
    """Reads the digits in one cropped box."""

    @abstractmethod
    def classify(self, crop: np.ndarray) -> Optional[str]:
        """Digits found in ``crop``, or None when nothing readable is there."""
        pass
