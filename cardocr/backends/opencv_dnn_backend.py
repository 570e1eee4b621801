"""Backends running exported models through OpenCV's dnn module."""
import logging
import os
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from ..core.entities import DetectorOutput
from ..core.exceptions import ModelError
from ..core.performance import performance_timer
from ..utils.image_utils import to_normalized_blob
from .base_backend import DigitClassifier, InferenceEngine

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ['.onnx', '.pb', '.caffemodel', '.tflite', '.t7', '.net']

NUMBER_OF_PREDICTIONS = 17
NUMBER_OF_DIGIT_CLASSES = 11


def load_dnn_net(model_path: str) -> "cv2.dnn.Net":
    """Read a network file, raising ModelError when it cannot be used."""
    if not os.path.isfile(model_path):
        raise ModelError(f"Model file not found: {model_path}")
    try:
        net = cv2.dnn.readNet(model_path)
    except cv2.error as e:
        raise ModelError(f"Failed to load model {model_path}: {e}") from e
    if net.empty():
        raise ModelError(f"Model {model_path} loaded without layers")
    return net


class _OpenCVDnnModel:
    """Shared loading and bookkeeping of the OpenCV backends."""

    model_type = 'dnn'

    def _init_net(self):
        self.net = None
        self.model_path = None

    def load_model(self, model_path: str) -> bool:
        self.net = load_dnn_net(model_path)
        self.model_path = model_path
        self.is_loaded = True
        self.model_info = {
            'backend': 'opencv-dnn',
            'model_type': self.model_type,
            'model_path': model_path,
            'output_layers': list(self.net.getUnconnectedOutLayersNames()),
        }
        logger.info(f"Loaded {self.model_type} model: {model_path}")
        return True

    def get_model_info(self) -> Dict[str, Any]:
        if not self.is_loaded:
            return {'status': 'not_loaded'}
        return self.model_info.copy()

    def unload_model(self) -> None:
        self.net = None
        self.model_path = None
        self.is_loaded = False
        self.model_info = {}

    def get_supported_formats(self) -> List[str]:
        return list(SUPPORTED_FORMATS)

    def _forward(self, blob: np.ndarray, output_names=None):
        if not self.is_loaded or self.net is None:
            raise ModelError("No model loaded")
        try:
            self.net.setInput(blob)
            if output_names:
                return self.net.forward(output_names)
            return self.net.forward()
        except cv2.error as e:
            raise ModelError(f"{self.model_type} inference failed: {e}") from e


class OpenCVDnnDetector(_OpenCVDnnModel, InferenceEngine):
    """SSD digit detector returning raw location and class tensors."""

    model_type = 'ssd_ocr'

    def __init__(self, config):
        super().__init__(config)
        self._init_net()

    @performance_timer("backend.ssd_infer")
    def infer(self, image: np.ndarray) -> DetectorOutput:
        size = self.config.detector_input_size()
        blob = to_normalized_blob(image, size.width, size.height)
        outputs = self._forward(blob, list(self.net.getUnconnectedOutLayersNames()))
        if len(outputs) != 2:
            raise ModelError(f"SSD model must have 2 outputs, got {len(outputs)}")
        # locations carry 4 values per prior and class logits 11, so the smaller one is locations
        locations, class_logits = sorted((np.asarray(o, dtype=np.float32).ravel() for o in outputs),
                                         key=lambda a: a.size)
        return DetectorOutput(locations=locations, class_logits=class_logits)


class OpenCVDnnGridClassifier(_OpenCVDnnModel, InferenceEngine):
    """Grid classifier returning a (rows, cols, num_classes) confidence grid."""

    model_type = 'find_four'

    def __init__(self, config):
        super().__init__(config)
        self._init_net()

    @performance_timer("backend.grid_infer")
    def infer(self, image: np.ndarray) -> np.ndarray:
        blob = to_normalized_blob(image, self.config.card_width, self.config.card_height)
        grid = np.asarray(self._forward(blob), dtype=np.float32)
        rows, cols = self.config.grid_rows, self.config.grid_cols
        if grid.ndim == 4 and grid.shape[2:] == (rows, cols):
            # NCHW -> HWC
            grid = grid[0].transpose(1, 2, 0)
        elif grid.ndim == 4:
            grid = grid[0]
        return grid


class OpenCVDnnDigitClassifier(_OpenCVDnnModel, DigitClassifier):
    """Digit recognizer for one grid box.

    The model scores 17 horizontal positions over 11 classes (0-9 and
    background). Positions below the confidence floor count as background and
    adjacent digit positions are collapsed to the more confident one.
    """

    model_type = 'recognize_digits'

    def __init__(self, config):
        super().__init__(config)
        self._init_net()

    @performance_timer("backend.digit_classify")
    def classify(self, crop: np.ndarray) -> Optional[str]:
        if crop is None or crop.size == 0:
            return None
        blob = to_normalized_blob(crop, self.config.digit_input_width, self.config.digit_input_height)
        scores = np.asarray(self._forward(blob), dtype=np.float32)
        scores = scores.reshape(-1, NUMBER_OF_DIGIT_CLASSES)[:NUMBER_OF_PREDICTIONS]
        return digits_from_scores(scores, self.config.digit_background_class,
                                  self.config.digit_min_confidence)


def digits_from_scores(scores: np.ndarray, background_class: int = 10,
                       min_confidence: float = 0.15) -> Optional[str]:
    """Turn per-position class scores into a digit string, None when no digit survives."""
    digits = [int(i) for i in np.argmax(scores, axis=1)]
    confidence = [float(scores[idx, d]) for idx, d in enumerate(digits)]
    for idx, conf in enumerate(confidence):
        if conf < min_confidence:
            digits[idx] = background_class

    for idx in range(len(digits) - 1):
        if digits[idx] == background_class or digits[idx + 1] == background_class:
            continue
        if confidence[idx] < confidence[idx + 1]:
            digits[idx] = background_class
        else:
            digits[idx + 1] = background_class

    result = ''.join(str(d) for d in digits if d != background_class)
    return result or None
