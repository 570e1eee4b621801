"""Pytest configuration and shared fixtures for the card OCR tests.

Provides configuration objects, synthetic class grids and fake model backends
so that the pipeline can be exercised without model files.
"""
import sys
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple
from unittest.mock import Mock

import numpy as np
import pytest

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from cardocr.backends.base_backend import DigitClassifier, InferenceEngine
from cardocr.config.settings import Config
from cardocr.core.entities import DetectorOutput, GridDetection, GridGeometry, Size
from cardocr.core.performance import PerformanceMonitor


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

CARD_IMAGE_SIZE = Size(480, 302)
# Luhn-valid 16 digit number, as four groups of four
VALID_NUMBER_GROUPS = ("4242", "4242", "4242", "4242")


def make_class_grid(rows: int, cols: int, cells: Dict[Tuple[int, int], Tuple[int, float]],
                    num_classes: int = 3) -> np.ndarray:
    """Class grid with background everywhere except ``cells``: {(row, col): (class_id, confidence)}."""
    grid = np.zeros((rows, cols, num_classes), dtype=np.float32)
    grid[:, :, 0] = 1.0
    for (row, col), (class_id, confidence) in cells.items():
        grid[row, col, :] = 0.0
        grid[row, col, class_id] = confidence
        grid[row, col, 0] = 1.0 - confidence
    return grid


def make_cells(positions: Iterable[Tuple[int, int]], confidence: float = 0.9,
               geometry: GridGeometry = GridGeometry(),
               image_size: Size = CARD_IMAGE_SIZE) -> list:
    return [GridDetection(row=r, col=c, confidence=confidence, geometry=geometry, image_size=image_size)
            for r, c in positions]


@pytest.fixture(autouse=True)
def reset_performance_monitor():
    """Keep timing statistics from leaking between tests."""
    PerformanceMonitor.instance().reset()
    yield


@pytest.fixture
def config():
    """Provide a default configuration object."""
    return Config()


@pytest.fixture
def small_grid_config():
    """Configuration for a 9x9 grid with a tight suppression radius."""
    return Config(grid_rows=9, grid_cols=9, delta_row_for_combine=1, delta_col_for_combine=1)


@pytest.fixture
def card_image():
    """Provide a card-sized BGR test image."""
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, (CARD_IMAGE_SIZE.height, CARD_IMAGE_SIZE.width, 3), dtype=np.uint8)


@pytest.fixture
def mock_engine_factory():
    """Factory returning engines whose ``infer`` result is set via ``factory.output``."""
    def build(output: Optional[object] = None, side_effect=None):
        engines = []

        def factory():
            engine = Mock(spec=InferenceEngine)
            if side_effect is not None:
                engine.infer.side_effect = side_effect
            else:
                engine.infer.return_value = output
            engines.append(engine)
            return engine

        factory.engines = engines
        return factory
    return build


@pytest.fixture
def mock_classifier_factory():
    """Factory returning classifiers that answer from a fixed sequence of readings."""
    def build(readings=VALID_NUMBER_GROUPS, default: Optional[str] = None):
        classifiers = []

        def factory():
            classifier = Mock(spec=DigitClassifier)
            answers = list(readings)

            def classify(crop):
                return answers.pop(0) if answers else default

            classifier.classify.side_effect = classify
            classifiers.append(classifier)
            return classifier

        factory.classifiers = classifiers
        return factory
    return build


def to_layer_order(values: np.ndarray, layers, priors_per_activation: int, values_per_prior: int) -> np.ndarray:
    """Inverse of the detector's layer permutation: prior order -> layer-output order."""
    flat = np.asarray(values, dtype=np.float32).ravel()
    chunks = []
    offset = 0
    for width, height in layers:
        total = width * height * priors_per_activation * values_per_prior
        chunk = flat[offset:offset + total]
        chunks.append(chunk.reshape(height, total // height).T.ravel())
        offset += total
    return np.concatenate(chunks)


def detector_output_for(prior_classes: Dict[int, int], num_priors: int = 3420, num_classes: int = 11,
                        layers=((38, 24), (19, 12))):
    """SSD tensors in layer order where each prior in ``prior_classes`` strongly predicts its class."""
    logits = np.zeros((num_priors, num_classes), dtype=np.float32)
    for prior, class_id in prior_classes.items():
        logits[prior, class_id] = 10.0
    locations = np.zeros((num_priors, 4), dtype=np.float32)
    return DetectorOutput(
        locations=to_layer_order(locations, layers, 3, 4),
        class_logits=to_layer_order(logits, layers, 3, num_classes),
    )


def first_layer_prior(row: int, col: int, kind: int = 0, width: int = 38) -> int:
    return (row * width + col) * 3 + kind
