"""Card OCR over single frames.

The service owns the detector engine and the digit classifier. Both are built
through caller-supplied factories in ``initialize()``. A failed inference call
is retried once with freshly built models and otherwise reported as
unrecoverable.
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..backends.base_backend import DigitClassifier, EngineOutput, InferenceEngine
from ..backends.opencv_dnn_backend import (
    OpenCVDnnDetector, OpenCVDnnDigitClassifier, OpenCVDnnGridClassifier,
)
from ..config.settings import Config
from ..core.entities import (
    CardExpiry, CardNumber, DetectorOutput, FrameStatus, GridDetection, LayoutKind, OcrResult, Size,
)
from ..core.exceptions import DetectionError, ModelError
from ..core.logging_config import CorrelationContext
from ..core.performance import PerformanceTimer
from ..core.post_detection import Line, select_expiry
from ..core.retry import RetryPolicy
from ..core.validators import is_valid_card_number, parse_expiry
from ..utils.image_utils import aspect_ratio_deviation, crop_image
from .layout_service import CardLayoutService

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], InferenceEngine]
ClassifierFactory = Callable[[], DigitClassifier]


class CardOcrService:
    """Reads card number and expiry from one frame at a time."""

    def __init__(self, engine_factory: EngineFactory, classifier_factory: ClassifierFactory,
                 config: Optional[Config] = None,
                 layout_service: Optional[CardLayoutService] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        self.config = config or Config()
        self.layout_service = layout_service or CardLayoutService(self.config)
        self.retry_policy = retry_policy or RetryPolicy(max_retries=self.config.inference_max_retries)
        self._engine_factory = engine_factory
        self._classifier_factory = classifier_factory
        self._engine: Optional[InferenceEngine] = None
        self._classifier: Optional[DigitClassifier] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config, use_grid_classifier: bool = False) -> 'CardOcrService':
        """Service backed by the OpenCV dnn models named in ``config``."""
        def build_engine() -> InferenceEngine:
            if use_grid_classifier:
                engine = OpenCVDnnGridClassifier(config)
                engine.load_model(config.model_path(config.grid_model))
            else:
                engine = OpenCVDnnDetector(config)
                engine.load_model(config.model_path(config.detector_model))
            return engine

        def build_classifier() -> DigitClassifier:
            classifier = OpenCVDnnDigitClassifier(config)
            classifier.load_model(config.model_path(config.digit_model))
            return classifier

        return cls(build_engine, build_classifier, config=config)

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None and self._classifier is not None

    def initialize(self) -> None:
        """Build both models. Errors from the factories propagate."""
        with self._lock:
            self._build_models()
        logger.info("Card OCR models initialized")

    def shutdown(self) -> None:
        with self._lock:
            for model in (self._engine, self._classifier):
                if model is not None:
                    model.unload_model()
            self._engine = None
            self._classifier = None

    def _build_models(self) -> None:
        self._engine = self._engine_factory()
        self._classifier = self._classifier_factory()

    def _rebuild_models(self, attempt: int, error: BaseException) -> None:
        logger.info(f"Rebuilding models after failed attempt {attempt}: {type(error).__name__}")
        self._build_models()

    # -- frame processing -------------------------------------------------

    def scan(self, image: np.ndarray) -> OcrResult:
        """Process one frame; frames are serialised.

        Only the inference call is retried. A malformed engine output is a
        contract violation and propagates to the caller.

        Raises:
            ModelError: If ``initialize()`` has not been called
            DetectionError: If ``image`` is empty
            ContractViolationError: If the engine output has the wrong shape
        """
        if image is None or getattr(image, 'size', 0) == 0:
            raise DetectionError("Empty image")

        with self._lock, CorrelationContext():
            if not self.is_initialized:
                raise ModelError("CardOcrService used before initialize()")

            start = time.perf_counter()
            self._check_aspect_ratio(image)
            with PerformanceTimer("ocr.infer"):
                outcome = self.retry_policy.run(
                    lambda: self._engine.infer(image),
                    before_retry=self._rebuild_models,
                    operation_name="card detector inference",
                )

            if not outcome.ok:
                latency_ms = (time.perf_counter() - start) * 1000.0
                return OcrResult(status=FrameStatus.UNRECOVERABLE, attempts=outcome.attempts,
                                 latency_ms=latency_ms)

            with PerformanceTimer("ocr.read"):
                status, kind, number, expiry, candidates = self._process_output(image, outcome.value)
            latency_ms = (time.perf_counter() - start) * 1000.0

            logger.info(f"Frame {status.value}: layout={kind.value} expiry={'yes' if expiry else 'no'} "
                        f"attempts={outcome.attempts} latency={latency_ms:.1f}ms")
            return OcrResult(status=status, layout=kind, number=number, expiry=expiry,
                             attempts=outcome.attempts, latency_ms=latency_ms,
                             candidates=tuple(candidates))

    def _check_aspect_ratio(self, image: np.ndarray) -> None:
        target = self.config.detector_input_size()
        deviation = aspect_ratio_deviation(image.shape, target.width, target.height)
        if deviation > self.config.aspect_ratio_tolerance:
            logger.warning(f"Frame aspect ratio {image.shape[1]}x{image.shape[0]} deviates "
                           f"{deviation:.0%} from the detector input")

    def _process_output(self, image: np.ndarray, output: EngineOutput):
        image_size = Size(width=int(image.shape[1]), height=int(image.shape[0]))

        direct: Optional[CardNumber] = None
        if isinstance(output, DetectorOutput):
            boxes = self.layout_service.detect(output, image_size)
            direct = self.layout_service.read_ssd_digits(boxes)
            number_cells, expiry_cells = self.layout_service.detector_cells(boxes, image_size)
        else:
            number_cells, expiry_cells = self.layout_service.grid_cells(output, image_size)

        if direct is not None:
            # digits are read left to right, so a direct read is a horizontal line
            layout = self.layout_service.find_layout(number_cells)
            kind = layout.kind if layout.kind is not LayoutKind.NONE else LayoutKind.HORIZONTAL
            number, candidates = direct, list(layout.lines)
        else:
            kind, number, candidates = self._read_number(image, number_cells)
        expiry = self._read_expiry(image, select_expiry(expiry_cells))

        if number is not None:
            status = FrameStatus.OK
        elif candidates:
            status = FrameStatus.UNREADABLE
        else:
            status = FrameStatus.NO_LAYOUT
        return status, kind, number, expiry, candidates

    def _read_number(self, image: np.ndarray, number_cells: List[GridDetection]
                     ) -> Tuple[LayoutKind, Optional[CardNumber], List[Line]]:
        """Try candidate lines layout by layout; the first readable valid number wins."""
        candidates: List[Line] = []
        first_kind = LayoutKind.NONE
        if not number_cells:
            return first_kind, None, candidates

        for kind, lines in self.layout_service.candidate_layouts(number_cells):
            if not lines:
                continue
            if first_kind is LayoutKind.NONE:
                first_kind = kind
            candidates.extend(lines)
            for line in lines:
                number = self._read_line(image, line)
                if number is not None:
                    return kind, number, candidates
            logger.info(f"No readable {kind.value} line out of {len(lines)}, trying next layout")

        return first_kind, None, candidates

    def _read_line(self, image: np.ndarray, line: Line) -> Optional[CardNumber]:
        groups = []
        for box in line:
            digits = self._classifier.classify(crop_image(image, box.rect))
            if digits is None:
                return None
            groups.append(digits)
        number = ''.join(groups)
        if not is_valid_card_number(number):
            return None
        return CardNumber(number=number, boxes=tuple(line))

    def _read_expiry(self, image: np.ndarray, box: Optional[GridDetection]) -> Optional[CardExpiry]:
        if box is None:
            return None
        parsed = parse_expiry(self._classifier.classify(crop_image(image, box.rect)))
        if parsed is None:
            return None
        month, year = parsed
        return CardExpiry(month=month, year=year, box=box)
