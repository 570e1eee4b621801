"""Default configuration values."""

from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    # Logging
    "log_level": "INFO",
    "debug": False,
    "enable_file_logging": False,
    "structured_logging": False,
    "log_dir": "logs",

    # Model files
    "models_dir": "models",
    "detector_model": "ssd_ocr.onnx",
    "grid_model": "find_four.onnx",
    "digit_model": "recognize_digits.onnx",
    "inference_max_retries": 1,  # one retry with a freshly built model

    # SSD digit detector
    "detector_input_width": 600,
    "detector_input_height": 375,
    "aspect_ratio_tolerance": 0.10,
    "prob_threshold": 0.5,
    "iou_threshold": 0.5,
    "center_variance": 0.1,
    "size_variance": 0.2,
    "top_k": 20,
    "nms_candidate_cap": 200,
    "detector_number_classes": [1, 2, 3, 4, 5, 6, 7, 8, 9, 10],
    "detector_expiry_classes": [],

    # Card grid (grid classifier)
    "grid_rows": 34,
    "grid_cols": 51,
    "grid_presence_threshold": 0.5,
    "grid_box_width": 80,
    "grid_box_height": 36,
    "card_width": 480,
    "card_height": 302,
    "number_classes": [1],
    "expiry_classes": [2],

    # Sequence search
    "number_word_count": 4,
    "amex_word_count": 5,
    "max_boxes_to_detect": 20,
    "delta_row_for_combine": 2,
    "delta_col_for_combine": 2,
    "delta_col_for_amex_combine": 1,
    "delta_row_for_horizontal_numbers": 1,
    "delta_col_for_vertical_numbers": 1,

    # Digit classifier
    "digit_input_width": 80,
    "digit_input_height": 36,
    "digit_min_confidence": 0.15,
    "digit_background_class": 10,
}
