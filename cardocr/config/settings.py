"""Configuration dataclass and loading utilities.

Provides a typed configuration object that is injected into the services
instead of a module-level dictionary. Values come from ``DEFAULT_CONFIG``, then
an optional JSON file, then ``CARDOCR_*`` environment variables.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
import json, os, logging

from ..core.entities import ClassLayout, FeatureMapSizes, GridGeometry, Size
from ..core.exceptions import ConfigError
from ..core.post_detection import SearchParameters
from .defaults import DEFAULT_CONFIG
from .env_config import load_environment_config, EnvironmentConfig, EnvironmentConfigError


def _default_list(key: str):
    return field(default_factory=lambda: list(DEFAULT_CONFIG[key]))


@dataclass(slots=True)
class Config:
    # Logging
    log_level: str = DEFAULT_CONFIG["log_level"]
    debug: bool = DEFAULT_CONFIG["debug"]
    enable_file_logging: bool = DEFAULT_CONFIG["enable_file_logging"]
    structured_logging: bool = DEFAULT_CONFIG["structured_logging"]
    log_dir: str = DEFAULT_CONFIG["log_dir"]

    # Model files
    models_dir: str = DEFAULT_CONFIG["models_dir"]
    detector_model: str = DEFAULT_CONFIG["detector_model"]
    grid_model: str = DEFAULT_CONFIG["grid_model"]
    digit_model: str = DEFAULT_CONFIG["digit_model"]
    inference_max_retries: int = DEFAULT_CONFIG["inference_max_retries"]

    # SSD digit detector
    detector_input_width: int = DEFAULT_CONFIG["detector_input_width"]
    detector_input_height: int = DEFAULT_CONFIG["detector_input_height"]
    aspect_ratio_tolerance: float = DEFAULT_CONFIG["aspect_ratio_tolerance"]
    prob_threshold: float = DEFAULT_CONFIG["prob_threshold"]
    iou_threshold: float = DEFAULT_CONFIG["iou_threshold"]
    center_variance: float = DEFAULT_CONFIG["center_variance"]
    size_variance: float = DEFAULT_CONFIG["size_variance"]
    top_k: int = DEFAULT_CONFIG["top_k"]
    nms_candidate_cap: int = DEFAULT_CONFIG["nms_candidate_cap"]
    detector_number_classes: List[int] = _default_list("detector_number_classes")
    detector_expiry_classes: List[int] = _default_list("detector_expiry_classes")

    # Card grid
    grid_rows: int = DEFAULT_CONFIG["grid_rows"]
    grid_cols: int = DEFAULT_CONFIG["grid_cols"]
    grid_presence_threshold: float = DEFAULT_CONFIG["grid_presence_threshold"]
    grid_box_width: int = DEFAULT_CONFIG["grid_box_width"]
    grid_box_height: int = DEFAULT_CONFIG["grid_box_height"]
    card_width: int = DEFAULT_CONFIG["card_width"]
    card_height: int = DEFAULT_CONFIG["card_height"]
    number_classes: List[int] = _default_list("number_classes")
    expiry_classes: List[int] = _default_list("expiry_classes")

    # Sequence search
    number_word_count: int = DEFAULT_CONFIG["number_word_count"]
    amex_word_count: int = DEFAULT_CONFIG["amex_word_count"]
    max_boxes_to_detect: int = DEFAULT_CONFIG["max_boxes_to_detect"]
    delta_row_for_combine: int = DEFAULT_CONFIG["delta_row_for_combine"]
    delta_col_for_combine: int = DEFAULT_CONFIG["delta_col_for_combine"]
    delta_col_for_amex_combine: int = DEFAULT_CONFIG["delta_col_for_amex_combine"]
    delta_row_for_horizontal_numbers: int = DEFAULT_CONFIG["delta_row_for_horizontal_numbers"]
    delta_col_for_vertical_numbers: int = DEFAULT_CONFIG["delta_col_for_vertical_numbers"]

    # Digit classifier
    digit_input_width: int = DEFAULT_CONFIG["digit_input_width"]
    digit_input_height: int = DEFAULT_CONFIG["digit_input_height"]
    digit_min_confidence: float = DEFAULT_CONFIG["digit_min_confidence"]
    digit_background_class: int = DEFAULT_CONFIG["digit_background_class"]

    # Arbitrary extra values retained for forward compatibility
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        # merge extra keys at top-level for saving
        extra = d.pop("extra", {})
        d.update(extra)
        return d

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, self.extra.get(key, default))

    def model_path(self, name: str) -> str:
        """Path of a model file, relative names resolved against ``models_dir``."""
        if os.path.isabs(name):
            return name
        return os.path.join(self.models_dir, name)

    # -- builders for the pipeline stages ---------------------------------

    def grid_geometry(self) -> GridGeometry:
        return GridGeometry(
            rows=self.grid_rows,
            cols=self.grid_cols,
            box_size=Size(self.grid_box_width, self.grid_box_height),
            card_size=Size(self.card_width, self.card_height),
        )

    def grid_class_layout(self) -> ClassLayout:
        return ClassLayout(number_classes=tuple(self.number_classes),
                           expiry_classes=tuple(self.expiry_classes))

    def detector_class_layout(self) -> ClassLayout:
        return ClassLayout(number_classes=tuple(self.detector_number_classes),
                           expiry_classes=tuple(self.detector_expiry_classes))

    def detector_input_size(self) -> Size:
        return Size(self.detector_input_width, self.detector_input_height)

    def feature_map_sizes(self) -> FeatureMapSizes:
        return FeatureMapSizes()

    def search_parameters(self) -> SearchParameters:
        return SearchParameters(
            number_word_count=self.number_word_count,
            amex_word_count=self.amex_word_count,
            max_boxes_to_detect=self.max_boxes_to_detect,
            delta_row_for_combine=self.delta_row_for_combine,
            delta_col_for_combine=self.delta_col_for_combine,
            delta_col_for_amex_combine=self.delta_col_for_amex_combine,
            delta_row_for_horizontal_numbers=self.delta_row_for_horizontal_numbers,
            delta_col_for_vertical_numbers=self.delta_col_for_vertical_numbers,
        )

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: On the first invalid value found
        """
        for key in ("prob_threshold", "iou_threshold", "grid_presence_threshold",
                    "digit_min_confidence", "aspect_ratio_tolerance"):
            value = getattr(self, key)
            if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                raise ConfigError(f"{key} must be within [0, 1], got {value!r}")

        for key in ("center_variance", "size_variance"):
            if getattr(self, key) <= 0:
                raise ConfigError(f"{key} must be positive, got {getattr(self, key)!r}")

        for key in ("detector_input_width", "detector_input_height", "grid_rows", "grid_cols",
                    "grid_box_width", "grid_box_height", "card_width", "card_height",
                    "number_word_count", "amex_word_count", "max_boxes_to_detect",
                    "nms_candidate_cap", "digit_input_width", "digit_input_height"):
            value = getattr(self, key)
            if not isinstance(value, int) or value < 1:
                raise ConfigError(f"{key} must be a positive integer, got {value!r}")

        for key in ("delta_row_for_combine", "delta_col_for_combine", "delta_col_for_amex_combine",
                    "delta_row_for_horizontal_numbers", "delta_col_for_vertical_numbers",
                    "inference_max_retries"):
            value = getattr(self, key)
            if not isinstance(value, int) or value < 0:
                raise ConfigError(f"{key} must be a non-negative integer, got {value!r}")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid log level: {self.log_level!r}")
        if not self.number_classes:
            raise ConfigError("number_classes cannot be empty")
        if set(self.number_classes) & set(self.expiry_classes):
            raise ConfigError("number_classes and expiry_classes overlap")


def load_config(path: str = "config.json", env_file: Optional[str] = None) -> Config:
    """Load configuration from a JSON file, with environment overrides.

    Args:
        path: Path to config.json file
        env_file: Path to .env file (optional)

    Returns:
        Config: Loaded and validated configuration

    Raises:
        ConfigError: If the merged values fail validation
    """
    data: Dict[str, Any] = {}
    env_config: Optional[EnvironmentConfig] = None

    try:
        env_config = load_environment_config(env_file)
    except EnvironmentConfigError as e:
        logging.warning(f"Environment configuration ignored: {e}")

    if os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded_data = json.load(f)
            if loaded_data is None:
                logging.warning(f"Configuration file '{path}' is empty, using defaults")
            elif not isinstance(loaded_data, dict):
                logging.error(f"Configuration file '{path}' does not contain a valid JSON object, using defaults")
            else:
                data = loaded_data
                logging.info(f"Successfully loaded configuration from '{path}'")
        except json.JSONDecodeError as e:
            logging.error(f"Failed to parse JSON configuration file '{path}': {e}. Using defaults.")
        except PermissionError:
            logging.error(f"Permission denied reading configuration file '{path}'. Using defaults.")
    else:
        logging.info(f"Configuration file '{path}' does not exist. Using defaults.")

    merged = {**DEFAULT_CONFIG, **data}
    if env_config:
        merged = _apply_environment_overrides(merged, env_config)

    fields = [k for k in Config.__dataclass_fields__ if k != "extra"]
    # capture unknown keys
    extra = {k: v for k, v in merged.items() if k not in fields}
    if extra:
        logging.info(f"Found extra configuration keys: {list(extra.keys())}")

    try:
        cfg = Config(**{k: merged[k] for k in fields}, extra=extra)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    cfg.validate()
    return cfg


def save_config(cfg: Config, path: str = "config.json") -> None:
    """Save configuration to a JSON file, keeping a backup until the write succeeds."""
    backup_path = f"{path}.backup"
    try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as src:
                with open(backup_path, "w", encoding="utf-8") as dst:
                    dst.write(src.read())
            logging.debug(f"Created backup configuration at '{backup_path}'")

        with open(path, "w", encoding="utf-8") as f:
            json.dump(cfg.to_dict(), f, indent=2, ensure_ascii=False)
        logging.info(f"Configuration saved successfully to '{path}'")

        if os.path.exists(backup_path):
            os.remove(backup_path)
    except PermissionError as e:
        logging.error(f"Permission denied writing configuration file '{path}'")
        raise ConfigError(f"Cannot write configuration file '{path}'") from e
    except OSError as e:
        logging.error(f"OS error saving configuration file '{path}': {e}")
        raise ConfigError(f"Cannot write configuration file '{path}': {e}") from e


def _apply_environment_overrides(config_dict: Dict[str, Any], env_config: EnvironmentConfig) -> Dict[str, Any]:
    """Apply environment variable overrides; unset variables leave the value alone."""
    if env_config.log_level:
        config_dict["log_level"] = env_config.log_level
    if env_config.debug_logging:
        config_dict["debug"] = True
        config_dict["log_level"] = "DEBUG"
    if env_config.models_dir:
        config_dict["models_dir"] = env_config.models_dir
    if env_config.detector_model:
        config_dict["detector_model"] = env_config.detector_model
    if env_config.grid_model:
        config_dict["grid_model"] = env_config.grid_model
    if env_config.digit_model:
        config_dict["digit_model"] = env_config.digit_model
    return config_dict
