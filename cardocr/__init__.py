"""
Card number and expiry layout detection for payment card images.
"""

__version__ = "1.0.0"

from .config.settings import Config, load_config, save_config
from .core.entities import CardExpiry, CardNumber, FrameStatus, LayoutKind, LayoutResult, OcrResult

__all__ = [
    "Config", "load_config", "save_config",
    "CardExpiry", "CardNumber", "FrameStatus", "LayoutKind", "LayoutResult", "OcrResult",
]
