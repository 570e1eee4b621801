"""Logging configuration with per-frame correlation IDs and card-number masking.

Every frame processed by the OCR service runs inside a ``CorrelationContext``
so that all log lines of that frame carry the same ID. Formatters mask long
digit runs so that full card numbers never reach a log sink.
"""
import json
import logging
import logging.handlers
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

NO_CORRELATION_ID = 'no-correlation-id'

_frame_id: ContextVar[Optional[str]] = ContextVar('frame_id', default=None)

CARD_NUMBER_PATTERN = re.compile(r'(?<!\d)(?:\d[ -]?){11,18}\d(?!\d)')


def mask_card_numbers(text: str) -> str:
    """Replace every run of 12-19 digits (optionally space/dash separated) by its last four digits."""
    def _mask(match: re.Match) -> str:
        digits = re.sub(r'\D', '', match.group(0))
        return '*' * (len(digits) - 4) + digits[-4:]
    return CARD_NUMBER_PATTERN.sub(_mask, text)


def get_correlation_id() -> Optional[str]:
    return _frame_id.get()


class CorrelationContext:
    """Tag every log line inside the block with one ID (a fresh UUID by default)."""

    def __init__(self, corr_id: Optional[str] = None):
        self.corr_id = corr_id or str(uuid.uuid4())
        self._token = None

    def __enter__(self) -> str:
        self._token = _frame_id.set(self.corr_id)
        return self.corr_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _frame_id.reset(self._token)


class CorrelationIDFilter(logging.Filter):

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _frame_id.get() or NO_CORRELATION_ID
        return True


class HumanReadableFormatter(logging.Formatter):
    """Console format; card numbers are masked after formatting."""

    def __init__(self):
        super().__init__('%(asctime)s - %(name)s - %(levelname)s - %(correlation_id)s - %(message)s')

    def format(self, record: logging.LogRecord) -> str:
        return mask_card_numbers(super().format(record))


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': mask_card_numbers(record.getMessage()),
            'correlation_id': getattr(record, 'correlation_id', NO_CORRELATION_ID),
        }
        if record.exc_info:
            entry['exception'] = mask_card_numbers(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class LoggingManager:
    """Installs the root handlers once and removes them on shutdown."""

    def __init__(self):
        self._configured = False
        self._handlers: Dict[str, logging.Handler] = {}

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        log_level: str = 'INFO',
        log_dir: Optional[Union[str, Path]] = None,
        enable_file_logging: bool = False,
        enable_console_logging: bool = True,
        structured_logging: bool = False,
        max_file_size: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
    ) -> None:
        """Configure the root logger.

        Args:
            log_level: Logging level name
            log_dir: Directory for ``cardocr.log`` and ``cardocr-errors.log``
            enable_file_logging: Enable logging to rotating files
            enable_console_logging: Enable logging to stdout
            structured_logging: Use JSON lines instead of the human format
            max_file_size: Maximum size of a log file before rotation
            backup_count: Number of rotated files to keep
        """
        if self._configured:
            return

        level = getattr(logging, log_level.upper())
        formatter = StructuredFormatter() if structured_logging else HumanReadableFormatter()
        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        if enable_console_logging:
            self._add_handler('console', logging.StreamHandler(sys.stdout), level, formatter)

        if enable_file_logging:
            directory = Path(log_dir) if log_dir else Path('logs')
            directory.mkdir(parents=True, exist_ok=True)
            for name, filename, handler_level in (('application', 'cardocr.log', level),
                                                  ('errors', 'cardocr-errors.log', logging.ERROR)):
                handler = logging.handlers.RotatingFileHandler(
                    directory / filename, maxBytes=max_file_size,
                    backupCount=backup_count, encoding='utf-8'
                )
                self._add_handler(name, handler, handler_level, formatter)

        # Per-frame stage counts are DEBUG
        for name in ('cardocr.core', 'cardocr.services', 'cardocr.backends'):
            logging.getLogger(name).setLevel(logging.INFO if level > logging.DEBUG else logging.DEBUG)

        self._configured = True
        logging.getLogger(__name__).info(f"Logging configured - Level: {log_level}, File: {enable_file_logging}")

    def _add_handler(self, name: str, handler: logging.Handler, level: int,
                     formatter: logging.Formatter) -> None:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIDFilter())
        logging.getLogger().addHandler(handler)
        self._handlers[name] = handler

    def shutdown(self) -> None:
        root_logger = logging.getLogger()
        for handler in self._handlers.values():
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers.clear()
        self._configured = False


logging_manager = LoggingManager()


def configure_logging(**kwargs) -> None:
    logging_manager.configure(**kwargs)
