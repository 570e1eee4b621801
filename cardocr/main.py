"""Command line entry point: scan card images and print what was read."""

import argparse
import logging
import sys
from typing import List, Optional

import cv2

from .config.settings import load_config
from .core.entities import FrameStatus
from .core.exceptions import ApplicationError
from .core.logging_config import configure_logging, mask_card_numbers
from .core.performance import PerformanceMonitor
from .services.ocr_service import CardOcrService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Read card number and expiry from card images"
    )
    parser.add_argument("images", nargs="+", help="Image files to scan")
    parser.add_argument("--config", default="config.json", help="Path to config.json")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument(
        "--grid",
        action="store_true",
        help="Use the grid classifier instead of the SSD digit detector"
    )
    parser.add_argument(
        "--show-number",
        action="store_true",
        help="Print full card numbers instead of masked ones"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, args.env_file)
    except ApplicationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        enable_file_logging=config.enable_file_logging,
        structured_logging=config.structured_logging,
    )

    service = CardOcrService.from_config(config, use_grid_classifier=args.grid)
    try:
        service.initialize()
    except ApplicationError as e:
        logger.error(f"Could not load models: {e}")
        return 1

    exit_code = 0
    try:
        for path in args.images:
            image = cv2.imread(path)
            if image is None:
                logger.error(f"Cannot read image: {path}")
                exit_code = 1
                continue

            try:
                result = service.scan(image)
            except ApplicationError as e:
                logger.error(f"Cannot process {path}: {e}")
                exit_code = 1
                continue

            if result.status is FrameStatus.UNRECOVERABLE:
                exit_code = 1

            number = result.number.number if result.number else "-"
            if not args.show_number:
                number = mask_card_numbers(number)
            expiry = f"{result.expiry.month}/{result.expiry.year}" if result.expiry else "-"
            print(f"{path}: {result.status.value} layout={result.layout.value} "
                  f"number={number} expiry={expiry}")
    finally:
        service.shutdown()

    PerformanceMonitor.instance().log_summary(logging.DEBUG)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
