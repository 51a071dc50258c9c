"""Process logging setup for the CLI and long-running workers."""
from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILENAME = "flight_booking.log"

# Third-party loggers that log every supplier request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str, log_dir: Path) -> Path:
    """Log to stderr and ``<log_dir>/flight_booking.log``; returns the log file path."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILENAME
    resolved = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(), logging.FileHandler(log_path)],
    )
    if resolved > logging.DEBUG:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return log_path
