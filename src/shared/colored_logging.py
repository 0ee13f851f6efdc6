#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Console logging for the metrics aggregator.

Level names are wrapped in ANSI colors so degraded-mode warnings stand out
next to the routine refresh lines:
- DEBUG: Cyan
- INFO: Green
- WARNING: Yellow (upstream failures, synthetic fallbacks)
- ERROR: Red
- CRITICAL: Bold Red
"""
from __future__ import annotations

import logging
import sys
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(module)s.%(funcName)s:%(lineno)d] - %(message)s'
DEFAULT_DATEFMT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str = DEFAULT_FORMAT, datefmt: Optional[str] = DEFAULT_DATEFMT, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        # Colors only make sense on a TTY; log files and CI output stay plain
        self.use_colors = use_colors and hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{self.COLORS[plain]}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def setup_colored_logging(level: int = logging.INFO, fmt: str = DEFAULT_FORMAT, datefmt: Optional[str] = DEFAULT_DATEFMT) -> None:
    """
    Install a single colored stderr handler on the root logger.

    Args:
        level: Root logging level (e.g., logging.INFO)
        fmt: Format string for log messages
        datefmt: Format string for timestamps
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter(fmt=fmt, datefmt=datefmt))

    root.setLevel(level)
    root.addHandler(console_handler)

    # urllib3 logs every retry/connection at DEBUG; keep it at WARNING unless asked
    if level > logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_level(name: Optional[str], default: int = logging.INFO) -> int:
    """Map a level name such as 'debug' to its logging constant."""
    if not name:
        return default
    value = getattr(logging, str(name).strip().upper(), None)
    return value if isinstance(value, int) else default
