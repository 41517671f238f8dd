"""Console logging for the simulator entry points."""

from __future__ import annotations

import copy
import logging
import sys

COLORS = {
    "RESET": "\033[0m",
    "RED": "\033[91m",
    "GREEN": "\033[92m",
    "YELLOW": "\033[93m",
    "CYAN": "\033[96m",
    "MAGENTA": "\033[95m",
    "WHITE": "\033[97m",
}

FORMAT = "[%(asctime)s] %(levelname)s - %(message)s"
DATEFMT = "%H:%M:%S"


class ColorFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: COLORS["CYAN"],
        logging.INFO: COLORS["GREEN"],
        logging.WARNING: COLORS["YELLOW"],
        logging.ERROR: COLORS["RED"],
        logging.CRITICAL: COLORS["MAGENTA"],
    }

    def format(self, record):
        rec = copy.copy(record)
        color = self.LEVEL_COLORS.get(rec.levelno, COLORS["WHITE"])
        rec.msg = f"{color}{rec.msg}{COLORS['RESET']}"
        return super().format(rec)


def configure_logging(level: int = logging.INFO, color: bool = True) -> logging.Logger:
    """Attach a single stdout handler to the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers:
        if getattr(h, "_pbft_console", False):
            h.setLevel(level)
            return root

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    formatter_cls = ColorFormatter if color else logging.Formatter
    handler.setFormatter(formatter_cls(fmt=FORMAT, datefmt=DATEFMT))
    handler._pbft_console = True
    root.addHandler(handler)
    return root

