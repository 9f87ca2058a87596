"""log_setup.py
Root logger configuration shared by the CLI entry points.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

__all__ = ["setup_logging", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# third-party loggers that are chatty at INFO
_QUIET = ("numba", "matplotlib", "onnxruntime")


def setup_logging(debug: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """Install console (and optional rotating file) handlers on the root logger."""
    root = logging.getLogger()
    # Remove any existing handlers
    for h in root.handlers[:]:
        root.removeHandler(h)
    level = logging.DEBUG if debug else logging.INFO
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        fileh = RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=2)
        fileh.setLevel(level)
        fileh.setFormatter(formatter)
        root.addHandler(fileh)

    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
