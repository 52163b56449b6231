from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"


def setup_logging(log_dir: Path, level: int | str = logging.INFO) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    combined_handler = RotatingFileHandler(log_dir / "app.log", maxBytes=1_000_000, backupCount=5)
    combined_handler.setFormatter(formatter)

    error_handler = RotatingFileHandler(log_dir / "error.log", maxBytes=1_000_000, backupCount=5)
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(combined_handler)
    root.addHandler(error_handler)
    root.addHandler(console_handler)
