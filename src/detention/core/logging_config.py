"""Central logging configuration for the whole project."""
from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path


def _ensure_directory(log_file: Path) -> None:
    """Create the parent directory when needed."""

    log_dir = log_file.expanduser().resolve().parent
    log_dir.mkdir(parents=True, exist_ok=True)


def setup_logging(level: int | str = logging.INFO, log_file: str | Path | None = None) -> None:
    """Configure root logging with a uniform format and handlers."""

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if root_logger.handlers:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        destination = Path(log_file)
        try:
            _ensure_directory(destination)
        except OSError as error:
            logging.getLogger(__name__).warning("cannot create log directory: %s", error)
        else:
            file_handler = logging.handlers.RotatingFileHandler(
                destination,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    logging.getLogger(__name__).info("logging configured")


__all__ = ["setup_logging"]
