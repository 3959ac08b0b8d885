"""Logging configuration - rich console output plus a per-run log file."""

import logging
import os
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig

LOGGER_NAME = "namada_host_kit"
FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    config: LoggingConfig,
    log_dir: Path | None = None,
    run_name: str = "nhk",
    console: Console | None = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        config: Logging section of the app config
        log_dir: Directory for the run's log file (file logging is skipped when None)
        run_name: Log file stem, usually the workflow name
        console: Rich console shared with the CLI

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(config.level).upper(), logging.INFO))
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    if config.console_logging:
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            markup=False,
            show_time=True,
            show_path=False,
        )
        logger.addHandler(rich_handler)

    if config.file_logging and log_dir is not None:
        log_file = log_dir / f"{run_name}.log"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
            logger.addHandler(file_handler)
            os.chmod(log_file, 0o600)
        except OSError as e:
            logger.warning(f"Could not set up file logging to {log_file}: {e}")

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
