"""
Centralized logging configuration.
Console output always, rotating file output when a log file is configured.
"""
import logging
import logging.handlers
from pathlib import Path

from marketchat.config import Settings


NOISY_LOGGERS = ("pymongo", "motor", "uvicorn.access", "multipart")


def setup_logging(settings: Settings) -> logging.Logger:
    """
    Configure the root logger for the service.

    Args:
        settings: loaded application settings

    Returns:
        The configured root logger
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    formatter = logging.Formatter(settings.log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_path = None
    if settings.log_file:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / settings.log_file
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger("marketchat")
    logger.info("Logging initialized at %s level", logging.getLevelName(log_level))
    if log_path is not None:
        logger.info("Log file: %s", log_path)
    return root_logger
