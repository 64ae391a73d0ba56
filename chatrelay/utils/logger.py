"""Logging utility."""

import logging
from pathlib import Path
from typing import Optional

APP_LOGGER_NAME = "chatrelay"
LOG_PREVIEW_LENGTH = 100
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# httpx logs every Slack edit and OpenCode call at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(handler)


def setup_logger(
    name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up a logger writing to the console and, optionally, a file.

    Calling it again for the same name only updates the level.

    Args:
        name: Logger name
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file; parent dirs are created

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    _attach(logger, logging.StreamHandler(), level)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _attach(logger, logging.FileHandler(path), level)

    return logger


# Application logger instance
app_logger: Optional[logging.Logger] = None


def init_app_logger(settings) -> logging.Logger:
    """Configure the relay logger from settings and quiet the HTTP client loggers."""
    global app_logger

    app_logger = setup_logger(
        name=APP_LOGGER_NAME,
        log_level=settings.log_level,
        log_file=settings.log_file or None
    )
    if app_logger.level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return app_logger


def get_app_logger() -> logging.Logger:
    """Return the relay logger, creating a default one before init."""
    if app_logger is None:
        return setup_logger(APP_LOGGER_NAME)

    return app_logger


def preview(text: Optional[str], limit: int = LOG_PREVIEW_LENGTH) -> str:
    """Shorten chat text for [RECV]/[SEND] log lines."""
    if not text:
        return ""
    flat = text.replace("\n", " ")
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."
