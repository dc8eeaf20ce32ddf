"""Logging setup for peerpair.

Every module logs through a child of the "peerpair" logger. The CLI
configures it once per process; tests reset it between cases.
"""

import logging
from pathlib import Path

from peerpair.config import Config

LOGGER_NAME = "peerpair"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured: logging.Logger | None = None


def _handlers(config: Config) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if config.log_file:
        path = Path(config.log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    handlers.append(logging.StreamHandler())
    return handlers


def setup_logging(config: Config) -> logging.Logger:
    """Configure the package logger.

    Only the first call has an effect; later calls return the same logger.

    Args:
        config: Configuration with log_level and optional log_file.

    Returns:
        The "peerpair" logger.
    """
    global _configured

    if _configured is not None:
        return _configured

    logger = logging.getLogger(LOGGER_NAME)
    level = logging.getLevelName(config.log_level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _handlers(config):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # Keep records out of the root logger
    logger.propagate = False

    _configured = logger
    return logger


def reset_logging() -> None:
    """Undo setup_logging(). Used for testing."""
    global _configured
    if _configured is None:
        return

    for handler in list(_configured.handlers):
        _configured.removeHandler(handler)
        handler.close()
    _configured.propagate = True
    _configured = None


def short(value: str | None, length: int = 8) -> str:
    """Truncate a token or fingerprint for log output."""
    if not value:
        return "-"
    if len(value) <= length:
        return value
    return f"{value[:length]}..."
