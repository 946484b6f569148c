import logging
from pathlib import Path
from typing import Optional

from spacetime_link.config import Settings, get_settings

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
)


def configure_logging(settings: Optional[Settings] = None) -> Path:
    """
    Configure root logger with console and file handlers.

    Returns the path of the log file.
    """
    settings = settings or get_settings()
    log_dir: Path = settings.logs_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / settings.log_file

    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )
    return log_file


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given name.

    Use __name__ as the logger name in each module:
    logger = get_logger(__name__)

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


configure_logging()

LOGGER = logging.getLogger("spacetime_link")
