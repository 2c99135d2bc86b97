"""Logging setup shared by the service and its audio core."""
import logging
import sys
from typing import Optional

from accentshadow.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Decoder and multipart internals log every file they touch at DEBUG
NOISY_LOGGERS = ("pydub.converter", "multipart", "python_multipart")


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure the root handler once and set the service log level.

    Args:
        level: Level name; defaults to settings.log_level
    """
    level_name = (level or settings.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logger.setLevel(numeric_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logger.level))


logger = logging.getLogger("accentshadow")
