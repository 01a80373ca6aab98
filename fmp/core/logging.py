import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from . import config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_BYTES = 2_000_000
BACKUP_COUNT = 5


def setup_logger(name: str = "fmp", path: str | None = None, level: str | None = None):
    """
    Configure ``name`` to write to a rotating file under the data directory.

    Account and vault names may be logged; secrets never are.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO))

    # CLI and web app both import this module; configure once per process
    if logger.handlers:
        return logger

    log_path = Path(path or config.LOG_PATH)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        log_path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger.addHandler(handler)
    logger.propagate = False

    logger.debug("Logging to %s", log_path)
    return logger


logger = setup_logger()
