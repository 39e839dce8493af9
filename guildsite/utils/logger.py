import logging
import os
from datetime import datetime
from pathlib import Path

_LOGGERS = {}

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Create or retrieve a named logger.

    - name: logger namespace under "guildsite" (e.g. services.chat)

    Level comes from LOG_LEVEL. When LOG_DIR is set, a file handler
    (one file per run) is attached next to the console handler.
    """
    if name in _LOGGERS:
        return _LOGGERS[name]

    logger = logging.getLogger(f"guildsite.{name}")
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    formatter = logging.Formatter(_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        file_handler = logging.FileHandler(path / f"guildsite-{timestamp}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[name] = logger

    return logger
