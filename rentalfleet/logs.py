import logging
from pathlib import Path
from typing import Optional

from . import config

FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"


def get_logger(name: str, filename: Optional[str] = None) -> logging.Logger:
    """
    Return the named logger, attaching a console handler (and a file handler
    when FLEET_LOG_DIR is set) the first time it is requested.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(config.LOG_LEVEL)
    fmt = logging.Formatter(FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(fmt)
    logger.addHandler(stream_handler)

    if config.LOG_DIR:
        log_dir = Path(config.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"{filename or name}.log", encoding="utf-8")
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)

    return logger
