import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from ranksync.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def log_file_path(prefix: Optional[str] = None) -> Optional[Path]:
    """Today's log file under Config.LOG_DIR, or None when file logging is off"""
    if not Config.LOG_DIR:
        return None
    prefix = prefix or Config.LOG_FILE_PREFIX
    return Path(Config.LOG_DIR) / f'{prefix}_{datetime.now().strftime("%Y%m%d")}.log'


def setup_logger(name: str, prefix: Optional[str] = None) -> logging.Logger:
    """Attach console and daily file handlers to ``name`` once.

    Levels come from Config: LOG_LEVEL for the console (DEBUG forces debug
    output), the file always records DEBUG.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    console_level = logging.DEBUG if Config.DEBUG else logging.getLevelName(Config.LOG_LEVEL)
    if not isinstance(console_level, int):
        console_level = logging.INFO
    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    logger.setLevel(console_level)

    path = log_file_path(prefix)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)

    return logger
