import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
# Collectors run on "scrape_N" worker threads; keep the thread in the file log
FILE_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# uvicorn access lines duplicate the scrape log of the collectors
SERVER_LOGGERS = ("uvicorn", "uvicorn.access")
# one line per SHIELD API request, only shown when debugging
BACKEND_LOGGERS = ("httpx", "httpcore")


def parse_level(log_level: str) -> int:
    return logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO)


def setup_logging(log_level: str = "INFO", log_file: str | None = None) -> logging.Logger:
    """
    Route exporter logs to stdout and, optionally, a rotating file.

    Unknown level names fall back to INFO. Calling it again replaces the
    handlers installed by a previous call.
    """
    level = parse_level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    for name in SERVER_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name in BACKEND_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
