# rnaseqdb/utils/logging.py
"""
Logging for rnaseqdb: Rich console output, an optional log file for batch
imports, and quieter HTTP client loggers.
"""

import logging
from pathlib import Path
from typing import Optional
from rich.logging import RichHandler

ROOT_LOGGER = "rnaseqdb"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# ENA lookups go through requests; its per-connection chatter stays out of the log
NOISY_LOGGERS = ("urllib3", "requests")


def setup_logger(logfile: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """
    Configure the `rnaseqdb` logger.

    Console records go through Rich. With `logfile`, every record is also
    appended to that file (parent directories are created). `verbose` lowers
    the level to DEBUG, which shows per-row ADDING/Merge messages.

    Calling it again replaces the handlers, so the CLI can reconfigure once
    the config file has been read.
    """
    level = logging.DEBUG if verbose else logging.INFO

    log = logging.getLogger(ROOT_LOGGER)
    log.setLevel(level)
    log.propagate = False
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()

    console = RichHandler(rich_tracebacks=True, show_path=False, log_time_format="[%X]")
    console.setLevel(level)
    log.addHandler(console)

    if logfile:
        logfile = Path(logfile)
        logfile.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(logfile)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        log.addHandler(file_handler)
        log.debug("Logging to %s", logfile)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass `__name__` so it sits under the `rnaseqdb` logger."""
    return logging.getLogger(name)
