"""
Logging configuration for grimoire.

Quiet by default for the CLI; a persistent operations log records every
write next to the database.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "grimoire-ops.log"


def configure_quiet_mode(quiet: bool = True):
    """
    Keep provider SDKs and Python warnings off the terminal.

    Args:
        quiet: False leaves library logging and warnings untouched
    """
    if quiet:
        warnings.filterwarnings("ignore")
        for name in ("httpx", "httpcore", "anthropic", "openai"):
            logging.getLogger(name).setLevel(logging.ERROR)


def enable_debug_mode():
    """Send DEBUG records from grimoire and the SDKs to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Only one stderr handler, however often this is called
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    for name in ("grimoire", "httpx", "anthropic", "openai"):
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_dir) -> RotatingFileHandler:
    """Configure a persistent operations log for a grimoire database.

    Writes to {store_dir}/grimoire-ops.log using a rotating file handler
    that keeps three 1 MB backups. Independent of --verbose.
    Repository.close() hands the returned handler to remove_ops_log().
    """
    log_path = Path(store_dir) / OPS_LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    grimoire_logger = logging.getLogger("grimoire")
    grimoire_logger.addHandler(handler)
    # Ensure the grimoire logger allows INFO through even in quiet mode
    if grimoire_logger.level == logging.NOTSET or grimoire_logger.level > logging.INFO:
        grimoire_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler: RotatingFileHandler) -> None:
    """Detach and close a handler returned by configure_ops_log."""
    logging.getLogger("grimoire").removeHandler(handler)
    handler.close()


def verbose_from_env() -> bool:
    return os.environ.get("GRIMOIRE_VERBOSE") == "1"
