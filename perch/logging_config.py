"""
Logging setup for perch.

Model and HTTP libraries are chatty; perch keeps them quiet unless asked,
and always records its own INFO-level milestones in the store's ops log.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "perch-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

# Hugging Face / tokenizer switches that silence download bars and warnings
QUIET_ENV = {
    "HF_HUB_DISABLE_PROGRESS_BARS": "1",
    "TRANSFORMERS_VERBOSITY": "error",
    "TOKENIZERS_PARALLELISM": "false",
    "HF_HUB_DISABLE_TELEMETRY": "1",
}

_LIBRARY_LOGGERS = ("transformers", "sentence_transformers", "httpx", "httpcore")

# Must happen before sentence-transformers is first imported
if not os.environ.get("PERCH_VERBOSE"):
    for _key, _value in QUIET_ENV.items():
        os.environ.setdefault(_key, _value)


def configure_quiet_mode(quiet: bool = True):
    """
    Silence model download bars, per-request httpx logging and library warnings.

    Args:
        quiet: If False, leave library output alone.
    """
    if not quiet:
        return
    os.environ.update(QUIET_ENV)
    warnings.filterwarnings("ignore")
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def _stderr_handler(logger: logging.Logger):
    for h in logger.handlers:
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr:
            return h
    return None


def enable_debug_mode():
    """Send DEBUG records from perch (INFO from libraries) to stderr."""
    warnings.filterwarnings("default")
    for key in ("HF_HUB_DISABLE_PROGRESS_BARS", "TRANSFORMERS_VERBOSITY"):
        os.environ.pop(key, None)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if _stderr_handler(root) is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
        root.addHandler(handler)

    logging.getLogger("perch").setLevel(logging.DEBUG)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """
    Attach the store's operations log to the ``perch`` logger.

    ``{store_path}/perch-ops.log`` rotates at 1 MB, keeping 3 old files, and
    is written whether or not --verbose is given. The handler is returned so
    the owner can detach it on close.
    """
    store_path = Path(store_path)
    store_path.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        str(store_path / OPS_LOG_FILENAME),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    perch_logger = logging.getLogger("perch")
    perch_logger.addHandler(handler)
    # INFO must reach the handler even when quiet mode raised nothing else
    if perch_logger.level == logging.NOTSET or perch_logger.level > logging.INFO:
        perch_logger.setLevel(logging.INFO)
    return handler
