"""
Error types and error logging for perch.

Per-item problems (missing content, vanished items) are recoverable and are
normally handled inside the engines. A failed model call or a caller error
is fatal for the operation in progress.

The CLI prints one-line messages; tracebacks go to perch-errors.log in the
store directory.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class PerchError(Exception):
    """Base class for perch errors."""


class ContentUnavailable(PerchError):
    """No text could be acquired for a leaf item."""


class EmbeddingProviderFailure(PerchError):
    """The batch inference call itself failed. Nothing from the batch is saved."""


class ItemNotFound(PerchError, KeyError):
    """A referenced item id no longer resolves in the item tree."""

    def __init__(self, item_id: str):
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self) -> str:
        return f"Item not found: {self.item_id}"


class PreconditionViolation(PerchError, ValueError):
    """Caller error: empty batch, malformed vector, unknown kind."""


ERROR_LOG_FILENAME = "perch-errors.log"


def error_log_path(store_path: Optional[Path] = None) -> Path:
    """
    The error log lives in the store directory.

    Without an explicit store, PERCH_STORE_PATH and then ~/.perch apply.
    """
    if store_path is None:
        store = os.environ.get("PERCH_STORE_PATH")
        store_path = Path(store) if store else Path.home() / ".perch"
    return Path(store_path) / ERROR_LOG_FILENAME


def log_exception(exc: Exception, context: str = "", store_path: Optional[Path] = None) -> Path:
    """
    Append *exc* and its traceback to the error log, returning the log's path.

    *context* names what was running (usually the CLI command). The file is
    created owner-only since tracebacks can carry bookmark URLs.
    """
    log_path = error_log_path(store_path)
    stamp = datetime.now(timezone.utc).isoformat()
    header = f"[{stamp}] {context}".rstrip()
    entry = "\n".join([
        "",
        "-" * 72,
        header,
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    ])
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as out:
            out.write(entry)
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
