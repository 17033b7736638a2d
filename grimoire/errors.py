"""
Error types and error logging for grimoire.

Every failure the repository reports is a ``GrimoireError`` subclass with a
``kind`` string and structured attributes, so callers can branch on kind
(or, for validation, field by field) instead of parsing messages.

``log_exception`` writes full stack traces for debugging while the CLI
shows clean one-line messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence


class GrimoireError(Exception):
    """Base class for all repository errors."""
    kind = "error"


class ValidationFailed(GrimoireError):
    """The candidate or merged item breaks its category's field rules."""
    kind = "validation_failed"

    def __init__(self, violations: Sequence[Any]):
        self.violations = list(violations)
        detail = ", ".join(str(v) for v in self.violations)
        super().__init__(f"Validation failed: {detail}")

    def fields(self) -> list[str]:
        """Names of the offending fields, in report order."""
        return [v.field for v in self.violations]


class DuplicateName(GrimoireError):
    """Another live item already uses this (normalized) name."""
    kind = "duplicate_name"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"An item named {name!r} already exists")


class NotFound(GrimoireError):
    """No live item with this id, or no such historical version."""
    kind = "not_found"

    def __init__(self, id: int, version: Optional[int] = None):
        self.id = id
        self.version = version
        if version is None:
            super().__init__(f"Item {id} not found")
        else:
            super().__init__(f"Item {id} has no version {version} in its history")


class VersionConflict(GrimoireError):
    """The item changed since the caller loaded it: reload and retry."""
    kind = "version_conflict"

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Data changed since load (expected version {expected}, "
            f"found {actual}); reload and retry"
        )


class ImmutableField(GrimoireError):
    """The patch tries to change a field that is fixed after creation."""
    kind = "immutable_field"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field {field!r} cannot be changed")


class StorageFailure(GrimoireError):
    """The storage engine failed; nothing was committed. Safe to retry."""
    kind = "storage_failure"

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Storage failure: {cause}")


class IndexDesync(GrimoireError):
    """The search index disagrees with the item table and repair failed."""
    kind = "index_desync"

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Search index out of sync for item {item_id}")


class UnsupportedExport(GrimoireError):
    """This category has no file representation (prompts are copy-only)."""
    kind = "unsupported_export"

    def __init__(self, category: Any):
        self.category = category
        super().__init__(f"Items of category {category} cannot be exported")


class SuggestionError(GrimoireError):
    """The suggestion provider failed or is not configured."""
    kind = "suggestion_error"

    def __init__(self, cause: Any):
        self.cause = cause
        super().__init__(f"Suggestion failed: {cause}")


def _error_log_path() -> Path:
    """Resolve error log path, respecting GRIMOIRE_STORE_PATH."""
    store = os.environ.get("GRIMOIRE_STORE_PATH")
    if store:
        return Path(store).expanduser().parent / "grimoire-errors.log"
    from .config import get_data_dir
    return get_data_dir() / "grimoire-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
