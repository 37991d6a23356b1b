"""
Error types for scope, plus error logging for the CLI.

Every failure the core can report is a ScopeError subclass. The CLI
shows the message; unexpected exceptions get their full stack trace
written to the error log instead.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class ScopeError(Exception):
    """Base class for all scope errors."""


class StoreNotInitialized(ScopeError):
    """A repository call was made before the store was initialized."""

    def __init__(self, message: str = "database not initialized"):
        super().__init__(message)


class InvalidName(ScopeError, ValueError):
    """Empty tag name or path, or an operation naming the same tag twice."""


class FolderNotFound(ScopeError):
    """The path does not exist on disk."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"folder does not exist: {path}")


class TagNotFound(ScopeError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"tag not found: {name}")


class TagAlreadyExists(ScopeError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"tag already exists: {name}")


class AssociationNotFound(ScopeError):
    """
    No (folder, tag) row to remove.

    folder_tracked and tag_exists tell apart "the folder never had this
    tag" from "the folder (or tag) is not known at all".
    """

    def __init__(self, path: str, tag: str, folder_tracked: bool = True, tag_exists: bool = True):
        self.path = path
        self.tag = tag
        self.folder_tracked = folder_tracked
        self.tag_exists = tag_exists
        if not folder_tracked:
            message = f"folder is not tracked: {path}"
        else:
            message = f"tag '{tag}' not found on folder: {path}"
        super().__init__(message)


class NoFoldersFound(ScopeError):
    def __init__(self, tags: list[str]):
        self.tags = list(tags)
        super().__init__(f"no folders found with tag: {', '.join(self.tags)}")


class IOFailure(ScopeError):
    """A filesystem or database error; the original exception is the __cause__."""


class ShellLaunchError(IOFailure):
    """The session shell could not be started or waited on."""


class SessionInterrupted(ScopeError):
    """The process received a terminating signal during a session."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"session interrupted by signal {signum}")


def _error_log_path() -> Path:
    """Resolve error log path, respecting SCOPE_CONFIG_DIR."""
    from .config import get_config_dir
    return get_config_dir() / "scope-errors.log"


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
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Error log is best effort
    return log_path
