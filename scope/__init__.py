"""
Scope

Tag folders, list them back, and open a shell in a temporary workspace
holding a symlink to every folder with a given tag.

Quick Start:
    from scope import Store, TagRepository, SessionManager

    store = Store()            # ~/.config/scope/scope.db
    store.init()
    repo = TagRepository(store)
    repo.add_tag("/home/me/src/api", "work")
    repo.list_folders_by_tag("work")
    SessionManager(repo).start(["work"])

CLI Usage:
    scope tag . work
    scope list work
    scope start work

Environment Variables:
    SCOPE_CONFIG_DIR  - Override the config directory (database + scope.toml)
    SCOPE_VERBOSE     - Set to 1 for debug logging
    SCOPE_SESSION     - Set inside a session: the session's tag names
    SCOPE_WORKSPACE   - Set inside a session: the workspace directory
"""

from .errors import (
    AssociationNotFound,
    FolderNotFound,
    InvalidName,
    IOFailure,
    NoFoldersFound,
    ScopeError,
    SessionInterrupted,
    ShellLaunchError,
    StoreNotInitialized,
    TagAlreadyExists,
    TagNotFound,
)
from .session import Completed, LaunchFailed, SessionManager, SessionResult
from .store import Store
from .tags import DoctorReport, PruneResult, TagRepository

__version__ = "0.1.0"
__all__ = [
    "Store",
    "TagRepository",
    "SessionManager",
    "SessionResult",
    "Completed",
    "LaunchFailed",
    "PruneResult",
    "DoctorReport",
    "ScopeError",
    "StoreNotInitialized",
    "InvalidName",
    "FolderNotFound",
    "TagNotFound",
    "TagAlreadyExists",
    "AssociationNotFound",
    "NoFoldersFound",
    "IOFailure",
    "ShellLaunchError",
    "SessionInterrupted",
]
