"""
Discover .scope files under a directory.

A .scope file is a YAML mapping with a list of tags for the folder it
lives in:

    tags:
      - work
      - backend

Discovery and application are separate so the caller can ask the user
which folders to apply.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ScopeError
from .tags import TagRepository

logger = logging.getLogger(__name__)

SCOPE_FILENAME = ".scope"


class ScanError(ScopeError):
    """A .scope file could not be read or parsed."""


@dataclass
class DiscoveredScope:
    folder: str       # directory containing the .scope file
    file: str         # full path to the .scope file
    tags: list[str] = field(default_factory=list)


@dataclass
class ScanFailure:
    file: str
    error: str


@dataclass
class ScanResult:
    scopes: list[DiscoveredScope] = field(default_factory=list)
    errors: list[ScanFailure] = field(default_factory=list)


def parse_scope_file(path: Path) -> list[str]:
    """
    Read the tags from a .scope file, trimmed, empty ones dropped.

    Raises:
        ScanError: If the file can't be read or isn't the expected shape
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ScanError(f"failed to read file: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ScanError(f"failed to parse YAML: {e}") from e

    if data is None:
        return []
    if not isinstance(data, dict):
        raise ScanError("expected a mapping with a 'tags' list")
    raw = data.get("tags") or []
    if not isinstance(raw, list):
        raise ScanError("'tags' must be a list")

    tags = []
    for tag in raw:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def scan(root: Path) -> ScanResult:
    """
    Walk root for .scope files.

    Hidden directories below root are skipped. Unreadable directories
    are skipped silently; unparseable files are collected in errors.
    """
    root = Path(root)
    result = ScanResult()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        if SCOPE_FILENAME not in filenames:
            continue
        scope_file = Path(dirpath) / SCOPE_FILENAME
        if scope_file.is_dir():
            continue
        try:
            tags = parse_scope_file(scope_file)
        except ScanError as e:
            logger.debug("Skipping %s: %s", scope_file, e)
            result.errors.append(ScanFailure(file=str(scope_file), error=str(e)))
            continue
        if tags:
            result.scopes.append(DiscoveredScope(folder=dirpath, file=str(scope_file), tags=tags))
    return result


def apply_scopes(repository: TagRepository, scopes: list[DiscoveredScope]) -> int:
    """Tag each discovered folder. Returns the number of tag assignments made."""
    applied = 0
    for scope in scopes:
        for tag in scope.tags:
            try:
                repository.add_tag(scope.folder, tag)
            except ScopeError as e:
                logger.warning("Failed to add tag '%s' to %s: %s", tag, scope.folder, e)
                continue
            applied += 1
    return applied
