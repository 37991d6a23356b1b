"""
Export and import of the tag mapping as YAML.

Snapshot shape:

    version: 1
    tags:
      work:
        - /home/me/src/api
        - /home/me/src/web
"""

import logging
from dataclasses import dataclass, field

import yaml

from .errors import FolderNotFound, ScopeError
from .tags import TagRepository

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class ImportReport:
    imported: int = 0
    skipped: list[str] = field(default_factory=list)            # folders gone from disk
    failed: list[tuple[str, str, str]] = field(default_factory=list)  # (folder, tag, error)


def export_snapshot(repository: TagRepository) -> dict:
    """Every tag with its folders, as a plain dict."""
    tags = {}
    for name in sorted(repository.list_tags()):
        tags[name] = repository.list_folders_by_tag(name)
    return {"version": SNAPSHOT_VERSION, "tags": tags}


def dump_snapshot(data: dict) -> str:
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)


def load_snapshot(text: str) -> dict:
    """
    Parse and validate a snapshot.

    Raises:
        ValueError: If the text is not a snapshot this version understands
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"failed to parse YAML: {e}") from e
    if data is None:
        return {"version": SNAPSHOT_VERSION, "tags": {}}
    if not isinstance(data, dict):
        raise ValueError("snapshot must be a mapping")

    version = data.get("version", SNAPSHOT_VERSION)
    if not isinstance(version, int) or version > SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version: {version}")

    tags = data.get("tags") or {}
    if not isinstance(tags, dict):
        raise ValueError("'tags' must be a mapping of tag name to folder list")
    for name, folders in tags.items():
        if folders is not None and not isinstance(folders, list):
            raise ValueError(f"folders for tag '{name}' must be a list")
    return {"version": version, "tags": {str(k): list(v or []) for k, v in tags.items()}}


def import_snapshot(repository: TagRepository, data: dict) -> ImportReport:
    """
    Apply every (folder, tag) pair in a snapshot.

    Pairs whose folder no longer exists are skipped and reported.
    """
    report = ImportReport()
    for tag, folders in data.get("tags", {}).items():
        for folder in folders:
            folder = str(folder)
            try:
                repository.add_tag(folder, tag)
            except FolderNotFound:
                report.skipped.append(folder)
                continue
            except ScopeError as e:
                logger.warning("Failed to import tag '%s' for %s: %s", tag, folder, e)
                report.failed.append((folder, tag, str(e)))
                continue
            report.imported += 1
    logger.info("Imported %d tag assignments (%d skipped, %d failed)",
                report.imported, len(report.skipped), len(report.failed))
    return report
