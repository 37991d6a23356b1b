"""
Tag repository: folders, tags and the associations between them.

A folder row is created the first time a path is tagged and stays
until it is pruned (its path gone from disk), even when its last tag is
removed. Tag rows go away when deleted or merged into another tag.
Deleting either side cascades to its associations.

Reads never check the disk: a folder removed after tagging stays
tagged until prune() is run.
"""

import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .errors import (
    AssociationNotFound,
    FolderNotFound,
    InvalidName,
    IOFailure,
    TagAlreadyExists,
    TagNotFound,
)
from .store import Store

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    """Folders removed by prune (or that would be, for a dry run)."""
    removed_folders: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def removed_count(self) -> int:
        return len(self.removed_folders)


@dataclass
class DoctorReport:
    """Read-only health summary of the tag database."""
    total_tags: int = 0
    total_folders: int = 0
    total_associations: int = 0
    orphaned_tags: list[str] = field(default_factory=list)    # tags with no folders
    missing_folders: list[str] = field(default_factory=list)  # paths gone from disk
    untagged_folders: list[str] = field(default_factory=list)  # folders with no tags

    @property
    def healthy(self) -> bool:
        return not self.orphaned_tags and not self.missing_folders


def _require(value: str, what: str) -> str:
    if not value:
        raise InvalidName(f"{what} must not be empty")
    return value


def _is_missing(path: str) -> bool:
    """
    True only when path does not exist.

    A path that cannot be checked (permission denied, symlink loop)
    is not missing.
    """
    try:
        os.stat(path)
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.debug("Cannot check %s: %s", path, e)
    return False


def _now() -> int:
    """Current time in seconds since the epoch."""
    return int(time.time())


class TagRepository:
    """
    Operations over the folder/tag mapping.

    Every mutation runs in a single store transaction. Names and paths
    are compared exactly: no case folding, no path normalization.
    """

    def __init__(self, store: Store):
        self._store = store

    # -------------------------------------------------------------------------
    # Helpers (run inside an open transaction or read)
    # -------------------------------------------------------------------------

    @staticmethod
    def _tag_id(conn: sqlite3.Connection, name: str) -> Optional[int]:
        row = conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()
        return row["id"] if row else None

    @staticmethod
    def _folder_id(conn: sqlite3.Connection, path: str) -> Optional[int]:
        row = conn.execute("SELECT id FROM folders WHERE path = ?", (path,)).fetchone()
        return row["id"] if row else None

    @staticmethod
    def _create_tag(conn: sqlite3.Connection, name: str, now: int) -> int:
        cursor = conn.execute(
            "INSERT INTO tags (name, created_at) VALUES (?, ?)", (name, now)
        )
        return cursor.lastrowid

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add_tag(self, path: str, tag: str) -> None:
        """
        Tag a folder. Re-adding an existing pair is a no-op.

        Raises:
            FolderNotFound: If path does not exist on disk
            InvalidName: If path or tag is empty
            IOFailure: If path cannot be checked
        """
        _require(path, "folder path")
        _require(tag, "tag name")
        try:
            os.stat(path)
        except FileNotFoundError:
            raise FolderNotFound(path)
        except OSError as e:
            raise IOFailure(f"failed to check folder {path}: {e}") from e

        now = _now()
        with self._store.transaction("add tag") as conn:
            folder_id = self._folder_id(conn, path)
            if folder_id is None:
                folder_id = conn.execute(
                    "INSERT INTO folders (path, created_at) VALUES (?, ?)", (path, now)
                ).lastrowid
            tag_id = self._tag_id(conn, tag)
            if tag_id is None:
                tag_id = self._create_tag(conn, tag, now)
            cursor = conn.execute("""
                INSERT OR IGNORE INTO folder_tags (folder_id, tag_id, created_at)
                VALUES (?, ?, ?)
            """, (folder_id, tag_id, now))

        if cursor.rowcount > 0:
            logger.info("Tagged %s with '%s'", path, tag)
        else:
            logger.debug("%s already tagged '%s'", path, tag)

    def remove_tag(self, path: str, tag: str) -> None:
        """
        Remove one tag from one folder. The folder row stays.

        Raises:
            AssociationNotFound: If the folder does not carry the tag
        """
        with self._store.transaction("remove tag") as conn:
            cursor = conn.execute("""
                DELETE FROM folder_tags
                WHERE folder_id = (SELECT id FROM folders WHERE path = ?)
                  AND tag_id = (SELECT id FROM tags WHERE name = ?)
            """, (path, tag))
            if cursor.rowcount == 0:
                raise AssociationNotFound(
                    path, tag,
                    folder_tracked=self._folder_id(conn, path) is not None,
                    tag_exists=self._tag_id(conn, tag) is not None,
                )
        logger.info("Removed tag '%s' from %s", tag, path)

    def delete_tag(self, tag: str) -> None:
        """
        Delete a tag and, by cascade, every association to it.

        Raises:
            TagNotFound: If no such tag exists
        """
        with self._store.transaction("delete tag") as conn:
            cursor = conn.execute("DELETE FROM tags WHERE name = ?", (tag,))
            if cursor.rowcount == 0:
                raise TagNotFound(tag)
        logger.info("Deleted tag '%s'", tag)

    def rename_tag(self, old: str, new: str) -> None:
        """
        Rename a tag in place; its associations follow (same row).

        Never merges: use merge_tag() to fold one tag into another.

        Raises:
            TagNotFound: If old does not exist
            TagAlreadyExists: If new already exists
        """
        _require(new, "tag name")
        with self._store.transaction("rename tag") as conn:
            old_id = self._tag_id(conn, old)
            if old_id is None:
                raise TagNotFound(old)
            if self._tag_id(conn, new) is not None:
                raise TagAlreadyExists(new)
            conn.execute("UPDATE tags SET name = ? WHERE id = ?", (new, old_id))
        logger.info("Renamed tag '%s' to '%s'", old, new)

    def merge_tag(self, src: str, dst: str) -> int:
        """
        Move every folder of src onto dst, then delete src.

        dst is created if needed. A folder that already carries dst
        still counts as moved. A folder whose association cannot be
        written is logged and left out of the count; src is deleted
        regardless.

        Returns:
            Number of folders moved

        Raises:
            TagNotFound: If src does not exist
            InvalidName: If dst is empty or equal to src
        """
        _require(dst, "tag name")
        if src == dst:
            raise InvalidName(f"cannot merge tag '{src}' into itself")

        now = _now()
        moved = 0
        with self._store.transaction("merge tag") as conn:
            src_id = self._tag_id(conn, src)
            if src_id is None:
                raise TagNotFound(src)
            dst_id = self._tag_id(conn, dst)
            if dst_id is None:
                dst_id = self._create_tag(conn, dst, now)

            rows = conn.execute("""
                SELECT f.id, f.path
                FROM folders f
                JOIN folder_tags ft ON f.id = ft.folder_id
                WHERE ft.tag_id = ?
                ORDER BY f.path
            """, (src_id,)).fetchall()
            for row in rows:
                try:
                    conn.execute("""
                        INSERT OR IGNORE INTO folder_tags (folder_id, tag_id, created_at)
                        VALUES (?, ?, ?)
                    """, (row["id"], dst_id, now))
                except sqlite3.Error as e:
                    logger.warning("Failed to move %s from '%s' to '%s': %s", row["path"], src, dst, e)
                    continue
                moved += 1

            conn.execute("DELETE FROM tags WHERE id = ?", (src_id,))

        logger.info("Merged tag '%s' into '%s' (%d folders)", src, dst, moved)
        return moved

    def clone_tag(self, src: str, new: str) -> int:
        """
        Create tag new carrying the same folders as src. src is untouched.

        Returns:
            Number of associations copied

        Raises:
            TagNotFound: If src does not exist
            TagAlreadyExists: If new already exists
        """
        _require(new, "tag name")
        now = _now()
        with self._store.transaction("clone tag") as conn:
            src_id = self._tag_id(conn, src)
            if src_id is None:
                raise TagNotFound(src)
            if self._tag_id(conn, new) is not None:
                raise TagAlreadyExists(new)
            new_id = self._create_tag(conn, new, now)
            cursor = conn.execute("""
                INSERT INTO folder_tags (folder_id, tag_id, created_at)
                SELECT folder_id, ?, ? FROM folder_tags WHERE tag_id = ?
            """, (new_id, now, src_id))
            copied = cursor.rowcount

        logger.info("Cloned tag '%s' as '%s' (%d folders)", src, new, copied)
        return copied

    def prune(self, dry_run: bool = False) -> PruneResult:
        """
        Remove folders whose path no longer exists on disk.

        One existence check per tracked folder. With dry_run, report
        the same paths but change nothing.
        """
        with self._store.reading("list folders") as conn:
            rows = conn.execute("SELECT id, path FROM folders ORDER BY path").fetchall()

        stale = [(row["id"], row["path"]) for row in rows if _is_missing(row["path"])]
        result = PruneResult(removed_folders=[path for _, path in stale], dry_run=dry_run)
        if dry_run or not stale:
            return result

        with self._store.transaction("prune folders") as conn:
            conn.executemany("DELETE FROM folders WHERE id = ?", [(id,) for id, _ in stale])

        for path in result.removed_folders:
            logger.info("Pruned missing folder %s", path)
        return result

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def list_tags(self) -> dict[str, int]:
        """Every tag mapped to its folder count (zero included)."""
        with self._store.reading("list tags") as conn:
            cursor = conn.execute("""
                SELECT t.name, COUNT(ft.folder_id) AS count
                FROM tags t
                LEFT JOIN folder_tags ft ON t.id = ft.tag_id
                GROUP BY t.id, t.name
                ORDER BY t.name
            """)
            return {row["name"]: row["count"] for row in cursor}

    def list_folders_by_tag(self, tag: str) -> list[str]:
        """Folder paths carrying tag, sorted. Empty for an unknown tag."""
        with self._store.reading("list folders") as conn:
            cursor = conn.execute("""
                SELECT f.path
                FROM folders f
                JOIN folder_tags ft ON f.id = ft.folder_id
                JOIN tags t ON ft.tag_id = t.id
                WHERE t.name = ?
                ORDER BY f.path
            """, (tag,))
            return [row["path"] for row in cursor]

    def folders_for_tags(self, tags: Iterable[str]) -> list[str]:
        """Union of the folders of several tags, deduplicated and sorted."""
        names = list(dict.fromkeys(tags))
        if not names:
            return []
        placeholders = ",".join("?" * len(names))
        with self._store.reading("list folders") as conn:
            cursor = conn.execute(f"""
                SELECT DISTINCT f.path
                FROM folders f
                JOIN folder_tags ft ON f.id = ft.folder_id
                JOIN tags t ON ft.tag_id = t.id
                WHERE t.name IN ({placeholders})
                ORDER BY f.path
            """, names)
            return [row["path"] for row in cursor]

    def get_tags_for_folder(self, path: str) -> list[str]:
        """Tag names on path, sorted. Empty for an untracked path."""
        with self._store.reading("list tags") as conn:
            cursor = conn.execute("""
                SELECT t.name
                FROM tags t
                JOIN folder_tags ft ON t.id = ft.tag_id
                JOIN folders f ON ft.folder_id = f.id
                WHERE f.path = ?
                ORDER BY t.name
            """, (path,))
            return [row["name"] for row in cursor]

    def list_all_folders(self) -> list[str]:
        """Every folder with at least one tag, sorted."""
        with self._store.reading("list folders") as conn:
            cursor = conn.execute("""
                SELECT DISTINCT f.path
                FROM folders f
                JOIN folder_tags ft ON f.id = ft.folder_id
                ORDER BY f.path
            """)
            return [row["path"] for row in cursor]

    def doctor(self) -> DoctorReport:
        """Counts plus orphaned tags and folders missing from disk. Changes nothing."""
        report = DoctorReport()
        with self._store.reading("run health check") as conn:
            report.total_tags = conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]
            report.total_folders = conn.execute("SELECT COUNT(*) FROM folders").fetchone()[0]
            report.total_associations = conn.execute("SELECT COUNT(*) FROM folder_tags").fetchone()[0]

            report.orphaned_tags = [row["name"] for row in conn.execute("""
                SELECT t.name FROM tags t
                LEFT JOIN folder_tags ft ON t.id = ft.tag_id
                WHERE ft.tag_id IS NULL
                ORDER BY t.name
            """)]
            report.untagged_folders = [row["path"] for row in conn.execute("""
                SELECT f.path FROM folders f
                LEFT JOIN folder_tags ft ON f.id = ft.folder_id
                WHERE ft.folder_id IS NULL
                ORDER BY f.path
            """)]
            paths = [row["path"] for row in conn.execute("SELECT path FROM folders ORDER BY path")]

        report.missing_folders = [p for p in paths if _is_missing(p)]
        return report
