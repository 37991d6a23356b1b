"""
Tests for the tag repository.

Real SQLite, real directories under tmp_path.
"""

import os
import shutil
import stat

import pytest

from scope.errors import (
    AssociationNotFound,
    FolderNotFound,
    InvalidName,
    IOFailure,
    StoreNotInitialized,
    TagAlreadyExists,
    TagNotFound,
)
from scope.store import Store
from scope.tags import TagRepository


def _count(store, table: str) -> int:
    return store.handle().execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def _snapshot(store) -> dict:
    conn = store.handle()
    return {
        table: sorted(tuple(row) for row in conn.execute(f"SELECT * FROM {table}"))
        for table in ("folders", "tags", "folder_tags")
    }


# -----------------------------------------------------------------------------
# add / remove
# -----------------------------------------------------------------------------

class TestAddTag:

    def test_list_folders_is_lexicographic(self, repo, make_folder):
        proj2 = make_folder("proj2")
        proj1 = make_folder("proj1")
        repo.add_tag(proj2, "work")
        repo.add_tag(proj1, "work")
        assert repo.list_folders_by_tag("work") == [proj1, proj2]

    def test_add_twice_is_idempotent(self, repo, store, make_folder):
        proj1 = make_folder("proj1")
        repo.add_tag(proj1, "work")
        repo.add_tag(proj1, "work")
        assert repo.get_tags_for_folder(proj1) == ["work"]
        assert _count(store, "folder_tags") == 1
        assert _count(store, "folders") == 1
        assert _count(store, "tags") == 1

    def test_round_trip(self, repo, make_folder):
        path = make_folder("api")
        repo.add_tag(path, "backend")
        assert "backend" in repo.get_tags_for_folder(path)
        assert path in repo.list_folders_by_tag("backend")

    def test_missing_path_rejected(self, repo, store, tmp_path):
        missing = str(tmp_path / "does-not-exist")
        with pytest.raises(FolderNotFound) as exc_info:
            repo.add_tag(missing, "work")
        assert exc_info.value.path == missing
        assert _count(store, "folders") == 0
        assert _count(store, "tags") == 0

    def test_uncheckable_path_is_io_failure(self, repo, store, tmp_path):
        loop = tmp_path / "loop"
        os.symlink(loop, loop)
        with pytest.raises(IOFailure):
            repo.add_tag(str(loop), "work")
        assert _count(store, "folders") == 0

    def test_empty_names_rejected(self, repo, make_folder):
        path = make_folder("x")
        with pytest.raises(InvalidName):
            repo.add_tag(path, "")
        with pytest.raises(InvalidName):
            repo.add_tag("", "work")

    def test_tag_names_are_case_sensitive(self, repo, make_folder):
        path = make_folder("x")
        repo.add_tag(path, "Work")
        repo.add_tag(path, "work")
        assert repo.get_tags_for_folder(path) == ["Work", "work"]
        assert repo.list_tags() == {"Work": 1, "work": 1}

    def test_tags_for_folder_sorted(self, repo, make_folder):
        path = make_folder("x")
        for name in ("zeta", "alpha", "mid"):
            repo.add_tag(path, name)
        assert repo.get_tags_for_folder(path) == ["alpha", "mid", "zeta"]

    def test_unknown_folder_has_no_tags(self, repo, tmp_path):
        assert repo.get_tags_for_folder(str(tmp_path / "never-tagged")) == []

    def test_repository_requires_initialized_store(self, tmp_path, make_folder):
        repo = TagRepository(Store(tmp_path / "other.db"))
        with pytest.raises(StoreNotInitialized):
            repo.add_tag(make_folder("x"), "work")
        with pytest.raises(StoreNotInitialized):
            repo.list_tags()


class TestRemoveTag:

    def test_remove_existing(self, repo, store, make_folder):
        path = make_folder("x")
        repo.add_tag(path, "work")
        repo.add_tag(path, "home")
        repo.remove_tag(path, "work")
        assert repo.get_tags_for_folder(path) == ["home"]

    def test_folder_row_survives_last_tag_removal(self, repo, store, make_folder):
        path = make_folder("x")
        repo.add_tag(path, "work")
        repo.remove_tag(path, "work")
        assert _count(store, "folders") == 1
        assert repo.list_all_folders() == []
        assert repo.list_tags() == {"work": 0}

    def test_missing_tag_on_tracked_folder(self, repo, make_folder):
        path = make_folder("proj1")
        repo.add_tag(path, "work")
        with pytest.raises(AssociationNotFound) as exc_info:
            repo.remove_tag(path, "missing-tag")
        assert exc_info.value.folder_tracked
        assert not exc_info.value.tag_exists

    def test_existing_tag_not_on_folder(self, repo, make_folder):
        a = make_folder("a")
        b = make_folder("b")
        repo.add_tag(a, "work")
        repo.add_tag(b, "home")
        with pytest.raises(AssociationNotFound) as exc_info:
            repo.remove_tag(a, "home")
        assert exc_info.value.folder_tracked
        assert exc_info.value.tag_exists

    def test_untracked_folder_is_distinguishable(self, repo, make_folder, tmp_path):
        repo.add_tag(make_folder("a"), "work")
        with pytest.raises(AssociationNotFound) as exc_info:
            repo.remove_tag(str(tmp_path / "never-tracked"), "work")
        assert not exc_info.value.folder_tracked
        assert exc_info.value.tag_exists
        assert "not tracked" in str(exc_info.value)


# -----------------------------------------------------------------------------
# delete / rename
# -----------------------------------------------------------------------------

class TestDeleteTag:

    def test_cascade_removes_associations_keeps_folders(self, repo, store, make_folder):
        a = make_folder("a")
        b = make_folder("b")
        repo.add_tag(a, "work")
        repo.add_tag(a, "home")
        repo.add_tag(b, "work")

        repo.delete_tag("work")

        assert "work" not in repo.get_tags_for_folder(a)
        assert "work" not in repo.get_tags_for_folder(b)
        assert repo.get_tags_for_folder(a) == ["home"]
        assert _count(store, "folders") == 2
        assert "work" not in repo.list_tags()

    def test_delete_unknown(self, repo):
        with pytest.raises(TagNotFound) as exc_info:
            repo.delete_tag("nope")
        assert exc_info.value.name == "nope"


class TestRenameTag:

    def test_rename_keeps_associations(self, repo, make_folder):
        a = make_folder("a")
        repo.add_tag(a, "old")
        repo.rename_tag("old", "new")
        assert repo.get_tags_for_folder(a) == ["new"]
        assert repo.list_tags() == {"new": 1}

    def test_rename_never_merges(self, repo, make_folder):
        a = make_folder("a")
        b = make_folder("b")
        repo.add_tag(a, "x")
        repo.add_tag(b, "y")
        with pytest.raises(TagAlreadyExists):
            repo.rename_tag("x", "y")
        assert repo.list_folders_by_tag("x") == [a]
        assert repo.list_folders_by_tag("y") == [b]

    def test_rename_unknown(self, repo):
        with pytest.raises(TagNotFound):
            repo.rename_tag("nope", "other")

    def test_rename_to_empty(self, repo, make_folder):
        repo.add_tag(make_folder("a"), "x")
        with pytest.raises(InvalidName):
            repo.rename_tag("x", "")


# -----------------------------------------------------------------------------
# merge / clone
# -----------------------------------------------------------------------------

class TestMergeTag:

    def test_merge_scenario(self, repo, make_folder):
        a = make_folder("a")
        b = make_folder("b")
        repo.add_tag(a, "x")
        repo.add_tag(b, "y")

        moved = repo.merge_tag("x", "y")

        assert moved == 1
        assert repo.list_folders_by_tag("y") == [a, b]
        assert "x" not in repo.list_tags()

    def test_merge_conserves_union(self, repo, make_folder):
        a, b, c = make_folder("a"), make_folder("b"), make_folder("c")
        repo.add_tag(a, "src")
        repo.add_tag(b, "src")
        repo.add_tag(b, "dst")
        repo.add_tag(c, "dst")
        before = set(repo.list_folders_by_tag("src")) | set(repo.list_folders_by_tag("dst"))

        moved = repo.merge_tag("src", "dst")

        # b already had dst; it still counts
        assert moved == 2
        assert set(repo.list_folders_by_tag("dst")) == before
        assert "src" not in repo.list_tags()
        assert repo.get_tags_for_folder(b) == ["dst"]

    def test_merge_creates_destination(self, repo, make_folder):
        a = make_folder("a")
        repo.add_tag(a, "x")
        assert repo.merge_tag("x", "fresh") == 1
        assert repo.list_tags() == {"fresh": 1}

    def test_merge_empty_source(self, repo, make_folder):
        a = make_folder("a")
        repo.add_tag(a, "x")
        repo.remove_tag(a, "x")
        assert repo.merge_tag("x", "y") == 0
        assert repo.list_tags() == {"y": 0}

    def test_merge_unknown_source(self, repo, store):
        with pytest.raises(TagNotFound):
            repo.merge_tag("nope", "y")
        # Destination is not created when the source is missing
        assert _count(store, "tags") == 0

    def test_merge_into_itself(self, repo, make_folder):
        repo.add_tag(make_folder("a"), "x")
        with pytest.raises(InvalidName):
            repo.merge_tag("x", "x")
        assert repo.list_tags() == {"x": 1}


class TestCloneTag:

    def test_clone_copies_folders(self, repo, make_folder):
        a, b = make_folder("a"), make_folder("b")
        repo.add_tag(a, "src")
        repo.add_tag(b, "src")

        copied = repo.clone_tag("src", "copy")

        assert copied == 2
        assert repo.list_folders_by_tag("copy") == [a, b]
        assert repo.list_folders_by_tag("src") == [a, b]

    def test_clone_of_empty_tag(self, repo, make_folder):
        a = make_folder("a")
        repo.add_tag(a, "src")
        repo.remove_tag(a, "src")
        assert repo.clone_tag("src", "copy") == 0
        assert repo.list_tags() == {"src": 0, "copy": 0}

    def test_clone_unknown_source(self, repo):
        with pytest.raises(TagNotFound):
            repo.clone_tag("nope", "copy")

    def test_clone_onto_existing_name(self, repo, make_folder):
        a = make_folder("a")
        repo.add_tag(a, "src")
        repo.add_tag(a, "taken")
        with pytest.raises(TagAlreadyExists) as exc_info:
            repo.clone_tag("src", "taken")
        assert exc_info.value.name == "taken"

    def test_missing_source_distinguishable_from_collision(self, repo, make_folder):
        repo.add_tag(make_folder("a"), "taken")
        with pytest.raises(TagNotFound):
            repo.clone_tag("nope", "taken")


# -----------------------------------------------------------------------------
# listing
# -----------------------------------------------------------------------------

class TestListing:

    def test_list_tags_counts(self, repo, make_folder):
        a, b = make_folder("a"), make_folder("b")
        repo.add_tag(a, "work")
        repo.add_tag(b, "work")
        repo.add_tag(a, "home")
        assert repo.list_tags() == {"home": 1, "work": 2}

    def test_list_tags_empty(self, repo):
        assert repo.list_tags() == {}

    def test_folders_by_unknown_tag(self, repo):
        assert repo.list_folders_by_tag("nope") == []

    def test_list_all_folders_distinct_sorted(self, repo, make_folder):
        a, b = make_folder("a"), make_folder("b")
        repo.add_tag(b, "work")
        repo.add_tag(b, "home")
        repo.add_tag(a, "work")
        assert repo.list_all_folders() == [a, b]

    def test_folders_for_tags_union(self, repo, make_folder):
        a, b, c = make_folder("a"), make_folder("b"), make_folder("c")
        repo.add_tag(c, "x")
        repo.add_tag(a, "x")
        repo.add_tag(a, "y")
        repo.add_tag(b, "y")
        assert repo.folders_for_tags(["y", "x"]) == [a, b, c]
        assert repo.folders_for_tags(["x", "x"]) == [a, c]
        assert repo.folders_for_tags(["nope"]) == []
        assert repo.folders_for_tags([]) == []

    def test_stale_folder_stays_listed_until_pruned(self, repo, make_folder):
        a = make_folder("a")
        repo.add_tag(a, "work")
        shutil.rmtree(a)
        assert repo.list_folders_by_tag("work") == [a]


# -----------------------------------------------------------------------------
# prune / doctor
# -----------------------------------------------------------------------------

class TestPrune:

    def test_prune_removes_missing(self, repo, make_folder):
        keep, gone = make_folder("keep"), make_folder("gone")
        repo.add_tag(keep, "work")
        repo.add_tag(gone, "work")
        shutil.rmtree(gone)

        result = repo.prune(dry_run=False)

        assert result.removed_folders == [gone]
        assert result.removed_count == 1
        assert not result.dry_run
        assert gone not in repo.list_all_folders()
        assert repo.list_folders_by_tag("work") == [keep]

    def test_dry_run_is_pure(self, repo, store, make_folder):
        keep, gone = make_folder("keep"), make_folder("gone")
        repo.add_tag(keep, "work")
        repo.add_tag(gone, "home")
        shutil.rmtree(gone)
        before = _snapshot(store)

        preview = repo.prune(dry_run=True)

        assert _snapshot(store) == before
        assert preview.dry_run
        real = repo.prune(dry_run=False)
        assert preview.removed_folders == real.removed_folders == [gone]

    def test_prune_removes_untagged_missing_rows(self, repo, store, make_folder):
        gone = make_folder("gone")
        repo.add_tag(gone, "work")
        repo.remove_tag(gone, "work")
        shutil.rmtree(gone)
        assert repo.prune().removed_folders == [gone]
        assert _count(store, "folders") == 0

    def test_prune_keeps_tags(self, repo, make_folder):
        gone = make_folder("gone")
        repo.add_tag(gone, "work")
        shutil.rmtree(gone)
        repo.prune()
        assert repo.list_tags() == {"work": 0}

    def test_nothing_to_prune(self, repo, make_folder):
        repo.add_tag(make_folder("a"), "work")
        result = repo.prune()
        assert result.removed_folders == []
        assert result.removed_count == 0

    def test_symlink_loop_is_not_missing(self, repo, make_folder):
        loopy = make_folder("loopy")
        repo.add_tag(loopy, "work")
        os.rmdir(loopy)
        os.symlink(loopy, loopy)  # points at itself: stat fails with ELOOP

        assert repo.prune(dry_run=True).removed_folders == []
        assert repo.prune().removed_folders == []
        assert repo.list_all_folders() == [loopy]
        assert repo.doctor().missing_folders == []

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
    def test_unreadable_parent_is_not_missing(self, repo, make_folder):
        parent = make_folder("locked")
        child = make_folder("locked/child")
        repo.add_tag(child, "work")
        os.chmod(parent, 0)
        try:
            assert repo.prune().removed_folders == []
            assert repo.doctor().missing_folders == []
        finally:
            os.chmod(parent, stat.S_IRWXU)
        assert repo.list_folders_by_tag("work") == [child]


class TestDoctor:

    def test_report(self, repo, make_folder):
        a, b, gone = make_folder("a"), make_folder("b"), make_folder("gone")
        repo.add_tag(a, "work")
        repo.add_tag(b, "work")
        repo.add_tag(gone, "old")
        repo.add_tag(b, "empty")
        repo.remove_tag(b, "empty")
        shutil.rmtree(gone)

        report = repo.doctor()

        assert report.total_tags == 3
        assert report.total_folders == 3
        assert report.total_associations == 3
        assert report.orphaned_tags == ["empty"]
        assert report.missing_folders == [gone]
        assert report.untagged_folders == []
        assert not report.healthy

    def test_doctor_changes_nothing(self, repo, store, make_folder):
        gone = make_folder("gone")
        repo.add_tag(gone, "x")
        shutil.rmtree(gone)
        before = _snapshot(store)
        repo.doctor()
        assert _snapshot(store) == before

    def test_missing_matches_prune_dry_run(self, repo, make_folder):
        for name in ("a", "b", "c"):
            repo.add_tag(make_folder(name), "t")
        shutil.rmtree(repo.list_folders_by_tag("t")[1])
        assert repo.doctor().missing_folders == repo.prune(dry_run=True).removed_folders

    def test_untagged_folders(self, repo, make_folder):
        a = make_folder("a")
        repo.add_tag(a, "x")
        repo.remove_tag(a, "x")
        report = repo.doctor()
        assert report.untagged_folders == [a]
        assert report.orphaned_tags == ["x"]

    def test_empty_database_is_healthy(self, repo):
        report = repo.doctor()
        assert report.total_tags == 0
        assert report.healthy
