"""
Shared pytest fixtures for scope tests.

Every test gets its own config directory and database under tmp_path;
nothing touches the real ~/.config/scope.
"""

import stat
from pathlib import Path

import pytest

from scope.store import Store
from scope.tags import TagRepository


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch) -> Path:
    """Point SCOPE_CONFIG_DIR at a per-test directory."""
    config_dir = tmp_path / "config"
    monkeypatch.setenv("SCOPE_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("SCOPE_SESSION", raising=False)
    monkeypatch.delenv("SCOPE_WORKSPACE", raising=False)
    return config_dir


@pytest.fixture
def store(tmp_path):
    """An initialized store on a real SQLite file."""
    with Store(tmp_path / "scope.db") as s:
        yield s


@pytest.fixture
def repo(store) -> TagRepository:
    return TagRepository(store)


@pytest.fixture
def make_folder(tmp_path):
    """Create a directory under tmp_path/folders and return its absolute path."""
    root = tmp_path / "folders"

    def _make(relative: str) -> str:
        path = root / relative
        path.mkdir(parents=True, exist_ok=True)
        return str(path)

    return _make


@pytest.fixture
def fake_shell(tmp_path):
    """
    Write an executable script standing in for the user's shell.

    The script records its working directory, session env vars and the
    workspace listing into a report file, then exits with exit_code.
    """
    def _make(exit_code: int = 0) -> tuple[str, Path]:
        report = tmp_path / f"shell-report-{exit_code}.txt"
        script = tmp_path / f"fake-shell-{exit_code}.sh"
        script.write_text(
            "#!/bin/sh\n"
            f"{{\n"
            f"  echo \"cwd=$(pwd -P)\"\n"
            f"  echo \"session=$SCOPE_SESSION\"\n"
            f"  echo \"workspace=$SCOPE_WORKSPACE\"\n"
            f"  for entry in *; do echo \"entry=$entry\"; done\n"
            f"}} > '{report}'\n"
            f"exit {exit_code}\n"
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(script), report

    return _make


@pytest.fixture
def read_report():
    """Parse a fake shell report into key -> values."""
    def _read(report: Path) -> dict[str, list[str]]:
        values: dict[str, list[str]] = {}
        for line in report.read_text().splitlines():
            key, _, value = line.partition("=")
            values.setdefault(key, []).append(value)
        return values

    return _read
