"""
Run a shell command in each of a set of folders.

Sequential mode streams each command's output straight to the
terminal. Parallel mode runs one worker per folder, captures output,
and hands results back in the order the workers finish. Workers never
share state: results flow through as_completed() to a single
collector, which does all the counting.
"""

import logging
import os
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    folder: str
    output: str = ""
    returncode: Optional[int] = None
    error: Optional[str] = None  # set when the command could not be started

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0


@dataclass
class RunSummary:
    results: list[CommandResult] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0

    def record(self, result: CommandResult) -> None:
        self.results.append(result)
        if result.ok:
            self.succeeded += 1
        else:
            self.failed += 1


def run_in_folder(folder: str, command: str, shell: str, capture: bool = True) -> CommandResult:
    """Run `shell -c command` with folder as working directory."""
    try:
        proc = subprocess.run(
            [shell, "-c", command],
            cwd=folder,
            capture_output=capture,
            text=True,
        )
    except OSError as e:
        logger.debug("Command failed to start in %s: %s", folder, e)
        return CommandResult(folder=folder, error=str(e))

    output = ""
    if capture:
        output = (proc.stdout or "") + (proc.stderr or "")
    return CommandResult(folder=folder, output=output, returncode=proc.returncode)


def run_sequential(
    folders: list[str],
    command: str,
    shell: str,
    on_start: Optional[Callable[[str], None]] = None,
    on_result: Optional[Callable[[CommandResult], None]] = None,
) -> RunSummary:
    """Run command in each folder in order, output going to the terminal."""
    summary = RunSummary()
    for folder in folders:
        if on_start is not None:
            on_start(folder)
        result = run_in_folder(folder, command, shell, capture=False)
        summary.record(result)
        if on_result is not None:
            on_result(result)
    return summary


def run_parallel(
    folders: list[str],
    command: str,
    shell: str,
    on_result: Optional[Callable[[CommandResult], None]] = None,
) -> RunSummary:
    """
    Run command in every folder at once, one worker per folder.

    on_result is called from this thread for each result, in
    completion order. One folder failing does not affect the others.
    """
    summary = RunSummary()
    if not folders:
        return summary

    with ThreadPoolExecutor(max_workers=len(folders)) as pool:
        futures = [pool.submit(run_in_folder, folder, command, shell) for folder in folders]
        for future in as_completed(futures):
            result = future.result()
            summary.record(result)
            if on_result is not None:
                on_result(result)

    logger.info("Ran %r in %d folders: %d ok, %d failed",
                command, len(folders), summary.succeeded, summary.failed)
    return summary


def git_folders(folders: list[str]) -> list[str]:
    """Folders that are git working trees (have a .git entry)."""
    return [f for f in folders if os.path.exists(os.path.join(f, ".git"))]


def git_status(folder: str, shell: str) -> str:
    """Short git status for folder; empty when clean or on error."""
    result = run_in_folder(folder, "git status -s", shell)
    if not result.ok:
        return ""
    return result.output
