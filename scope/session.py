"""
Scoped shell sessions.

A session turns the folders of one or more tags into a temporary
directory of symlinks and runs the user's shell inside it. The
directory exists only for the lifetime of start(): it is removed on
every way out, including errors, Ctrl-C before the shell starts, and
SIGTERM/SIGHUP while it runs.
"""

import logging
import os
import re
import shutil
import signal
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional, Union

from .config import DEFAULT_SESSION_SHELL, ScopeConfig
from .errors import IOFailure, NoFoldersFound, SessionInterrupted, ShellLaunchError
from .tags import TagRepository

logger = logging.getLogger(__name__)

SESSION_ENV = "SCOPE_SESSION"
WORKSPACE_ENV = "SCOPE_WORKSPACE"

# Signals that end the session but must still clean up the workspace
TERMINATING_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGHUP", None))
    if sig is not None
)

_UNSAFE_PREFIX_CHARS = re.compile(r"[^A-Za-z0-9._+-]+")
MAX_PREFIX_NAME = 64


@dataclass(frozen=True)
class Completed:
    """The shell ran and exited. Any exit code counts as a normal end."""
    exit_code: int


@dataclass(frozen=True)
class LaunchFailed:
    """The shell could not be started or waited on."""
    cause: BaseException


LaunchOutcome = Union[Completed, LaunchFailed]


@dataclass
class SessionResult:
    session: str
    workspace: Path
    links: dict[str, str] = field(default_factory=dict)
    outcome: Optional[Completed] = None


def session_id(tags: list[str]) -> str:
    """Identifier exported to the shell: tag names joined with '+'."""
    return "+".join(tags)


@contextmanager
def workspace(prefix: str, dir: Optional[Path] = None) -> Iterator[Path]:
    """
    Create a fresh temporary directory and remove it when the block exits.

    Removal deletes the symlinks inside, never what they point to.
    A failed removal is logged, not raised.
    """
    try:
        root = Path(tempfile.mkdtemp(prefix=prefix, dir=dir))
    except OSError as e:
        raise IOFailure(f"failed to create workspace: {e}") from e
    logger.debug("Created workspace %s", root)
    try:
        yield root
    finally:
        try:
            shutil.rmtree(root)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to clean up workspace %s: %s", root, e)
        else:
            logger.debug("Removed workspace %s", root)


def link_folders(root: Path, folders: list[str]) -> dict[str, str]:
    """
    Symlink each folder into root, named after its base name.

    Colliding names get -1, -2, ... appended in the order given,
    checked against what already exists in root.

    Returns:
        Ordered mapping of link name to target folder
    """
    links: dict[str, str] = {}
    for folder in folders:
        base = os.path.basename(folder.rstrip(os.sep)) or folder.strip(os.sep) or "root"
        name = base
        counter = 1
        while os.path.lexists(root / name):
            name = f"{base}-{counter}"
            counter += 1
        try:
            os.symlink(folder, root / name, target_is_directory=True)
        except OSError as e:
            raise IOFailure(f"failed to create symlink for {folder}: {e}") from e
        links[name] = folder
    return links


def spawn_shell(shell: str, cwd: Path, env: Mapping[str, str]) -> LaunchOutcome:
    """
    Run an interactive shell attached to this terminal and wait for it.

    While it runs, SIGINT is ignored here so Ctrl-C belongs to the shell.
    """
    try:
        proc = subprocess.Popen([shell], cwd=str(cwd), env=dict(env))
    except OSError as e:
        return LaunchFailed(e)

    try:
        with _ignore_sigint():
            exit_code = proc.wait()
    except OSError as e:
        return LaunchFailed(e)
    except BaseException:
        _terminate(proc)
        raise
    return Completed(exit_code)


def _terminate(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def _in_main_thread() -> bool:
    return threading.current_thread() is threading.main_thread()


@contextmanager
def _ignore_sigint() -> Iterator[None]:
    if not _in_main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


@contextmanager
def _raise_on_signals(signums=TERMINATING_SIGNALS) -> Iterator[None]:
    """Turn terminating signals into SessionInterrupted so finally blocks run."""
    if not _in_main_thread():
        yield
        return

    def handler(signum, frame):
        raise SessionInterrupted(signum)

    previous = {}
    for signum in signums:
        previous[signum] = signal.signal(signum, handler)
    try:
        yield
    finally:
        for signum, old in previous.items():
            signal.signal(signum, old)


class SessionManager:
    """
    Builds session workspaces from the tag repository and runs shells in them.

    Only reads from the repository; never touches the store itself.
    """

    def __init__(
        self,
        repository: TagRepository,
        shell: Optional[str] = None,
        config: Optional[ScopeConfig] = None,
        environ: Optional[Mapping[str, str]] = None,
        temp_dir: Optional[Path] = None,
    ):
        self._repository = repository
        self._shell = shell
        self._config = config
        self._environ = environ if environ is not None else os.environ
        self._temp_dir = temp_dir

    @property
    def shell(self) -> str:
        """Explicit shell, else $SHELL, else the configured fallback."""
        if self._shell:
            return self._shell
        env_shell = self._environ.get("SHELL")
        if env_shell:
            return env_shell
        if self._config is not None and self._config.session_shell:
            return self._config.session_shell
        return DEFAULT_SESSION_SHELL

    def resolve(self, tags: list[str]) -> list[str]:
        """
        Folders for the session: union over tags, sorted by path.

        Raises:
            NoFoldersFound: If the tags resolve to no folder
        """
        folders = self._repository.folders_for_tags(tags)
        if not folders:
            raise NoFoldersFound(tags)
        return folders

    def start(
        self,
        tags: list[str],
        on_ready: Optional[Callable[[Path, dict[str, str]], None]] = None,
    ) -> SessionResult:
        """
        Run a shell in a workspace of symlinks to the folders of tags.

        Blocks until the shell exits. The shell's exit code is reported
        in the result but never treated as a failure.

        Args:
            tags: One or more tag names
            on_ready: Called with (workspace, links) just before the shell starts

        Raises:
            NoFoldersFound: If the tags resolve to no folder
            ShellLaunchError: If the shell could not be run
            IOFailure: If the repository could not be read
            SessionInterrupted: If SIGTERM/SIGHUP arrived during the session
        """
        folders = self.resolve(tags)
        name = session_id(tags)
        # Keep the directory name well under the 255-byte filename limit
        prefix = f"scope-{_UNSAFE_PREFIX_CHARS.sub('_', name)[:MAX_PREFIX_NAME]}-"

        with _raise_on_signals(), workspace(prefix, dir=self._temp_dir) as root:
            links = link_folders(root, folders)
            result = SessionResult(session=name, workspace=root, links=links)

            env = dict(self._environ)
            env[SESSION_ENV] = name
            env[WORKSPACE_ENV] = str(root)

            if on_ready is not None:
                on_ready(root, links)

            shell = self.shell
            logger.info("Session '%s' started in %s (%d folders)", name, root, len(links))
            outcome = spawn_shell(shell, root, env)
            if isinstance(outcome, LaunchFailed):
                raise ShellLaunchError(f"failed to run shell {shell}: {outcome.cause}") from outcome.cause

            result.outcome = outcome
            logger.info("Session '%s' ended (shell exit code %d)", name, outcome.exit_code)
        return result
