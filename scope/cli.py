"""
CLI interface for scope.

Usage:
    scope tag . work
    scope list work
    scope start work
"""

import os
import shutil
import subprocess
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import click
import typer
from typing_extensions import Annotated

from .config import ScopeConfig, get_config_dir, get_db_path, load_or_create_config
from .errors import ScopeError
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .runner import CommandResult, git_folders, git_status, run_parallel, run_sequential
from .scan import apply_scopes, scan as scan_tree
from .session import SESSION_ENV, WORKSPACE_ENV, SessionManager
from .store import Store
from .tags import TagRepository
from .transfer import dump_snapshot, export_snapshot, import_snapshot, load_snapshot

# Set SCOPE_VERBOSE=1 to enable debug mode via environment
if os.environ.get("SCOPE_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)

PACKAGE_NAME = "scope-tags"


def _package_version() -> str:
    from importlib.metadata import PackageNotFoundError, version
    try:
        return version(PACKAGE_NAME)
    except PackageNotFoundError:
        return "dev"


def _version_callback(value: bool):
    if value:
        print(f"scope version {_package_version()}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_config_dir_override: Optional[Path] = None


def _config_dir_callback(value: Optional[Path]):
    global _config_dir_override
    _config_dir_override = value


def _get_config_dir() -> Path:
    if _config_dir_override is not None:
        return _config_dir_override.expanduser()
    return get_config_dir()


app = typer.Typer(
    name="scope",
    help="Fast folder navigation with tags.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    config_dir: Annotated[Optional[Path], typer.Option(
        "--config-dir",
        envvar="SCOPE_CONFIG_DIR",
        help="Directory holding scope.db and scope.toml",
        callback=_config_dir_callback,
        is_eager=True,
    )] = None,
):
    """Fast folder navigation with tags."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

@contextmanager
def _reported():
    """Show ScopeErrors as a one-line message and exit 1."""
    try:
        yield
    except ScopeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _get_config() -> ScopeConfig:
    try:
        return load_or_create_config(_get_config_dir())
    except (OSError, ValueError) as e:
        typer.echo(f"Error: failed to load config: {e}", err=True)
        raise typer.Exit(1)


def _get_repository() -> TagRepository:
    """Open the tag database, exiting cleanly if that fails."""
    import atexit

    config_dir = _get_config_dir()
    store = Store(get_db_path(config_dir))
    with _reported():
        store.init()
    # Ensure the connection is closed before interpreter shutdown
    atexit.register(store.close)
    try:
        configure_ops_log(config_dir)
    except OSError:
        pass  # Ops log is best effort
    return TagRepository(store)


def _resolve_path(path: str) -> str:
    """Absolute path for '.', '~' and relative paths. Symlinks are kept as given."""
    return os.path.abspath(os.path.expanduser(path))


def _folders_or_exit(repo: TagRepository, tag: str) -> list[str]:
    with _reported():
        folders = repo.list_folders_by_tag(tag)
    if not folders:
        typer.echo(f"Error: no folders found with tag '{tag}'", err=True)
        raise typer.Exit(1)
    return folders


def _command_shell(config: ScopeConfig) -> str:
    return os.environ.get("SHELL") or config.command_shell


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _print_result_header(folder: str) -> None:
    typer.echo()
    typer.echo(typer.style(f"[{os.path.basename(folder)}]", fg=typer.colors.BLUE, bold=True) + f" {folder}")
    typer.echo("-" * 40)


def _print_failure(result: CommandResult) -> None:
    if result.error is not None:
        typer.echo(typer.style("Error:", fg=typer.colors.RED, bold=True) + f" {result.error}", err=True)
    elif result.returncode != 0:
        typer.echo(typer.style("Error:", fg=typer.colors.RED, bold=True)
                   + f" exit status {result.returncode}", err=True)


def _print_parallel_result(result: CommandResult) -> None:
    _print_result_header(result.folder)
    if result.output:
        typer.echo(result.output, nl=False)
    _print_failure(result)


# -----------------------------------------------------------------------------
# Tagging
# -----------------------------------------------------------------------------

@app.command()
def tag(
    path: Annotated[str, typer.Argument(help="Folder to tag (use . for current directory)")],
    tags: Annotated[list[str], typer.Argument(help="One or more tag names")],
):
    """Tag a folder."""
    repo = _get_repository()
    abs_path = _resolve_path(path)
    with _reported():
        for name in tags:
            repo.add_tag(abs_path, name)
            typer.echo(f"Tagged '{abs_path}' with '{name}'")


@app.command()
def untag(
    path: Annotated[str, typer.Argument(help="Folder to untag")],
    tag_name: Annotated[str, typer.Argument(metavar="TAG", help="Tag to remove")],
):
    """Remove a tag from a folder."""
    repo = _get_repository()
    abs_path = _resolve_path(path)
    with _reported():
        repo.remove_tag(abs_path, tag_name)
    typer.echo(f"Removed tag '{tag_name}' from '{abs_path}'")


@app.command("tags")
def show_tags(
    path: Annotated[str, typer.Argument(help="Folder to inspect")] = ".",
):
    """Show all tags for a folder."""
    repo = _get_repository()
    abs_path = _resolve_path(path)
    with _reported():
        names = repo.get_tags_for_folder(abs_path)
    if not names:
        typer.echo(f"No tags found for '{abs_path}'")
        return
    typer.echo(f"Tags for '{abs_path}':")
    for name in names:
        typer.echo(f"  {name}")


@app.command("list")
def list_tags(
    tag_name: Annotated[Optional[str], typer.Argument(
        metavar="[TAG]", help="Show folders for this tag instead of all tags",
    )] = None,
):
    """List all tags, or the folders with a specific tag."""
    repo = _get_repository()
    if tag_name is not None:
        with _reported():
            folders = repo.list_folders_by_tag(tag_name)
        if not folders:
            typer.echo(f"No folders found with tag '{tag_name}'")
            return
        typer.echo(f"Folders tagged with '{tag_name}':")
        for folder in folders:
            typer.echo(f"  {folder}")
        typer.echo(f"\nTotal: {_plural(len(folders), 'folder')}")
        return

    with _reported():
        counts = repo.list_tags()
    if not counts:
        typer.echo("No tags found. Use 'scope tag <path> <tag>' to create one.")
        return
    typer.echo("Tags:")
    for name in sorted(counts):
        typer.echo(f"  {name:<20} {_plural(counts[name], 'folder')}")
    typer.echo(f"\nTotal: {_plural(len(counts), 'tag')}")


@app.command()
def rename(
    old: Annotated[str, typer.Argument(help="Current tag name")],
    new: Annotated[str, typer.Argument(help="New tag name")],
):
    """Rename a tag."""
    repo = _get_repository()
    with _reported():
        repo.rename_tag(old, new)
    typer.echo(f"Renamed tag '{old}' to '{new}'")


@app.command()
def merge(
    src: Annotated[str, typer.Argument(help="Tag to merge away")],
    dst: Annotated[str, typer.Argument(help="Tag receiving its folders")],
):
    """Move all folders of one tag onto another and delete the first."""
    repo = _get_repository()
    with _reported():
        moved = repo.merge_tag(src, dst)
    typer.echo(f"Merged '{src}' into '{dst}' ({_plural(moved, 'folder')} moved)")


@app.command()
def clone(
    src: Annotated[str, typer.Argument(help="Tag to copy")],
    new: Annotated[str, typer.Argument(help="Name of the new tag")],
):
    """Create a new tag with the same folders as an existing one."""
    repo = _get_repository()
    with _reported():
        copied = repo.clone_tag(src, new)
    typer.echo(f"Cloned '{src}' as '{new}' ({_plural(copied, 'folder')})")


@app.command("remove-tag")
def remove_tag(
    tag_name: Annotated[str, typer.Argument(metavar="TAG", help="Tag to delete")],
):
    """Delete a tag entirely (removes it from all folders)."""
    repo = _get_repository()
    with _reported():
        repo.delete_tag(tag_name)
    typer.echo(f"Removed tag '{tag_name}'")


@app.command()
def prune(
    dry_run: Annotated[bool, typer.Option(
        "--dry-run", "-n", help="Only show what would be removed",
    )] = False,
):
    """Remove folders that no longer exist."""
    repo = _get_repository()
    with _reported():
        result = repo.prune(dry_run=dry_run)
    if result.removed_count == 0:
        typer.echo("No stale folders found. Everything is clean!")
        return
    verb = "Would remove" if dry_run else "Removed"
    typer.echo(f"{verb} {result.removed_count} stale folder(s):")
    for path in result.removed_folders:
        typer.echo(f"  {path}")


@app.command()
def doctor():
    """Check the tag database for orphaned tags and missing folders."""
    repo = _get_repository()
    with _reported():
        report = repo.doctor()

    typer.echo(f"Tags:         {report.total_tags}")
    typer.echo(f"Folders:      {report.total_folders}")
    typer.echo(f"Assignments:  {report.total_associations}")
    if report.orphaned_tags:
        typer.echo(f"\nOrphaned tags ({len(report.orphaned_tags)}):")
        for name in report.orphaned_tags:
            typer.echo(f"  {name}")
    if report.missing_folders:
        typer.echo(f"\nMissing folders ({len(report.missing_folders)}):")
        for path in report.missing_folders:
            typer.echo(f"  {path}")
        typer.echo("\nRun 'scope prune' to remove them.")
    if report.untagged_folders:
        typer.echo(f"\nFolders without tags: {len(report.untagged_folders)}")
    if report.healthy:
        typer.echo("\nNo problems found.")


# -----------------------------------------------------------------------------
# Sessions and navigation
# -----------------------------------------------------------------------------

@app.command()
def start(
    tags: Annotated[list[str], typer.Argument(help="One or more tags to open")],
):
    """Start a scoped session: a shell in a workspace of symlinks."""
    repo = _get_repository()
    manager = SessionManager(repo, config=_get_config())

    def banner(workspace: Path, links: dict[str, str]) -> None:
        typer.echo(f"Scope session started with tag '{'+'.join(tags)}'")
        typer.echo(f"Workspace: {workspace}")
        typer.echo(f"Folders: {len(links)}\n")
        typer.echo("Type 'exit' to leave the scoped session")
        typer.echo("---")

    with _reported():
        manager.start(tags, on_ready=banner)
    typer.echo("\nScope session ended. Workspace cleaned up.")


@app.command("go")
def go_to(
    tag_name: Annotated[str, typer.Argument(metavar="TAG", help="Tag to jump to")],
):
    """Print the path of a tagged folder (for use with cd)."""
    repo = _get_repository()
    folders = _folders_or_exit(repo, tag_name)
    if len(folders) == 1:
        typer.echo(folders[0])
        return

    # stdout carries only the chosen path
    typer.echo(f"Multiple folders found for '{tag_name}':", err=True)
    for i, folder in enumerate(folders, 1):
        typer.echo(f"  [{i}] {folder}", err=True)
    choice = typer.prompt(
        f"\nSelect folder (1-{len(folders)})", type=int, err=True,
    )
    if choice < 1 or choice > len(folders):
        typer.echo(f"Error: invalid selection: {choice}", err=True)
        raise typer.Exit(1)
    typer.echo(folders[choice - 1])


def _opener() -> Optional[str]:
    if sys.platform == "darwin":
        return "open"
    if sys.platform.startswith("win"):
        return "explorer"
    if sys.platform.startswith("linux"):
        return "xdg-open"
    return None


@app.command("open")
def open_folders(
    tag_name: Annotated[str, typer.Argument(metavar="TAG", help="Tag to open")],
):
    """Open tagged folders in the file manager."""
    repo = _get_repository()
    folders = _folders_or_exit(repo, tag_name)
    opener = _opener()
    if opener is None:
        typer.echo(f"Error: unsupported operating system: {sys.platform}", err=True)
        raise typer.Exit(1)
    for folder in folders:
        try:
            subprocess.Popen([opener, folder])
        except OSError as e:
            typer.echo(f"Warning: failed to open '{folder}': {e}", err=True)
            continue
        typer.echo(f"Opened: {folder}")


def _find_editor(config: ScopeConfig) -> Optional[str]:
    editor = os.environ.get("VISUAL") or os.environ.get("EDITOR") or config.editor
    if editor:
        return editor
    for candidate in ("code", "vim", "nano"):
        if shutil.which(candidate):
            return candidate
    return None


@app.command()
def edit(
    tag_name: Annotated[str, typer.Argument(metavar="TAG", help="Tag to edit")],
):
    """Open tagged folders in your editor."""
    repo = _get_repository()
    folders = _folders_or_exit(repo, tag_name)
    editor = _find_editor(_get_config())
    if editor is None:
        typer.echo("Error: no editor found. Set $EDITOR or $VISUAL environment variable", err=True)
        raise typer.Exit(1)
    for folder in folders:
        try:
            subprocess.Popen([editor, folder])
        except OSError as e:
            typer.echo(f"Warning: failed to open '{folder}' in {editor}: {e}", err=True)
            continue
        typer.echo(f"Opened in {editor}: {folder}")


# -----------------------------------------------------------------------------
# Commands across folders
# -----------------------------------------------------------------------------

@app.command(context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True})
def each(
    tag_name: Annotated[str, typer.Argument(metavar="TAG", help="Tag whose folders to run in")],
    command: Annotated[list[str], typer.Argument(help="Command to run (joined with spaces)")],
    parallel: Annotated[bool, typer.Option(
        "--parallel", "-p", help="Run in all folders at once (give before TAG)",
    )] = False,
):
    """Run a command in each tagged folder."""
    repo = _get_repository()
    folders = _folders_or_exit(repo, tag_name)
    shell = _command_shell(_get_config())
    command_line = " ".join(command)

    if parallel:
        summary = run_parallel(folders, command_line, shell, on_result=_print_parallel_result)
    else:
        summary = run_sequential(folders, command_line, shell,
                                 on_start=_print_result_header, on_result=_print_failure)
    typer.echo("\n" + typer.style("Summary:", bold=True)
               + f" {summary.succeeded} succeeded, {summary.failed} failed")


@app.command()
def status(
    tag_name: Annotated[str, typer.Argument(metavar="TAG", help="Tag to check")],
):
    """Show git status across tagged folders (only those with changes)."""
    repo = _get_repository()
    folders = _folders_or_exit(repo, tag_name)
    shell = _command_shell(_get_config())
    for folder in git_folders(folders):
        output = git_status(folder, shell)
        if output:
            typer.echo(typer.style(f"[{os.path.basename(folder)}]", fg=typer.colors.YELLOW, bold=True)
                       + f" {folder}")
            typer.echo(output, nl=False)
            typer.echo()


@app.command()
def pull(
    tag_name: Annotated[str, typer.Argument(metavar="TAG", help="Tag to pull")],
):
    """Run git pull across tagged folders, in parallel."""
    repo = _get_repository()
    folders = git_folders(_folders_or_exit(repo, tag_name))
    if not folders:
        typer.echo("No git repositories found with this tag")
        return
    typer.echo(f"Pulling {len(folders)} repositories...")
    summary = run_parallel(folders, "git pull", _command_shell(_get_config()),
                           on_result=_print_parallel_result)
    typer.echo("\n" + typer.style("Summary:", bold=True)
               + f" {summary.succeeded} succeeded, {summary.failed} failed")


# -----------------------------------------------------------------------------
# Scan, export, import
# -----------------------------------------------------------------------------

@app.command()
def scan(
    path: Annotated[str, typer.Argument(help="Directory to scan")] = ".",
    yes: Annotated[bool, typer.Option(
        "--yes", "-y", help="Apply every discovered .scope file without asking",
    )] = False,
):
    """Scan for .scope files and apply their tags."""
    root = Path(_resolve_path(path))
    if not root.is_dir():
        typer.echo(f"Error: path is not a directory: {root}", err=True)
        raise typer.Exit(1)

    repo = _get_repository()
    typer.echo(f"Scanning {root} for .scope files...\n")
    result = scan_tree(root)
    if result.errors:
        typer.echo(f"Warnings ({len(result.errors)} files had parsing errors):")
        for failure in result.errors:
            typer.echo(f"  {failure.file}: {failure.error}")
        typer.echo()
    if not result.scopes:
        typer.echo("No .scope files found.")
        return

    typer.echo(f"Found {len(result.scopes)} .scope files:\n")
    selected = []
    for found in result.scopes:
        typer.echo(f"  {found.folder}")
        typer.echo(f"    Tags: {', '.join(found.tags)}")
        if yes or typer.confirm("    Apply?", default=True):
            selected.append(found)

    if not selected:
        typer.echo("No folders selected. Nothing to apply.")
        return
    applied = apply_scopes(repo, selected)
    typer.echo(f"\nApplied {applied} tag assignments.")


@app.command("export")
def export_tags(
    output: Annotated[Optional[Path], typer.Option(
        "--output", "-o", help="Write to this file instead of stdout",
    )] = None,
):
    """Export all tags to YAML."""
    repo = _get_repository()
    with _reported():
        data = export_snapshot(repo)
    if not data["tags"]:
        typer.echo("No tags to export", err=True)
        return
    text = dump_snapshot(data)
    if output is None:
        typer.echo(text, nl=False)
        return
    output.write_text(text, encoding="utf-8")
    typer.echo(f"Exported {_plural(len(data['tags']), 'tag')} to {output}", err=True)


@app.command("import")
def import_tags(
    file: Annotated[Path, typer.Argument(help="YAML file produced by 'scope export'")],
):
    """Import tags from a YAML file."""
    try:
        data = load_snapshot(file.read_text(encoding="utf-8"))
    except OSError as e:
        typer.echo(f"Error: failed to read file: {e}", err=True)
        raise typer.Exit(1)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if not data["tags"]:
        typer.echo("No tags found in import file")
        return

    repo = _get_repository()
    report = import_snapshot(repo, data)
    for folder in report.skipped:
        typer.echo(f"Skipping non-existent folder: {folder}", err=True)
    for folder, name, error in report.failed:
        typer.echo(f"Warning: failed to add tag '{name}' to {folder}: {error}", err=True)
    typer.echo(f"Imported {report.imported} tag assignments ({len(report.skipped)} skipped)")


@app.command()
def debug():
    """Show debug information."""
    import platform

    config_dir = _get_config_dir()
    db_path = get_db_path(config_dir)
    typer.echo("Scope Debug Information")
    typer.echo("=======================")
    typer.echo(f"Version:     {_package_version()}")
    typer.echo(f"Platform:    {platform.system()} {platform.release()} ({platform.machine()})")
    typer.echo(f"Python:      {platform.python_version()}")
    typer.echo(f"Config dir:  {config_dir}")
    typer.echo(f"Database:    {db_path}")
    if db_path.exists():
        typer.echo(f"DB size:     {db_path.stat().st_size} bytes")
    else:
        typer.echo("DB size:     (not found)")
    typer.echo(f"Shell:       {os.environ.get('SHELL') or '(unknown)'}")

    session = os.environ.get(SESSION_ENV)
    if session:
        typer.echo(f"In session:  {session}")
        typer.echo(f"Workspace:   {os.environ.get(WORKSPACE_ENV, '')}")

    repo = _get_repository()
    with _reported():
        counts = repo.list_tags()
    typer.echo("\nStats:")
    typer.echo(f"  Tags:      {len(counts)}")
    typer.echo(f"  Folders:   {sum(counts.values())} tag assignments")


# -----------------------------------------------------------------------------

def main():
    try:
        # Non-standalone so Ctrl-C reaches us as Abort instead of exit 1
        exit_code = app(standalone_mode=False)
    except click.exceptions.Abort:
        typer.echo("Aborted!", err=True)
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except click.ClickException as e:
        e.show()
        raise SystemExit(e.exit_code)
    except SystemExit:
        raise
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="scope CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)
    raise SystemExit(exit_code if isinstance(exit_code, int) else 0)


if __name__ == "__main__":
    main()
