"""
Configuration management for scope.

The configuration is stored as a TOML file in the per-user config
directory, next to the tag database. It only carries fallbacks for
things normally taken from the environment (shells, editor).
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import tomli_w


CONFIG_FILENAME = "scope.toml"
CONFIG_VERSION = 1
DB_FILENAME = "scope.db"

DEFAULT_SESSION_SHELL = "/bin/bash"
DEFAULT_COMMAND_SHELL = "/bin/sh"


def get_config_dir() -> Path:
    """
    Resolve the per-user config directory.

    Priority:
    1. SCOPE_CONFIG_DIR environment variable
    2. $XDG_CONFIG_HOME/scope
    3. ~/.config/scope
    """
    override = os.environ.get("SCOPE_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg).expanduser() / "scope"
    return Path.home() / ".config" / "scope"


def get_db_path(config_dir: Path | None = None) -> Path:
    """Path to the tag database inside the config directory."""
    return (config_dir or get_config_dir()) / DB_FILENAME


@dataclass
class ScopeConfig:
    """Complete scope configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Fallbacks used when the environment does not say
    session_shell: str = DEFAULT_SESSION_SHELL
    command_shell: str = DEFAULT_COMMAND_SHELL
    editor: str = ""

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def db_path(self) -> Path:
        return self.path / DB_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def load_config(config_dir: Path) -> ScopeConfig:
    """
    Load configuration from a config directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    version = data.get("store", {}).get("version", 1)
    if not isinstance(version, int) or version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    return ScopeConfig(
        path=config_dir,
        version=version,
        created=data.get("store", {}).get("created", ""),
        session_shell=data.get("session", {}).get("shell", DEFAULT_SESSION_SHELL),
        command_shell=data.get("each", {}).get("shell", DEFAULT_COMMAND_SHELL),
        editor=data.get("editor", {}).get("command", ""),
    )


def save_config(config: ScopeConfig) -> None:
    """
    Save configuration to the config directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "session": {"shell": config.session_shell},
        "each": {"shell": config.command_shell},
        "editor": {"command": config.editor},
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(config_dir: Path | None = None) -> ScopeConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_dir = config_dir or get_config_dir()
    config_path = config_dir / CONFIG_FILENAME

    if config_path.exists():
        return load_config(config_dir)
    else:
        config = ScopeConfig(path=config_dir)
        save_config(config)
        return config
