"""
Logging configuration for scope.

Quiet by default: only warnings from the scope logger reach stderr.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "scope-ops.log"


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose output.

    Args:
        quiet: If True, suppress warnings and debug chatter. If False, show everything.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        logging.getLogger("scope").setLevel(logging.WARNING)
    else:
        warnings.filterwarnings("default")
        logging.getLogger("scope").setLevel(logging.NOTSET)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("scope").setLevel(logging.DEBUG)


def configure_ops_log(config_dir) -> RotatingFileHandler:
    """Configure a persistent operations log in the config directory.

    Writes to {config_dir}/scope-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed later.
    """
    log_path = Path(config_dir) / OPS_LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    scope_logger = logging.getLogger("scope")
    # One ops handler per log file, even when the CLI runs repeatedly in-process
    for existing in scope_logger.handlers:
        if isinstance(existing, RotatingFileHandler) and existing.baseFilename == str(log_path.resolve()):
            return existing

    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    scope_logger.addHandler(handler)
    # Ensure scope logger allows INFO through even in quiet mode
    if scope_logger.level == logging.NOTSET or scope_logger.level > logging.INFO:
        scope_logger.setLevel(logging.INFO)

    return handler
