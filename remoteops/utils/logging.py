# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Unified logging infrastructure for remoteops.

This module provides:
1. Centralized logging configuration for the ``remoteops`` logger tree
2. Debug mode via REMOTEOPS_DEBUG env var or programmatic flag
3. Log levels via REMOTEOPS_LOG_LEVEL env var
4. Dual output: Rich console for the CLI, rotating file log for debugging
5. Daemon mode: stderr-only, used by ``remoteops serve`` where stdout
   belongs to the MCP stdio transport

Usage:
    from remoteops.utils.logging import get_logger, configure_logging

    # In CLI entry point:
    configure_logging(debug=debug)

    # In CLI-facing code:
    logger = get_logger(__name__)
    logger.success("Connected")

    # In core modules, plain stdlib loggers are enough:
    logger = logging.getLogger(__name__)

Environment Variables:
    REMOTEOPS_DEBUG=1          Enable debug mode (verbose output)
    REMOTEOPS_LOG_LEVEL=DEBUG  Set log level (DEBUG, INFO, WARNING, ERROR)
    REMOTEOPS_LOG_FILE=/path   Override log file location
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console

from remoteops.paths import HostPaths

# Global state
_configured = False
_debug_mode = False
_daemon_mode = False
_log_file: Optional[Path] = None

# Shared Rich console instance
console = Console()

# Custom log level for success messages
SUCCESS_LEVEL = 25
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


def _get_log_file() -> Path:
    """Get the log file path, creating its directory if needed."""
    global _log_file
    if _log_file:
        return _log_file

    env_log_file = os.environ.get("REMOTEOPS_LOG_FILE")
    if env_log_file:
        _log_file = Path(env_log_file)
    else:
        _log_file = HostPaths.log_dir() / "remoteops.log"

    _log_file.parent.mkdir(parents=True, exist_ok=True)
    return _log_file


def is_debug_mode() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode or os.environ.get("REMOTEOPS_DEBUG", "").lower() in ("1", "true", "yes")


def configure_logging(
    debug: bool = False,
    daemon: bool = False,
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
    force: bool = False,
) -> None:
    """Configure the logging system.

    Called once at application startup. Later calls are ignored unless
    ``force`` is set, which the CLI uses once it knows whether it runs as
    a daemon.

    Args:
        debug: Enable debug mode (verbose output, debug to console)
        daemon: Daemon mode (stderr only, no Rich formatting)
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Override log file path
        force: Reconfigure even if already configured
    """
    global _configured, _debug_mode, _daemon_mode, _log_file

    if _configured and not force:
        return

    _debug_mode = debug or is_debug_mode()
    _daemon_mode = daemon

    if log_file:
        _log_file = log_file

    if log_level:
        level_name = log_level.upper()
    else:
        level_name = os.environ.get(
            "REMOTEOPS_LOG_LEVEL", "DEBUG" if _debug_mode else "INFO"
        ).upper()

    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger("remoteops")
    root_logger.setLevel(logging.DEBUG)
    root_logger.propagate = False

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # File handler with rotation (always enabled, captures all logs)
    try:
        file_handler = RotatingFileHandler(
            _get_log_file(),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)
    except (OSError, PermissionError):
        # Can't write log file, continue without it
        pass

    # Stderr handler for daemons (simple format, no colors)
    if _daemon_mode:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(level)
        stderr_handler.setFormatter(logging.Formatter("%(name)s: %(levelname)s: %(message)s"))
        root_logger.addHandler(stderr_handler)

    _configured = True

    root_logger.debug(
        f"Logging configured: level={level_name}, debug={_debug_mode}, daemon={_daemon_mode}"
    )


class RemoteOpsLogger:
    """Logger with Rich console output for CLI-facing code.

    Messages always go to the ``remoteops`` logging tree; console output is
    Rich-formatted in CLI mode and plain stderr in daemon mode.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        self.console = console

    def debug(self, message: str, console_output: bool = False) -> None:
        """Log debug message (console only with console_output or debug mode)."""
        self.logger.debug(message)
        if console_output or is_debug_mode():
            if _daemon_mode:
                print(f"DEBUG: {message}", file=sys.stderr)
            else:
                self.console.print(f"[dim][DEBUG] {message}[/dim]")

    def success(self, message: str, console_output: bool = True) -> None:
        self.logger.log(SUCCESS_LEVEL, message)
        if console_output and not _daemon_mode:
            self.console.print(f"[green]✓ {message}[/green]")
        elif console_output and _daemon_mode:
            print(f"SUCCESS: {message}", file=sys.stderr)

    def error(
        self,
        message: str,
        exc: Optional[Exception] = None,
        console_output: bool = True,
    ) -> None:
        """Log error message (red output).

        Args:
            message: Error message
            exc: Optional exception to include in log
            console_output: Output to console
        """
        if exc:
            self.logger.error(f"{message}: {exc}", exc_info=exc)
            error_msg = f"{message}: {exc}"
        else:
            self.logger.error(message)
            error_msg = message

        if console_output and not _daemon_mode:
            self.console.print(f"[red]✗ {error_msg}[/red]")
        elif console_output and _daemon_mode:
            print(f"ERROR: {error_msg}", file=sys.stderr)


def get_logger(name: str) -> RemoteOpsLogger:
    """Get a Rich-backed logger for a module.

    Example:
        logger = get_logger(__name__)
        logger.success("Operation finished")
    """
    if not _configured:
        configure_logging()

    if not name.startswith("remoteops"):
        name = f"remoteops.{name}"

    return RemoteOpsLogger(name)
