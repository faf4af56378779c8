# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Centralized path definitions for remoteops.

Usage:
    from remoteops.paths import HostPaths

    config_file = HostPaths.config_file()
    key = HostPaths.default_private_key()
"""

import os
from pathlib import Path


class HostPaths:
    """Paths on the machine where remoteops runs."""

    @staticmethod
    def config_dir() -> Path:
        """~/.config/remoteops/"""
        return Path.home() / ".config" / "remoteops"

    @staticmethod
    def config_file() -> Path:
        """~/.config/remoteops/config.yml (REMOTEOPS_CONFIG overrides)."""
        env_config = os.environ.get("REMOTEOPS_CONFIG")
        if env_config:
            return Path(env_config)
        return HostPaths.config_dir() / "config.yml"

    @staticmethod
    def data_dir() -> Path:
        """~/.local/share/remoteops/"""
        return Path.home() / ".local" / "share" / "remoteops"

    @staticmethod
    def log_dir() -> Path:
        """~/.local/share/remoteops/logs/"""
        return HostPaths.data_dir() / "logs"

    @staticmethod
    def ssh_dir() -> Path:
        """~/.ssh/"""
        return Path.home() / ".ssh"

    @staticmethod
    def default_private_key() -> Path:
        """~/.ssh/id_rsa"""
        return HostPaths.ssh_dir() / "id_rsa"
