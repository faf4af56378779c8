# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Host-side configuration for remoteops.

Values come from ~/.config/remoteops/config.yml (validated by
``RemoteOpsConfigModel``) with REMOTEOPS_* environment variables applied on
top.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from remoteops.models.config import RemoteOpsConfigModel
from remoteops.paths import HostPaths

logger = logging.getLogger(__name__)

# env var -> (section, field)
ENV_OVERRIDES = {
    "REMOTEOPS_KEY_PATH": ("ssh", "key_path"),
    "REMOTEOPS_KEY_PASSPHRASE": ("ssh", "passphrase"),
    "REMOTEOPS_SSH_PORT": ("ssh", "port"),
    "REMOTEOPS_CONNECT_TIMEOUT": ("ssh", "connect_timeout"),
    "REMOTEOPS_KEEPALIVE_INTERVAL": ("ssh", "keepalive_interval"),
    "REMOTEOPS_VERIFY_HOST_KEY": ("ssh", "verify_host_key"),
    "REMOTEOPS_LOGIN_SHELL": ("ssh", "login_shell"),
    "REMOTEOPS_IDLE_TIMEOUT": ("sessions", "idle_timeout"),
    "REMOTEOPS_COMMAND_TIMEOUT": ("sessions", "command_timeout"),
    "REMOTEOPS_MAX_QUEUED_COMMANDS": ("sessions", "max_queued_commands"),
}


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return {}
    if not isinstance(raw, dict):
        logger.warning(f"Ignoring config {path}: top level must be a mapping")
        return {}
    return raw


def _apply_env_overrides(raw: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    """Overlay REMOTEOPS_* variables onto the raw config mapping."""
    result = {key: dict(value) if isinstance(value, dict) else value for key, value in raw.items()}
    for env_name, (section, field) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        target = result.get(section)
        if not isinstance(target, dict):
            target = {}
            result[section] = target
        target[field] = value
    return result


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> RemoteOpsConfigModel:
    """Load and validate configuration.

    Invalid values are logged and the defaults are used instead, so a broken
    config file never prevents the server from starting.
    """
    config_path = path or HostPaths.config_file()
    raw = _read_config_file(config_path)
    merged = _apply_env_overrides(raw, dict(os.environ if environ is None else environ))

    try:
        return RemoteOpsConfigModel.model_validate(merged)
    except ValidationError as e:
        logger.warning(f"Config validation errors, using defaults: {e}")
        return RemoteOpsConfigModel()


def resolve_key_path(config: RemoteOpsConfigModel) -> Path:
    """Path of the private key used for every remote session."""
    if config.ssh.key_path:
        return Path(config.ssh.key_path).expanduser()
    return HostPaths.default_private_key()
