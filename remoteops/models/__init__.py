# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Pydantic models for remoteops configuration."""

from remoteops.models.config import RemoteOpsConfigModel, SessionsConfig, SSHConfig

__all__ = ["RemoteOpsConfigModel", "SessionsConfig", "SSHConfig"]
