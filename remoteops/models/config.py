# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Pydantic models for ~/.config/remoteops/config.yml."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SSHConfig(BaseModel):
    """SSH transport settings.

    The private key is the only credential source; there is no per-call
    override.
    """

    model_config = ConfigDict(extra="ignore")

    key_path: Optional[str] = None  # None means ~/.ssh/id_rsa
    passphrase: Optional[str] = None
    port: int = Field(default=22, ge=1, le=65535)
    connect_timeout: float = Field(default=10.0, gt=0)
    keepalive_interval: float = Field(default=60.0, ge=0)
    verify_host_key: bool = True
    login_shell: str = "/bin/bash"

    @field_validator("login_shell")
    @classmethod
    def validate_login_shell(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("login_shell must not be empty")
        return v.strip()


class SessionsConfig(BaseModel):
    """Session lifecycle settings (seconds)."""

    model_config = ConfigDict(extra="ignore")

    idle_timeout: float = Field(default=20 * 60, gt=0)
    command_timeout: float = Field(default=30.0, gt=0)
    max_queued_commands: int = Field(default=16, ge=1)


class RemoteOpsConfigModel(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="ignore")

    ssh: SSHConfig = Field(default_factory=SSHConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
