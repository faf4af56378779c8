# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Exception types raised by remoteops.

Command-level failures (non-zero exit, a command that never prints the
completion marker) are not exceptions. They come back as data in
``CommandResult.stderr``.
"""


class RemoteOpsError(Exception):
    """Base class for all remoteops errors."""


class ConfigurationError(RemoteOpsError):
    """A request is missing required settings (e.g. username for a remote host)."""


class CredentialNotFound(RemoteOpsError):
    """The private key could not be read or parsed."""

    def __init__(self, key_path: str, reason: str = ""):
        self.key_path = key_path
        message = f"SSH private key not readable at {key_path}"
        if reason:
            message += f" ({reason})"
        message += "; set up key-based authentication (e.g. ssh-keygen && ssh-copy-id)"
        super().__init__(message)


class RemoteConnectionError(RemoteOpsError, ConnectionError):
    """Transport or authentication failure while connecting to a host."""


class ChannelError(RemoteOpsError):
    """A shell or exec channel failed to open or broke mid-stream."""


class SessionBusy(RemoteOpsError):
    """Too many commands are already queued on one session."""
