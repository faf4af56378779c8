# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Result of one command round trip."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class CommandResult:
    """Captured output of a command.

    ``stderr`` also carries soft failures: the timeout note, a closed
    shell, or the synthesized message for a local non-zero exit.
    ``exit_status`` is None when the transport cannot report it (the
    interactive shell has no per-command exit status).
    """

    stdout: str
    stderr: str = ""
    exit_status: Optional[int] = None
