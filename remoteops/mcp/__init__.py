# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""MCP front end exposing command execution as a tool."""

from remoteops.mcp.server import create_server

__all__ = ["create_server"]
