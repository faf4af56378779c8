# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""remoteops - Run shell commands locally or over SSH with persistent sessions."""

__version__ = "0.1.0"
