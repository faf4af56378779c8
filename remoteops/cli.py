# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""remoteops command line interface."""

import asyncio
from typing import Dict, Iterable, Optional

import click

from remoteops import __version__
from remoteops.core.result import CommandResult
from remoteops.errors import ConfigurationError, RemoteOpsError
from remoteops.executor import CommandExecutor
from remoteops.utils.logging import configure_logging, get_logger


def parse_env_pairs(pairs: Iterable[str]) -> Dict[str, str]:
    """Turn ``KEY=VALUE`` strings into a mapping."""
    env = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ConfigurationError(f"Expected KEY=VALUE, got {pair!r}")
        env[name] = value
    return env


async def _run_once(
    command: str,
    host: Optional[str],
    username: Optional[str],
    session: str,
    env: Dict[str, str],
) -> CommandResult:
    executor = CommandExecutor()
    try:
        return await executor.execute_command(
            command, host=host, username=username, session=session, env=env
        )
    finally:
        await executor.disconnect()


@click.group()
@click.version_option(version=__version__, prog_name="remoteops")
@click.option("--debug", is_flag=True, help="Verbose logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """remoteops - run shell commands locally or over SSH with persistent sessions."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--transport",
    type=click.Choice(["stdio", "http", "sse"]),
    default="stdio",
    envvar="MCP_TRANSPORT",
    show_default=True,
    help="stdio (spawned by client) or a network listener",
)
@click.option("--listen-host", default="127.0.0.1", envvar="MCP_HOST", show_default=True)
@click.option("--port", type=int, default=9100, envvar="MCP_PORT", show_default=True)
@click.pass_context
def serve(ctx: click.Context, transport: str, listen_host: str, port: int) -> None:
    """Run the MCP server exposing the execute_command tool."""
    # stdout belongs to the MCP transport, log to stderr only
    configure_logging(debug=ctx.obj.get("debug", False), daemon=True, force=True)
    logger = get_logger("remoteops.cli")

    from remoteops.mcp.server import create_server

    server = create_server()
    if transport == "stdio":
        logger.debug("Remote Ops MCP server running on stdio")
        server.run()
    else:
        logger.success(f"Remote Ops MCP server listening on {listen_host}:{port} ({transport})")
        server.run(transport=transport, host=listen_host, port=port, show_banner=False)


@cli.command("exec")
@click.argument("command")
@click.option("--host", "-h", default=None, help="Remote host (omit to run locally)")
@click.option("--username", "-u", default=None, help="SSH username (required with --host)")
@click.option("--session", "-s", default="default", show_default=True)
@click.option("--env", "-e", "env_pairs", multiple=True, metavar="KEY=VALUE")
@click.pass_context
def exec_command(
    ctx: click.Context,
    command: str,
    host: Optional[str],
    username: Optional[str],
    session: str,
    env_pairs: tuple,
) -> None:
    """Run COMMAND once and print its output."""
    configure_logging(debug=ctx.obj.get("debug", False), force=True)
    logger = get_logger("remoteops.cli")

    try:
        env = parse_env_pairs(env_pairs)
        result = asyncio.run(_run_once(command, host, username, session, env))
    except RemoteOpsError as e:
        logger.error(str(e))
        ctx.exit(1)
        return

    if result.stdout:
        click.echo(result.stdout)
    if result.stderr:
        click.echo(result.stderr, err=True)
    if result.exit_status:
        ctx.exit(result.exit_status)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
