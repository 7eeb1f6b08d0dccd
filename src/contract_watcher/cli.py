"""CLI entry point for contract_watcher."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from dotenv import load_dotenv

from contract_watcher.config import load_config
from contract_watcher.errors import ConfigError, TransportError
from contract_watcher.evm.decoder import event_topic
from contract_watcher.evm.queries import ContractQueries
from contract_watcher.evm.transport import WebSocketTransport
from contract_watcher.listener import build_listener, run_listener
from contract_watcher.models.config import Endpoint, WatcherConfig


def _load(ctx: click.Context) -> WatcherConfig:
    """Load config, exiting with an error on malformed files."""
    try:
        cfg = load_config(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())
    return cfg


def _require_endpoint(cfg: WatcherConfig) -> Endpoint:
    """Exit with error if the watch target is missing or invalid."""
    try:
        return cfg.endpoint()
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        click.echo("Set NODE_URL and CONTRACT_ADDRESS (env, .env or config file).", err=True)
        sys.exit(1)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """contract-watcher - follow one contract event over a WebSocket node."""
    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Listener ───────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Listen for events until interrupted."""
    cfg = _load(ctx)
    endpoint = _require_endpoint(cfg)

    click.echo(f"Monitoring contract at: {endpoint.contract_address}")
    asyncio.run(run_listener(cfg))


@cli.command()
@click.option("--from-block", type=int, required=True, help="First block to replay")
@click.option("--to-block", type=int, default=None, help="Last block (default: latest)")
@click.pass_context
def history(ctx: click.Context, from_block: int, to_block: int | None) -> None:
    """Print past events in a block range, then exit."""
    cfg = _load(ctx)
    _require_endpoint(cfg)
    cfg.checkpoint_path = None
    listener = build_listener(cfg)

    try:
        count = asyncio.run(listener.replay(from_block, to_block))
    except TransportError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"{count} event(s) found")


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show resolved configuration."""
    cfg = _load(ctx)
    click.echo(f"Node URL:    {cfg.node_url or '(not set)'}")
    click.echo(f"Contract:    {cfg.contract_address or '(not set)'}")
    click.echo(f"Event:       {cfg.event_signature}")
    click.echo(f"Topic:       {event_topic(cfg.event_signature)}")
    click.echo(f"Retry delay: {cfg.retry_delay:g}s")
    click.echo(f"Checkpoint:  {cfg.checkpoint_path or '(disabled)'}")
    click.echo(f"Catch-up:    {'on' if cfg.catch_up and cfg.checkpoint_path else 'off'}")


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Connect once and print chain id, head block and the current value."""
    cfg = _load(ctx)
    endpoint = _require_endpoint(cfg)

    async def _check():
        transport = WebSocketTransport(
            open_timeout=cfg.open_timeout, request_timeout=cfg.request_timeout,
        )
        queries = ContractQueries()
        conn = await transport.connect(endpoint)
        try:
            click.echo(f"Node:        {endpoint.node_url}")
            click.echo(f"Chain ID:    {await queries.chain_id(conn)}")
            click.echo(f"Head block:  {await transport.block_number(conn)}")
            click.echo(f"Contract:    {endpoint.contract_address}")
            value = await queries.retrieve_latest(conn, endpoint.contract_address)
            click.echo(f"Value:       {value}")
        finally:
            await transport.close(conn)

    try:
        asyncio.run(_check())
    except TransportError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
