import asyncio
import json
import logging
import sys

import click
import websockets

from live_server_lsp.core.config_manager import ConfigManager, ServerConfig
from live_server_lsp.interface.dashboard import CoordinatorServer
from live_server_lsp.lsp.server import run as run_language_server

logger = logging.getLogger(__name__)

def setup_logging(level: str):
    # stdout carries the LSP stream.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s"
    )

@click.group(invoke_without_command=True)
@click.option("--eager", "-e", is_flag=True, help="Mirror unsaved edits into the preview.")
@click.option("--public", is_flag=True, help="Accept connections from other hosts.")
@click.option("--port", "-p", type=click.IntRange(1, 65535), default=None, help="Dashboard port.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="JSON configuration file.")
@click.pass_context
def cli(ctx, eager, public, port, config_path):
    """Live preview language server."""
    config = ConfigManager(config_path).override(eager=eager or None, public=public or None, port=port)
    setup_logging(config.log_level)
    ctx.obj = config
    if ctx.invoked_subcommand is None:
        run_language_server(config)

@cli.command()
@click.pass_obj
def coordinator(config: ServerConfig):
    """Run the dashboard in the foreground."""
    server = CoordinatorServer(config)
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        pass
    except OSError as e:
        raise click.ClickException(f"Cannot listen on port {config.port}: {e}")

@cli.command()
@click.pass_obj
def events(config: ServerConfig):
    """Print registry changes as they happen."""
    try:
        asyncio.run(_follow_events(config.port))
    except KeyboardInterrupt:
        pass
    except (OSError, websockets.exceptions.WebSocketException) as e:
        raise click.ClickException(f"Lost connection to dashboard: {e}")

async def _follow_events(port: int):
    async with websockets.connect(f"ws://127.0.0.1:{port}/ws") as websocket:
        async for message in websocket:
            event = json.loads(message)
            verb = "added" if event["added"] else "removed"
            click.echo(f"{verb} {event['name']} {event['url']}")

if __name__ == "__main__":
    cli()
