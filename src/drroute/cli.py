"""Dr. Route command-line interface.

Runs the control server and drives a running instance: start and stop
polling, and show the collected results.
"""

import sys
import json
import asyncio
import logging
from dataclasses import replace
from typing import Optional

import aiohttp
import click
import yaml
from rich.console import Console
from rich.table import Table

from drroute import __version__
from drroute.client import ControlClient
from drroute.config import load_settings
from drroute.core.errors import DrRouteError
from drroute.server import ControlServer

console = Console()
logger = logging.getLogger(__name__)

URL_OPTION = click.option(
    '--url', '-u', default='http://localhost:8080', envvar='DRROUTE_URL',
    show_default=True, help='Base URL of a running Dr. Route instance',
)


@click.group()
@click.version_option(version=__version__, prog_name='Dr. Route')
def cli():
    """Dr. Route: controllable background health poller."""
    pass


@cli.command()
@click.option('--config', '-c', type=click.Path(dir_okay=False), help='YAML settings file')
@click.option('--host', help='Host to bind to')
@click.option('--port', '-p', type=int, help='Port to bind to (defaults to $PORT)')
@click.option('--pid-file', help='Write the process id here (defaults to $PIDFILE)')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
def serve(config, host, port, pid_file, log_level):
    """Run the control server."""
    try:
        settings = load_settings(config)
    except DrRouteError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)

    overrides = {'host': host, 'port': port, 'pid_file': pid_file,
                 'log_level': log_level.upper() if log_level else None}
    settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    server = ControlServer(settings)
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except DrRouteError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)


def _run(coro):
    """Run a client call, turning failures into a red message and exit 1."""
    try:
        return asyncio.run(coro)
    except (DrRouteError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        console.print(f"[bold red]✗ {e}[/bold red]")
        sys.exit(1)


@cli.command()
@click.argument('endpoint', required=False)
@URL_OPTION
def start(endpoint: Optional[str], url: str):
    """Start polling ENDPOINT (http://host/path or host:port).

    Without ENDPOINT the server polls its own address.
    """
    _run(ControlClient(url).start(endpoint))
    console.print(f"[bold green]✓ Polling {endpoint or 'server host'}[/bold green]")


@cli.command()
@URL_OPTION
def stop(url: str):
    """Stop polling."""
    _run(ControlClient(url).stop())
    console.print("[bold green]✓ Stop requested[/bold green]")


@cli.command()
@URL_OPTION
@click.option('--format', '-f', 'output_format', type=click.Choice(['table', 'json', 'yaml']), default='table')
def status(url: str, output_format: str):
    """Show the results collected so far."""
    results = _run(ControlClient(url).health())

    if output_format == 'json':
        click.echo(json.dumps(results, indent=2, sort_keys=True))
    elif output_format == 'yaml':
        click.echo(yaml.safe_dump(results, default_flow_style=False))
    else:
        table = Table(title=f"Total Requests: {results.get('TotalRequests', 0)}")
        table.add_column("Status", style="cyan")
        table.add_column("Count", style="green", justify="right")
        for code, count in sorted(results.get('Responses', {}).items()):
            table.add_row(code, str(count))
        console.print(table)


if __name__ == '__main__':
    cli()
