import asyncio
import json
import logging
import sys

import aiohttp
import rich_click as click
from loguru import logger
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel

from . import __version__
from .application import Application
from .network import PeerClosed, RemoteError, RequestTimeout, TransportError, connect
from .network.peer import REQUEST_TIMEOUT

console = Console()
err_console = Console(stderr=True)


class InterceptHandler(logging.Handler):
    """Route standard logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level)
    logging.basicConfig(handlers=[InterceptHandler()], level=level)


def parse_data(ctx, param, value):
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}") from e


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose):
    configure_logging(verbose)


def build_application(request_timeout: float) -> Application:
    """Create the application served by ``protopeer serve``."""
    app = Application(request_timeout=request_timeout)

    @app.on_request("ping")
    async def ping(peer, request, accept, reject):
        await accept("pong")

    @app.on_request("echo")
    async def echo(peer, request, accept, reject):
        await accept(request.data)

    @app.on_peer_online
    def online(peer):
        logger.info(f"peer online: {peer.id}")

    @app.on_peer_offline
    def offline(peer):
        logger.info(f"peer offline: {peer.id}")

    @app.on_error
    def error(exc):
        logger.opt(exception=exc).error(f"application error: {exc}")

    return app


async def _serve(host: str, port: int, path: str, request_timeout: float) -> None:
    app = build_application(request_timeout)
    server = app.handle_websocket(host=host, port=port, path=path)
    async with app:
        console.print(Panel(f"Serving peers on [bold]{server.url}[/bold]", title="protopeer"))
        await asyncio.Event().wait()


@cli.command()
@click.option("--host", default="0.0.0.0", envvar="PROTOPEER_HOST", show_default=True)
@click.option("--port", default=8080, type=int, envvar="PROTOPEER_PORT", show_default=True)
@click.option("--path", default="/", show_default=True, help="HTTP path serving WebSocket upgrades.")
@click.option(
    "--timeout",
    "request_timeout",
    default=REQUEST_TIMEOUT,
    type=float,
    envvar="PROTOPEER_REQUEST_TIMEOUT",
    show_default=True,
    help="Seconds to wait for each response.",
)
def serve(host, port, path, request_timeout):
    """Accept peers over WebSocket and answer ping and echo requests."""
    try:
        asyncio.run(_serve(host, port, path, request_timeout))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


async def _request(url, method, data, request_timeout, peer_id):
    peer = await connect(url, peer_id=peer_id, request_timeout=request_timeout)
    try:
        return await peer.send(method, data)
    finally:
        peer.close()
        await peer.transport.wait_closed()


@cli.command()
@click.argument("url")
@click.argument("method")
@click.argument("data", required=False, callback=parse_data)
@click.option(
    "--timeout",
    "request_timeout",
    default=REQUEST_TIMEOUT,
    type=float,
    envvar="PROTOPEER_REQUEST_TIMEOUT",
    show_default=True,
    help="Seconds to wait for the response.",
)
@click.option("--peer-id", default=None, help="Name for the remote peer in logs.")
def request(url, method, data, request_timeout, peer_id):
    """Send one METHOD request with JSON DATA to the server at URL."""
    try:
        result = asyncio.run(_request(url, method, data, request_timeout, peer_id))
    except RemoteError as e:
        err_console.print(f"[red]Rejected:[/red] {e.reason} (code {e.code})")
        sys.exit(1)
    except (RequestTimeout, PeerClosed, TransportError, aiohttp.ClientError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(JSON(json.dumps(result)))


def main():
    cli()


if __name__ == "__main__":
    main()
