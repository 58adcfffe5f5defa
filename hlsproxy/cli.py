"""hlsproxy CLI - run and inspect the CORS/HLS proxy."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from hlsproxy import __version__
from hlsproxy.client import check_health, get_proxy_url
from hlsproxy.config import Config, get_config_dir, load_config, save_config
from hlsproxy.errors import ConfigError, ProxyError
from hlsproxy.playlist import rewrite_playlist
from hlsproxy.proxy import ProxyServer
from hlsproxy.validator import validate_target

console = Console()


# ===== HELPERS =====

def setup_logging(level: str, verbose: bool = False) -> None:
    """Route logging through rich; werkzeug access logs only when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    logging.getLogger("werkzeug").setLevel(logging.INFO if verbose else logging.ERROR)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _load(config_file: Optional[str], environ: Optional[dict] = None) -> Config:
    try:
        return load_config(Path(config_file) if config_file else None, environ)
    except ConfigError as e:
        console.print(f"[red]Config error: {e}[/]")
        sys.exit(2)


def run_async(coro):
    """Run an async function."""
    return asyncio.run(coro)


# ===== CLI COMMANDS =====

@click.group(invoke_without_command=True)
@click.option("--version", "-V", is_flag=True, help="Show version")
@click.option("--config-file", type=click.Path(dir_okay=False), default=None, help="Path to config.json")
@click.pass_context
def main(ctx, version, config_file):
    """hlsproxy - CORS reverse proxy with HLS playlist rewriting."""
    ctx.obj = {"config_file": config_file}
    if version:
        console.print(f"hlsproxy v{__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@click.option("--host", default=None, help="Interface to bind")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on")
@click.option("--password", default=None, help="Require 'Authorization: Bearer <password>'")
@click.option("--timeout", "-t", type=float, default=None, help="Upstream timeout in seconds")
@click.option("--public-origin", default=None, help="Origin clients use to reach the proxy")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification upstream")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and access logs")
@click.pass_context
def serve(ctx, host, port, password, timeout, public_origin, insecure, verbose):
    """Run the proxy server."""
    config = _load(ctx.obj["config_file"]).with_overrides(
        host=host,
        port=port,
        password=password,
        timeout=timeout,
        public_origin=public_origin,
        verify_tls=False if insecure else None,
    )
    if config.timeout <= 0:
        raise click.BadParameter("timeout must be positive", param_hint="--timeout")
    setup_logging(config.log_level, verbose)

    console.print(Panel(
        f"Listening on [bold]{config.host}:{config.port}[/]\n"
        f"Upstream timeout: {config.timeout:g}s\n"
        f"Auth: {'[green]bearer token[/]' if config.password else '[yellow]disabled[/]'}\n"
        f"TLS verify: {'on' if config.verify_tls else '[yellow]off[/]'}",
        title=f"[bold cyan]hlsproxy v{__version__}[/]",
    ))

    server = ProxyServer(config)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        console.print("\n[dim]Shutting down[/]")
    except OSError as e:
        console.print(f"[red]Cannot start server: {e}[/]")
        sys.exit(1)


@main.command("url")
@click.argument("target")
@click.option("--proxy", "proxy_origin", required=True, help="Proxy origin, e.g. http://127.0.0.1:8080")
def url_cmd(target: str, proxy_origin: str):
    """Print the proxied URL for TARGET."""
    try:
        validate_target(target, proxy_origin)
    except ProxyError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)
    click.echo(get_proxy_url(proxy_origin, target))


@main.command("rewrite")
@click.argument("playlist", type=click.File("r", encoding="utf-8"))
@click.option("--base", "base_url", required=True, help="URL the playlist was fetched from")
@click.option("--proxy", "proxy_origin", required=True, help="Proxy origin to route references through")
@click.option("--output", "-o", type=click.File("w", encoding="utf-8"), default="-", help="Output file")
def rewrite_cmd(playlist, base_url: str, proxy_origin: str, output):
    """Rewrite a local PLAYLIST file as the proxy would."""
    output.write(rewrite_playlist(playlist.read(), base_url, proxy_origin))


@main.command("health")
@click.argument("origin")
@click.option("--timeout", "-t", type=float, default=5.0, help="Probe timeout in seconds")
def health_cmd(origin: str, timeout: float):
    """Check that a proxy at ORIGIN answers /health."""
    status = run_async(check_health(origin, timeout))
    if status.healthy:
        console.print(f"[green]✓ {status.origin} healthy[/] [dim]({status.elapsed_ms:.0f} ms)[/]")
        return
    detail = status.error or f"HTTP {status.status_code}"
    console.print(f"[red]✗ {status.origin} unhealthy: {detail}[/]")
    sys.exit(1)


@main.command()
@click.option("--show", is_flag=True, help="Show current configuration")
@click.option("--port", type=int, help="Set listen port")
@click.option("--password", help="Set bearer password (empty string disables)")
@click.option("--timeout", type=float, help="Set upstream timeout in seconds")
@click.option("--public-origin", help="Set public origin")
@click.pass_context
def config(ctx, show: bool, port: Optional[int], password: Optional[str], timeout: Optional[float],
           public_origin: Optional[str]):
    """View or edit configuration."""
    config_file = ctx.obj["config_file"]
    current = _load(config_file)

    if show or all(v is None for v in (port, password, timeout, public_origin)):
        table = Table(title="Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Host", current.host)
        table.add_row("Port", str(current.port))
        table.add_row("Password", "(set)" if current.password else "(none)")
        table.add_row("Timeout", f"{current.timeout:g}s")
        table.add_row("Public Origin", current.public_origin or "(from request)")
        table.add_row("Verify TLS", str(current.verify_tls))
        table.add_row("Config File", str(config_file or get_config_dir() / "config.json"))

        console.print(table)
        return

    if timeout is not None and timeout <= 0:
        raise click.BadParameter("timeout must be positive", param_hint="--timeout")

    # Persist file values only, not environment overrides
    updated = _load(config_file, environ={}).with_overrides(
        port=port, password=password, timeout=timeout, public_origin=public_origin
    )
    path = save_config(updated, Path(config_file) if config_file else None)
    console.print(f"[green]✓ Configuration saved to {path}[/]")


if __name__ == "__main__":
    main()
