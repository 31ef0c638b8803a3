"""
PairBridge - Command Line Interface

Built with Typer for the command line and Rich for output.

Usage:
    $ pairbridge --help
    $ pairbridge serve --port 8000
    $ pairbridge config show
    $ pairbridge sessions list
    $ pairbridge sessions clean --yes

Sub-command Groups:
    config   - Configuration inspection
    sessions - Housekeeping for leftover session storage
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel

from pairbridge import __version__

console = Console()

app = typer.Typer(
    name="pairbridge",
    help="PairBridge - pairing-code session bootstrap",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration commands",
    no_args_is_help=True,
)

sessions_app = typer.Typer(
    name="sessions",
    help="Session storage housekeeping",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")
app.add_typer(sessions_app, name="sessions")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"PairBridge version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """
    PairBridge - pairing-code session bootstrap

    Issues pairing codes for messaging accounts and delivers the resulting
    session credentials to the account itself.
    """
    pass


@app.command()
def serve(
    host: str = typer.Option(
        "127.0.0.1",
        "--host",
        "-h",
        help="Host to bind to.",
    ),
    port: int = typer.Option(
        8000,
        "--port",
        "-p",
        help="Port to bind to.",
    ),
    reload: bool = typer.Option(
        False,
        "--reload",
        "-r",
        help="Enable auto-reload for development.",
    ),
) -> None:
    """
    Start the PairBridge API server.
    """
    import uvicorn

    from pairbridge.api.dependencies import load_client_factory
    from pairbridge.cli.output import print_error, print_warning
    from pairbridge.config.settings import settings
    from pairbridge.logging_config import get_logging_config

    try:
        factory = load_client_factory(settings.CLIENT_FACTORY)
    except (ImportError, ValueError) as e:
        print_error(
            "Cannot load protocol client factory",
            details=str(e),
            hint="Set CLIENT_FACTORY to 'package.module:callable'",
        )
        raise typer.Exit(1)
    if factory is None:
        print_warning("CLIENT_FACTORY is not set; /pair will answer 503")

    console.print(Panel.fit(
        f"Starting PairBridge on [cyan]http://{host}:{port}[/cyan] ({settings.ENVIRONMENT})",
        title="Server",
    ))
    if reload:
        console.print("[yellow]Auto-reload enabled (development mode)[/yellow]")

    uvicorn.run(
        "pairbridge.main:app",
        host=host,
        port=port,
        reload=reload,
        log_config=get_logging_config(settings.ENVIRONMENT),
    )


__all__ = [
    "app",
    "config_app",
    "sessions_app",
    "console",
    "__version__",
]


def cli() -> None:
    """Entry point for the CLI."""
    app()


# Subcommand modules register themselves on the groups above.
from pairbridge.cli import config, sessions  # noqa: E402,F401


if __name__ == "__main__":
    cli()
