"""
PairBridge CLI - Configuration Commands

Commands:
    show - Display the effective configuration
"""

from __future__ import annotations

import typer

from pairbridge.cli import config_app
from pairbridge.cli.output import print_json, print_table, print_warning


@config_app.command("show")
def show_config(
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table, json.",
    ),
) -> None:
    """
    Display the effective configuration.

    Values come from the environment and the ``.env`` file.
    """
    from pairbridge.config.settings import Settings

    data = Settings().model_dump()

    if format == "json":
        print_json(data)
        return
    if format != "table":
        print_warning(f"Unknown format {format!r}, using table")

    rows = [[key, str(value)] for key, value in data.items()]
    print_table("PairBridge Configuration", ["Setting", "Value"], rows, styles=["cyan", None])
