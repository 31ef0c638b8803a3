"""
PairBridge CLI - Session Storage Commands

Session directories are removed when an attempt ends; these commands deal
with leftovers from a process that was killed mid-attempt.

Commands:
    list  - List leftover session directories
    clean - Remove leftover session directories
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer

from pairbridge.adapters.shared import FileSessionStore
from pairbridge.cli import console, sessions_app
from pairbridge.cli.output import print_success, print_table, print_warning


def _store(root: Optional[Path]) -> FileSessionStore:
    if root is None:
        from pairbridge.config.settings import Settings
        root = Path(Settings().SESSION_ROOT)
    return FileSessionStore(root)


RootOption = typer.Option(
    None,
    "--root",
    "-r",
    help="Session storage root (defaults to SESSION_ROOT).",
)


@sessions_app.command("list")
def list_sessions(root: Optional[Path] = RootOption) -> None:
    """List leftover session directories."""
    store = _store(root)
    identities = asyncio.run(store.list_identities())
    if not identities:
        console.print(f"No session storage under [cyan]{store.root}[/cyan]")
        return

    rows = [[identity, str(store.session_dir(identity))] for identity in identities]
    print_table("Session Storage", ["Identity", "Path"], rows, styles=["cyan", "dim"])


@sessions_app.command("clean")
def clean_sessions(
    root: Optional[Path] = RootOption,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """
    Remove leftover session directories.

    Do not run this while the server is handling pairing requests.
    """
    store = _store(root)
    identities = asyncio.run(store.list_identities())
    if not identities:
        console.print("Nothing to clean")
        return

    if not yes and not typer.confirm(f"Remove {len(identities)} session directories?"):
        print_warning("Aborted")
        raise typer.Exit(1)

    async def _discard_all() -> None:
        for identity in identities:
            await store.discard(identity)

    asyncio.run(_discard_all())
    print_success(f"Removed {len(identities)} session directories")
