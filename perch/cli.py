"""
CLI interface for perch.

Usage:
    perch sync --bookmarks ~/bookmarks.json
    perch status
    perch place <guid>
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Organizer
from .config import get_default_store_path, load_or_create_config, save_config
from .errors import ItemNotFound, log_exception
from .logging_config import configure_quiet_mode, enable_debug_mode

# Library chatter stays off unless --verbose turns it back on
# Set PERCH_VERBOSE=1 to enable debug mode via environment
if os.environ.get("PERCH_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"perch {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Set by the eager option callbacks below
_json_output = False
_store_override: Optional[Path] = None
_bookmarks_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _bookmarks_callback(value: Optional[Path]):
    global _bookmarks_override
    _bookmarks_override = value


app = typer.Typer(
    name="perch",
    help="File new bookmarks into the folder they belong in.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="PERCH_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
    bookmarks: Annotated[Optional[Path], typer.Option(
        "--bookmarks", "-b",
        help="Firefox bookmark backup (JSON) to organize; remembered in the store config",
        callback=_bookmarks_callback,
        is_eager=True,
    )] = None,
):
    """File new bookmarks into the folder they belong in."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _store_path() -> Path:
    if _store_override is not None:
        return Path(_store_override).expanduser().resolve()
    return get_default_store_path()


def _get_organizer() -> Organizer:
    """Open the store, handling errors gracefully."""
    try:
        config = load_or_create_config(_store_path())
        if _bookmarks_override is not None:
            bookmarks = Path(_bookmarks_override).expanduser().resolve()
            if config.tree_path != bookmarks:
                config.tree_path = bookmarks
                save_config(config)
        return Organizer(config=config)
    except Exception as e:
        log_path = log_exception(e, "open store", _store_path())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details: {log_path}", err=True)
        raise typer.Exit(1)


def _run(coro_fn, context: str):
    """Run an async command against an organizer, then close it.

    Saves the bookmark file if the command changed the tree.
    """
    org = _get_organizer()

    async def runner():
        try:
            result = await coro_fn(org)
            tree = org.tree
            if getattr(tree, "dirty", False) and getattr(tree, "path", None):
                tree.save()
            return result
        finally:
            await org.close()

    try:
        return asyncio.run(runner())
    except ItemNotFound as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except Exception as e:
        log_path = log_exception(e, context, _store_path())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details: {log_path}", err=True)
        raise typer.Exit(1)


def _progress_printer(label: str):
    """Progress callback writing ``label current/total`` to stderr."""
    if _get_json_output():
        return None

    def report(current: int, total: int) -> None:
        typer.echo(f"\r{label} {current}/{total}", err=True, nl=False)
        if current >= total:
            typer.echo("", err=True)

    return report


def _echo_result(data: dict, text: str) -> None:
    if _get_json_output():
        typer.echo(json.dumps(data, indent=2))
    else:
        typer.echo(text)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def sync():
    """
    Index every folder and bookmark that has no embedding yet.

    Embeddings of items that no longer exist are removed.
    """
    progress = _progress_printer("Processing bookmarks...")
    result = _run(lambda org: org.reconcile(progress), "sync")
    _echo_result(
        result.to_dict(),
        f"Synced: {result.saved} indexed, {len(result.orphaned)} orphans removed, "
        f"{result.null_embeddings} without enough content",
    )


@app.command()
def status():
    """Show how many bookmarks and folders are indexed."""
    result = _run(lambda org: org.status(), "status")
    mark = "synced" if result.is_synced else "needs sync"
    _echo_result(result.to_dict(), f"{result.synced_items} / {result.total_items} items indexed ({mark})")


@app.command()
def reset(
    yes: Annotated[bool, typer.Option(
        "--yes", "-y",
        help="Skip the confirmation prompt",
    )] = False,
):
    """
    Rebuild the index from scratch.

    This is rarely needed and may take several minutes. Only use it if
    placement suggestions seem wrong.
    """
    if not yes:
        typer.confirm("Reset will rebuild the bookmark index from scratch. Continue?", abort=True)
    progress = _progress_printer("Re-syncing...")
    result = _run(lambda org: org.reset(progress), "reset")
    _echo_result(result.to_dict(), f"Bookmark data reset: {result.saved} items indexed")


@app.command()
def place(
    id: Annotated[str, typer.Argument(help="Guid of the bookmark to file")],
):
    """Move a bookmark into the folder it fits best."""
    placement = _run(lambda org: org.place(id), "place")
    if placement is None:
        _echo_result({"id": id, "moved": False}, f"{id}: no destination found, not moved")
        return
    _echo_result(
        {
            "id": id,
            "moved": placement.moved,
            "target": placement.target_id,
            "matched": placement.best.item_id,
            "kind": placement.best.kind.value,
            "similarity": round(placement.similarity, 4),
        },
        f"{id} {'->' if placement.moved else 'stays in'} {placement.target_id} "
        f"(matched {placement.best.title!r}, similarity {placement.similarity:.4f})",
    )


@app.command()
def seed():
    """Add sample folders and bookmarks (not indexed until the next sync)."""
    from .seed import seed_sample_tree

    created = _run(seed_sample_tree, "seed")
    _echo_result(
        {"created": [item.id for item in created]},
        f"Seeded {len(created)} items. Run 'perch sync' to index them.",
    )


@app.command()
def config():
    """Show configuration."""
    cfg = load_or_create_config(_store_path())
    data = {
        "file": str(cfg.config_path),
        "store": str(cfg.path),
        "bookmarks": str(cfg.tree_path) if cfg.tree_path else None,
        "embedding": {"name": cfg.embedding.name, **cfg.embedding.params},
        "content": {"name": cfg.content.name, **cfg.content.params},
        "concurrency": cfg.concurrency,
        "min_content_chars": cfg.min_content_chars,
        "excluded_roots": list(cfg.excluded_roots),
    }
    if _get_json_output():
        typer.echo(json.dumps(data, indent=2))
        return
    for key, value in data.items():
        typer.echo(f"{key}: {value}")


def main():
    app()


if __name__ == "__main__":
    main()
