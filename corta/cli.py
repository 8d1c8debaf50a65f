"""
CLI for the corta memory sync core.

Usage:
    corta status
    corta sync
    corta add "Title" "Some text"
    corta mark <page-uuid>
    corta summarize <page-uuid>
    corta search "query text"
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .document import paragraph_doc, to_markdown
from .logging_config import configure_quiet_mode, enable_debug_mode

_store_override: Optional[Path] = None
_user_override: Optional[str] = None


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()
    else:
        configure_quiet_mode(True)


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _user_callback(value: Optional[str]):
    global _user_override
    if value is not None:
        _user_override = value


app = typer.Typer(
    name="corta",
    help="Organization cache and semantic memory sync for notes.",
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
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="CORTA_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
    user: Annotated[Optional[str], typer.Option(
        "--user", "-u",
        envvar="CORTA_USER_ID",
        help="User whose pages to work on",
        callback=_user_callback,
        is_eager=True,
    )] = None,
):
    """Organization cache and semantic memory sync for notes."""


def _get_corta():
    from .api import Corta
    try:
        return Corta(_store_override, user_id=_user_override)
    except (ValueError, RuntimeError, FileNotFoundError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _run(coro_factory):
    """Run an async operation against a fresh Corta, closing it afterwards."""
    corta = _get_corta()

    async def runner():
        try:
            return await coro_factory(corta)
        finally:
            await corta.aclose()

    return asyncio.run(runner())


@app.command()
def status(
    output_json: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
):
    """Show page counts by sync status and the cache state."""
    corta = _get_corta()
    try:
        info = corta.status()
    finally:
        corta.close()

    if output_json:
        typer.echo(json.dumps(info, indent=2))
        return
    typer.echo(f"Pages: {info['pages']} ({info['not_eligible']} not eligible for sync)")
    for name, count in info["sync"].items():
        typer.echo(f"  {name:>5}: {count}")
    typer.echo(f"Index mappings: {info['mappings']}")
    typer.echo(f"Cache version: {info['cache_version']}, pending updates: {info['pending_updates']}")


@app.command()
def sync():
    """Push all pages that need it into the semantic index."""
    report = _run(lambda corta: corta.sync_pending())
    typer.echo(
        f"Synced {len(report.succeeded)} of {len(report.attempted)} page(s) "
        f"in {len(report.batches)} batch(es)"
    )
    if report.failed:
        typer.echo(f"Failed: {', '.join(report.failed)}", err=True)
        raise typer.Exit(1)


@app.command()
def add(
    title: Annotated[str, typer.Argument(help="Page title")],
    text: Annotated[str, typer.Argument(help="Page text")] = "",
    parent: Annotated[Optional[str], typer.Option("--parent", "-p", help="Parent folder UUID")] = None,
    folder: Annotated[bool, typer.Option("--folder", help="Create a folder")] = False,
):
    """Create a page (or folder)."""
    from .errors import StoreError
    from .types import PageType

    corta = _get_corta()
    try:
        page = corta.create_page(
            title,
            type=PageType.FOLDER if folder else PageType.FILE,
            parent_uuid=parent,
            content=paragraph_doc(text) if text and not folder else None,
        )
    except StoreError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        corta.close()
    typer.echo(page.uuid)


@app.command()
def mark(
    page_id: Annotated[str, typer.Argument(help="Page UUID")],
):
    """Mark a page's content as changed so the next sync updates it."""
    result = _run(lambda corta: corta.sync.mark_page_for_sync(page_id))
    if result is None:
        typer.echo(f"Error: could not mark {page_id}", err=True)
        raise typer.Exit(1)
    typer.echo(f"{page_id}: {result.value}")


@app.command()
def summarize(
    page_id: Annotated[str, typer.Argument(help="Page UUID")],
):
    """Update a page's summary from text added since the last summary."""
    try:
        result = _run(lambda corta: corta.refresh_summary(page_id))
    except (KeyError, ValueError) as e:
        typer.echo(f"Error: {e.args[0] if e.args else e}", err=True)
        raise typer.Exit(1)
    if not result.success:
        typer.echo(f"Error: {result.error}", err=True)
        raise typer.Exit(1)
    if not result.updated:
        typer.echo("No new content; summary unchanged", err=True)
    typer.echo(to_markdown(result.summary) if result.summary else "(no summary)")


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results")] = 10,
    tag: Annotated[Optional[list[str]], typer.Option("--tag", "-t", help="Folder path tag filter")] = None,
):
    """Search the semantic index."""
    results = _run(lambda corta: corta.sync.search(query, limit, tag))
    for doc in results:
        typer.echo(f"{doc.score:.2f}  {doc.title}  [{doc.id}]")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="corta CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
