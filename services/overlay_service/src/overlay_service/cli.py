"""
Command-line interface for the handle tagger.

Usage:
    handle-tagger annotate page.html --out tagged.html      # One reconciliation pass
    handle-tagger replay page.html a.html b.html           # Stream fragments in, observer on
    handle-tagger list                                     # Show stored tags
    handle-tagger set @alice --tag spam --color red        # Create or update a tag
    handle-tagger delete @alice                            # Remove a tag
    handle-tagger extract /alice/status/1                  # Show the identity an href encodes
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from handletag_core.errors import InvalidAnnotationInput, StoreUnavailable
from handletag_core.identity import coerce_handle, extract_handle
from handletag_core.records import AnnotationRecord
from handletag_core.settings import settings as core_settings
from handletag_core.store import JsonFileStore
from overlay_service.dom.document import HostDocument
from overlay_service.engine import TaggerEngine
from overlay_service.reconcile import Reconciler
from overlay_service.settings import OverlaySettings

app = typer.Typer(name="handle-tagger", help="Annotate identity handles inside a changing HTML document.")
console = Console()

_state: dict[str, Path] = {}


@app.callback()
def main(
    store: Optional[Path] = typer.Option(None, "--store", help="JSON store file (default from settings)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every overlay decision."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    _state["store_path"] = store or core_settings.store_path


def _store() -> JsonFileStore:
    return JsonFileStore(_state.get("store_path", core_settings.store_path), storage_key=core_settings.storage_key)


def _write_output(document: HostDocument, out: Path | None) -> None:
    if out is None:
        typer.echo(document.serialize())
        return
    out.write_text(document.serialize(), encoding="utf-8")
    console.print(f"written: {escape(str(out))}")


@app.command()
def annotate(
    page: Path = typer.Argument(..., exists=True, dir_okay=False, help="HTML page to annotate."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output file (default: stdout)."),
) -> None:
    """Run one reconciliation pass over a saved page."""
    document = HostDocument.from_html(page.read_text(encoding="utf-8"))
    reconciler = Reconciler(document, _store())
    report = asyncio.run(reconciler.run_pass())
    if report is None:
        console.print("[red]Store unavailable; page left unannotated.[/red]")
        raise typer.Exit(code=1)
    _write_output(document, out)


@app.command()
def replay(
    page: Path = typer.Argument(..., exists=True, dir_okay=False, help="Initial HTML page."),
    fragments: list[Path] = typer.Argument(..., exists=True, dir_okay=False, help="HTML fragments appended in order."),
    into: str = typer.Option('[data-testid="primaryColumn"]', "--into", help="Container the fragments go into."),
    interval: float = typer.Option(0.1, "--interval", help="Seconds between fragments."),
    debounce: Optional[float] = typer.Option(None, "--debounce", help="Override the debounce window (seconds)."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output file (default: stdout)."),
) -> None:
    """
    Simulate a streaming feed: annotate the page, then append each fragment as a
    host mutation with the observer running, and write the settled result.
    """
    settings = OverlaySettings()
    if debounce is not None:
        settings = settings.model_copy(update={"debounce_s": debounce})
    document = HostDocument.from_html(page.read_text(encoding="utf-8"))
    container = document.select_one(into) or document.body

    async def _run() -> TaggerEngine:
        engine = TaggerEngine(document, _store(), settings=settings)
        await engine.start()
        for fragment in fragments:
            for node in document.parse_fragment(fragment.read_text(encoding="utf-8")):
                document.append_child(container, node)
            await asyncio.sleep(interval)
        await engine.settle()
        engine.stop()
        return engine

    engine = asyncio.run(_run())
    console.print(
        f"passes: {engine.reconciler.passes_completed} "
        f"(observer scheduled {engine.observer.passes_scheduled})"
    )
    _write_output(document, out)


@app.command("list")
def list_tags() -> None:
    """Show every stored tag."""
    try:
        records = asyncio.run(_store().get_all())
    except StoreUnavailable as exc:
        console.print(f"[red]{escape(exc.message)}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Tagged handles")
    table.add_column("Handle", style="cyan")
    table.add_column("Tag")
    table.add_column("Color")
    table.add_column("Notes", style="dim")
    table.add_column("Source")
    for handle, record in sorted(records.items()):
        table.add_row(
            handle,
            escape(record.tag_text),
            record.color.label,
            escape(record.notes),
            escape(record.provenance_url or ""),
        )
    console.print(table)


@app.command("set")
def set_tag(
    handle: str = typer.Argument(..., help="Handle, with or without '@'."),
    tag: str = typer.Option(..., "--tag", "-t", help="Short tag text."),
    color: str = typer.Option(..., "--color", "-c", help="Color name, menu number or hex value."),
    notes: str = typer.Option("", "--notes", "-n", help="Free-text notes."),
    url: Optional[str] = typer.Option(None, "--url", help="Source URL (kept from the first save if omitted)."),
) -> None:
    """Create or update the tag for a handle."""
    handle = coerce_handle(handle)
    try:
        record = AnnotationRecord.create(tag_text=tag, color=color, provenance_url=url, notes=notes)
    except InvalidAnnotationInput as exc:
        raise typer.BadParameter(exc.message)
    try:
        asyncio.run(_store().upsert(handle, record))
    except StoreUnavailable as exc:
        console.print(f"[red]{escape(exc.message)}[/red]")
        raise typer.Exit(code=1)
    label = escape(f"[{record.tag_text}]")
    console.print(f"[green]✓[/green] {handle} {label}")


@app.command()
def delete(handle: str = typer.Argument(..., help="Handle, with or without '@'.")) -> None:
    """Remove the tag for a handle."""
    handle = coerce_handle(handle)
    try:
        deleted = asyncio.run(_store().delete(handle))
    except StoreUnavailable as exc:
        console.print(f"[red]{escape(exc.message)}[/red]")
        raise typer.Exit(code=1)
    if not deleted:
        console.print(f"[yellow]No tag stored for {handle}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] deleted {handle}")


@app.command()
def extract(href: str = typer.Argument(..., help="Anchor href path, e.g. /alice/status/1")) -> None:
    """Print the identity an href encodes, if any."""
    handle = extract_handle(href)
    if handle is None:
        typer.echo("not an identity")
        raise typer.Exit(code=1)
    typer.echo(handle)


if __name__ == "__main__":
    app()
