import typer
import asyncio
import os
from typing import Optional
import logging
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.table import Table

from .config import PipelineConfig
from .exceptions import PipelineError
from .models import DocumentReference, MimeKind
from .page_extractor import detect_mime_kind
from .pipeline import BrochurePipeline

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize Typer app
app = typer.Typer(
    name="brochure-pipeline",
    help="Convert brochures into cached slide decks and manage per-user overlays",
    add_completion=False
)

# Initialize console for rich output
console = Console()


def build_pipeline(config_path: Optional[str]) -> BrochurePipeline:
    try:
        return BrochurePipeline(PipelineConfig.load(config_path))
    except Exception as e:
        console.print(f"[red]Error loading configuration: {str(e)}[/red]")
        raise typer.Exit(1)


@app.command()
def convert(
    source: str = typer.Argument(..., help="Path to the PDF, ZIP or image to convert"),
    document_id: Optional[str] = typer.Option(None, "--id", help="Document id (defaults to the file name)"),
    kind: Optional[MimeKind] = typer.Option(None, "--kind", help="Source kind (guessed from the suffix)"),
    title: Optional[str] = typer.Option(None, "--title", help="Presentation title"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Pipeline config JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")
):
    """Convert a document, reusing the cached conversion when there is one"""

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not os.path.exists(source):
        console.print(f"[red]Error: File not found: {source}[/red]")
        raise typer.Exit(1)

    pipeline = build_pipeline(config)
    doc_id = document_id or os.path.splitext(os.path.basename(source))[0]
    try:
        ref = DocumentReference(
            document_id=doc_id,
            source_uri=source,
            mime_kind=kind or detect_mime_kind(source),
            title=title
        )
    except ValueError as e:
        console.print(f"[red]Error: {str(e)}[/red]")
        raise typer.Exit(1)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            console=console
        ) as progress:
            task = progress.add_task("Converting...", total=100)

            def on_progress(percent: int, message: str):
                progress.update(task, completed=percent, description=message)

            result = asyncio.run(pipeline.convert(ref, on_progress))
    except PipelineError as e:
        console.print(f"[red]Error converting {source}: {str(e)}[/red]")
        raise typer.Exit(1)

    if result.used_fallback:
        console.print(f"[yellow]! Could not convert {source}, showing fallback content[/yellow]")
        console.print(f"[dim]{result.error}[/dim]")
    elif result.from_cache:
        console.print(f"[green]✓ Already converted: {ref.document_id}[/green]")
    else:
        console.print(f"[green]✓ Converted {ref.document_id}[/green]")

    display_record_summary(result.record)


@app.command("list")
def list_documents(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Pipeline config JSON")
):
    """List every converted document"""
    pipeline = build_pipeline(config)
    try:
        records = asyncio.run(pipeline.list_documents())
    except PipelineError as e:
        console.print(f"[red]Error reading cache: {str(e)}[/red]")
        raise typer.Exit(1)

    if not records:
        console.print("[dim]No converted documents[/dim]")
        return

    table = Table(title="Converted Documents")
    table.add_column("Id", style="cyan")
    table.add_column("Title")
    table.add_column("Slides", style="magenta")
    table.add_column("Converted")
    for record in sorted(records, key=lambda r: r.id):
        table.add_row(record.id, record.title, str(len(record.slides)), record.converted_at)
    console.print(table)


@app.command()
def show(
    document_id: str = typer.Argument(..., help="Document id"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Show this user's overlay instead of the canonical deck"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Pipeline config JSON")
):
    """Show a deck grouped by slide group"""
    pipeline = build_pipeline(config)
    try:
        if user:
            deck = asyncio.run(pipeline.open_deck(user, document_id))
            title, groups = deck.title, deck.grouped()
        else:
            record = asyncio.run(pipeline.cache.get(document_id))
            if record is None:
                console.print(f"[red]Error: {document_id} has not been converted[/red]")
                raise typer.Exit(1)
            pipeline.repository.seed(document_id, record.slides)
            title, groups = record.title, pipeline.repository.list_grouped(document_id)
    except (PipelineError, ValueError) as e:
        console.print(f"[red]Error loading deck: {str(e)}[/red]")
        raise typer.Exit(1)

    display_groups(title, groups)


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document id"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Pipeline config JSON")
):
    """Delete a converted document and its page images"""
    pipeline = build_pipeline(config)
    try:
        removed = asyncio.run(pipeline.delete_document(document_id))
    except (PipelineError, ValueError) as e:
        console.print(f"[red]Error deleting {document_id}: {str(e)}[/red]")
        raise typer.Exit(1)

    if removed:
        console.print(f"[green]✓ Deleted {document_id}[/green]")
    else:
        console.print(f"[yellow]Nothing cached for {document_id}[/yellow]")


@app.command()
def reset(
    user: str = typer.Argument(..., help="User id"),
    document_id: str = typer.Argument(..., help="Document id"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Pipeline config JSON")
):
    """Discard a user's customisations of a deck"""
    pipeline = build_pipeline(config)
    try:
        deck = asyncio.run(pipeline.reset_deck(user, document_id))
    except (PipelineError, ValueError) as e:
        console.print(f"[red]Error resetting overlay: {str(e)}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Reset {user}/{document_id} ({len(deck.slides())} slides)[/green]")


def display_record_summary(record):
    """Display a summary of a presentation record"""
    console.print(f"\n[bold blue]Presentation: {record.title}[/bold blue]")
    console.print(f"[dim]Source: {record.source_uri}[/dim]")
    console.print(f"[dim]Converted: {record.converted_at}[/dim]")
    console.print(f"[dim]Total slides: {len(record.slides)}[/dim]\n")


def display_groups(title, groups):
    """Display slides grouped by their group label"""
    console.print(f"\n[bold blue]Deck: {title}[/bold blue]\n")
    if not groups:
        console.print("[dim]No slides yet[/dim]")
        return

    for group in groups:
        console.print(f"[bold]{group.name}[/bold]")
        for slide in group.slides:
            console.print(f"   {slide.order}. {slide.title} [dim]{slide.image_ref}[/dim]")
        console.print()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Host to bind the server to"),
    port: int = typer.Option(8000, "--port", help="Port to bind the server to")
):
    """Start the FastAPI server"""

    console.print(f"[green]Starting server on {host}:{port}[/green]")

    import uvicorn
    uvicorn.run("brochure_pipeline.api:app", host=host, port=port, reload=True)


if __name__ == "__main__":
    app()
