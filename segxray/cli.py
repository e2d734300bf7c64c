"""
CLI Interface
=============
Command-line interface for the segment extraction engine.

Usage:
    python -m segxray extract <snapshot.json> [options]
    python -m segxray extract-pdf <file.pdf> [options]
    python -m segxray decode [file]
    python -m segxray encode <text> --meta '{"g": "..."}'
    python -m segxray report <segments.json>
    python -m segxray info <file.pdf>
    python -m segxray serve [options]
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .codec import (
    END_MARKER,
    START_MARKER_PATTERN,
    contains_markers,
    decode_to_json,
    wrap,
)
from .engine import XRayConfig, XRayEngine
from .models import ExtractionResult, UnterminatedPolicy
from .painters import PdfHighlightPainter
from .pdf_tree import PdfRenderTree

console = Console()


def _common_options(func):
    """Options shared by the extraction commands."""
    options = [
        click.option(
            "--output", "-o",
            default="output",
            help="Output directory for extracted segments",
        ),
        click.option(
            "--unterminated",
            default=UnterminatedPolicy.DROP.value,
            type=click.Choice([p.value for p in UnterminatedPolicy]),
            help="What to do with a segment left open at end of document",
        ),
        click.option(
            "--clip-threshold",
            default=None,
            type=float,
            help="Minimum visible share inside clipping ancestors (0-1)",
        ),
        click.option(
            "--corner-inset",
            default=None,
            type=float,
            help="Inset of the occlusion hit-test corners (pixels)",
        ),
        click.option(
            "--log-level",
            default="INFO",
            type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
            help="Logging level",
        ),
        click.option(
            "--log-file",
            default=None,
            help="Path to log file",
        ),
        click.option(
            "--no-save",
            is_flag=True,
            default=False,
            help="Do not write segments and report files",
        ),
        click.option(
            "--json-output",
            is_flag=True,
            default=False,
            help="Output only the JSON result to stdout (for programmatic use)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_engine(
    output: str,
    unterminated: str,
    clip_threshold,
    corner_inset,
    log_level: str,
    log_file,
    json_output: bool,
) -> XRayEngine:
    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    config = XRayConfig.from_env(
        output_dir=output,
        unterminated_policy=UnterminatedPolicy(unterminated),
        clip_threshold=clip_threshold,
        corner_inset=corner_inset,
        log_level=log_level,
        log_file=log_file,
    )
    return XRayEngine(config)


@click.group()
@click.version_option(version=__version__, prog_name="segxray")
def cli():
    """Segment X-Ray — locate marker-tagged text and check its visibility."""
    pass


@cli.command()
@click.argument("snapshot_path", type=click.Path(exists=True))
@_common_options
def extract(
    snapshot_path: str,
    output: str,
    unterminated: str,
    clip_threshold,
    corner_inset,
    log_level: str,
    log_file,
    no_save: bool,
    json_output: bool,
):
    """Extract segments from a JSON render-tree snapshot."""
    engine = _build_engine(
        output, unterminated, clip_threshold, corner_inset,
        log_level, log_file, json_output,
    )

    if not json_output:
        _print_banner("Extracting", snapshot_path)

    try:
        result = engine.extract_snapshot(snapshot_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    _finish(engine, result, snapshot_path, no_save, json_output)


@cli.command("extract-pdf")
@click.argument("pdf_path", type=click.Path(exists=True))
@click.option("--page", "-p", default=1, type=int, help="Page (1-indexed)")
@click.option(
    "--annotate",
    default=None,
    help="Write a copy of the page with the highlight layer drawn on it",
)
@_common_options
def extract_pdf(
    pdf_path: str,
    page: int,
    annotate,
    output: str,
    unterminated: str,
    clip_threshold,
    corner_inset,
    log_level: str,
    log_file,
    no_save: bool,
    json_output: bool,
):
    """Extract segments from one page of a PDF."""
    engine = _build_engine(
        output, unterminated, clip_threshold, corner_inset,
        log_level, log_file, json_output,
    )

    if not json_output:
        _print_banner("Extracting", f"{pdf_path} (page {page})")

    try:
        tree = PdfRenderTree.open(pdf_path, page)
    except (OSError, ValueError, RuntimeError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    result = engine.extract(tree)

    if annotate and result.succeeded:
        painter = PdfHighlightPainter(pdf_path, page)
        overlay = engine.create_overlay(painter, lambda: tree)
        overlay.show(True, [s for s in result.text_elements if s.is_visible])
        drawn = painter.save(annotate)
        if not json_output:
            console.print(f"[dim]Annotated copy ({drawn} boxes): {annotate}[/]")

    _finish(engine, result, pdf_path, no_save, json_output)


@cli.command()
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
def decode(source):
    """Decode every marker pair in a text file (or stdin)."""
    text = source.read()

    if not contains_markers(text):
        console.print("[yellow]No markers found[/]")
        return

    table = Table(title="Decoded Markers", border_style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Text", style="bold")
    table.add_column("Metadata")

    count = 0
    for match in START_MARKER_PATTERN.finditer(text):
        end = text.find(END_MARKER, match.end())
        body = text[match.end():end] if end != -1 else text[match.end():]
        metadata = decode_to_json(match.group(1))
        count += 1
        table.add_row(
            str(count),
            body[:60],
            json.dumps(metadata, ensure_ascii=False),
        )

    console.print(table)


@cli.command()
@click.argument("text")
@click.option("--meta", "-m", required=True, help="Metadata as a JSON object")
def encode(text: str, meta: str):
    """Wrap TEXT in markers carrying the given metadata."""
    try:
        metadata = json.loads(meta)
    except ValueError as e:
        console.print(f"[red]Invalid metadata JSON:[/] {e}")
        sys.exit(1)
    click.echo(wrap(text, metadata))


@cli.command()
@click.argument("json_path", type=click.Path(exists=True))
def report(json_path: str):
    """Report on a previously saved segments JSON."""

    with open(json_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Extraction Report[/]\n"
            f"[dim]File: {json_path}[/]",
            border_style="cyan",
        )
    )

    engine = XRayEngine(XRayConfig(log_level="ERROR"))
    result = ExtractionResult.from_wire(data)
    _display_report_table(engine.report(result).model_dump())


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP service exposing extraction and overlay commands."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Segment X-Ray Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
def info(pdf_path: str):
    """Display PDF file information and marker counts per page."""

    import fitz

    doc = fitz.open(pdf_path)

    console.print()
    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", os.path.basename(pdf_path))
    table.add_row("Pages", str(doc.page_count))
    table.add_row(
        "File Size",
        f"{os.path.getsize(pdf_path) / 1024 / 1024:.2f} MB",
    )

    metadata = doc.metadata or {}
    for key in ["title", "author", "subject", "creator", "producer"]:
        val = metadata.get(key, "")
        if val:
            table.add_row(key.title(), val)

    marked_pages = 0
    total_markers = 0
    for page in doc:
        found = len(START_MARKER_PATTERN.findall(page.get_text()))
        total_markers += found
        marked_pages += 1 if found else 0

    table.add_row("Start Markers", str(total_markers))
    table.add_row("Pages With Markers", str(marked_pages))

    doc.close()
    console.print(table)
    console.print()


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _print_banner(action: str, source: str):
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Segment X-Ray v{__version__}[/]\n"
            f"[dim]{action}: {os.path.basename(str(source))}[/]",
            border_style="cyan",
        )
    )
    console.print()


def _finish(
    engine: XRayEngine,
    result: ExtractionResult,
    source: str,
    no_save: bool,
    json_output: bool,
):
    """Save, then print either JSON or tables; exit 1 on a failed pass."""
    if not no_save and result.succeeded:
        engine.save(result, Path(source).name)

    if json_output:
        # Output clean JSON to stdout
        print(json.dumps(result.to_wire(), indent=2, ensure_ascii=False))
    elif result.succeeded:
        try:
            _display_segments(result)
            _display_report_table(engine.report(result).model_dump())
        except UnicodeEncodeError:
            # Windows console may not support special chars
            print(f"Extraction complete: {len(result.text_elements)} segments")

    if not result.succeeded:
        if not json_output:
            console.print(f"[red]Error:[/] {result.error}")
        sys.exit(1)


def _display_segments(result: ExtractionResult):
    """Display extracted segments in a formatted table."""
    table = Table(title="Segments", border_style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Text", style="bold")
    table.add_column("Geometry")
    table.add_column("Metadata")
    table.add_column("Status", justify="center")

    for index, seg in enumerate(result.text_elements):
        g = seg.geometry
        geometry = (
            f"{g.x:.0f},{g.y:.0f} {g.width:.0f}×{g.height:.0f}"
            if seg.is_visible else "[dim]hidden[/]"
        )
        if seg.decoding_error:
            status = "[red]✗ decode[/]"
        elif seg.is_visible:
            status = "[green]✓[/]"
        else:
            status = "[yellow]⚠[/]"
        table.add_row(
            str(index + 1),
            seg.text[:50],
            geometry,
            json.dumps(seg.metadata, ensure_ascii=False)[:60],
            status,
        )

    console.print(table)
    console.print()


def _display_report_table(report: dict):
    """Display an extraction report as a rich table."""
    table = Table(title="Extraction Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    if report.get("error"):
        table.add_row("Error", report["error"], "[red]✗[/]")

    total = report.get("total_segments", 0)
    table.add_row(
        "Total Segments",
        str(total),
        "[green]✓[/]" if total > 0 else "[red]✗[/]",
    )
    table.add_row(
        "Visible Segments",
        f"{report.get('visible_segments', 0)} "
        f"({report.get('visible_rate', 0)}%)",
        "[green]✓[/]" if report.get("hidden_segments", 0) == 0 else "[yellow]⚠[/]",
    )

    errors = report.get("decoding_errors", [])
    table.add_row("Decoding Errors", str(len(errors)), status_icon(len(errors)))

    open_segments = report.get("unterminated_segments", [])
    table.add_row(
        "Unterminated Segments",
        str(len(open_segments)),
        status_icon(len(open_segments)),
    )

    table.add_row(
        "Matched / Unmatched / Unknown",
        f"{report.get('matched', 0)} / {report.get('unmatched', 0)} / "
        f"{report.get('unknown', 0)}",
        status_icon(report.get("unmatched", 0)),
    )

    console.print(table)
    console.print()

    keys = report.get("metadata_keys", {})
    if keys:
        key_table = Table(title="Metadata Keys", border_style="yellow")
        key_table.add_column("Key", style="bold")
        key_table.add_column("Count", justify="right")
        for key, count in sorted(keys.items()):
            key_table.add_row(key, str(count))
        console.print(key_table)
        console.print()


# ─── Entry point (for python -m segxray.cli) ─────────────────────────────────


if __name__ == "__main__":
    cli()
