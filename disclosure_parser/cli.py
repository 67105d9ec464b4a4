"""
CLI Interface
=============
Command-line interface for the disclosure table extractor.

Usage:
    python -m disclosure_parser download <url>... [--index <page>] [options]
    python -m disclosure_parser extract <pdf_path> [options]
    python -m disclosure_parser batch <directory> [options]
    python -m disclosure_parser validate <json_path>
    python -m disclosure_parser info <pdf_path>
    python -m disclosure_parser check-posts <content_dir>
    python -m disclosure_parser serve [options]
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
import requests
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from . import __version__
from .downloader import FilingDownloader, discover_pdf_links
from .engine import ExtractionEngine, ExtractorConfig
from .posts import check_content_dir

console = Console()


def _kernel(value: str) -> tuple[int, int]:
    """Parse a WxH kernel option such as 40x1."""
    try:
        width, height = (int(v) for v in value.lower().split("x"))
    except ValueError:
        raise click.BadParameter(f"expected WIDTHxHEIGHT, got {value!r}")
    if width < 1 or height < 1:
        raise click.BadParameter("kernel sizes must be positive")
    return width, height


@click.group()
@click.version_option(version=__version__, prog_name="disclosure-parser")
def cli():
    """Disclosure Parser — table extraction for scanned financial disclosures."""
    pass


@cli.command()
@click.argument("urls", nargs=-1)
@click.option(
    "--index", "index_url",
    default=None,
    help="HTML page whose PDF links should be downloaded",
)
@click.option(
    "--output", "-o",
    default="data/filings",
    help="Directory for downloaded PDFs",
)
@click.option(
    "--overwrite",
    is_flag=True,
    default=False,
    help="Re-download files that already exist",
)
@click.option("--timeout", default=30, type=int, help="Request timeout (s)")
def download(urls: tuple[str, ...], index_url: str, output: str,
             overwrite: bool, timeout: int):
    """Download filing PDFs by URL or from an index page."""

    targets = list(urls)
    downloader = FilingDownloader(output, timeout=timeout, overwrite=overwrite)

    if index_url:
        try:
            targets.extend(
                u for u in discover_pdf_links(
                    index_url, session=downloader.session, timeout=timeout
                )
                if u not in targets
            )
        except requests.RequestException as e:
            console.print(f"[red]Error:[/] could not read index page: {e}")
            sys.exit(1)

    if not targets:
        console.print("[yellow]Nothing to download: pass URLs or --index[/]")
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Downloading filings...", total=len(targets))
        downloaded, errors = downloader.download_all(
            targets,
            progress_callback=lambda current, total: progress.update(
                task, completed=current
            ),
        )

    table = Table(title="Download Summary", border_style="cyan")
    table.add_column("File", style="bold")
    table.add_column("Size", justify="right")
    table.add_column("Status", justify="center")
    for filing in downloaded:
        table.add_row(
            os.path.basename(filing.path),
            f"{filing.file_size_bytes / 1024:.1f} KB",
            "[dim]skipped[/]" if filing.skipped else "[green]✓[/]",
        )
    for url, error in errors:
        table.add_row(url, "-", "[red]✗ FAILED[/]")
    console.print(table)

    if errors:
        for url, error in errors:
            console.print(f"[red]{url}[/]: {error}")
        sys.exit(1)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@click.option(
    "--output", "-o",
    default="output",
    help="Output directory for extracted data",
)
@click.option(
    "--filing-name", "-n",
    default="",
    help="Filing name (defaults to filename)",
)
@click.option(
    "--filing-id",
    default=None,
    help="Custom filing ID for output file names",
)
@click.option("--source-url", default="", help="Where the filing came from")
@click.option("--dpi", default=300, type=int, help="Rendering resolution")
@click.option(
    "--threshold",
    "threshold_method",
    default="adaptive",
    type=click.Choice(["adaptive", "otsu"]),
    help="Binarization method",
)
@click.option(
    "--row-kernel",
    default="40x1",
    callback=lambda ctx, param, value: _kernel(value),
    help="Row closing kernel as WIDTHxHEIGHT",
)
@click.option(
    "--column-threshold",
    default=20.0,
    type=float,
    help="Single-linkage distance threshold between columns (pixels)",
)
@click.option(
    "--point-spacing",
    default=5.0,
    type=float,
    help="Spacing of auxiliary points along word boxes (pixels)",
)
@click.option("--lang", default="eng", help="Tesseract language")
@click.option(
    "--page-start",
    default=None,
    type=int,
    help="Start page (1-indexed)",
)
@click.option(
    "--page-end",
    default=None,
    type=int,
    help="End page (1-indexed, inclusive)",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--no-csv",
    is_flag=True,
    default=False,
    help="Skip writing per-page CSV files",
)
@click.option(
    "--save-words",
    is_flag=True,
    default=False,
    help="Include OCR word boxes in the JSON output",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def extract(
    pdf_path: str,
    output: str,
    filing_name: str,
    filing_id: str,
    source_url: str,
    dpi: int,
    threshold_method: str,
    row_kernel: tuple[int, int],
    column_threshold: float,
    point_spacing: float,
    lang: str,
    page_start: int,
    page_end: int,
    log_level: str,
    log_file: str,
    no_csv: bool,
    save_words: bool,
    json_output: bool,
):
    """Extract the tables of a single filing PDF."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    page_range = None
    if page_start is not None or page_end is not None:
        page_range = (page_start or 1, page_end or 99999)

    config = ExtractorConfig(
        output_dir=output,
        filing_name=filing_name,
        filing_id=filing_id,
        source_url=source_url,
        dpi=dpi,
        threshold_method=threshold_method,
        row_close_kernel=row_kernel,
        column_distance_threshold=column_threshold,
        point_spacing=point_spacing,
        ocr_lang=lang,
        page_range=page_range,
        log_level=log_level,
        log_file=log_file,
        save_csv=not no_csv,
        save_words=save_words,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Disclosure Parser v{__version__}[/]\n"
                f"[dim]Extracting: {os.path.basename(pdf_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        engine = ExtractionEngine(config)

        if not json_output:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Extracting pages...", total=None)

                def on_page(current, total):
                    progress.update(task, completed=current, total=total)

                result = engine.extract(pdf_path, progress_callback=on_page)

            _display_results(result)
        else:
            result = engine.extract(pdf_path)
            print(json.dumps(
                result.model_dump(mode="json"),
                indent=2,
                ensure_ascii=False,
            ))

    except (FileNotFoundError, ValueError, RuntimeError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--output", "-o", default="output", help="Output directory")
@click.option("--dpi", default=300, type=int, help="Rendering resolution")
@click.option(
    "--threshold",
    "threshold_method",
    default="adaptive",
    type=click.Choice(["adaptive", "otsu"]),
    help="Binarization method",
)
@click.option(
    "--column-threshold",
    default=20.0,
    type=float,
    help="Single-linkage distance threshold between columns (pixels)",
)
@click.option("--no-csv", is_flag=True, default=False, help="Skip CSV output")
@click.option("--log-level", default="WARNING", help="Logging level")
def batch(directory: str, output: str, dpi: int, threshold_method: str,
          column_threshold: float, no_csv: bool, log_level: str):
    """Extract every filing PDF in a directory."""

    filings = sorted(
        p for p in Path(directory).iterdir()
        if p.is_file() and p.suffix.lower() == ".pdf"
    )
    if not filings:
        console.print(f"[yellow]No filings found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Filing Extractor[/]\n"
            f"[dim]{len(filings)} filings in {directory} → {output}[/]",
            border_style="cyan",
        )
    )
    console.print()

    config = ExtractorConfig(
        output_dir=output,
        dpi=dpi,
        threshold_method=threshold_method,
        column_distance_threshold=column_threshold,
        save_csv=not no_csv,
        log_level=log_level,
    )
    try:
        engine = ExtractionEngine(config)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    results = []
    errors = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Extracting filings...", total=len(filings))

        for filing_path in filings:
            progress.update(task, description=f"Extracting: {filing_path.name}")
            try:
                results.append((filing_path.name, engine.extract(str(filing_path))))
            except (FileNotFoundError, ValueError, RuntimeError) as e:
                errors.append((filing_path.name, str(e)))
            progress.advance(task)

    _display_batch_summary(results, errors)

    if errors:
        sys.exit(1)


@cli.command()
@click.argument("json_path", type=click.Path(exists=True, dir_okay=False))
def validate(json_path: str):
    """Display the validation report of a saved extraction."""

    with open(json_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Validation Report[/]\n"
            f"[dim]File: {json_path}[/]",
            border_style="cyan",
        )
    )

    # Accept either a full _tables.json result or a bare _validation.json
    validation = data.get("validation", data)
    _display_validation_table(validation)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
def info(pdf_path: str):
    """Show whether each page of a filing needs OCR."""

    import fitz

    pages = Table(title=os.path.basename(pdf_path), border_style="cyan")
    pages.add_column("Page", justify="right")
    pages.add_column("Size (pt)", justify="right")
    pages.add_column("Text Chars", justify="right")
    pages.add_column("Images", justify="right")
    pages.add_column("Scanned", justify="center")

    scanned = 0
    with fitz.open(pdf_path) as doc:
        page_count = doc.page_count
        producer = (doc.metadata or {}).get("producer", "")
        for page in doc:
            chars = len(page.get_text().strip())
            images = len(page.get_images(full=True))
            is_scan = chars == 0 and images > 0
            scanned += is_scan
            pages.add_row(
                str(page.number + 1),
                f"{page.rect.width:.0f} × {page.rect.height:.0f}",
                str(chars),
                str(images),
                "[green]✓[/]" if is_scan else "[dim]-[/]",
            )

    console.print()
    console.print(pages)
    console.print(
        f"[bold]{scanned}/{page_count}[/] scanned pages, "
        f"{os.path.getsize(pdf_path) / 1024:.1f} KB"
        + (f", produced by {producer}" if producer else "")
    )
    console.print()


@cli.command("check-posts")
@click.argument("content_dir", type=click.Path(exists=True, file_okay=False))
def check_posts(content_dir: str):
    """Validate post frontmatter and image references."""

    report = check_content_dir(content_dir)

    table = Table(title="Content Check", border_style="cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Posts Checked", str(report.files_checked))
    table.add_row("Published", str(report.published))
    table.add_row("Drafts", str(report.drafts))
    table.add_row("Errors", str(len(report.errors)))
    table.add_row("Missing Images", str(len(report.missing_images)))
    console.print(table)

    if report.tags:
        tag_table = Table(title="Tags", border_style="green")
        tag_table.add_column("Tag", style="bold")
        tag_table.add_column("Posts", justify="right")
        for tag, count in report.tags.items():
            tag_table.add_row(escape(tag), str(count))
        console.print(tag_table)

    for issue in report.errors + report.missing_images:
        console.print(f"[red]✗[/] {escape(issue.path)}: {escape(issue.message)}")

    if not report.ok:
        sys.exit(1)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP extraction service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Disclosure Parser Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_results(result):
    """Display extraction results in formatted tables."""
    console.print()

    filing = result.filing
    table = Table(title="Filing Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Name", filing.name or "(auto)")
    table.add_row("Source PDF", filing.source_pdf)
    if filing.source_url:
        table.add_row("Source URL", filing.source_url)
    table.add_row("Total Pages", str(filing.total_pages))
    table.add_row("File Hash", filing.file_hash[:16] + "...")
    console.print(table)
    console.print()

    tables = Table(title="Extracted Tables", border_style="cyan")
    tables.add_column("Page", justify="right")
    tables.add_column("Rows", justify="right")
    tables.add_column("Columns", justify="right")
    tables.add_column("First Row")
    for extracted in result.tables:
        first = extracted.rows[0].cells if extracted.rows else []
        tables.add_row(
            str(extracted.page_number),
            str(extracted.row_count),
            str(extracted.column_count),
            " | ".join(first)[:80],
        )
    console.print(tables)
    console.print()

    _display_validation_table(result.validation.model_dump())

    v = result.version
    console.print(
        f"[dim]Extractor v{v.extractor_version} | "
        f"Pages: {v.page_count} | "
        f"Tables: {v.table_count} | "
        f"Timestamp: {v.extraction_timestamp}[/]"
    )
    console.print()


def _display_validation_table(validation: dict):
    """Display validation report as a rich table."""
    table = Table(title="Validation Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    processed = validation.get("pages_processed", 0)
    with_tables = validation.get("pages_with_tables", 0)
    rate = validation.get("success_rate", 0)

    table.add_row(
        "Pages Processed",
        str(processed),
        "[green]✓[/]" if processed > 0 else "[red]✗[/]",
    )
    table.add_row(
        "Pages With Tables",
        f"{with_tables} ({rate}%)",
        "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]",
    )
    table.add_row("Total Rows", str(validation.get("total_rows", 0)), "")
    table.add_row("Total Words", str(validation.get("total_words", 0)), "")

    for label, key in [
        ("Empty Rows", "empty_rows"),
        ("Ragged Rows", "ragged_rows"),
        ("Low-Confidence Words", "low_confidence_words"),
    ]:
        count = validation.get(key, 0)
        table.add_row(label, str(count), status_icon(count))

    missing = validation.get("pages_without_table", [])
    table.add_row(
        "Pages Without Table",
        ", ".join(str(p) for p in missing) or "0",
        status_icon(len(missing)),
    )

    console.print(table)
    console.print()

    breakdown = validation.get("anomaly_breakdown", {})
    if breakdown:
        anomaly_table = Table(
            title="Anomaly Breakdown",
            border_style="yellow",
        )
        anomaly_table.add_column("Type", style="bold")
        anomaly_table.add_column("Count", justify="right")

        for atype, count in sorted(breakdown.items()):
            anomaly_table.add_row(atype, str(count))

        console.print(anomaly_table)
        console.print()


def _display_batch_summary(results, errors):
    """One line per filing, failures last."""
    console.print()

    table = Table(title="Batch Summary", border_style="cyan")
    table.add_column("Filing", style="bold")
    table.add_column("Pages", justify="right")
    table.add_column("Tables", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Anomalies", justify="right")
    table.add_column("Status", justify="center")

    for name, result in results:
        report = result.validation
        missing = len(report.pages_without_table)
        table.add_row(
            name,
            str(report.pages_processed),
            str(len(result.tables)),
            str(report.total_rows),
            str(len(result.anomalies)),
            "[green]✓[/]" if not missing else f"[yellow]{missing} without table[/]",
        )

    for name, error in errors:
        table.add_row(name, "-", "-", "-", "-", f"[red]✗ {escape(error)}[/]")

    console.print(table)
    console.print(
        f"[bold]{sum(len(r.tables) for _, r in results)}[/] tables from "
        f"{len(results)} filings, {len(errors)} failed"
    )
    console.print()


# ─── Entry point (for python -m disclosure_parser.cli) ────────────────────────


if __name__ == "__main__":
    cli()
