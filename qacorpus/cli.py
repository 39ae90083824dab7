"""
CLI Interface
=============
Command-line interface for the Q&A corpus tool.

Usage:
    qacorpus build <input_dir> <output_dir> [options]
    qacorpus validate <input_dir> [options]
    qacorpus show <markdown_file> [--number N]

Exit codes: 0 on success, 1 if any file failed to read, failed a --strict
parse, or an export failed.
Diagnostics are printed to standard error.
"""

from __future__ import annotations

import json
import sys
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .engine import BuildConfig, CorpusEngine
from .errors import NotFoundError, ReadError
from .loader import ContentLoader
from .models import (
    BuildResult,
    Diagnostic,
    ExportFormat,
    QuestionEntry,
    Severity,
)
from .state_machine import StateMachineParser
from .validator import ValidationEngine

console = Console()
err_console = Console(stderr=True)

SEVERITY_STYLES = {
    Severity.INFO: "dim",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}


@click.group()
@click.version_option(version=__version__, prog_name="qacorpus")
def cli():
    """Q&A Corpus Tool — parse, validate and export Markdown interview Q&A."""
    pass


@cli.command()
@click.argument("input_dir", type=click.Path())
@click.argument("output_dir", type=click.Path(file_okay=False))
@click.option(
    "--format", "-f", "formats",
    multiple=True,
    default=("json",),
    type=click.Choice([f.value for f in ExportFormat]),
    help="Artifact format (repeatable)",
)
@click.option(
    "--pattern",
    default="*.md",
    help="Glob pattern for source files",
)
@click.option(
    "--flat",
    is_flag=True,
    default=False,
    help="Do not descend into subdirectories",
)
@click.option(
    "--encoding",
    default="utf-8",
    help="Source file encoding",
)
@click.option(
    "--workers", "-j",
    default=1,
    type=click.IntRange(min=1),
    help="Number of parallel parse workers (1 = sequential)",
)
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Fail a file on its first parse warning",
)
@click.option(
    "--no-index",
    is_flag=True,
    default=False,
    help="Skip writing the corpus index",
)
@click.option(
    "--index-title",
    default="Question Index",
    help="Title of the corpus index",
)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only the JSON build result to stdout",
)
def build(
    input_dir: str,
    output_dir: str,
    formats: tuple[str, ...],
    pattern: str,
    flat: bool,
    encoding: str,
    workers: int,
    strict: bool,
    no_index: bool,
    index_title: str,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Parse every Markdown file in INPUT_DIR and export to OUTPUT_DIR."""

    if json_output:
        log_level = "ERROR"

    config = BuildConfig(
        input_dir=input_dir,
        output_dir=output_dir,
        formats=[ExportFormat(f) for f in dict.fromkeys(formats)],
        pattern=pattern,
        recursive=not flat,
        encoding=encoding,
        workers=workers,
        strict=strict,
        write_index=not no_index,
        index_title=index_title,
        log_level=log_level,
        log_file=log_file,
    )

    result = _run(config, "Building", quiet=json_output)

    if json_output:
        click.echo(json.dumps(
            result.model_dump(mode="json"),
            indent=2,
            ensure_ascii=False,
        ))
    else:
        _display_summary(result)

    _print_diagnostics(result.diagnostics)
    sys.exit(0 if result.ok else 1)


@cli.command()
@click.argument("input_dir", type=click.Path())
@click.option("--pattern", default="*.md", help="Glob pattern for source files")
@click.option("--flat", is_flag=True, default=False, help="No subdirectories")
@click.option("--encoding", default="utf-8", help="Source file encoding")
@click.option(
    "--workers", "-j",
    default=1,
    type=click.IntRange(min=1),
    help="Number of parallel parse workers",
)
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Fail a file on its first parse warning",
)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
def validate(
    input_dir: str,
    pattern: str,
    flat: bool,
    encoding: str,
    workers: int,
    strict: bool,
    log_level: str,
):
    """Validate the Markdown files in INPUT_DIR without writing anything."""

    config = BuildConfig(
        input_dir=input_dir,
        output_dir=None,
        pattern=pattern,
        recursive=not flat,
        encoding=encoding,
        workers=workers,
        strict=strict,
        log_level=log_level,
    )

    result = _run(config, "Validating", quiet=False)
    _display_summary(result)
    _print_diagnostics(result.diagnostics)
    sys.exit(0 if result.ok else 1)


@cli.command()
@click.argument("markdown_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--encoding", default="utf-8", help="Source file encoding")
@click.option(
    "--number", "-n",
    default=None,
    type=click.IntRange(min=1),
    help="Show the full explanation and code of one question",
)
def show(markdown_file: str, encoding: str, number: Optional[int]):
    """Display the question entries parsed from one Markdown file."""

    loader = ContentLoader(markdown_file, encoding=encoding)
    try:
        source = loader.read(loader.root)
    except ReadError as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}", soft_wrap=True)
        sys.exit(1)

    document = StateMachineParser().parse(source.text, source=source.relative_path)
    diagnostics = ValidationEngine().validate([document])

    if number is not None:
        entry = document.get(number)
        if entry is None:
            err_console.print(
                f"[red]Error:[/] no question {number} in "
                f"{escape(source.relative_path)}",
                soft_wrap=True,
            )
            sys.exit(1)
        _display_entry(entry)
        _print_diagnostics(
            [d for d in diagnostics if d.question_number == number]
        )
        return

    table = Table(
        title=escape(document.title or source.relative_path),
        border_style="cyan",
    )
    table.add_column("#", justify="right", style="bold")
    table.add_column("Title")
    table.add_column("Line", justify="right")
    table.add_column("Explanation", justify="right")
    table.add_column("Code Blocks")

    for entry in document.entries:
        table.add_row(
            str(entry.number),
            escape(entry.title),
            str(entry.line),
            f"{len(entry.explanation)} chars" if entry.has_explanation else "[yellow]empty[/]",
            ", ".join(b.language for b in entry.code_blocks) or "-",
        )

    console.print()
    console.print(table)
    console.print(f"[bold]Total:[/] {len(document.entries)} questions")
    console.print()

    _print_diagnostics(diagnostics)


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _run(config: BuildConfig, verb: str, quiet: bool) -> BuildResult:
    """Run the engine, with a progress display unless quiet."""
    try:
        engine = CorpusEngine(config)

        if quiet:
            return engine.run()

        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Q&A Corpus Tool v{__version__}[/]\n"
                f"[dim]{verb}: {escape(str(config.input_dir))}[/]",
                border_style="cyan",
            )
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"{verb}...", total=None)
            return engine.run(
                progress_callback=lambda name: progress.update(
                    task, description=f"Parsed: {name}"
                ),
            )

    except NotFoundError as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}", soft_wrap=True)
        sys.exit(1)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _print_diagnostics(diagnostics: list[Diagnostic]):
    """Print diagnostics to standard error."""
    for diagnostic in diagnostics:
        style = SEVERITY_STYLES[diagnostic.severity]
        err_console.print(
            diagnostic.format(),
            style=style,
            markup=False,
            highlight=False,
            soft_wrap=True,
        )


def _display_entry(entry: QuestionEntry):
    """Display one question with its explanation and code blocks."""
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Q{entry.number}. {escape(entry.title)}[/]\n"
            f"[dim]{escape(entry.source or '')} line {entry.line}[/]",
            border_style="cyan",
        )
    )
    console.print(
        escape(entry.explanation) if entry.has_explanation
        else "[yellow]No explanation[/]"
    )
    for block in entry.code_blocks:
        console.print()
        console.print(f"[dim]{escape(block.language)}[/]")
        console.print(Syntax(block.code, block.language, word_wrap=True))
    console.print()


def _display_summary(result: BuildResult):
    """Display per-document counts and the overall summary."""
    console.print()

    table = Table(title="Build Summary", border_style="cyan")
    table.add_column("Document", style="bold")
    table.add_column("Questions", justify="right")
    table.add_column("Code Blocks", justify="right")
    table.add_column("Diagnostics", justify="right")
    table.add_column("Status", justify="center")

    per_source: dict[str, int] = {}
    for diagnostic in result.diagnostics:
        if diagnostic.severity != Severity.INFO and diagnostic.source:
            per_source[diagnostic.source] = per_source.get(diagnostic.source, 0) + 1

    for document in result.documents:
        issues = per_source.get(document.source, 0)
        table.add_row(
            escape(document.source),
            str(document.entry_count),
            str(document.code_block_count),
            str(issues),
            "[green]✓[/]" if issues == 0 else "[yellow]⚠[/]",
        )

    for path in result.read_failures + result.parse_failures:
        table.add_row(escape(path), "-", "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {result.entry_count} questions from "
        f"{len(result.documents)} documents, "
        f"{result.report.issue_count} issues, "
        f"{len(result.read_failures)} read failures"
        + (
            f", {len(result.parse_failures)} parse failures"
            if result.parse_failures else ""
        )
        + (
            f", {len(result.write_failures)} write failures"
            if result.write_failures else ""
        )
    )
    if result.written_files:
        console.print(
            f"[dim]{len(result.written_files)} files written to "
            f"{result.output_dir}[/]"
        )
    console.print()


# ─── Entry point (for python -m qacorpus.cli) ─────────────────────────────────


if __name__ == "__main__":
    cli()
