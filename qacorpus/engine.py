"""
Corpus Engine
=============
Main orchestrator that combines loading, parsing, validation and export
into a complete build of a Markdown Q&A corpus.

Usage:
    engine = CorpusEngine(BuildConfig(input_dir="docs", output_dir="site"))
    result = engine.run()
    # result is a BuildResult with documents, diagnostics and written files

Architecture:
    Markdown files → ContentLoader → SourceFiles → StateMachineParser →
    ParsedDocuments → ValidationEngine → Exporter → artifacts
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import __version__
from .errors import ParseWarning, WriteError
from .exporter import Exporter
from .loader import ContentLoader, SourceFile
from .models import (
    BuildResult,
    Diagnostic,
    DiagnosticCode,
    ExportFormat,
    ParsedDocument,
    Severity,
)
from .state_machine import StateMachineParser
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class BuildConfig:
    """Configuration for a corpus build."""

    # Input
    input_dir: str = "."
    pattern: str = "*.md"
    recursive: bool = True
    encoding: str = "utf-8"

    # Output (None = validate only, nothing written)
    output_dir: Optional[str] = None
    formats: list[ExportFormat] = field(
        default_factory=lambda: [ExportFormat.JSON]
    )
    write_index: bool = True
    index_title: str = "Question Index"

    # Processing
    workers: int = 1
    strict: bool = False  # a parse warning fails the whole file

    # Logging
    log_level: str = "WARNING"
    log_file: Optional[str] = None


class CorpusEngine:
    """
    Runs the full pipeline:
        1. Load Markdown files (unreadable files are skipped and recorded)
        2. Parse each file into question entries
        3. Validate
        4. Export artifacts and the corpus index
    """

    def __init__(self, config: Optional[BuildConfig] = None):
        self.config = config or BuildConfig()
        self.parse_errors: list[tuple[str, ParseWarning]] = []
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        package_logger = logging.getLogger("qacorpus")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            package_logger.addHandler(console)
        else:
            for handler in package_logger.handlers:
                handler.setLevel(log_level)

        # File handler, once per log file across engines
        if self.config.log_file:
            log_path = os.path.abspath(self.config.log_file)
            if any(
                isinstance(h, logging.FileHandler) and h.baseFilename == log_path
                for h in package_logger.handlers
            ):
                return

            log_dir = Path(log_path).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            package_logger.addHandler(file_handler)

    def create_loader(self) -> ContentLoader:
        """
        Raises:
            NotFoundError: If the input path doesn't exist.
        """
        return ContentLoader(
            self.config.input_dir,
            pattern=self.config.pattern,
            recursive=self.config.recursive,
            encoding=self.config.encoding,
        )

    def parse_sources(
        self,
        sources: Iterable[SourceFile],
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> list[ParsedDocument]:
        """
        Parse files independently, on a thread pool when workers > 1.
        Results keep the order of the sources.

        In strict mode a file whose parse raises ParseWarning is left out
        and recorded in self.parse_errors.
        """
        def parse_one(source: SourceFile):
            parser = StateMachineParser(strict=self.config.strict)
            try:
                outcome = parser.parse(source.text, source=source.relative_path)
            except ParseWarning as e:
                outcome = e
            if progress_callback:
                progress_callback(source.relative_path)
            return source.relative_path, outcome

        if self.config.workers > 1:
            with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
                outcomes = list(pool.map(parse_one, sources))
        else:
            outcomes = [parse_one(source) for source in sources]

        self.parse_errors = []
        documents = []
        for path, outcome in outcomes:
            if isinstance(outcome, ParseWarning):
                logger.error(f"{path}: {outcome}")
                self.parse_errors.append((path, outcome))
            else:
                documents.append(outcome)
        return documents

    def run(
        self,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> BuildResult:
        """
        Build the corpus.

        Args:
            progress_callback: Called with each source name once parsed.

        Returns:
            BuildResult with documents, diagnostics and written files.

        Raises:
            NotFoundError: If the input path doesn't exist.
        """
        start_time = time.time()
        logger.info(f"Starting build of: {self.config.input_dir}")

        # ── Step 1: Load + parse ─────────────────────────────────────
        loader = self.create_loader()
        documents = self.parse_sources(loader, progress_callback)

        diagnostics = [
            Diagnostic(
                severity=Severity.ERROR,
                code=DiagnosticCode.READ_ERROR,
                message=str(error),
                source=error.path,
            )
            for error in loader.errors
        ]
        diagnostics.extend(
            Diagnostic(
                severity=Severity.ERROR,
                code=DiagnosticCode(error.code),
                message=str(error),
                source=path,
                line=error.line,
            )
            for path, error in self.parse_errors
        )

        # ── Step 2: Validation ───────────────────────────────────────
        validator = ValidationEngine()
        diagnostics.extend(validator.validate(documents))

        result = BuildResult(
            tool_version=__version__,
            input_dir=str(self.config.input_dir),
            output_dir=self.config.output_dir,
            documents=documents,
            read_failures=[error.path for error in loader.errors],
            parse_failures=[path for path, _ in self.parse_errors],
        )

        # ── Step 3: Export ───────────────────────────────────────────
        if self.config.output_dir:
            self._export(documents, result, diagnostics)

        result.diagnostics = diagnostics
        result.report = validator.build_report(documents, diagnostics)
        result.elapsed_seconds = round(time.time() - start_time, 3)

        logger.info(
            f"Build complete in {result.elapsed_seconds:.2f}s — "
            f"{result.entry_count} questions from {len(documents)} documents"
        )
        return result

    def _export(
        self,
        documents: list[ParsedDocument],
        result: BuildResult,
        diagnostics: list[Diagnostic],
    ):
        """Export each document; a WriteError aborts only that document."""
        exporter = Exporter(self.config.output_dir, formats=self.config.formats)

        for document in documents:
            try:
                result.written_files.extend(exporter.export(document))
            except WriteError as e:
                self._record_write_error(e, result, diagnostics, document.source)

        if self.config.write_index:
            try:
                result.written_files.extend(exporter.export_index(
                    documents, title=self.config.index_title
                ))
            except WriteError as e:
                self._record_write_error(e, result, diagnostics, None)

    def _record_write_error(
        self,
        error: WriteError,
        result: BuildResult,
        diagnostics: list[Diagnostic],
        source: Optional[str],
    ):
        logger.error(str(error))
        result.write_failures.append(error.path)
        diagnostics.append(Diagnostic(
            severity=Severity.ERROR,
            code=DiagnosticCode.WRITE_ERROR,
            message=str(error),
            source=source,
        ))
