"""
Exporter
========
Renders parsed documents to JSON, HTML and Markdown artifacts.

Usage:
    exporter = Exporter("site/", formats=[ExportFormat.HTML])
    written = exporter.export(document)
    exporter.export_index(documents)

Each export call writes the artifacts for one document. A destination that
cannot be written raises WriteError and aborts only that call.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional

import markdown
from jinja2 import Environment, FileSystemLoader, select_autoescape

from . import __version__
from . import storage
from .models import ExportFormat, ParsedDocument, QuestionEntry
from .state_machine import QUESTION_HEADING_PATTERN

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

INDEX_NAME = "index"

# Backtick runs at the start of a code line; a fence must be longer
_BACKTICK_RUN = re.compile(r"^\s{0,3}(`+)", re.MULTILINE)


def _markdown_filter(text: str) -> str:
    return markdown.markdown(text, extensions=["fenced_code", "tables"])


def create_environment() -> Environment:
    """Jinja environment with the Markdown prose filter registered."""
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["markdown"] = _markdown_filter
    return env


# ─── Renderers ────────────────────────────────────────────────────────────────


def render_json(document: ParsedDocument) -> dict:
    """Document as a JSON-ready dict."""
    return document.model_dump(mode="json")


def render_entry_markdown(entry: QuestionEntry) -> str:
    """
    Canonical Markdown for one entry: heading, explanation, then code blocks.
    Parsing the output yields an equivalent entry.
    """
    parts = [f"{'#' * entry.level} Q{entry.number}. {entry.title}"]
    if entry.explanation:
        parts.append(entry.explanation)

    for block in entry.code_blocks:
        fence = _fence_for(block.code)
        if block.code:
            parts.append(f"{fence}{block.language}\n{block.code}\n{fence}")
        else:
            parts.append(f"{fence}{block.language}\n{fence}")

    return "\n\n".join(parts) + "\n"


def render_markdown(document: ParsedDocument) -> str:
    """Whole document re-rendered in canonical form."""
    parts = []
    if document.title and not QUESTION_HEADING_PATTERN.match(f"# {document.title}"):
        parts.append(f"# {document.title}\n")
    parts.extend(render_entry_markdown(e) for e in document.entries)
    return "\n".join(parts)


def _fence_for(code: str) -> str:
    longest = max((len(m) for m in _BACKTICK_RUN.findall(code)), default=0)
    return "`" * max(3, longest + 1)


# ─── Exporter ─────────────────────────────────────────────────────────────────


class Exporter:
    """
    Writes artifacts for parsed documents under an output directory.
    """

    def __init__(
        self,
        output_dir: str | Path,
        formats: Optional[Iterable[ExportFormat]] = None,
    ):
        self.output_dir = Path(output_dir)
        self.formats = list(formats) if formats else [ExportFormat.JSON]
        self.env = create_environment()
        self._prepared: Optional[Path] = None
        # Artifact paths handed out so far, per (source, format)
        self._assigned: dict[tuple[str, ExportFormat], Path] = {}
        self._claimed: dict[Path, str] = {}

    def _root(self) -> Path:
        if self._prepared is None:
            self._prepared = storage.prepare_output_dir(self.output_dir)
        return self._prepared

    def artifact_path(self, document: ParsedDocument, fmt: ExportFormat) -> Path:
        """
        Output file for a document in one format.

        Sources whose sanitized names collide ("a b.md" and "a_b.md") get
        numbered names ("a_b-2.json"), first come first served. The same
        document always gets the same path.
        """
        key = (document.source, fmt)
        if key in self._assigned:
            return self._assigned[key]

        root = self._root()
        base = storage.artifact_path(root, document.source, fmt.suffix)
        # Keep a top-level index.md from overwriting the corpus index
        if base.parent == root and base.stem == INDEX_NAME:
            base = base.with_name(f"{INDEX_NAME}-document{fmt.suffix}")

        path = base
        counter = 2
        while path in self._claimed:
            path = base.with_name(f"{base.stem}-{counter}{fmt.suffix}")
            counter += 1

        if path != base:
            logger.warning(
                f"{document.source}: {base.name} is already used by "
                f"{self._claimed[base]}, writing {path.name} instead"
            )

        self._claimed[path] = document.source
        self._assigned[key] = path
        return path

    def render_html(
        self,
        document: ParsedDocument,
        index_link: Optional[str] = None,
    ) -> str:
        template = self.env.get_template("document.html")
        return template.render(document=document, index_link=index_link)

    def export(self, document: ParsedDocument) -> list[str]:
        """
        Write one artifact per configured format for a document.

        Returns:
            Paths of the written files.

        Raises:
            WriteError: If any artifact cannot be written.
        """
        written = []
        for fmt in self.formats:
            path = self.artifact_path(document, fmt)

            if fmt == ExportFormat.JSON:
                written.append(storage.write_json(path, render_json(document)))
            elif fmt == ExportFormat.HTML:
                index_file = self._root() / f"{INDEX_NAME}.html"
                written.append(storage.write_text(
                    path,
                    self.render_html(
                        document,
                        index_link=storage.relative_link(path, index_file),
                    ),
                ))
            elif fmt == ExportFormat.MARKDOWN:
                written.append(storage.write_text(path, render_markdown(document)))

        logger.debug(f"Exported {document.source}: {len(written)} files")
        return written

    def export_index(
        self,
        documents: list[ParsedDocument],
        title: str = "Question Index",
    ) -> list[str]:
        """
        Write the corpus index (JSON always, HTML when HTML export is on).

        Raises:
            WriteError: If the index cannot be written.
        """
        root = self._root()
        written = []

        index_json = root / f"{INDEX_NAME}.json"
        entries = []
        for document in documents:
            artifacts = {
                fmt.value: storage.relative_link(
                    index_json, self.artifact_path(document, fmt)
                )
                for fmt in self.formats
            }
            entries.append({
                "source": document.source,
                "title": document.title,
                "entry_count": document.entry_count,
                "artifacts": artifacts,
                "link": artifacts.get(ExportFormat.HTML.value),
                "questions": [
                    {"number": e.number, "title": e.title, "anchor": e.anchor}
                    for e in document.entries
                ],
            })

        written.append(storage.write_json(index_json, {
            "title": title,
            "tool_version": __version__,
            "total_entries": sum(d.entry_count for d in documents),
            "documents": entries,
        }))

        if ExportFormat.HTML in self.formats:
            template = self.env.get_template("index.html")
            html = template.render(
                title=title,
                documents=entries,
                total_entries=sum(d.entry_count for d in documents),
            )
            written.append(
                storage.write_text(root / f"{INDEX_NAME}.html", html)
            )

        return written
