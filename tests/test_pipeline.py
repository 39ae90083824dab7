"""
Test Suite for the Corpus Pipeline
==================================
Filesystem-level tests for the loader, exporter, engine and CLI.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import pytest
from click.testing import CliRunner

from qacorpus.cli import cli
from qacorpus.engine import BuildConfig, CorpusEngine
from qacorpus.errors import NotFoundError, ReadError, WriteError
from qacorpus.exporter import Exporter, render_json
from qacorpus.loader import ContentLoader
from qacorpus.models import DiagnosticCode, ExportFormat, Severity
from qacorpus.state_machine import parse_markdown
from qacorpus import storage


OOP_DOC = """\
# OOP Questions

## Q1. What is encapsulation?

Encapsulation hides **internal state** behind a public surface.

```csharp
public class Account
{
    private decimal _balance;
    public decimal Balance => _balance;
}
```

## Q2. What is a generic type?

Generic types take type parameters.

```csharp
var numbers = new List<int> { 1, 2, 3 };
```
"""

ASYNC_DOC = """\
# Async

## Q1. What does await do?

It suspends the method until the task completes.
"""


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    root = tmp_path / "corpus"
    (root / "advanced").mkdir(parents=True)
    (root / "oop.md").write_text(OOP_DOC, encoding="utf-8")
    (root / "advanced" / "async.md").write_text(ASYNC_DOC, encoding="utf-8")
    (root / "notes.txt").write_text("## Q1. Not markdown\n\nIgnored.\n", encoding="utf-8")
    return root


def _write_bad_file(root: Path) -> Path:
    bad = root / "broken.md"
    bad.write_bytes(b"## Q1. Broken\n\n\xff\xfe invalid utf-8\n")
    return bad


def _write_duplicate_file(root: Path) -> Path:
    dup = root / "dup.md"
    dup.write_text("## Q1. A\n\nx\n\n## Q1. B\n\ny\n", encoding="utf-8")
    return dup


def _remove_file_handlers(log_file: Path) -> int:
    """Detach and close the package's handlers for log_file."""
    package_logger = logging.getLogger("qacorpus")
    handlers = [
        h for h in package_logger.handlers
        if isinstance(h, logging.FileHandler)
        and h.baseFilename == os.path.abspath(log_file)
    ]
    for handler in handlers:
        package_logger.removeHandler(handler)
        handler.close()
    return len(handlers)


# ═══════════════════════════════════════════════════════════════════════════════
# LOADER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestContentLoader:
    """Test the content loader."""

    def test_missing_path(self, tmp_path: Path):
        with pytest.raises(NotFoundError) as exc_info:
            ContentLoader(tmp_path / "nope")
        assert isinstance(exc_info.value, FileNotFoundError)

    def test_loads_markdown_in_order(self, corpus: Path):
        sources = list(ContentLoader(corpus))
        assert [s.relative_path for s in sources] == ["advanced/async.md", "oop.md"]
        assert sources[1].text == OOP_DOC

    def test_flat_scan(self, corpus: Path):
        sources = list(ContentLoader(corpus, recursive=False))
        assert [s.relative_path for s in sources] == ["oop.md"]

    def test_custom_pattern(self, corpus: Path):
        sources = list(ContentLoader(corpus, pattern="*.txt"))
        assert [s.relative_path for s in sources] == ["notes.txt"]

    def test_restartable(self, corpus: Path):
        loader = ContentLoader(corpus)
        assert list(loader) == list(loader)

    def test_lazy(self, corpus: Path):
        loader = ContentLoader(corpus)
        iterator = iter(loader)
        first = next(iterator)
        assert first.relative_path == "advanced/async.md"

    def test_unreadable_file_is_skipped(self, corpus: Path):
        bad = _write_bad_file(corpus)
        loader = ContentLoader(corpus)

        sources = list(loader)

        assert [s.relative_path for s in sources] == ["advanced/async.md", "oop.md"]
        assert len(loader.errors) == 1
        assert isinstance(loader.errors[0], ReadError)
        assert loader.errors[0].path == str(bad)

    def test_errors_reset_between_scans(self, corpus: Path):
        bad = _write_bad_file(corpus)
        loader = ContentLoader(corpus)
        list(loader)
        bad.unlink()
        list(loader)
        assert loader.errors == []

    def test_byte_order_mark_stripped(self, tmp_path: Path):
        path = tmp_path / "bom.md"
        path.write_bytes("\ufeff## Q1. BOM\n\nText.\n".encode("utf-8"))
        source = next(iter(ContentLoader(tmp_path)))
        assert source.text.startswith("## Q1.")

    def test_single_file_root(self, corpus: Path):
        sources = list(ContentLoader(corpus / "oop.md"))
        assert len(sources) == 1
        assert sources[0].relative_path == "oop.md"


# ═══════════════════════════════════════════════════════════════════════════════
# EXPORTER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestExporter:
    """Test artifact rendering and writing."""

    def test_json_export(self, tmp_path: Path):
        doc = parse_markdown(OOP_DOC, source="oop.md")
        written = Exporter(tmp_path / "out").export(doc)

        out_file = tmp_path / "out" / "oop.json"
        assert written == [str(out_file.absolute())]
        data = json.loads(out_file.read_text(encoding="utf-8"))
        assert data["title"] == "OOP Questions"
        assert data["entry_count"] == 2
        assert data["entries"][1]["code_blocks"][0]["language"] == "csharp"
        assert data == render_json(doc)

    def test_html_export(self, tmp_path: Path):
        doc = parse_markdown(OOP_DOC, source="oop.md")
        Exporter(tmp_path, formats=[ExportFormat.HTML]).export(doc)

        html = (tmp_path / "oop.html").read_text(encoding="utf-8")
        assert 'id="q1"' in html
        assert 'href="#q2"' in html
        assert "<strong>internal state</strong>" in html
        assert 'class="language-csharp"' in html
        assert "new List&lt;int&gt;" in html
        assert 'href="index.html"' in html

    def test_markdown_export_reparses(self, tmp_path: Path):
        doc = parse_markdown(OOP_DOC, source="oop.md")
        Exporter(tmp_path, formats=[ExportFormat.MARKDOWN]).export(doc)

        reparsed = parse_markdown((tmp_path / "oop.md").read_text(encoding="utf-8"))
        assert reparsed.title == doc.title
        assert all(a.equivalent(b) for a, b in zip(doc.entries, reparsed.entries))

    def test_mirrors_source_layout(self, tmp_path: Path):
        doc = parse_markdown(ASYNC_DOC, source="advanced/async.md")
        Exporter(tmp_path, formats=[ExportFormat.JSON, ExportFormat.HTML]).export(doc)

        assert (tmp_path / "advanced" / "async.json").is_file()
        html = (tmp_path / "advanced" / "async.html").read_text(encoding="utf-8")
        assert 'href="../index.html"' in html

    def test_index(self, tmp_path: Path):
        docs = [
            parse_markdown(ASYNC_DOC, source="advanced/async.md"),
            parse_markdown(OOP_DOC, source="oop.md"),
        ]
        exporter = Exporter(tmp_path, formats=[ExportFormat.HTML])
        written = exporter.export_index(docs, title="C# Questions")

        assert len(written) == 2
        index = json.loads((tmp_path / "index.json").read_text(encoding="utf-8"))
        assert index["title"] == "C# Questions"
        assert index["total_entries"] == 3
        assert index["documents"][0]["link"] == "advanced/async.html"
        assert index["documents"][1]["questions"][1] == {
            "number": 2,
            "title": "What is a generic type?",
            "anchor": "q2",
        }

        html = (tmp_path / "index.html").read_text(encoding="utf-8")
        assert 'href="oop.html#q2"' in html

    def test_index_json_only_without_html(self, tmp_path: Path):
        doc = parse_markdown(ASYNC_DOC, source="async.md")
        written = Exporter(tmp_path).export_index([doc])
        assert written == [str((tmp_path / "index.json").absolute())]
        assert not (tmp_path / "index.html").exists()

    def test_source_named_index_does_not_clobber(self, tmp_path: Path):
        doc = parse_markdown(ASYNC_DOC, source="index.md")
        exporter = Exporter(tmp_path)
        exporter.export(doc)
        exporter.export_index([doc])

        assert (tmp_path / "index-document.json").is_file()
        index = json.loads((tmp_path / "index.json").read_text(encoding="utf-8"))
        assert index["documents"][0]["artifacts"] == {"json": "index-document.json"}

    def test_unwritable_destination(self, tmp_path: Path):
        blocker = tmp_path / "out"
        blocker.write_text("a file, not a directory", encoding="utf-8")
        doc = parse_markdown(ASYNC_DOC, source="async.md")

        with pytest.raises(WriteError):
            Exporter(blocker).export(doc)

    def test_artifact_path_sanitizes(self, tmp_path: Path):
        path = storage.artifact_path(tmp_path, "../odd name?.md", ".json")
        assert path == tmp_path / "odd_name_.json"

    def test_colliding_names_get_unique_paths(self, tmp_path: Path):
        first = parse_markdown(OOP_DOC, source="a b.md")
        second = parse_markdown(ASYNC_DOC, source="a_b.md")
        exporter = Exporter(tmp_path)
        exporter.export(first)
        exporter.export(second)
        exporter.export_index([first, second])

        data = json.loads((tmp_path / "a_b.json").read_text(encoding="utf-8"))
        assert data["source"] == "a b.md"
        data = json.loads((tmp_path / "a_b-2.json").read_text(encoding="utf-8"))
        assert data["source"] == "a_b.md"

        index = json.loads((tmp_path / "index.json").read_text(encoding="utf-8"))
        assert [d["artifacts"]["json"] for d in index["documents"]] == [
            "a_b.json",
            "a_b-2.json",
        ]

    def test_same_stem_different_extension(self, tmp_path: Path):
        exporter = Exporter(tmp_path, formats=[ExportFormat.JSON, ExportFormat.HTML])
        first = exporter.export(parse_markdown(OOP_DOC, source="x.md"))
        second = exporter.export(parse_markdown(ASYNC_DOC, source="x.markdown"))

        assert [Path(p).name for p in first] == ["x.json", "x.html"]
        assert [Path(p).name for p in second] == ["x-2.json", "x-2.html"]

    def test_artifact_path_is_stable_per_document(self, tmp_path: Path):
        doc = parse_markdown(ASYNC_DOC, source="async.md")
        exporter = Exporter(tmp_path)
        first = exporter.artifact_path(doc, ExportFormat.JSON)
        assert exporter.artifact_path(doc, ExportFormat.JSON) == first


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCorpusEngine:
    """Test the full pipeline."""

    def test_build(self, corpus: Path, tmp_path: Path):
        out = tmp_path / "site"
        config = BuildConfig(
            input_dir=str(corpus),
            output_dir=str(out),
            formats=[ExportFormat.JSON, ExportFormat.HTML],
        )
        result = CorpusEngine(config).run()

        assert result.ok
        assert result.entry_count == 3
        assert [d.source for d in result.documents] == ["advanced/async.md", "oop.md"]
        assert result.diagnostics == []
        assert (out / "oop.html").is_file()
        assert (out / "advanced" / "async.json").is_file()
        assert (out / "index.json").is_file()
        assert (out / "index.html").is_file()
        assert len(result.written_files) == 6
        assert result.report.total_entries == 3

    def test_validate_only(self, corpus: Path):
        result = CorpusEngine(BuildConfig(input_dir=str(corpus))).run()
        assert result.ok
        assert result.written_files == []
        assert result.output_dir is None

    def test_read_failure_is_recorded(self, corpus: Path):
        bad = _write_bad_file(corpus)
        result = CorpusEngine(BuildConfig(input_dir=str(corpus))).run()

        assert not result.ok
        assert result.read_failures == [str(bad)]
        assert result.entry_count == 3
        read_errors = [
            d for d in result.diagnostics if d.code == DiagnosticCode.READ_ERROR
        ]
        assert len(read_errors) == 1

    def test_parallel_matches_sequential(self, corpus: Path):
        for n in range(5):
            (corpus / f"extra{n}.md").write_text(
                f"## Q1. Extra {n}\n\nBody {n}.\n", encoding="utf-8"
            )
        sequential = CorpusEngine(BuildConfig(input_dir=str(corpus))).run()
        parallel = CorpusEngine(BuildConfig(input_dir=str(corpus), workers=4)).run()

        assert [d.source for d in parallel.documents] == [
            d.source for d in sequential.documents
        ]
        assert parallel.entry_count == sequential.entry_count

    def test_progress_callback(self, corpus: Path):
        seen = []
        CorpusEngine(BuildConfig(input_dir=str(corpus))).run(
            progress_callback=seen.append
        )
        assert seen == ["advanced/async.md", "oop.md"]

    def test_write_failure_does_not_stop_build(self, corpus: Path, tmp_path: Path):
        blocker = tmp_path / "out"
        blocker.write_text("", encoding="utf-8")
        config = BuildConfig(input_dir=str(corpus), output_dir=str(blocker))

        result = CorpusEngine(config).run()

        assert not result.ok
        assert result.entry_count == 3
        assert len(result.write_failures) == 3  # two documents + index
        assert result.read_failures == []

    def test_missing_input(self, tmp_path: Path):
        with pytest.raises(NotFoundError):
            CorpusEngine(BuildConfig(input_dir=str(tmp_path / "missing"))).run()

    def test_log_file(self, corpus: Path, tmp_path: Path):
        log_file = tmp_path / "logs" / "build.log"
        config = BuildConfig(
            input_dir=str(corpus),
            log_level="INFO",
            log_file=str(log_file),
        )
        try:
            CorpusEngine(config).run()
        finally:
            _remove_file_handlers(log_file)
        assert "VALIDATION REPORT" in log_file.read_text(encoding="utf-8")

    def test_log_file_handler_added_once(self, corpus: Path, tmp_path: Path):
        log_file = tmp_path / "build.log"
        config = BuildConfig(
            input_dir=str(corpus),
            log_level="INFO",
            log_file=str(log_file),
        )
        try:
            CorpusEngine(config).run()
            CorpusEngine(config).run()
        finally:
            removed = _remove_file_handlers(log_file)

        assert removed == 1
        assert log_file.read_text(encoding="utf-8").count("Starting build of") == 2

    def test_colliding_sources_are_all_exported(self, tmp_path: Path):
        root = tmp_path / "corpus"
        root.mkdir()
        (root / "x.md").write_text(OOP_DOC, encoding="utf-8")
        (root / "x.markdown").write_text(ASYNC_DOC, encoding="utf-8")
        out = tmp_path / "out"
        config = BuildConfig(input_dir=str(root), output_dir=str(out), pattern="*")

        result = CorpusEngine(config).run()

        assert result.ok
        assert len(set(result.written_files)) == len(result.written_files) == 3
        index = json.loads((out / "index.json").read_text(encoding="utf-8"))
        links = {d["source"]: d["artifacts"]["json"] for d in index["documents"]}
        assert links == {"x.markdown": "x.json", "x.md": "x-2.json"}

    def test_strict_mode_fails_file(self, corpus: Path):
        _write_duplicate_file(corpus)
        config = BuildConfig(input_dir=str(corpus), strict=True)

        result = CorpusEngine(config).run()

        assert not result.ok
        assert result.parse_failures == ["dup.md"]
        assert [d.source for d in result.documents] == ["advanced/async.md", "oop.md"]
        assert len(result.diagnostics) == 1
        diagnostic = result.diagnostics[0]
        assert diagnostic.severity == Severity.ERROR
        assert diagnostic.code == DiagnosticCode.DUPLICATE_QUESTION_NUMBER
        assert diagnostic.source == "dup.md"
        assert diagnostic.line == 1

    def test_strict_mode_parallel(self, corpus: Path):
        _write_duplicate_file(corpus)
        config = BuildConfig(input_dir=str(corpus), strict=True, workers=3)

        result = CorpusEngine(config).run()

        assert result.parse_failures == ["dup.md"]
        assert [d.source for d in result.documents] == ["advanced/async.md", "oop.md"]

    def test_lenient_mode_keeps_file(self, corpus: Path):
        _write_duplicate_file(corpus)
        result = CorpusEngine(BuildConfig(input_dir=str(corpus))).run()

        assert result.ok
        assert result.parse_failures == []
        assert "dup.md" in [d.source for d in result.documents]


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:
    """Test the command-line interface."""

    def test_build_success(self, corpus: Path, tmp_path: Path):
        out = tmp_path / "site"
        result = CliRunner().invoke(
            cli, ["build", str(corpus), str(out), "-f", "html", "-f", "markdown"]
        )

        assert result.exit_code == 0, result.output
        assert "Total:" in result.output
        assert "3 questions" in result.output
        assert (out / "oop.html").is_file()
        assert (out / "oop.md").is_file()
        assert (out / "index.html").is_file()

    def test_build_read_failure_exits_1(self, corpus: Path, tmp_path: Path):
        _write_bad_file(corpus)
        result = CliRunner().invoke(cli, ["build", str(corpus), str(tmp_path / "out")])

        assert result.exit_code == 1
        assert "broken.md" in result.output
        assert (tmp_path / "out" / "oop.json").is_file()

    def test_build_missing_input(self, tmp_path: Path):
        result = CliRunner().invoke(
            cli, ["build", str(tmp_path / "missing"), str(tmp_path / "out")]
        )
        assert result.exit_code == 1
        assert "Path not found" in result.output

    def test_build_prints_diagnostics(self, corpus: Path, tmp_path: Path):
        _write_duplicate_file(corpus)
        result = CliRunner().invoke(cli, ["build", str(corpus), str(tmp_path / "out")])

        assert result.exit_code == 0
        assert "superseded" in result.output

    def test_build_strict_exits_1(self, corpus: Path, tmp_path: Path):
        _write_duplicate_file(corpus)
        out = tmp_path / "out"
        result = CliRunner().invoke(cli, ["build", str(corpus), str(out), "--strict"])

        assert result.exit_code == 1
        assert "dup.md" in result.output
        assert (out / "oop.json").is_file()
        assert not (out / "dup.json").exists()

    def test_validate_strict_exits_1(self, corpus: Path):
        _write_duplicate_file(corpus)
        result = CliRunner().invoke(cli, ["validate", str(corpus), "--strict"])
        assert result.exit_code == 1
        assert "superseded" in result.output

    def test_build_json_output(self, corpus: Path, tmp_path: Path):
        result = CliRunner().invoke(
            cli,
            ["build", str(corpus), str(tmp_path / "out"), "--json-output", "--no-index"],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["entry_count"] == 3
        assert data["ok"] is True
        assert not (tmp_path / "out" / "index.json").exists()

    def test_validate(self, corpus: Path):
        result = CliRunner().invoke(cli, ["validate", str(corpus)])
        assert result.exit_code == 0, result.output
        assert "oop.md" in result.output

    def test_show(self, corpus: Path):
        result = CliRunner().invoke(cli, ["show", str(corpus / "oop.md")])
        assert result.exit_code == 0, result.output
        assert "encapsulation" in result.output
        assert "Total:" in result.output

    def test_show_one_question(self, corpus: Path):
        result = CliRunner().invoke(
            cli, ["show", str(corpus / "oop.md"), "--number", "2"]
        )
        assert result.exit_code == 0, result.output
        assert "What is a generic type?" in result.output
        assert "Generic types take type parameters." in result.output
        assert "new List<int>" in result.output
        assert "encapsulation" not in result.output

    def test_show_unknown_question(self, corpus: Path):
        result = CliRunner().invoke(cli, ["show", str(corpus / "oop.md"), "-n", "9"])
        assert result.exit_code == 1
        assert "no question 9" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output
