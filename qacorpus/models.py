"""
Data Models
===========
Pydantic models for parsed Q&A documents, diagnostics and build results.
All models are serializable to JSON for export.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ─── Enums ────────────────────────────────────────────────────────────────────


class Severity(str, Enum):
    """How serious a diagnostic is. Nothing here halts processing."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DiagnosticCode(str, Enum):
    """Kinds of issues reported during loading, parsing and validation."""
    DUPLICATE_QUESTION_NUMBER = "duplicate_question_number"
    EMPTY_EXPLANATION = "empty_explanation"
    UNTERMINATED_CODE_FENCE = "unterminated_code_fence"
    MISSING_TITLE = "missing_title"
    NUMBERING_GAP = "numbering_gap"
    NO_QUESTIONS = "no_questions"
    READ_ERROR = "read_error"
    WRITE_ERROR = "write_error"


class ExportFormat(str, Enum):
    """Supported export artifact formats."""
    JSON = "json"
    HTML = "html"
    MARKDOWN = "markdown"

    @property
    def suffix(self) -> str:
        return {
            ExportFormat.JSON: ".json",
            ExportFormat.HTML: ".html",
            ExportFormat.MARKDOWN: ".md",
        }[self]


# ─── Question Models ─────────────────────────────────────────────────────────


class CodeBlock(BaseModel):
    """A fenced code block, text kept verbatim."""
    model_config = ConfigDict(frozen=True)

    language: str = "text"
    code: str = ""
    closed: bool = Field(
        default=True,
        description="False when the fence was still open at end of file",
    )
    line: int = Field(default=1, ge=1)


class QuestionEntry(BaseModel):
    """
    A single parsed Q&A unit.
    Created once by the parser from a Markdown section and never mutated.
    """
    model_config = ConfigDict(frozen=True)

    number: int = Field(gt=0)
    title: str = Field(min_length=1)
    explanation: str = ""
    code_blocks: tuple[CodeBlock, ...] = ()
    level: int = Field(default=2, ge=1, le=6)
    line: int = Field(default=1, ge=1)
    source: str = ""

    @computed_field
    @property
    def anchor(self) -> str:
        """HTML anchor id for this entry."""
        return f"q{self.number}"

    @property
    def has_explanation(self) -> bool:
        return bool(self.explanation.strip())

    @property
    def has_unclosed_code(self) -> bool:
        return any(not block.closed for block in self.code_blocks)

    def equivalent(self, other: QuestionEntry) -> bool:
        """Compare content, ignoring where in a file the entry came from."""
        return (
            self.number == other.number
            and self.title == other.title
            and self.explanation == other.explanation
            and [(b.language, b.code) for b in self.code_blocks]
            == [(b.language, b.code) for b in other.code_blocks]
        )


# ─── Diagnostic Model ─────────────────────────────────────────────────────────


class Diagnostic(BaseModel):
    """A non-fatal issue found while loading, parsing or validating."""
    severity: Severity
    code: DiagnosticCode
    message: str
    source: Optional[str] = None
    line: Optional[int] = None
    question_number: Optional[int] = None

    def format(self) -> str:
        location = self.source or "<input>"
        if self.line is not None:
            location = f"{location}:{self.line}"
        return f"{location}: {self.severity.value}: {self.message}"


# ─── Document Models ─────────────────────────────────────────────────────────


class ParsedDocument(BaseModel):
    """All entries parsed from one Markdown file."""
    source: str
    title: str = ""
    entries: list[QuestionEntry] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    @computed_field
    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @computed_field
    @property
    def code_block_count(self) -> int:
        return sum(len(e.code_blocks) for e in self.entries)

    def get(self, number: int) -> Optional[QuestionEntry]:
        for entry in self.entries:
            if entry.number == number:
                return entry
        return None


class ValidationReport(BaseModel):
    """Summary of a validation run across one or more documents."""
    total_documents: int = 0
    total_entries: int = 0
    total_code_blocks: int = 0
    duplicate_question_numbers: dict[str, list[int]] = Field(
        default_factory=dict
    )
    missing_question_numbers: dict[str, list[int]] = Field(
        default_factory=dict
    )
    missing_question_counts: dict[str, int] = Field(default_factory=dict)
    entries_missing_explanation: dict[str, list[int]] = Field(
        default_factory=dict
    )
    languages: dict[str, int] = Field(default_factory=dict)
    diagnostic_breakdown: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def issue_count(self) -> int:
        return sum(
            count for code, count in self.diagnostic_breakdown.items()
            if code != DiagnosticCode.NUMBERING_GAP.value
            and code != DiagnosticCode.NO_QUESTIONS.value
        )


# ─── Build Result ─────────────────────────────────────────────────────────────


class BuildResult(BaseModel):
    """Complete output of a build run."""
    tool_version: str = "1.0.0"
    build_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    input_dir: str = ""
    output_dir: Optional[str] = None
    documents: list[ParsedDocument] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    report: ValidationReport = Field(default_factory=ValidationReport)
    read_failures: list[str] = Field(default_factory=list)
    parse_failures: list[str] = Field(default_factory=list)
    write_failures: list[str] = Field(default_factory=list)
    written_files: list[str] = Field(default_factory=list)
    elapsed_seconds: float = 0.0

    @computed_field
    @property
    def entry_count(self) -> int:
        return sum(len(d.entries) for d in self.documents)

    @computed_field
    @property
    def ok(self) -> bool:
        return not (
            self.read_failures or self.parse_failures or self.write_failures
        )
