"""
State Machine Parser
====================
Line-oriented state machine that splits a Markdown Q&A document into
numbered question entries.

A question starts at a numbered ATX heading ("## Q1. Title",
"### 12) Title", "## Question 3: Title") and runs until the next heading
at the same or a shallower level. Fenced code blocks inside a question are
lifted out verbatim; everything else becomes the explanation.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import ParseWarning
from .models import (
    CodeBlock,
    Diagnostic,
    DiagnosticCode,
    ParsedDocument,
    QuestionEntry,
    Severity,
)

logger = logging.getLogger(__name__)

# ─── Anchor Patterns ──────────────────────────────────────────────────────────

# Any ATX heading; the optional closing sequence must follow whitespace so
# titles like "What is C#" keep their trailing hash.
HEADING_PATTERN = re.compile(
    r"^\s{0,3}(#{1,6})(?:\s+(.*?))?(?:\s+#+)?\s*$"
)

# "## Q1. Title", "## Question 3: Title", "### 12) Title", "## 7 - Title"
QUESTION_HEADING_PATTERN = re.compile(
    r"^\s{0,3}(#{1,6})\s+"
    r"(?:Q(?:uestion)?\s*)?"
    r"([1-9]\d*)"
    r"(?:\s*[.:)\-]|\s|$)\s*"
    r"(.*?)(?:\s+#+)?\s*$",
    re.IGNORECASE,
)

# Opening fence: three or more backticks or tildes plus an optional info string
FENCE_OPEN_PATTERN = re.compile(
    r"^\s{0,3}(`{3,}|~{3,})\s*([^\s`]*)"
)

# Closing fence: fence characters only
FENCE_CLOSE_PATTERN = re.compile(
    r"^\s{0,3}(`{3,}|~{3,})\s*$"
)

DEFAULT_LANGUAGE = "text"


class ParserState(Enum):
    """Where the scanner currently is."""
    SEEKING_QUESTION = "SEEKING_QUESTION"
    QUESTION_BODY = "QUESTION_BODY"
    CODE_FENCE = "CODE_FENCE"


@dataclass
class _EntryDraft:
    """Mutable accumulator for the question being scanned."""
    number: int
    title: str
    level: int
    line: int
    lines: list[str] = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)


@dataclass
class _FenceDraft:
    marker: str
    language: str
    line: int
    lines: list[str] = field(default_factory=list)


class StateMachineParser:
    """
    Transforms Markdown text into a ParsedDocument of QuestionEntry records.

    Non-fatal issues (duplicate numbers, open fences at end of file,
    untitled questions) are recorded as warning diagnostics on the
    document. With strict=True the first such issue raises ParseWarning.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.reset()

    def reset(self):
        """Reset the state machine for a fresh parsing run."""
        self.state = ParserState.SEEKING_QUESTION
        self.resume_state = ParserState.SEEKING_QUESTION
        self.source = ""
        self.title = ""
        self.current: Optional[_EntryDraft] = None
        self.fence: Optional[_FenceDraft] = None
        self.entries: list[QuestionEntry] = []
        self.diagnostics: list[Diagnostic] = []

    def parse(self, text: str, source: str = "") -> ParsedDocument:
        """Parse one Markdown document into ordered question entries."""
        self.reset()
        self.source = source

        for line_no, line in enumerate(text.splitlines(), start=1):
            self._process_line(line, line_no)

        self.finalize()

        title = self.title or (Path(source).stem if source else "")
        logger.debug(
            f"Parsed {len(self.entries)} questions from {source or '<text>'}"
        )
        return ParsedDocument(
            source=source,
            title=title,
            entries=list(self.entries),
            diagnostics=list(self.diagnostics),
        )

    def finalize(self):
        """Close an open fence and the in-progress question at end of text."""
        if self.fence:
            self._close_fence(closed=False)
        if self.current:
            self._finalize_question()
        self.state = ParserState.SEEKING_QUESTION

    # ─── Line Processing ──────────────────────────────────────────────────────

    def _process_line(self, line: str, line_no: int):
        # ─── 1. Inside a fence: only a matching close ends it ───
        if self.state == ParserState.CODE_FENCE:
            if self._is_closing_fence(line):
                self._close_fence(closed=True)
            else:
                self.fence.lines.append(line)
            return

        # ─── 2. Fence opening ───
        fence_match = FENCE_OPEN_PATTERN.match(line)
        if fence_match and not self._is_invalid_backtick_fence(line, fence_match):
            self.fence = _FenceDraft(
                marker=fence_match.group(1),
                language=fence_match.group(2) or DEFAULT_LANGUAGE,
                line=line_no,
            )
            self.resume_state = self.state
            self.state = ParserState.CODE_FENCE
            return

        # ─── 3. Headings ───
        heading = HEADING_PATTERN.match(line)
        if heading:
            q_match = QUESTION_HEADING_PATTERN.match(line)
            if q_match:
                self._start_new_question(
                    number=int(q_match.group(2)),
                    title=q_match.group(3).strip(),
                    level=len(q_match.group(1)),
                    line_no=line_no,
                )
                return

            level = len(heading.group(1))
            if self.current and level > self.current.level:
                # Sub-heading inside the question body
                self.current.lines.append(line)
                return

            if self.current:
                self._finalize_question()
                self.state = ParserState.SEEKING_QUESTION

            if level == 1 and not self.title and heading.group(2):
                self.title = heading.group(2).strip()
            return

        # ─── 4. Body text ───
        if self.current:
            self.current.lines.append(line)

    def _is_invalid_backtick_fence(self, line: str, match: re.Match) -> bool:
        """Backtick info strings may not contain backticks (inline code)."""
        marker = match.group(1)
        return marker.startswith("`") and "`" in line.strip()[len(marker):]

    def _is_closing_fence(self, line: str) -> bool:
        match = FENCE_CLOSE_PATTERN.match(line)
        if not match:
            return False
        marker = match.group(1)
        return (
            marker[0] == self.fence.marker[0]
            and len(marker) >= len(self.fence.marker)
        )

    def _close_fence(self, closed: bool):
        fence = self.fence
        self.fence = None
        self.state = self.resume_state

        if not closed:
            self._warn(
                DiagnosticCode.UNTERMINATED_CODE_FENCE,
                f"Code fence opened at line {fence.line} is never closed; "
                f"treated as closed at end of file",
                line=fence.line,
                question_number=self.current.number if self.current else None,
            )

        if not self.current:
            # Code outside any question (preamble) is not kept
            return

        self.current.code_blocks.append(CodeBlock(
            language=fence.language,
            code="\n".join(fence.lines),
            closed=closed,
            line=fence.line,
        ))

    # ─── Question Lifecycle ───────────────────────────────────────────────────

    def _start_new_question(
        self,
        number: int,
        title: str,
        level: int,
        line_no: int,
    ):
        """Finalize the previous question and open a new one."""
        if self.current:
            self._finalize_question()

        if not title:
            title = f"Question {number}"
            self._warn(
                DiagnosticCode.MISSING_TITLE,
                f"Question {number} heading has no title",
                line=line_no,
                question_number=number,
            )

        logger.debug(f"Detected question {number} at line {line_no}")
        self.current = _EntryDraft(
            number=number,
            title=title,
            level=level,
            line=line_no,
        )
        self.state = ParserState.QUESTION_BODY

    def _finalize_question(self):
        """Freeze the draft and apply the later-heading-wins tie-break."""
        draft = self.current
        self.current = None

        entry = QuestionEntry(
            number=draft.number,
            title=draft.title,
            explanation=normalize_explanation(draft.lines),
            code_blocks=tuple(draft.code_blocks),
            level=draft.level,
            line=draft.line,
            source=self.source,
        )

        for i, existing in enumerate(self.entries):
            if existing.number == entry.number:
                self._warn(
                    DiagnosticCode.DUPLICATE_QUESTION_NUMBER,
                    f"Question {entry.number} at line {existing.line} is "
                    f"superseded by the heading at line {entry.line}",
                    line=existing.line,
                    question_number=entry.number,
                )
                del self.entries[i]
                break

        self.entries.append(entry)

    def _warn(
        self,
        code: DiagnosticCode,
        message: str,
        line: Optional[int] = None,
        question_number: Optional[int] = None,
    ):
        if self.strict:
            raise ParseWarning(message, line=line, code=code.value)

        logger.debug(f"{self.source or '<text>'}:{line}: {message}")
        self.diagnostics.append(Diagnostic(
            severity=Severity.WARNING,
            code=code,
            message=message,
            source=self.source or None,
            line=line,
            question_number=question_number,
        ))


def normalize_explanation(lines: list[str]) -> str:
    """Join body lines, trimming trailing spaces and runs of blank lines.

    Only surrounding blank lines are removed; the first line keeps its
    indentation so indented code blocks survive a re-render.
    """
    text = "\n".join(line.rstrip() for line in lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip("\n")


def parse_markdown(text: str, source: str = "") -> ParsedDocument:
    """Convenience wrapper: parse text with a fresh parser."""
    return StateMachineParser().parse(text, source=source)
