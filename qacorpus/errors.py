"""
Error Taxonomy
==============
Exceptions raised by the loader and exporter.

    NotFoundError  - input path does not exist (fatal for the call)
    ReadError      - one file could not be read (skipped, scan continues)
    ParseWarning   - non-fatal parse issue (reported as a diagnostic,
                     raised only in strict mode)
    WriteError     - output destination not writable (aborts that export)
"""

from __future__ import annotations

from typing import Optional


class QACorpusError(Exception):
    """Base class for all qacorpus errors."""


class NotFoundError(QACorpusError, FileNotFoundError):
    """The corpus path does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path not found: {path}")


class ReadError(QACorpusError):
    """A single source file could not be read or decoded."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to read {path}: {reason}")


class ParseWarning(QACorpusError, UserWarning):
    """A recoverable structural issue found while parsing."""

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        code: Optional[str] = None,
    ):
        self.line = line
        self.code = code
        super().__init__(message)


class WriteError(QACorpusError):
    """An export destination is not writable."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write {path}: {reason}")
