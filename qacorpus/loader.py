"""
Content Loader
==============
Reads Markdown files from a corpus directory.

Produces a lazy, ordered sequence of SourceFile records. Iterating again
re-reads the files from disk, so a loader can be scanned more than once.
A file that cannot be read is logged, recorded in `loader.errors` and
skipped; the rest of the scan continues.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .errors import NotFoundError, ReadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
    """One Markdown file read from the corpus."""
    path: Path
    relative_path: str
    text: str


class ContentLoader:
    """
    Lazy reader over the Markdown files of a corpus.

    Usage:
        loader = ContentLoader("docs/")
        for source in loader:
            ...
        loader.errors  # ReadErrors from the last scan
    """

    def __init__(
        self,
        root: str | Path,
        pattern: str = "*.md",
        recursive: bool = True,
        encoding: str = "utf-8",
    ):
        self.root = Path(root)
        self.pattern = pattern
        self.recursive = recursive
        self.encoding = encoding
        self.errors: list[ReadError] = []

        if not self.root.exists():
            raise NotFoundError(str(self.root))

    def __iter__(self) -> Iterator[SourceFile]:
        return self.load()

    def discover(self) -> list[Path]:
        """List matching files, sorted by their path relative to the root."""
        if self.root.is_file():
            return [self.root]

        glob = self.root.rglob if self.recursive else self.root.glob
        return sorted(
            (p for p in glob(self.pattern) if p.is_file()),
            key=lambda p: p.relative_to(self.root).as_posix(),
        )

    def load(self) -> Iterator[SourceFile]:
        """Yield each readable file in order, skipping unreadable ones."""
        self.errors = []
        paths = self.discover()
        logger.info(f"Found {len(paths)} Markdown files under {self.root}")

        for path in paths:
            try:
                yield self.read(path)
            except ReadError as e:
                logger.warning(str(e))
                self.errors.append(e)

    def read(self, path: Path) -> SourceFile:
        """Read a single file, raising ReadError on I/O or decode failure."""
        try:
            raw = path.read_bytes()
            text = raw.decode(self.encoding)
        except OSError as e:
            raise ReadError(str(path), e.strerror or str(e)) from e
        except UnicodeDecodeError as e:
            raise ReadError(str(path), f"not valid {self.encoding}: {e.reason}") from e

        # Tolerate a UTF-8 byte order mark
        if text.startswith("\ufeff"):
            text = text[1:]

        return SourceFile(
            path=path,
            relative_path=self._relative(path),
            text=text,
        )

    def _relative(self, path: Path) -> str:
        if self.root.is_file():
            return path.name
        return path.relative_to(self.root).as_posix()
