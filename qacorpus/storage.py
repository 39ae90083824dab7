"""
Output Storage
==============
Filesystem helpers for export artifacts.

Artifacts mirror the corpus layout under the output directory:
    output/
    ├── index.json / index.html      # Corpus index
    └── {relative/path/of/source}.{json,html,md}

Every write failure is raised as WriteError.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path, PurePosixPath
from typing import Any

from .errors import WriteError

logger = logging.getLogger(__name__)


def prepare_output_dir(output_dir: str | Path) -> Path:
    """
    Ensure the output directory exists and is writable.
    Returns the absolute path.
    """
    path = Path(output_dir).absolute()
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WriteError(str(path), e.strerror or str(e)) from e

    if not path.is_dir():
        raise WriteError(str(path), "not a directory")
    if not os.access(path, os.W_OK):
        raise WriteError(str(path), "permission denied")
    return path


def artifact_path(output_dir: Path, relative_source: str, suffix: str) -> Path:
    """
    Output file for a source document, e.g.
    ('out', 'basics/oop.md', '.html') -> out/basics/oop.html
    """
    parts = [_sanitize_name(p) for p in PurePosixPath(relative_source).parts]
    parts = [p for p in parts if p not in ("", ".", "..")] or ["document"]
    stem = Path(parts[-1]).stem or "document"
    return output_dir.joinpath(*parts[:-1], stem + suffix)


def write_text(path: Path, content: str) -> str:
    """Write a text artifact, creating parent directories. Returns the path."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
    except OSError as e:
        raise WriteError(str(path), e.strerror or str(e)) from e

    logger.info(f"Saved: {path}")
    return str(path)


def write_json(path: Path, data: Any) -> str:
    """Write a JSON artifact."""
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    return write_text(path, content + "\n")


def relative_link(from_file: Path, to_file: Path) -> str:
    """Relative POSIX link from one artifact to another."""
    return Path(os.path.relpath(to_file, from_file.parent)).as_posix()


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _sanitize_name(name: str) -> str:
    """Sanitize a path component for filesystem use."""
    return "".join(
        c if c.isalnum() or c in "-_. " else "_"
        for c in name
    ).strip().replace(" ", "_")[:100]
