"""
Validation Engine
=================
Structural checks over parsed documents.

For each document:
    - Duplicate Question Numbers (warning)
    - Empty Explanation (warning)
    - Code Block Without Closing Fence (warning)
    - Gaps in Question Numbering (info)
    - Document Without Questions (info)

Diagnostics recorded by the parser are passed through; the same issue is
never reported twice. Nothing here raises or halts processing.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Optional

from .models import (
    Diagnostic,
    DiagnosticCode,
    ParsedDocument,
    QuestionEntry,
    Severity,
    ValidationReport,
)

logger = logging.getLogger(__name__)

MAX_LISTED_GAPS = 10


class ValidationEngine:
    """
    Validates parsed documents and produces diagnostics plus a summary report.
    """

    def validate(
        self,
        documents: Iterable[ParsedDocument],
    ) -> list[Diagnostic]:
        """
        Run every check on every document.

        Args:
            documents: Parsed documents to validate.

        Returns:
            Diagnostics in document order, parser diagnostics first.
        """
        diagnostics: list[Diagnostic] = []
        seen: set[tuple] = set()

        for document in documents:
            source = document.source or None
            found = list(document.diagnostics)
            found.extend(self.check_entries(document.entries, source=source))

            if not document.entries:
                found.append(Diagnostic(
                    severity=Severity.INFO,
                    code=DiagnosticCode.NO_QUESTIONS,
                    message="Document contains no numbered questions",
                    source=source,
                ))

            for diagnostic in found:
                key = _dedup_key(diagnostic)
                if key in seen:
                    continue
                seen.add(key)
                diagnostics.append(diagnostic)

        return diagnostics

    def check_entries(
        self,
        entries: list[QuestionEntry],
        source: Optional[str] = None,
    ) -> list[Diagnostic]:
        """Checks for one document's entries (numbers are per document)."""
        diagnostics: list[Diagnostic] = []

        # Duplicates: one warning per repeated occurrence after the first
        first_seen: dict[int, QuestionEntry] = {}
        for entry in entries:
            earlier = first_seen.get(entry.number)
            if earlier is None:
                first_seen[entry.number] = entry
                continue
            diagnostics.append(Diagnostic(
                severity=Severity.WARNING,
                code=DiagnosticCode.DUPLICATE_QUESTION_NUMBER,
                message=(
                    f"Question number {entry.number} is used again at line "
                    f"{entry.line} (first at line {earlier.line})"
                ),
                source=source,
                line=entry.line,
                question_number=entry.number,
            ))

        for entry in entries:
            if not entry.has_explanation:
                diagnostics.append(Diagnostic(
                    severity=Severity.WARNING,
                    code=DiagnosticCode.EMPTY_EXPLANATION,
                    message=(
                        f"Question {entry.number} "
                        f"({entry.title!r}) has no explanation"
                    ),
                    source=source,
                    line=entry.line,
                    question_number=entry.number,
                ))

            for block in entry.code_blocks:
                if block.closed:
                    continue
                diagnostics.append(Diagnostic(
                    severity=Severity.WARNING,
                    code=DiagnosticCode.UNTERMINATED_CODE_FENCE,
                    message=(
                        f"Code fence opened at line {block.line} is never "
                        f"closed; treated as closed at end of file"
                    ),
                    source=source,
                    line=block.line,
                    question_number=entry.number,
                ))

        numbers = [e.number for e in entries]
        missing_count = count_missing_numbers(numbers)
        if missing_count:
            listed = find_missing_numbers(numbers, limit=MAX_LISTED_GAPS)
            shown = ", ".join(str(n) for n in listed)
            if missing_count > len(listed):
                shown += f" (+{missing_count - len(listed)} more)"
            diagnostics.append(Diagnostic(
                severity=Severity.INFO,
                code=DiagnosticCode.NUMBERING_GAP,
                message=f"Question numbering skips {shown}",
                source=source,
            ))

        return diagnostics

    def build_report(
        self,
        documents: list[ParsedDocument],
        diagnostics: list[Diagnostic],
    ) -> ValidationReport:
        """Summarize documents and diagnostics, logging the result."""
        report = ValidationReport(total_documents=len(documents))

        if not documents:
            logger.warning("No documents to validate")
            return report

        languages: Counter[str] = Counter()

        for document in documents:
            key = document.source or document.title
            numbers = [e.number for e in document.entries]
            report.total_entries += len(numbers)
            report.total_code_blocks += document.code_block_count

            duplicates = sorted(
                n for n, count in Counter(numbers).items() if count > 1
            )
            # Tie-broken duplicates only survive as parser diagnostics
            duplicates = sorted(set(duplicates) | {
                d.question_number
                for d in document.diagnostics
                if d.code == DiagnosticCode.DUPLICATE_QUESTION_NUMBER
                and d.question_number is not None
            })
            if duplicates:
                report.duplicate_question_numbers[key] = duplicates

            missing_count = count_missing_numbers(numbers)
            if missing_count:
                report.missing_question_numbers[key] = find_missing_numbers(
                    numbers, limit=MAX_LISTED_GAPS
                )
                report.missing_question_counts[key] = missing_count

            empty = [e.number for e in document.entries if not e.has_explanation]
            if empty:
                report.entries_missing_explanation[key] = empty

            for entry in document.entries:
                languages.update(b.language for b in entry.code_blocks)

        report.languages = dict(sorted(languages.items()))
        report.diagnostic_breakdown = dict(sorted(
            Counter(d.code.value for d in diagnostics).items()
        ))

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(f"Documents: {report.total_documents}")
        logger.info(f"Questions: {report.total_entries}")
        logger.info(f"Code Blocks: {report.total_code_blocks}")
        logger.info(
            f"Documents With Duplicate Numbers: "
            f"{len(report.duplicate_question_numbers)}"
        )
        logger.info(
            f"Documents With Numbering Gaps: "
            f"{len(report.missing_question_numbers)}"
        )
        logger.info(
            f"Questions Missing Explanation: "
            f"{sum(len(v) for v in report.entries_missing_explanation.values())}"
        )

        if report.diagnostic_breakdown:
            logger.info("Diagnostic Breakdown:")
            for code, count in report.diagnostic_breakdown.items():
                logger.info(f"  • {code}: {count}")

        logger.info("=" * 60)

        return report


def find_missing_numbers(
    numbers: Iterable[int],
    limit: Optional[int] = None,
) -> list[int]:
    """Numbers absent from the min..max range, smallest first.

    Walks the gaps between sorted distinct numbers, so the cost depends on
    how many numbers are listed rather than on their magnitude.
    """
    distinct = sorted(set(numbers))
    missing: list[int] = []
    for low, high in zip(distinct, distinct[1:]):
        for n in range(low + 1, high):
            if limit is not None and len(missing) >= limit:
                return missing
            missing.append(n)
    return missing


def count_missing_numbers(numbers: Iterable[int]) -> int:
    """How many numbers are absent from the min..max range."""
    distinct = set(numbers)
    if not distinct:
        return 0
    return max(distinct) - min(distinct) + 1 - len(distinct)


def _dedup_key(diagnostic: Diagnostic) -> tuple:
    return (
        diagnostic.code,
        diagnostic.source,
        diagnostic.line,
        diagnostic.question_number,
    )
