"""
Validation Engine
=================
Post-extraction validation and reporting.

After extracting each filing, generates a report:
    - Pages Processed / Pages With Tables
    - Pages Without a Table
    - Total Rows / Total Words
    - Empty Rows
    - Ragged Rows (fewer or more filled cells than the table's usual count)
    - Low-Confidence Words
    - Anomaly breakdown by type

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter

from .models import (
    Anomaly,
    AnomalyType,
    ExtractedTable,
    ValidationReport,
)

logger = logging.getLogger(__name__)


def filled_cell_count(cells: list[str]) -> int:
    return sum(1 for c in cells if c.strip())


class ValidationEngine:
    """
    Validates extracted tables and produces a quality report.
    """

    def __init__(self, low_confidence_threshold: float = 60.0):
        self.low_confidence_threshold = low_confidence_threshold

    def table_anomalies(self, table: ExtractedTable) -> list[Anomaly]:
        """Detect row- and word-level issues in a single table."""
        anomalies: list[Anomaly] = []
        page = table.page_number

        if table.column_count == 1 and table.row_count > 1:
            anomalies.append(Anomaly(
                type=AnomalyType.SINGLE_COLUMN,
                severity=40,
                message="All words fell into a single column",
                page_number=page,
            ))

        filled = [filled_cell_count(r.cells) for r in table.rows]
        non_empty = [n for n in filled if n > 0]
        expected = Counter(non_empty).most_common(1)[0][0] if non_empty else 0

        for row, count in zip(table.rows, filled):
            if count == 0:
                anomalies.append(Anomaly(
                    type=AnomalyType.EMPTY_ROW,
                    severity=20,
                    message=f"Row {row.index} has no text",
                    page_number=page,
                    context={"row": row.index},
                ))
            elif count != expected:
                anomalies.append(Anomaly(
                    type=AnomalyType.RAGGED_ROW,
                    severity=30,
                    message=(
                        f"Row {row.index} has {count} filled cells, "
                        f"expected {expected}"
                    ),
                    page_number=page,
                    context={"row": row.index, "filled": count, "expected": expected},
                ))

        for word in table.words:
            if word.confidence < self.low_confidence_threshold:
                anomalies.append(Anomaly(
                    type=AnomalyType.LOW_CONFIDENCE_WORD,
                    severity=10,
                    message=(
                        f"Low confidence ({word.confidence:.0f}) "
                        f"for {word.text!r}"
                    ),
                    page_number=page,
                    context={"row": word.row_index, "text": word.text},
                ))

        return anomalies

    def validate(
        self,
        pages_processed: int,
        tables: list[ExtractedTable],
        anomalies: list[Anomaly],
    ) -> ValidationReport:
        """
        Build the report for a whole filing.

        Args:
            pages_processed: Number of pages rendered.
            tables: Tables found (at most one per page).
            anomalies: Every anomaly recorded during extraction.
        """
        report = ValidationReport(pages_processed=pages_processed)

        if pages_processed == 0:
            logger.warning("No pages to validate")
            return report

        report.pages_with_tables = len(tables)
        report.pages_without_table = sorted({
            a.page_number for a in anomalies
            if a.type == AnomalyType.NO_TABLE_FOUND and a.page_number
        })

        for table in tables:
            report.total_rows += table.row_count
            report.total_words += len(table.words)

        breakdown: dict[str, int] = {}
        for anomaly in anomalies:
            key = anomaly.type.value
            breakdown[key] = breakdown.get(key, 0) + 1

        report.empty_rows = breakdown.get(AnomalyType.EMPTY_ROW.value, 0)
        report.ragged_rows = breakdown.get(AnomalyType.RAGGED_ROW.value, 0)
        report.low_confidence_words = breakdown.get(
            AnomalyType.LOW_CONFIDENCE_WORD.value, 0
        )
        report.anomaly_breakdown = breakdown

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(f"Pages Processed: {report.pages_processed}")
        logger.info(
            f"Pages With Tables: {report.pages_with_tables} "
            f"({report.success_rate}%)"
        )
        logger.info(f"Total Rows: {report.total_rows}")
        logger.info(f"Total Words: {report.total_words}")
        logger.info(f"Empty Rows: {report.empty_rows}")
        logger.info(f"Ragged Rows: {report.ragged_rows}")
        logger.info(f"Low-Confidence Words: {report.low_confidence_words}")

        if report.anomaly_breakdown:
            logger.info("Anomaly Breakdown:")
            for anomaly_type, count in sorted(
                report.anomaly_breakdown.items()
            ):
                logger.info(f"  • {anomaly_type}: {count}")

        logger.info("=" * 60)

        return report
