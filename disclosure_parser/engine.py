"""
Extraction Engine
=================
Main orchestrator that combines rasterization, table detection, row
splitting, OCR, column clustering and validation into a complete
filing-to-table pipeline.

Usage:
    engine = ExtractionEngine(config)
    result = engine.extract("path/to/filing.pdf")
    # result is an ExtractionResult with structured JSON output

Architecture:
    PDF → PageRasterizer → page images → TableDetector → table crop →
    RowSplitter → row bands → RowOcr → words → cluster_columns →
    assemble_rows → ExtractedTable → ValidationEngine → ExtractionResult
"""

from __future__ import annotations

import csv
import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from . import __version__
from .columns import assemble_rows, cluster_columns
from .models import (
    Anomaly,
    AnomalyType,
    ExtractedTable,
    ExtractionResult,
    ExtractionVersion,
    FilingMetadata,
)
from .ocr import RowOcr
from .rasterizer import PageRasterizer
from .row_splitter import RowSplitter
from .table_detector import TableDetector
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ExtractorConfig:
    """Configuration for the extraction engine."""

    # Rendering
    dpi: int = 300

    # Binarization / table detection
    threshold_method: str = "adaptive"
    threshold_block_size: int = 15
    threshold_c: int = 10
    min_table_area_ratio: float = 0.05

    # Row splitting (kernel sizes are width, height)
    row_close_kernel: tuple[int, int] = (40, 1)
    row_open_kernel: tuple[int, int] = (5, 3)
    line_kernel_ratio: float = 0.5
    min_row_height: int = 8
    row_padding: int = 2

    # OCR
    ocr_lang: str = "eng"
    ocr_psm: int = 7
    min_word_confidence: float = 0.0
    tesseract_cmd: Optional[str] = None

    # Column clustering
    column_distance_threshold: float = 20.0
    point_spacing: float = 5.0
    vertical_weight: float = 0.0

    # Output settings
    output_dir: str = "output"
    save_csv: bool = True
    save_words: bool = False

    # Filing metadata
    filing_name: str = ""
    filing_id: Optional[str] = None
    source_url: str = ""

    # Processing
    page_range: Optional[tuple[int, int]] = None
    low_confidence_threshold: float = 60.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ExtractionEngine:
    """
    Main filing extraction engine.

    Orchestrates the full pipeline:
        1. Page rasterization
        2. Table region detection
        3. Row band isolation
        4. Per-row OCR
        5. Column clustering and row reassembly
        6. Validation
        7. Output formatting
    """

    def __init__(self, config: Optional[ExtractorConfig] = None):
        self.config = config or ExtractorConfig()
        self._setup_logging()

        if self.config.point_spacing >= self.config.column_distance_threshold:
            raise ValueError(
                "point_spacing must be smaller than column_distance_threshold"
            )

        self.rasterizer = PageRasterizer(dpi=self.config.dpi)
        self.detector = TableDetector(
            method=self.config.threshold_method,
            block_size=self.config.threshold_block_size,
            c=self.config.threshold_c,
            min_area_ratio=self.config.min_table_area_ratio,
        )
        self.splitter = RowSplitter(
            close_kernel=tuple(self.config.row_close_kernel),
            open_kernel=tuple(self.config.row_open_kernel),
            line_kernel_ratio=self.config.line_kernel_ratio,
            min_row_height=self.config.min_row_height,
            row_padding=self.config.row_padding,
        )
        self.ocr = RowOcr(
            lang=self.config.ocr_lang,
            psm=self.config.ocr_psm,
            min_confidence=self.config.min_word_confidence,
            tesseract_cmd=self.config.tesseract_cmd,
        )
        self.validator = ValidationEngine(
            low_confidence_threshold=self.config.low_confidence_threshold,
        )

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the package
        package_logger = logging.getLogger("disclosure_parser")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                self.config.log_file, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            package_logger.addHandler(file_handler)

    def extract(
        self,
        pdf_path: str,
        progress_callback: Optional[callable] = None,
    ) -> ExtractionResult:
        """
        Extract the tables of a filing PDF.

        Args:
            pdf_path: Path to the PDF file.
            progress_callback: Callback(page_num, total_pages) called per page.

        Returns:
            ExtractionResult with tables, anomalies and validation.

        Raises:
            FileNotFoundError: If the PDF file doesn't exist.
            RuntimeError: If the PDF cannot be opened or Tesseract is missing.
        """
        pdf_path = os.path.abspath(pdf_path)

        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")

        start_time = time.time()
        logger.info(f"Starting extraction of: {pdf_path}")

        # ── Step 1: File metadata ─────────────────────────────────────
        filing = self._build_filing_metadata(pdf_path)
        filing_id = self.config.filing_id or self._generate_filing_id(pdf_path)

        # ── Step 2: Page-by-page pipeline ─────────────────────────────
        tables: list[ExtractedTable] = []
        anomalies: list[Anomaly] = []
        pages_processed = 0

        for page_number, image in self.rasterizer.render(
            pdf_path,
            page_range=self.config.page_range,
            progress_callback=progress_callback,
        ):
            pages_processed += 1
            table, page_anomalies = self.extract_page(image, page_number)
            anomalies.extend(page_anomalies)
            if table is not None:
                tables.append(table)

        # ── Step 3: Validation ────────────────────────────────────────
        logger.info("Validating extracted tables")
        validation = self.validator.validate(pages_processed, tables, anomalies)

        # ── Step 4: Build result ──────────────────────────────────────
        result = ExtractionResult(
            filing=filing,
            version=ExtractionVersion(
                extractor_version=__version__,
                page_count=pages_processed,
                table_count=len(tables),
            ),
            tables=tables,
            anomalies=anomalies,
            validation=validation,
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Extraction complete in {elapsed:.2f}s — "
            f"{len(tables)} tables from {pages_processed} pages"
        )

        # ── Step 5: Save output ───────────────────────────────────────
        self.save(result, filing_id)

        return result

    def extract_page(
        self,
        image: np.ndarray,
        page_number: int,
    ) -> tuple[Optional[ExtractedTable], list[Anomaly]]:
        """
        Run detection, row splitting, OCR and clustering on one page image.

        Returns:
            (table or None, anomalies found on the page)
        """
        detected = self.detector.detect(image)
        if detected is None:
            logger.warning(f"Page {page_number}: no table region found")
            return None, [Anomaly(
                type=AnomalyType.NO_TABLE_FOUND,
                severity=80,
                message="No table region found on page",
                page_number=page_number,
            )]

        row_boxes = self.splitter.split(detected.binary)
        if not row_boxes:
            logger.warning(f"Page {page_number}: table has no rows")
            return None, [Anomaly(
                type=AnomalyType.NO_ROWS_FOUND,
                severity=60,
                message="Table region contains no row bands",
                page_number=page_number,
                context={"region": detected.box.model_dump()},
            )]

        words = self.ocr.read_rows(detected.gray, row_boxes)
        labels, columns = cluster_columns(
            words,
            distance_threshold=self.config.column_distance_threshold,
            spacing=self.config.point_spacing,
            vertical_weight=self.config.vertical_weight,
        )
        rows = assemble_rows(words, labels, columns, row_boxes)

        table = ExtractedTable(
            page_number=page_number,
            region=detected.box,
            columns=columns,
            rows=rows,
            words=words,
        )
        logger.info(
            f"Page {page_number}: {table.row_count} rows × "
            f"{table.column_count} columns, {len(words)} words"
        )

        return table, self.validator.table_anomalies(table)

    # ─── Output ───────────────────────────────────────────────────────────

    def save(self, result: ExtractionResult, filing_id: str) -> Path:
        """Write JSON (and optionally CSV) output. Returns the output dir."""
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        exclude = None
        if not self.config.save_words:
            exclude = {"tables": {"__all__": {"words"}}}
        self._save_json_dict(
            result.model_dump(exclude=exclude),
            output_dir / f"{filing_id}_tables.json",
        )
        self._save_json_dict(
            result.validation.model_dump(),
            output_dir / f"{filing_id}_validation.json",
        )

        if self.config.save_csv:
            for table in result.tables:
                self._save_csv(
                    table, output_dir / f"{filing_id}_p{table.page_number}.csv"
                )

        logger.info(f"Output saved to: {output_dir}")
        return output_dir

    def _build_filing_metadata(self, pdf_path: str) -> FilingMetadata:
        """Build filing metadata from file info and config."""
        return FilingMetadata(
            name=self.config.filing_name or Path(pdf_path).stem,
            source_url=self.config.source_url,
            source_pdf=os.path.basename(pdf_path),
            total_pages=self.rasterizer.page_count(pdf_path),
            file_hash=self._compute_file_hash(pdf_path),
            file_size_bytes=os.path.getsize(pdf_path),
        )

    def _compute_file_hash(self, filepath: str) -> str:
        """Compute SHA-256 hash of a file."""
        sha256 = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return sha256.hexdigest()

    def _generate_filing_id(self, pdf_path: str) -> str:
        """Generate a deterministic filing ID from the file name."""
        name = Path(pdf_path).stem
        clean_name = "".join(
            c if c.isalnum() or c in "-_" else "_"
            for c in name
        )
        return clean_name[:50]

    def _save_json_dict(self, data: dict, filepath: Path):
        """Save a dict to JSON file."""
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            logger.info(f"Saved JSON: {filepath}")
        except OSError as e:
            logger.error(f"Failed to save JSON {filepath}: {e}")

    def _save_csv(self, table: ExtractedTable, filepath: Path):
        """Save a table's cells as CSV."""
        try:
            with open(filepath, "w", encoding="utf-8", newline="") as f:
                csv.writer(f).writerows(table.to_records())
            logger.info(f"Saved CSV: {filepath}")
        except OSError as e:
            logger.error(f"Failed to save CSV {filepath}: {e}")
