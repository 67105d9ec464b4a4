"""
Page Rasterizer
===============
Renders PDF pages to grayscale numpy images using PyMuPDF (fitz).
Scanned filings carry no text layer, so every page goes through OCR.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

import fitz  # PyMuPDF
import numpy as np

logger = logging.getLogger(__name__)


class PageRasterizer:
    """Renders PDF pages at a fixed DPI."""

    def __init__(self, dpi: int = 300):
        if dpi <= 0:
            raise ValueError(f"dpi must be positive, got {dpi}")
        self.dpi = dpi

    @contextmanager
    def _open(self, pdf_path: str):
        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")
        try:
            doc = fitz.open(pdf_path)
        except (RuntimeError, ValueError) as e:
            raise RuntimeError(f"Cannot open PDF {pdf_path}: {e}") from e
        try:
            yield doc
        finally:
            doc.close()

    def page_count(self, pdf_path: str) -> int:
        """Get total number of pages in the PDF."""
        with self._open(pdf_path) as doc:
            return doc.page_count

    def render(
        self,
        pdf_path: str,
        page_range: Optional[tuple[int, int]] = None,
        progress_callback: Optional[callable] = None,
    ) -> Iterator[tuple[int, np.ndarray]]:
        """
        Yield (page_number, grayscale image) for each page.

        Args:
            pdf_path: Path to the PDF file.
            page_range: Optional (start, end) range (1-indexed, inclusive).
            progress_callback: Optional callable(current, total).
        """
        with self._open(pdf_path) as doc:
            start_page, end_page = clamp_page_range(doc.page_count, page_range)

            logger.info(
                f"Rendering {pdf_path} at {self.dpi} dpi "
                f"(pages {start_page} to {end_page})"
            )

            total = max(0, end_page - start_page + 1)
            for page_num in range(start_page, end_page + 1):
                yield page_num, self._render(doc[page_num - 1])

                if progress_callback:
                    progress_callback(page_num - start_page + 1, total)

    def render_page(self, pdf_path: str, page_number: int) -> np.ndarray:
        """Render a single 1-indexed page."""
        with self._open(pdf_path) as doc:
            if not 1 <= page_number <= doc.page_count:
                raise ValueError(
                    f"Page {page_number} out of range (1-{doc.page_count})"
                )
            return self._render(doc[page_number - 1])

    def _render(self, page: fitz.Page) -> np.ndarray:
        pix = page.get_pixmap(dpi=self.dpi, colorspace=fitz.csGRAY, alpha=False)
        image = np.frombuffer(pix.samples, dtype=np.uint8).reshape(
            pix.height, pix.width, pix.n
        )
        # frombuffer is read-only; OpenCV needs a writable array
        return image[:, :, 0].copy()


def clamp_page_range(
    total_pages: int,
    page_range: Optional[tuple[int, int]] = None,
) -> tuple[int, int]:
    """Clamp a 1-indexed inclusive page range to the document."""
    start_page = 1
    end_page = total_pages
    if page_range:
        start_page = max(1, page_range[0])
        end_page = min(total_pages, page_range[1])
    return start_page, end_page
