"""
Row Splitter
============
Isolates the row bands of a table image.

Ruling lines are removed first, then a morphological close smears the
words of each row into a single horizontal band and an open drops specks.
The external contours of what remains are the rows.
"""

from __future__ import annotations

import logging

import cv2
import numpy as np

from .models import BoundingBox

logger = logging.getLogger(__name__)


class RowSplitter:
    """
    Splits a binarized table (ink = 0) into row bands, top to bottom.

    Kernel sizes are (width, height) in pixels, as OpenCV expects.
    """

    def __init__(
        self,
        close_kernel: tuple[int, int] = (40, 1),
        open_kernel: tuple[int, int] = (5, 3),
        line_kernel_ratio: float = 0.5,
        min_row_height: int = 8,
        row_padding: int = 2,
    ):
        if not 0 < line_kernel_ratio <= 1:
            raise ValueError(
                f"line_kernel_ratio must be in (0, 1], got {line_kernel_ratio}"
            )
        self.close_kernel = close_kernel
        self.open_kernel = open_kernel
        self.line_kernel_ratio = line_kernel_ratio
        self.min_row_height = min_row_height
        self.row_padding = row_padding

    def split(self, binary: np.ndarray) -> list[BoundingBox]:
        """Return full-width row boxes in table coordinates, top to bottom."""
        height, width = binary.shape[:2]
        if height == 0 or width == 0:
            return []

        text = self.remove_lines(cv2.bitwise_not(binary))
        bands = self.row_bands(text)

        contours, _ = cv2.findContours(
            bands, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE
        )

        spans = []
        for contour in contours:
            _, y, _, h = cv2.boundingRect(contour)
            if h < self.min_row_height:
                continue
            spans.append((y, y + h))

        rows = []
        for top, bottom in _merge_spans(spans):
            top = max(0, top - self.row_padding)
            bottom = min(height, bottom + self.row_padding)
            rows.append(BoundingBox(x=0, y=top, width=width, height=bottom - top))

        logger.debug(f"Found {len(rows)} row bands")
        return rows

    def remove_lines(self, inverted: np.ndarray) -> np.ndarray:
        """Subtract horizontal and vertical ruling lines from an ink=255 image."""
        height, width = inverted.shape[:2]

        h_kernel = cv2.getStructuringElement(
            cv2.MORPH_RECT, (max(1, int(width * self.line_kernel_ratio)), 1)
        )
        v_kernel = cv2.getStructuringElement(
            cv2.MORPH_RECT, (1, max(1, int(height * self.line_kernel_ratio)))
        )
        horizontal = cv2.morphologyEx(inverted, cv2.MORPH_OPEN, h_kernel)
        vertical = cv2.morphologyEx(inverted, cv2.MORPH_OPEN, v_kernel)

        return cv2.subtract(inverted, cv2.bitwise_or(horizontal, vertical))

    def row_bands(self, text: np.ndarray) -> np.ndarray:
        """Close words into horizontal bands, then open away specks."""
        close = cv2.getStructuringElement(cv2.MORPH_RECT, self.close_kernel)
        opened = cv2.getStructuringElement(cv2.MORPH_RECT, self.open_kernel)
        bands = cv2.morphologyEx(text, cv2.MORPH_CLOSE, close)
        return cv2.morphologyEx(bands, cv2.MORPH_OPEN, opened)


def _merge_spans(spans: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Merge vertically overlapping (top, bottom) spans."""
    merged: list[tuple[int, int]] = []
    for top, bottom in sorted(spans):
        if merged and top <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], bottom))
        else:
            merged.append((top, bottom))
    return merged
