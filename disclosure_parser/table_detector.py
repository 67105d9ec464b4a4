"""
Table Detector
==============
Binarizes a rendered page and locates the table region by contour
detection with OpenCV.

Binary images follow the scan convention: ink = 0, paper = 255.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .models import BoundingBox

logger = logging.getLogger(__name__)

BINARIZE_METHODS = ("adaptive", "otsu")


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert a BGR image to grayscale; grayscale passes through."""
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def binarize(
    image: np.ndarray,
    block_size: int = 15,
    c: int = 10,
    method: str = "adaptive",
) -> np.ndarray:
    """
    Threshold a page image to black ink on white paper.

    Args:
        image: Grayscale or BGR image.
        block_size: Neighbourhood size for adaptive thresholding (odd, > 1).
        c: Constant subtracted from the neighbourhood mean.
        method: "adaptive" (mean-C) or "otsu" (global).
    """
    gray = to_gray(image)

    if method == "otsu":
        _, binary = cv2.threshold(
            gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU
        )
        return binary

    if method != "adaptive":
        raise ValueError(
            f"Unknown binarization method {method!r}, "
            f"expected one of {BINARIZE_METHODS}"
        )
    if block_size <= 1 or block_size % 2 == 0:
        raise ValueError(f"block_size must be odd and > 1, got {block_size}")

    return cv2.adaptiveThreshold(
        gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY,
        block_size, c,
    )


def find_table_region(
    binary: np.ndarray,
    min_area_ratio: float = 0.05,
    max_area_ratio: float = 0.98,
) -> Optional[BoundingBox]:
    """
    Return the bounding box of the largest outer ink contour on the page.

    The table border is the largest connected outline on a disclosure
    page. Candidates smaller than ``min_area_ratio`` of the page are not
    tables; candidates larger than ``max_area_ratio`` are scan borders.
    """
    page_h, page_w = binary.shape[:2]
    page_area = float(page_h * page_w)
    if page_area == 0:
        return None

    inverted = cv2.bitwise_not(binary)
    # Bridge single-pixel breaks in scanned border lines
    inverted = cv2.dilate(inverted, np.ones((3, 3), np.uint8), iterations=1)

    # Full tree: a table inside a scan frame is nested, not external
    contours, hierarchy = cv2.findContours(
        inverted, cv2.RETR_TREE, cv2.CHAIN_APPROX_SIMPLE
    )

    best: Optional[tuple[int, int, int, int]] = None
    best_area = 0
    for idx, contour in enumerate(contours):
        # Odd depths are holes (frame interiors, table cells)
        if _contour_depth(hierarchy, idx) % 2:
            continue
        x, y, w, h = cv2.boundingRect(contour)
        area = w * h
        if area / page_area > max_area_ratio:
            continue
        if area > best_area:
            best, best_area = (x, y, w, h), area

    if best is None or best_area / page_area < min_area_ratio:
        logger.debug(
            f"No table region: largest candidate covers "
            f"{best_area / page_area:.1%} of the page"
        )
        return None

    x, y, w, h = best
    return BoundingBox(x=x, y=y, width=w, height=h)


def _contour_depth(hierarchy: np.ndarray, idx: int) -> int:
    """Nesting depth of a contour in a RETR_TREE hierarchy."""
    depth = 0
    parent = hierarchy[0][idx][3]
    while parent != -1:
        depth += 1
        parent = hierarchy[0][parent][3]
    return depth


def crop(image: np.ndarray, box: BoundingBox) -> np.ndarray:
    """Crop an image to a bounding box."""
    return image[box.y:box.bottom, box.x:box.right]


@dataclass
class DetectedTable:
    """A located table with its grayscale and binary crops."""
    box: BoundingBox
    gray: np.ndarray
    binary: np.ndarray


class TableDetector:
    """Binarizes a page and crops out its table region."""

    def __init__(
        self,
        method: str = "adaptive",
        block_size: int = 15,
        c: int = 10,
        min_area_ratio: float = 0.05,
        max_area_ratio: float = 0.98,
    ):
        self.method = method
        self.block_size = block_size
        self.c = c
        self.min_area_ratio = min_area_ratio
        self.max_area_ratio = max_area_ratio

    def detect(self, image: np.ndarray) -> Optional[DetectedTable]:
        gray = to_gray(image)
        binary = binarize(
            gray, block_size=self.block_size, c=self.c, method=self.method
        )
        box = find_table_region(
            binary,
            min_area_ratio=self.min_area_ratio,
            max_area_ratio=self.max_area_ratio,
        )
        if box is None:
            return None

        logger.debug(f"Table region: {box.model_dump()}")
        return DetectedTable(
            box=box,
            gray=crop(gray, box),
            binary=crop(binary, box),
        )
