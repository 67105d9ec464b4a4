"""
Row OCR
=======
Reads each row band with Tesseract (pytesseract) and returns positioned
word boxes in table coordinates.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np
import pytesseract
from pytesseract import Output

from .models import BoundingBox, OcrWord

logger = logging.getLogger(__name__)


class RowOcr:
    """
    OCR one row band at a time.

    A row band holds a single line of text, so the default page
    segmentation mode is 7 ("treat the image as a single text line").
    """

    def __init__(
        self,
        lang: str = "eng",
        psm: int = 7,
        min_confidence: float = 0.0,
        border: int = 10,
        tesseract_cmd: Optional[str] = None,
    ):
        self.lang = lang
        self.psm = psm
        self.min_confidence = min_confidence
        self.border = border
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    @property
    def config(self) -> str:
        return f"--psm {self.psm}"

    def read_row(
        self,
        image: np.ndarray,
        row_index: int,
        offset: tuple[int, int] = (0, 0),
    ) -> list[OcrWord]:
        """
        OCR a single row image.

        Args:
            image: Grayscale crop of one row band.
            row_index: Index of the row within the table.
            offset: (x, y) of the crop within the table, added to word boxes.
        """
        if image.size == 0:
            return []

        padded = cv2.copyMakeBorder(
            image, self.border, self.border, self.border, self.border,
            cv2.BORDER_CONSTANT, value=255,
        )

        try:
            data = pytesseract.image_to_data(
                padded, lang=self.lang, config=self.config,
                output_type=Output.DICT,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise RuntimeError(
                "Tesseract is not installed or not on PATH. "
                "Install it (e.g. apt install tesseract-ocr) or pass tesseract_cmd."
            ) from e

        dx, dy = offset
        words: list[OcrWord] = []
        for i, raw_text in enumerate(data.get("text", [])):
            text = (raw_text or "").strip()
            if not text:
                continue

            confidence = float(data["conf"][i])
            # Tesseract reports -1 for block / paragraph / line levels
            if confidence < 0 or confidence < self.min_confidence:
                continue

            left = max(0, int(data["left"][i]) - self.border)
            top = max(0, int(data["top"][i]) - self.border)
            box = BoundingBox(
                x=left, y=top,
                width=int(data["width"][i]),
                height=int(data["height"][i]),
            ).offset(dx, dy)

            words.append(OcrWord(
                text=text,
                box=box,
                confidence=confidence,
                order_index=len(words),
                row_index=row_index,
            ))

        return words

    def read_rows(
        self,
        table_gray: np.ndarray,
        row_boxes: list[BoundingBox],
    ) -> list[OcrWord]:
        """OCR every row band of a table, in row order."""
        words: list[OcrWord] = []
        for row_index, box in enumerate(row_boxes):
            crop = table_gray[box.y:box.bottom, box.x:box.right]
            row_words = self.read_row(crop, row_index, offset=(box.x, box.y))
            logger.debug(f"Row {row_index}: {len(row_words)} words")
            words.extend(row_words)
        return words
