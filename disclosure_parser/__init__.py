"""
Disclosure Parser
=================
Table extraction for scanned financial-disclosure filings.

Architecture:
    - Downloader: Discovers and fetches filing PDFs
    - Rasterizer: Renders PDF pages to grayscale images
    - Table Detector: Binarizes pages and locates the table region
    - Row Splitter: Isolates row bands with morphological open/close
    - Row OCR: Reads each row band into positioned word boxes
    - Column Clustering: Groups word boxes into columns (single linkage)
    - Validator: Flags empty, ragged and low-confidence output

Version: 1.0.0
"""

__version__ = "1.0.0"
