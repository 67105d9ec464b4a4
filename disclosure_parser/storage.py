"""
Filesystem Storage Manager
===========================
Manages persistent file storage for filing PDFs and extraction output.
All paths are relative to the data root for portability.

Directory Layout:
    data/
    ├── filings/           # Downloaded or uploaded filing PDFs
    └── output/            # JSON / CSV extraction output
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root: one level up from /disclosure_parser/ package
_PROJECT_ROOT = Path(__file__).parent.parent.absolute()


def get_data_root() -> Path:
    """Return the data root (DISCLOSURE_DATA_DIR or <project>/data)."""
    override = os.environ.get("DISCLOSURE_DATA_DIR")
    if override:
        return Path(override).absolute()
    return _PROJECT_ROOT / "data"


def get_filings_dir() -> Path:
    return get_data_root() / "filings"


def get_output_dir() -> Path:
    return get_data_root() / "output"


def init_storage():
    """Ensure all required directories exist."""
    get_filings_dir().mkdir(parents=True, exist_ok=True)
    get_output_dir().mkdir(parents=True, exist_ok=True)
    logger.info(f"Storage initialized: {get_data_root()}")


# ─── PDF Storage ──────────────────────────────────────────────────────────────


def save_pdf(source_path: str, filename: str = None) -> str:
    """
    Copy a PDF into data/filings/.
    Returns the absolute path of the stored copy.
    """
    dest = get_filings_dir() / sanitize_name(filename or Path(source_path).name)
    dest.parent.mkdir(parents=True, exist_ok=True)
    if Path(source_path).resolve() != dest.resolve():
        shutil.copy2(source_path, dest)
    logger.info(f"PDF saved: {dest}")
    return str(dest)


def save_uploaded_file(file_obj, filename: str, dest_dir: str = None) -> str:
    """
    Save a Flask file upload object to data/filings/ (or ``dest_dir``).
    Returns the absolute path to the saved file.
    """
    directory = Path(dest_dir) if dest_dir else get_filings_dir()
    dest = (directory / sanitize_name(filename)).absolute()
    dest.parent.mkdir(parents=True, exist_ok=True)
    file_obj.save(str(dest))
    logger.info(f"Uploaded PDF saved: {dest}")
    return str(dest)


def get_pdf_path(filename: str) -> Optional[str]:
    """Get absolute path to a stored PDF."""
    path = get_filings_dir() / filename
    return str(path) if path.exists() else None


def list_pdfs() -> list[str]:
    """List stored filing PDFs, sorted by name."""
    filings_dir = get_filings_dir()
    if not filings_dir.exists():
        return []
    return sorted(p.name for p in filings_dir.glob("*.pdf"))


def delete_pdf(filename: str) -> bool:
    """Delete a PDF from data/filings/."""
    path = get_filings_dir() / filename
    if path.exists():
        path.unlink()
        logger.info(f"Deleted PDF: {filename}")
        return True
    return False


# ─── Helpers ──────────────────────────────────────────────────────────────────


def sanitize_name(name: str) -> str:
    """Sanitize a name for filesystem use, keeping the extension."""
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    clean = "".join(
        c if c.isalnum() or c in "-_ " else "_"
        for c in stem
    ).strip().replace(" ", "_")[:100] or "file"
    if ext:
        clean_ext = "".join(c for c in ext if c.isalnum())[:10]
        return f"{clean}.{clean_ext.lower()}" if clean_ext else clean
    return clean
