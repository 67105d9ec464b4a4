"""
SQLite Database Layer
=====================
Persistent storage for extracted filings.
Every filing, its tables and their rows are stored in SQLite.
No in-memory caching — always reads from disk.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from .models import ExtractionResult

logger = logging.getLogger(__name__)

# Default database path: project_root/database.sqlite
_DEFAULT_DB_PATH = str(Path(__file__).parent.parent / "database.sqlite")


def get_db_path() -> str:
    """Return the configured database path."""
    return os.environ.get("DISCLOSURE_DB_PATH", _DEFAULT_DB_PATH)


@contextmanager
def get_connection(db_path: str = None):
    """
    Context manager for database connections.
    Ensures proper commit/rollback and connection cleanup.
    """
    db_path = db_path or get_db_path()
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str = None):
    """
    Initialize the database schema.
    Safe to call multiple times — uses IF NOT EXISTS.
    """
    db_path = db_path or get_db_path()
    logger.info(f"Initializing database at: {db_path}")

    with get_connection(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS filings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT DEFAULT '',
                name TEXT NOT NULL,
                source_url TEXT DEFAULT '',
                source_pdf TEXT DEFAULT '',
                file_hash TEXT DEFAULT '',
                file_size_bytes INTEGER DEFAULT 0,
                total_pages INTEGER DEFAULT 0,
                total_tables INTEGER DEFAULT 0,
                extractor_version TEXT DEFAULT '1.0.0',
                validation_json TEXT DEFAULT '',
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS extracted_tables (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                filing_id INTEGER NOT NULL,
                page_number INTEGER NOT NULL,
                column_count INTEGER DEFAULT 0,
                row_count INTEGER DEFAULT 0,
                region_json TEXT DEFAULT '',
                FOREIGN KEY(filing_id) REFERENCES filings(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS table_rows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                table_id INTEGER NOT NULL,
                row_index INTEGER NOT NULL,
                cells_json TEXT NOT NULL,
                FOREIGN KEY(table_id) REFERENCES extracted_tables(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_filings_job_id
                ON filings(job_id);
            CREATE INDEX IF NOT EXISTS idx_filings_hash
                ON filings(file_hash);
            CREATE INDEX IF NOT EXISTS idx_tables_filing_id
                ON extracted_tables(filing_id);
            CREATE INDEX IF NOT EXISTS idx_rows_table_id
                ON table_rows(table_id, row_index);
        """)

    logger.info("Database schema initialized successfully")


# ─── Filing CRUD ──────────────────────────────────────────────────────────────


def insert_filing(
    name: str,
    source_url: str = "",
    source_pdf: str = "",
    file_hash: str = "",
    file_size_bytes: int = 0,
    total_pages: int = 0,
    total_tables: int = 0,
    extractor_version: str = "1.0.0",
    job_id: str = "",
    validation_json: str = "",
    db_path: str = None,
) -> int:
    """Insert a new filing record. Returns the filing_id."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            """INSERT INTO filings
               (name, source_url, source_pdf, file_hash, file_size_bytes,
                total_pages, total_tables, extractor_version, job_id,
                validation_json)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (name, source_url, source_pdf, file_hash, file_size_bytes,
             total_pages, total_tables, extractor_version, job_id,
             validation_json),
        )
        filing_id = cursor.lastrowid
        logger.info(f"Inserted filing id={filing_id} name={name!r}")
        return filing_id


def get_filing(filing_id: int, db_path: str = None) -> Optional[dict]:
    """Fetch a single filing by ID."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM filings WHERE id = ?", (filing_id,)
        ).fetchone()
        return dict(row) if row else None


def get_filing_by_job_id(job_id: str, db_path: str = None) -> Optional[dict]:
    """Fetch a single filing by its API job_id."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM filings WHERE job_id = ?", (job_id,)
        ).fetchone()
        return dict(row) if row else None


def list_filings(db_path: str = None) -> list[dict]:
    """List all filings, newest first."""
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM filings ORDER BY created_at DESC, id DESC"
        ).fetchall()
        return [dict(r) for r in rows]


def delete_filing(filing_id: int, db_path: str = None) -> bool:
    """Delete a filing and all cascading data. Returns True if row existed."""
    with get_connection(db_path) as conn:
        cursor = conn.execute("DELETE FROM filings WHERE id = ?", (filing_id,))
        return cursor.rowcount > 0


# ─── Extraction Results ───────────────────────────────────────────────────────


def save_result(
    result: ExtractionResult,
    job_id: str = "",
    db_path: str = None,
) -> int:
    """
    Persist a full extraction result in a single transaction.
    Returns the new filing_id.
    """
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            """INSERT INTO filings
               (name, source_url, source_pdf, file_hash, file_size_bytes,
                total_pages, total_tables, extractor_version, job_id,
                validation_json)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                result.filing.name,
                result.filing.source_url,
                result.filing.source_pdf,
                result.filing.file_hash,
                result.filing.file_size_bytes,
                result.filing.total_pages,
                len(result.tables),
                result.version.extractor_version,
                job_id,
                json.dumps(result.validation.model_dump()),
            ),
        )
        filing_id = cursor.lastrowid

        for table in result.tables:
            table_cursor = conn.execute(
                """INSERT INTO extracted_tables
                   (filing_id, page_number, column_count, row_count, region_json)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    filing_id,
                    table.page_number,
                    table.column_count,
                    table.row_count,
                    json.dumps(table.region.model_dump()),
                ),
            )
            table_id = table_cursor.lastrowid
            conn.executemany(
                """INSERT INTO table_rows (table_id, row_index, cells_json)
                   VALUES (?, ?, ?)""",
                [
                    (table_id, row.index, json.dumps(row.cells, ensure_ascii=False))
                    for row in table.rows
                ],
            )

    logger.info(
        f"Persisted filing id={filing_id} with {len(result.tables)} tables"
    )
    return filing_id


def get_filing_tables(filing_id: int, db_path: str = None) -> list[dict]:
    """Return a filing's tables with their rows, ordered by page."""
    with get_connection(db_path) as conn:
        tables = [
            dict(r) for r in conn.execute(
                """SELECT * FROM extracted_tables
                   WHERE filing_id = ? ORDER BY page_number, id""",
                (filing_id,),
            ).fetchall()
        ]
        for table in tables:
            table["region"] = json.loads(table.pop("region_json") or "{}")
            table["rows"] = [
                json.loads(r["cells_json"])
                for r in conn.execute(
                    """SELECT cells_json FROM table_rows
                       WHERE table_id = ? ORDER BY row_index""",
                    (table["id"],),
                ).fetchall()
            ]
        return tables
