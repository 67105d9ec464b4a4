"""
HTTP Microservice
=================
Flask-based HTTP API for the extraction engine.

Endpoints:
    POST   /api/extract             → Start extracting a filing (async job)
    POST   /api/extract/sync        → Extract and return the result
    GET    /api/status/<id>         → Get extraction job status
    GET    /api/result/<id>         → Get extraction result
    GET    /api/jobs                → List in-memory jobs
    GET    /api/filings             → List persisted filings
    GET    /api/filings/<id>/tables → Persisted tables of a filing
    GET    /api/health              → Health check
    GET    /api/info                → Extractor version info

A filing is supplied as a multipart ``file`` upload, or as JSON with
either ``file_path`` (a PDF already on the server) or ``url`` (downloaded
before extraction).
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import traceback
import uuid
from pathlib import Path
from typing import Optional

import requests
from flask import Flask, jsonify, request
from flask_cors import CORS

from . import __version__
from . import database as db
from . import storage as fs_storage
from .downloader import FilingDownloader
from .engine import ExtractionEngine, ExtractorConfig

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

# ─── In-memory job store ──────────────────────────────────────────────────────

jobs: dict[str, dict] = {}
jobs_lock = threading.Lock()


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    fs_storage.init_storage()

    app.config.setdefault("FILINGS_DIR", str(fs_storage.get_filings_dir()))
    app.config.setdefault("OUTPUT_DIR", str(fs_storage.get_output_dir()))
    app.config.setdefault("DB_PATH", db.get_db_path())
    app.config.setdefault("MAX_CONTENT_LENGTH", 200 * 1024 * 1024)  # 200MB

    Path(app.config["FILINGS_DIR"]).mkdir(parents=True, exist_ok=True)
    Path(app.config["OUTPUT_DIR"]).mkdir(parents=True, exist_ok=True)

    db.init_db(app.config["DB_PATH"])

    return app


# ─── Health / Info ────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    with jobs_lock:
        active = sum(1 for j in jobs.values()
                     if j["status"] in ("queued", "processing"))
        total = len(jobs)
    return jsonify({
        "status": "healthy",
        "service": "disclosure-parser",
        "version": __version__,
        "active_jobs": active,
        "total_jobs": total,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Extractor version and capability info."""
    return jsonify({
        "version": __version__,
        "renderer": "PyMuPDF",
        "ocr": "tesseract",
        "capabilities": [
            "filing_download",
            "table_detection",
            "row_splitting",
            "row_ocr",
            "column_clustering",
            "validation",
        ],
        "supported_formats": ["pdf"],
    })


# ─── Extract Endpoints ────────────────────────────────────────────────────────


def _request_params() -> dict:
    if request.content_type and "multipart" in request.content_type:
        return request.form.to_dict()
    return request.get_json(silent=True) or {}


def _build_config(
    params: dict, filing_id: Optional[str] = None
) -> tuple[Optional[ExtractorConfig], Optional[tuple]]:
    """
    Build an extractor config from request parameters.

    Returns:
        (config, error_response); a malformed dpi or page bound gives a
        400 response instead of a config.
    """
    config = ExtractorConfig(
        output_dir=app.config["OUTPUT_DIR"],
        filing_name=params.get("filing_name", ""),
        filing_id=params.get("filing_id", filing_id),
        source_url=params.get("url", ""),
        log_level=params.get("log_level", "INFO"),
    )
    try:
        if params.get("dpi"):
            config.dpi = int(params["dpi"])
            if config.dpi <= 0:
                raise ValueError("must be positive")
        if params.get("page_start") or params.get("page_end"):
            config.page_range = (
                int(params.get("page_start") or 1),
                int(params.get("page_end") or 99999),
            )
    except (TypeError, ValueError) as e:
        return None, (jsonify({
            "error": f"Invalid dpi or page range: {e}"
        }), 400)
    return config, None


def _resolve_source(job_id: str) -> tuple[Optional[str], Optional[str], Optional[tuple]]:
    """
    Work out where the filing comes from.

    Returns:
        (pdf_path, url, error_response); exactly one of pdf_path / url
        is set unless error_response is.
    """
    if "file" in request.files:
        file = request.files["file"]
        if not file.filename:
            return None, None, (jsonify({"error": "No file selected"}), 400)
        pdf_path = fs_storage.save_uploaded_file(
            file, f"{job_id}_{file.filename}", app.config["FILINGS_DIR"]
        )
        return pdf_path, None, None

    if request.is_json:
        data = request.get_json(silent=True) or {}
        if data.get("url"):
            return None, data["url"], None
        pdf_path = data.get("file_path")
        if not pdf_path or not os.path.exists(pdf_path):
            return None, None, (
                jsonify({"error": f"File not found: {pdf_path}"}), 404
            )
        return pdf_path, None, None

    return None, None, (jsonify({
        "error": "Provide a file upload or JSON with file_path or url"
    }), 400)


def _download(url: str) -> str:
    downloader = FilingDownloader(app.config["FILINGS_DIR"])
    return downloader.download(url).path


@app.route("/api/extract", methods=["POST"])
def extract_filing():
    """
    Start extracting a filing.

    Returns a job ID for status polling.
    """
    job_id = str(uuid.uuid4())

    # Reject bad parameters before an upload is written to disk
    config, error = _build_config(_request_params(), filing_id=job_id)
    if error:
        return error

    pdf_path, url, error = _resolve_source(job_id)
    if error:
        return error

    filename = os.path.basename(pdf_path) if pdf_path else url

    with jobs_lock:
        jobs[job_id] = {
            "id": job_id,
            "status": "queued",
            "pdf_path": pdf_path,
            "url": url,
            "filename": filename,
            "created_at": time.time(),
            "started_at": None,
            "completed_at": None,
            "result": None,
            "error": None,
            "progress": 0,
        }

    thread = threading.Thread(
        target=_run_extract_job,
        args=(job_id, pdf_path, url, config),
        daemon=True,
    )
    thread.start()

    return jsonify({
        "job_id": job_id,
        "status": "queued",
        "message": "Extraction job started",
    }), 202


@app.route("/api/extract/sync", methods=["POST"])
def extract_filing_sync():
    """
    Extract a filing synchronously and return the result immediately.

    For short filings or when the caller wants to wait.
    """
    job_id = str(uuid.uuid4())

    config, error = _build_config(_request_params())
    if error:
        return error

    pdf_path, url, error = _resolve_source(job_id)
    if error:
        return error

    try:
        if url:
            pdf_path = _download(url)
        engine = ExtractionEngine(config)
        result = engine.extract(pdf_path)
        return jsonify(result.model_dump(mode="json")), 200
    except requests.RequestException as e:
        return jsonify({"error": f"Download failed: {e}"}), 502
    except (FileNotFoundError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except RuntimeError as e:
        logger.error(f"Sync extraction failed: {e}")
        return jsonify({"error": str(e)}), 500


# ─── Job Status ───────────────────────────────────────────────────────────────


def _job_summary(job: dict) -> dict:
    duration = None
    if job["started_at"] and job["completed_at"]:
        duration = round(job["completed_at"] - job["started_at"], 2)
    elif job["started_at"]:
        duration = round(time.time() - job["started_at"], 2)

    tables_count = None
    if job["result"]:
        tables_count = len(job["result"].get("tables", []))

    return {
        "id": job["id"],
        "status": job["status"],
        "progress": job["progress"],
        "filename": job.get("filename", ""),
        "created_at": job["created_at"],
        "started_at": job["started_at"],
        "completed_at": job["completed_at"],
        "error": job["error"],
        "duration": duration,
        "tables_count": tables_count,
    }


@app.route("/api/status/<job_id>", methods=["GET"])
def get_status(job_id: str):
    """Get the status of an extraction job."""
    with jobs_lock:
        job = jobs.get(job_id)
        summary = _job_summary(job) if job else None

    if summary:
        return jsonify(summary)

    # ── Fallback: check SQLite for completed filings ───────────────
    filing = db.get_filing_by_job_id(job_id, app.config["DB_PATH"])
    if filing:
        return jsonify({
            "id": job_id,
            "status": "completed",
            "progress": 100,
            "filename": filing.get("source_pdf", ""),
            "created_at": filing.get("created_at", ""),
            "started_at": None,
            "completed_at": filing.get("created_at", ""),
            "error": None,
            "duration": None,
            "tables_count": filing.get("total_tables", 0),
        })

    return jsonify({"error": "Job not found"}), 404


@app.route("/api/result/<job_id>", methods=["GET"])
def get_result(job_id: str):
    """Get the full result of a completed extraction job."""
    with jobs_lock:
        job = jobs.get(job_id)
        status = job["status"] if job else None
        result = job["result"] if job else None

    if job:
        if status != "completed":
            return jsonify({
                "error": f"Job is {status}",
                "status": status,
            }), 409
        return jsonify(result)

    filing = db.get_filing_by_job_id(job_id, app.config["DB_PATH"])
    if not filing:
        return jsonify({"error": "Job not found"}), 404

    return jsonify({
        "filing": {
            "name": filing["name"],
            "source_url": filing["source_url"],
            "source_pdf": filing["source_pdf"],
            "total_pages": filing["total_pages"],
            "file_hash": filing["file_hash"],
            "file_size_bytes": filing["file_size_bytes"],
        },
        "tables": db.get_filing_tables(filing["id"], app.config["DB_PATH"]),
        "validation": json.loads(filing["validation_json"] or "{}"),
        "filing_db_id": filing["id"],
    })


@app.route("/api/jobs", methods=["GET"])
def list_jobs():
    """List in-memory jobs with basic status info."""
    with jobs_lock:
        summaries = [_job_summary(job) for job in jobs.values()]
    return jsonify(summaries)


# ─── Persisted Filings ────────────────────────────────────────────────────────


@app.route("/api/filings", methods=["GET"])
def list_filings():
    """List filings persisted in SQLite."""
    return jsonify(db.list_filings(app.config["DB_PATH"]))


@app.route("/api/filings/<int:filing_id>/tables", methods=["GET"])
def filing_tables(filing_id: int):
    """Tables and rows of a persisted filing."""
    filing = db.get_filing(filing_id, app.config["DB_PATH"])
    if not filing:
        return jsonify({"error": "Filing not found"}), 404
    return jsonify({
        "filing": filing,
        "tables": db.get_filing_tables(filing_id, app.config["DB_PATH"]),
    })


# ─── Background Worker ───────────────────────────────────────────────────────


def _run_extract_job(
    job_id: str,
    pdf_path: Optional[str],
    url: Optional[str],
    config: ExtractorConfig,
):
    """Run an extraction job in a background thread. Persists to SQLite."""
    with jobs_lock:
        jobs[job_id]["status"] = "processing"
        jobs[job_id]["started_at"] = time.time()
        jobs[job_id]["progress"] = 5

    try:
        if url:
            logger.info(f"Job {job_id}: downloading {url}")
            pdf_path = _download(url)
            with jobs_lock:
                jobs[job_id]["pdf_path"] = pdf_path
                jobs[job_id]["filename"] = os.path.basename(pdf_path)

        with jobs_lock:
            jobs[job_id]["progress"] = 10

        engine = ExtractionEngine(config)

        def progress_cb(current, total):
            # Scale page progress to 10-90% of the job
            pct = 10 + (current / total) * 80
            with jobs_lock:
                jobs[job_id]["progress"] = round(pct, 1)

        result = engine.extract(pdf_path, progress_callback=progress_cb)
        result_dict = result.model_dump(mode="json")

        try:
            db.save_result(result, job_id=job_id, db_path=app.config["DB_PATH"])
        except Exception as persist_err:
            logger.error(
                f"Job {job_id}: SQLite persistence FAILED: {persist_err}",
                exc_info=True,
            )

        with jobs_lock:
            jobs[job_id]["status"] = "completed"
            jobs[job_id]["completed_at"] = time.time()
            jobs[job_id]["progress"] = 100
            jobs[job_id]["result"] = result_dict

        logger.info(
            f"Job {job_id} completed: {len(result.tables)} tables extracted"
        )

    except Exception as e:
        tb = traceback.format_exc()
        logger.error(f"Job {job_id} failed: {e}\n{tb}")

        with jobs_lock:
            jobs[job_id]["status"] = "failed"
            jobs[job_id]["completed_at"] = time.time()
            jobs[job_id]["error"] = str(e)


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
):
    """Start the microservice server."""
    create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
