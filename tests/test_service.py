"""
Test Suite for the Service Layer
================================
Tests for filing download, storage, SQLite persistence, post checking,
the HTTP API and the CLI. Network access and OCR are mocked.
"""

from __future__ import annotations

import hashlib
import io
import json
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests
from click.testing import CliRunner
from pydantic import ValidationError

from disclosure_parser import database as db
from disclosure_parser import server
from disclosure_parser import storage
from disclosure_parser.cli import cli
from disclosure_parser.downloader import (
    FilingDownloader,
    discover_pdf_links,
    filename_from_url,
)
from disclosure_parser.engine import ExtractorConfig
from disclosure_parser.models import (
    BoundingBox,
    ColumnCluster,
    DownloadedFiling,
    ExtractedTable,
    ExtractionResult,
    ExtractionVersion,
    FilingMetadata,
    PostTaxonomies,
    TableRow,
    ValidationReport,
)
from disclosure_parser.posts import (
    check_content_dir,
    find_image_references,
    load_post,
    split_frontmatter,
)

PDF_BYTES = b"%PDF-1.4\n% scanned filing\n"


def sample_result() -> ExtractionResult:
    row_box = BoundingBox(x=0, y=0, width=300, height=30)
    return ExtractionResult(
        filing=FilingMetadata(
            name="Senator A 2021",
            source_pdf="ptr.pdf",
            total_pages=2,
            file_hash="ab" * 32,
            file_size_bytes=2048,
        ),
        version=ExtractionVersion(page_count=2, table_count=1),
        tables=[
            ExtractedTable(
                page_number=1,
                region=BoundingBox(x=10, y=20, width=300, height=200),
                columns=[
                    ColumnCluster(index=0, left=0, right=50, word_count=2),
                    ColumnCluster(index=1, left=100, right=150, word_count=2),
                ],
                rows=[
                    TableRow(index=0, box=row_box, cells=["Asset", "Value"]),
                    TableRow(index=1, box=row_box.offset(0, 30),
                             cells=["Stock", "$1,001 - $15,000"]),
                ],
            )
        ],
        validation=ValidationReport(
            pages_processed=2,
            pages_with_tables=1,
            pages_without_table=[2],
            total_rows=2,
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# DOWNLOADER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


def fake_response(chunks=(PDF_BYTES,), error: Exception = None) -> MagicMock:
    response = MagicMock()
    response.__enter__.return_value = response
    response.iter_content.return_value = list(chunks)
    response.headers = {"Content-Type": "application/pdf"}
    if error is not None:
        response.raise_for_status.side_effect = error
    return response


class TestDownloader:
    """Test filing download and link discovery."""

    def test_download_streams_to_disk(self, tmp_path):
        session = MagicMock()
        session.get.return_value = fake_response([PDF_BYTES, b"rest"])
        downloader = FilingDownloader(str(tmp_path), session=session)

        filing = downloader.download("https://example.gov/files/ptr-1.pdf")

        dest = tmp_path / "ptr-1.pdf"
        assert filing.path == str(dest)
        assert dest.read_bytes() == PDF_BYTES + b"rest"
        assert filing.file_hash == hashlib.sha256(PDF_BYTES + b"rest").hexdigest()
        assert filing.file_size_bytes == len(PDF_BYTES) + 4
        assert filing.skipped is False
        assert not (tmp_path / "ptr-1.pdf.part").exists()

    def test_non_pdf_body_is_rejected(self, tmp_path):
        session = MagicMock()
        session.get.return_value = fake_response([b"<html>login</html>"])
        downloader = FilingDownloader(str(tmp_path), session=session)

        with pytest.raises(ValueError, match="not a PDF"):
            downloader.download("https://example.gov/files/ptr-1.pdf")

        assert list(tmp_path.iterdir()) == []

    def test_empty_body_is_rejected(self, tmp_path):
        session = MagicMock()
        session.get.return_value = fake_response([])
        downloader = FilingDownloader(str(tmp_path), session=session)

        with pytest.raises(ValueError, match="Empty"):
            downloader.download("https://example.gov/files/ptr-1.pdf")
        assert list(tmp_path.iterdir()) == []

    def test_http_error_propagates(self, tmp_path):
        session = MagicMock()
        session.get.return_value = fake_response(
            error=requests.HTTPError("404 Client Error")
        )
        downloader = FilingDownloader(str(tmp_path), session=session)

        with pytest.raises(requests.HTTPError):
            downloader.download("https://example.gov/files/missing.pdf")

    def test_existing_file_is_skipped(self, tmp_path):
        (tmp_path / "ptr-1.pdf").write_bytes(PDF_BYTES)
        session = MagicMock()
        downloader = FilingDownloader(str(tmp_path), session=session)

        filing = downloader.download("https://example.gov/files/ptr-1.pdf")

        assert filing.skipped is True
        assert filing.file_hash == hashlib.sha256(PDF_BYTES).hexdigest()
        session.get.assert_not_called()

    def test_overwrite_downloads_again(self, tmp_path):
        (tmp_path / "ptr-1.pdf").write_bytes(b"%PDF-old")
        session = MagicMock()
        session.get.return_value = fake_response([PDF_BYTES])
        downloader = FilingDownloader(
            str(tmp_path), session=session, overwrite=True
        )

        filing = downloader.download("https://example.gov/files/ptr-1.pdf")

        assert filing.skipped is False
        assert (tmp_path / "ptr-1.pdf").read_bytes() == PDF_BYTES

    def test_download_all_collects_errors(self, tmp_path):
        session = MagicMock()
        session.get.side_effect = [
            fake_response([PDF_BYTES]),
            requests.ConnectionError("connection reset"),
        ]
        downloader = FilingDownloader(str(tmp_path), session=session)
        progress = []

        downloaded, errors = downloader.download_all(
            ["https://example.gov/a.pdf", "https://example.gov/b.pdf"],
            progress_callback=lambda c, t: progress.append((c, t)),
        )

        assert [f.url for f in downloaded] == ["https://example.gov/a.pdf"]
        assert errors[0][0] == "https://example.gov/b.pdf"
        assert "connection reset" in errors[0][1]
        assert progress == [(1, 2), (2, 2)]

    def test_discover_pdf_links(self):
        session = MagicMock()
        session.get.return_value.text = """
            <html><body>
              <a href="/media/2021/ptr-1.pdf">PTR 1</a>
              <a href="ptr-2.PDF">PTR 2</a>
              <a href="/media/2021/ptr-1.pdf">PTR 1 again</a>
              <a href="/about">About</a>
              <a href="https://cdn.example.com/x.pdf?download=1">Mirror</a>
              <a name="anchor-without-href">nothing</a>
            </body></html>
        """

        links = discover_pdf_links(
            "https://efd.example.gov/search/index.html", session=session
        )

        assert links == [
            "https://efd.example.gov/media/2021/ptr-1.pdf",
            "https://efd.example.gov/search/ptr-2.PDF",
            "https://cdn.example.com/x.pdf?download=1",
        ]

    def test_filename_from_url(self):
        assert (
            filename_from_url("https://x.gov/y/Senate%20PTR%202021.pdf")
            == "Senate_PTR_2021.pdf"
        )
        assert filename_from_url("https://x.gov/getdoc?id=3") == "getdoc.pdf"


# ═══════════════════════════════════════════════════════════════════════════════
# STORAGE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestStorage:
    """Test the filesystem layout helpers."""

    def test_sanitize_name(self):
        assert storage.sanitize_name("My Filing (1).PDF") == "My_Filing__1_.pdf"
        assert storage.sanitize_name("no-extension") == "no-extension"
        assert storage.sanitize_name("???.pdf") == "___.pdf"

    def test_save_list_delete(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DISCLOSURE_DATA_DIR", str(tmp_path / "data"))
        source = tmp_path / "upload.pdf"
        source.write_bytes(PDF_BYTES)

        storage.init_storage()
        stored = storage.save_pdf(str(source), "Filing 2021.pdf")

        assert stored == str(tmp_path / "data" / "filings" / "Filing_2021.pdf")
        assert storage.list_pdfs() == ["Filing_2021.pdf"]
        assert storage.get_pdf_path("Filing_2021.pdf") == stored
        assert storage.delete_pdf("Filing_2021.pdf") is True
        assert storage.delete_pdf("Filing_2021.pdf") is False
        assert storage.get_pdf_path("Filing_2021.pdf") is None


# ═══════════════════════════════════════════════════════════════════════════════
# DATABASE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDatabase:
    """Test SQLite persistence of extraction results."""

    @pytest.fixture
    def db_path(self, tmp_path):
        path = str(tmp_path / "test.sqlite")
        db.init_db(path)
        return path

    def test_init_is_idempotent(self, db_path):
        db.init_db(db_path)
        assert db.list_filings(db_path) == []

    def test_save_and_read_back(self, db_path):
        filing_id = db.save_result(sample_result(), job_id="job-1", db_path=db_path)

        filing = db.get_filing(filing_id, db_path)
        assert filing["name"] == "Senator A 2021"
        assert filing["total_tables"] == 1
        assert json.loads(filing["validation_json"])["pages_without_table"] == [2]
        assert db.get_filing_by_job_id("job-1", db_path)["id"] == filing_id

        tables = db.get_filing_tables(filing_id, db_path)
        assert len(tables) == 1
        assert tables[0]["page_number"] == 1
        assert tables[0]["column_count"] == 2
        assert tables[0]["region"] == {"x": 10, "y": 20, "width": 300, "height": 200}
        assert tables[0]["rows"] == [
            ["Asset", "Value"],
            ["Stock", "$1,001 - $15,000"],
        ]

    def test_list_newest_first(self, db_path):
        first = db.insert_filing("first", db_path=db_path)
        second = db.insert_filing("second", db_path=db_path)
        assert [f["id"] for f in db.list_filings(db_path)] == [second, first]

    def test_delete_cascades(self, db_path):
        filing_id = db.save_result(sample_result(), db_path=db_path)

        assert db.delete_filing(filing_id, db_path) is True
        assert db.get_filing(filing_id, db_path) is None
        assert db.get_filing_tables(filing_id, db_path) == []
        assert db.delete_filing(filing_id, db_path) is False

    def test_unknown_job(self, db_path):
        assert db.get_filing_by_job_id("nope", db_path) is None


# ═══════════════════════════════════════════════════════════════════════════════
# POST CHECKER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


GOOD_POST = """+++
title = "Extracting tables from scanned PDFs"
description = "Row splitting and column clustering"
date = 2021-03-14
draft = false

[taxonomies]
tags = ["ocr", "python"]

[extra]
toc = true
+++

Rows first:

![rows](rows.png)
"""

DRAFT_POST = """+++
title = "Work in progress"
description = "Not yet"
date = 2021-05-01
draft = true

[taxonomies]
tags = ["wip"]
+++
Draft body.
"""

BROKEN_POST = """+++
title = "No description"
date = 2021-05-01
draft = false
+++
"""

MISSING_IMAGE_POST = """+++
title = "Clustering"
description = "Single linkage"
date = 2021-04-02T10:00:00Z
draft = false

[taxonomies]
tags = ["python"]
+++

![clusters](missing.png)
![remote](https://example.com/remote.png)

```markdown
![example](also-missing.png)
```
"""


def write_content(root):
    posts = root / "posts"
    (posts / "table-extraction").mkdir(parents=True)
    (posts / "table-extraction" / "index.md").write_text(GOOD_POST, encoding="utf-8")
    (posts / "table-extraction" / "rows.png").write_bytes(b"\x89PNG")
    (posts / "draft.md").write_text(DRAFT_POST, encoding="utf-8")
    (posts / "broken.md").write_text(BROKEN_POST, encoding="utf-8")
    (posts / "clustering.md").write_text(MISSING_IMAGE_POST, encoding="utf-8")
    (root / "_index.md").write_text('+++\ntitle = "Blog"\n+++\n', encoding="utf-8")


class TestPosts:
    """Test frontmatter parsing and content checks."""

    def test_split_frontmatter(self):
        frontmatter, body = split_frontmatter(GOOD_POST)
        assert frontmatter["title"] == "Extracting tables from scanned PDFs"
        assert frontmatter["taxonomies"]["tags"] == ["ocr", "python"]
        assert body.strip().startswith("Rows first:")

    def test_split_frontmatter_with_bom(self):
        frontmatter, _ = split_frontmatter("\ufeff" + DRAFT_POST)
        assert frontmatter["draft"] is True

    def test_missing_frontmatter(self):
        with pytest.raises(ValueError):
            split_frontmatter("# Just markdown\n")

    def test_load_post(self, tmp_path):
        path = tmp_path / "post.md"
        path.write_text(GOOD_POST, encoding="utf-8")

        post = load_post(path)

        assert post.title == "Extracting tables from scanned PDFs"
        assert post.draft is False
        assert post.tags == ["ocr", "python"]
        assert post.extra.toc is True
        assert post.extra.math is False
        assert post.updated is None
        assert post.path == str(path)

    def test_missing_required_field(self, tmp_path):
        path = tmp_path / "post.md"
        path.write_text(BROKEN_POST, encoding="utf-8")
        with pytest.raises(ValidationError):
            load_post(path)

    def test_tags_are_cleaned(self):
        assert PostTaxonomies(tags=[" ocr ", "ocr", "python"]).tags == [
            "ocr", "python",
        ]
        with pytest.raises(ValidationError):
            PostTaxonomies(tags=["  "])

    def test_image_references(self):
        _, body = split_frontmatter(MISSING_IMAGE_POST)
        assert find_image_references(body) == ["missing.png"]

    def test_check_content_dir(self, tmp_path):
        write_content(tmp_path)

        report = check_content_dir(tmp_path)

        assert report.files_checked == 4
        assert report.published == 2
        assert report.drafts == 1
        assert [e.path.replace("\\", "/") for e in report.errors] == [
            "posts/broken.md"
        ]
        assert [m.message for m in report.missing_images] == [
            "Missing image: missing.png"
        ]
        assert report.tags == {"ocr": 1, "python": 2}
        assert report.ok is False

    def test_clean_content_dir(self, tmp_path):
        (tmp_path / "post").mkdir()
        (tmp_path / "post" / "index.md").write_text(GOOD_POST, encoding="utf-8")
        (tmp_path / "post" / "rows.png").write_bytes(b"\x89PNG")

        report = check_content_dir(tmp_path)

        assert report.ok is True
        assert report.published == 1

    def test_missing_content_dir(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            check_content_dir(tmp_path / "nope")


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP API TESTS
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DISCLOSURE_DATA_DIR", str(tmp_path / "data"))
    app = server.create_app({
        "TESTING": True,
        "DB_PATH": str(tmp_path / "test.sqlite"),
        "FILINGS_DIR": str(tmp_path / "filings"),
        "OUTPUT_DIR": str(tmp_path / "output"),
    })
    server.jobs.clear()
    with app.test_client() as test_client:
        yield test_client
    server.jobs.clear()


def queue_job(job_id: str, status: str = "queued"):
    server.jobs[job_id] = {
        "id": job_id,
        "status": status,
        "pdf_path": "ptr.pdf",
        "url": None,
        "filename": "ptr.pdf",
        "created_at": time.time(),
        "started_at": None,
        "completed_at": None,
        "result": None,
        "error": None,
        "progress": 0,
    }


class TestServer:
    """Test the Flask API."""

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"
        assert resp.get_json()["active_jobs"] == 0

    def test_info(self, client):
        data = client.get("/api/info").get_json()
        assert "column_clustering" in data["capabilities"]
        assert data["supported_formats"] == ["pdf"]

    def test_extract_without_input(self, client):
        assert client.post("/api/extract").status_code == 400

    def test_extract_missing_file_path(self, client, tmp_path):
        resp = client.post(
            "/api/extract", json={"file_path": str(tmp_path / "nope.pdf")}
        )
        assert resp.status_code == 404

    def test_extract_starts_job(self, client, tmp_path):
        pdf = tmp_path / "ptr.pdf"
        pdf.write_bytes(PDF_BYTES)

        started = threading.Event()
        with patch(
            "disclosure_parser.server._run_extract_job",
            side_effect=lambda *args: started.set(),
        ) as run:
            resp = client.post(
                "/api/extract",
                json={"file_path": str(pdf), "page_start": 2},
            )
            assert started.wait(timeout=5)

        assert resp.status_code == 202
        job_id = resp.get_json()["job_id"]
        assert server.jobs[job_id]["status"] == "queued"

        args = run.call_args.args
        assert args[:3] == (job_id, str(pdf), None)
        assert args[3].filing_id == job_id
        assert args[3].page_range == (2, 99999)

    def test_extract_upload(self, client):
        started = threading.Event()
        with patch(
            "disclosure_parser.server._run_extract_job",
            side_effect=lambda *args: started.set(),
        ) as run:
            resp = client.post(
                "/api/extract",
                data={
                    "file": (io.BytesIO(PDF_BYTES), "My Filing.pdf"),
                    "dpi": "150",
                },
                content_type="multipart/form-data",
            )
            assert started.wait(timeout=5)

        assert resp.status_code == 202
        _, pdf_path, url, config = run.call_args.args
        assert pdf_path.endswith("My_Filing.pdf")
        assert url is None
        assert config.dpi == 150
        with open(pdf_path, "rb") as f:
            assert f.read() == PDF_BYTES

    def test_extract_bad_page_start(self, client, tmp_path):
        pdf = tmp_path / "ptr.pdf"
        pdf.write_bytes(PDF_BYTES)

        with patch("disclosure_parser.server._run_extract_job") as run:
            resp = client.post(
                "/api/extract",
                json={"file_path": str(pdf), "page_start": "first"},
            )

        assert resp.status_code == 400
        assert "page" in resp.get_json()["error"]
        run.assert_not_called()
        assert server.jobs == {}

    def test_extract_upload_bad_dpi_is_not_saved(self, client, tmp_path):
        resp = client.post(
            "/api/extract",
            data={
                "file": (io.BytesIO(PDF_BYTES), "ptr.pdf"),
                "dpi": "high",
            },
            content_type="multipart/form-data",
        )

        assert resp.status_code == 400
        assert resp.is_json
        filings = tmp_path / "filings"
        assert not filings.exists() or not any(filings.iterdir())

    def test_extract_sync_bad_dpi(self, client, tmp_path):
        pdf = tmp_path / "ptr.pdf"
        pdf.write_bytes(PDF_BYTES)

        with patch("disclosure_parser.server.ExtractionEngine") as engine_cls:
            for dpi in ("high", -72):
                resp = client.post(
                    "/api/extract/sync",
                    json={"file_path": str(pdf), "dpi": dpi},
                )
                assert resp.status_code == 400
                assert "dpi" in resp.get_json()["error"]

        engine_cls.assert_not_called()

    def test_extract_sync(self, client, tmp_path):
        pdf = tmp_path / "ptr.pdf"
        pdf.write_bytes(PDF_BYTES)

        with patch("disclosure_parser.server.ExtractionEngine") as engine_cls:
            engine_cls.return_value.extract.return_value = sample_result()
            resp = client.post(
                "/api/extract/sync",
                json={"file_path": str(pdf), "filing_name": "Senator A 2021"},
            )

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["filing"]["name"] == "Senator A 2021"
        assert data["tables"][0]["rows"][1]["cells"] == ["Stock", "$1,001 - $15,000"]
        assert engine_cls.call_args.args[0].filing_name == "Senator A 2021"

    def test_extract_sync_engine_failure(self, client, tmp_path):
        pdf = tmp_path / "ptr.pdf"
        pdf.write_bytes(PDF_BYTES)

        with patch("disclosure_parser.server.ExtractionEngine") as engine_cls:
            engine_cls.return_value.extract.side_effect = RuntimeError(
                "Tesseract is not installed"
            )
            resp = client.post("/api/extract/sync", json={"file_path": str(pdf)})

        assert resp.status_code == 500
        assert "Tesseract" in resp.get_json()["error"]

    def test_extract_sync_download_failure(self, client):
        with patch(
            "disclosure_parser.server._download",
            side_effect=requests.ConnectionError("unreachable"),
        ):
            resp = client.post(
                "/api/extract/sync", json={"url": "https://example.gov/a.pdf"}
            )
        assert resp.status_code == 502

    def test_unknown_job(self, client):
        assert client.get("/api/status/nope").status_code == 404
        assert client.get("/api/result/nope").status_code == 404

    def test_result_of_unfinished_job(self, client):
        queue_job("job-1")
        resp = client.get("/api/result/job-1")
        assert resp.status_code == 409
        assert resp.get_json()["status"] == "queued"

    def test_job_runs_and_persists(self, client, tmp_path):
        queue_job("job-2")
        config = ExtractorConfig(output_dir=str(tmp_path / "output"))

        with patch("disclosure_parser.server.ExtractionEngine") as engine_cls:
            engine_cls.return_value.extract.return_value = sample_result()
            server._run_extract_job("job-2", "ptr.pdf", None, config)

        job = server.jobs["job-2"]
        assert job["status"] == "completed"
        assert job["progress"] == 100
        assert job["result"]["filing"]["name"] == "Senator A 2021"

        status = client.get("/api/status/job-2").get_json()
        assert status["tables_count"] == 1
        assert client.get("/api/jobs").get_json()[0]["id"] == "job-2"

        # Once the in-memory job is gone, SQLite answers
        server.jobs.clear()
        status = client.get("/api/status/job-2").get_json()
        assert status["status"] == "completed"
        assert status["tables_count"] == 1

        result = client.get("/api/result/job-2").get_json()
        assert result["filing"]["source_pdf"] == "ptr.pdf"
        assert result["tables"][0]["rows"][0] == ["Asset", "Value"]
        assert result["validation"]["pages_without_table"] == [2]

        filings = client.get("/api/filings").get_json()
        assert len(filings) == 1
        tables = client.get(f"/api/filings/{filings[0]['id']}/tables")
        assert tables.status_code == 200
        assert tables.get_json()["tables"][0]["row_count"] == 2

    def test_job_downloads_url_first(self, client, tmp_path):
        queue_job("job-3")
        pdf = tmp_path / "filings" / "a.pdf"
        config = ExtractorConfig(output_dir=str(tmp_path / "output"))

        with patch(
            "disclosure_parser.server._download", return_value=str(pdf)
        ) as download, patch(
            "disclosure_parser.server.ExtractionEngine"
        ) as engine_cls:
            engine_cls.return_value.extract.return_value = sample_result()
            server._run_extract_job(
                "job-3", None, "https://example.gov/a.pdf", config
            )

        download.assert_called_once_with("https://example.gov/a.pdf")
        assert engine_cls.return_value.extract.call_args.args[0] == str(pdf)
        assert server.jobs["job-3"]["filename"] == "a.pdf"

    def test_failed_job(self, client, tmp_path):
        queue_job("job-4")
        config = ExtractorConfig(output_dir=str(tmp_path / "output"))

        with patch("disclosure_parser.server.ExtractionEngine") as engine_cls:
            engine_cls.return_value.extract.side_effect = RuntimeError(
                "Cannot open PDF"
            )
            server._run_extract_job("job-4", "ptr.pdf", None, config)

        status = client.get("/api/status/job-4").get_json()
        assert status["status"] == "failed"
        assert status["error"] == "Cannot open PDF"

    def test_unknown_filing_tables(self, client):
        assert client.get("/api/filings/999/tables").status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:
    """Test the click command-line interface."""

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_extract_json_output(self, tmp_path):
        pdf = tmp_path / "ptr.pdf"
        pdf.write_bytes(PDF_BYTES)

        with patch("disclosure_parser.cli.ExtractionEngine") as engine_cls:
            engine_cls.return_value.extract.return_value = sample_result()
            result = CliRunner().invoke(cli, [
                "extract", str(pdf),
                "--json-output",
                "--row-kernel", "30x2",
                "--page-start", "2",
                "--no-csv",
            ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["filing"]["name"] == "Senator A 2021"

        config = engine_cls.call_args.args[0]
        assert config.row_close_kernel == (30, 2)
        assert config.page_range == (2, 99999)
        assert config.save_csv is False
        assert config.log_level == "ERROR"

    def test_extract_rejects_bad_kernel(self, tmp_path):
        pdf = tmp_path / "ptr.pdf"
        pdf.write_bytes(PDF_BYTES)
        result = CliRunner().invoke(
            cli, ["extract", str(pdf), "--row-kernel", "forty"]
        )
        assert result.exit_code == 2

    def test_extract_error_exits_nonzero(self, tmp_path):
        pdf = tmp_path / "ptr.pdf"
        pdf.write_bytes(PDF_BYTES)

        with patch("disclosure_parser.cli.ExtractionEngine") as engine_cls:
            engine_cls.return_value.extract.side_effect = RuntimeError(
                "Cannot open PDF"
            )
            result = CliRunner().invoke(cli, ["extract", str(pdf), "--json-output"])

        assert result.exit_code == 1
        assert "Cannot open PDF" in result.output

    def test_validate(self, tmp_path):
        path = tmp_path / "ptr_tables.json"
        path.write_text(
            json.dumps(sample_result().model_dump(mode="json")), encoding="utf-8"
        )
        result = CliRunner().invoke(cli, ["validate", str(path)])
        assert result.exit_code == 0
        assert "Validation Report" in result.output
        assert "Pages Without Table" in result.output

    def test_check_posts(self, tmp_path):
        (tmp_path / "post").mkdir()
        (tmp_path / "post" / "index.md").write_text(GOOD_POST, encoding="utf-8")
        (tmp_path / "post" / "rows.png").write_bytes(b"\x89PNG")

        result = CliRunner().invoke(cli, ["check-posts", str(tmp_path)])

        assert result.exit_code == 0
        assert "Content Check" in result.output

    def test_check_posts_fails_on_errors(self, tmp_path):
        write_content(tmp_path)
        result = CliRunner().invoke(cli, ["check-posts", str(tmp_path)])
        assert result.exit_code == 1
        assert "missing.png" in result.output

    def test_check_posts_prints_bracketed_messages(self, tmp_path):
        (tmp_path / "broken.md").write_text(BROKEN_POST, encoding="utf-8")

        result = CliRunner().invoke(cli, ["check-posts", str(tmp_path)])

        assert result.exit_code == 1
        assert "type=missing" in result.output

    def test_download(self, tmp_path):
        filing = DownloadedFiling(
            url="https://example.gov/a.pdf",
            path=str(tmp_path / "a.pdf"),
            file_size_bytes=2048,
        )
        with patch("disclosure_parser.cli.FilingDownloader") as downloader_cls:
            downloader_cls.return_value.download_all.return_value = ([filing], [])
            result = CliRunner().invoke(cli, [
                "download", "https://example.gov/a.pdf",
                "--output", str(tmp_path),
            ])

        assert result.exit_code == 0, result.output
        assert "Download Summary" in result.output
        downloader_cls.return_value.download_all.assert_called_once()
        assert downloader_cls.return_value.download_all.call_args.args[0] == [
            "https://example.gov/a.pdf"
        ]

    def test_download_failure_exits_nonzero(self, tmp_path):
        with patch("disclosure_parser.cli.FilingDownloader") as downloader_cls:
            downloader_cls.return_value.download_all.return_value = (
                [], [("https://example.gov/a.pdf", "404 Client Error")],
            )
            result = CliRunner().invoke(cli, [
                "download", "https://example.gov/a.pdf",
                "--output", str(tmp_path),
            ])
        assert result.exit_code == 1

    def test_download_nothing(self, tmp_path):
        result = CliRunner().invoke(cli, ["download", "--output", str(tmp_path)])
        assert result.exit_code == 0
        assert "Nothing to download" in result.output

    def test_batch_collects_failures(self, tmp_path):
        filings = tmp_path / "filings"
        filings.mkdir()
        (filings / "a.pdf").write_bytes(PDF_BYTES)
        (filings / "b.PDF").write_bytes(PDF_BYTES)
        (filings / "notes.txt").write_text("not a filing", encoding="utf-8")

        with patch("disclosure_parser.cli.ExtractionEngine") as engine_cls:
            engine_cls.return_value.extract.side_effect = [
                sample_result(),
                RuntimeError("Cannot open PDF"),
            ]
            result = CliRunner().invoke(cli, [
                "batch", str(filings), "--output", str(tmp_path / "out"),
            ])

        assert result.exit_code == 1
        assert "Batch Summary" in result.output
        assert engine_cls.return_value.extract.call_count == 2

    def test_batch_empty_directory(self, tmp_path):
        result = CliRunner().invoke(cli, ["batch", str(tmp_path)])
        assert result.exit_code == 0
        assert "No filings found" in result.output

    def test_info(self, tmp_path):
        import fitz

        path = tmp_path / "typed.pdf"
        doc = fitz.open()
        doc.new_page().insert_text((72, 72), "Periodic Transaction Report")
        doc.save(str(path))
        doc.close()

        result = CliRunner().invoke(cli, ["info", str(path)])

        assert result.exit_code == 0, result.output
        assert "0/1" in result.output
