"""
Filing Downloader
=================
Discovers filing PDF links on an index page and downloads them to disk.

Downloads are streamed to a ``.part`` file, checked for the PDF magic
bytes, hashed, and only then renamed into place, so an interrupted run
never leaves a truncated PDF behind.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import __version__
from .models import DownloadedFiling
from .storage import sanitize_name

logger = logging.getLogger(__name__)

USER_AGENT = f"disclosure-parser/{__version__} (+financial disclosure research)"
PDF_MAGIC = b"%PDF"


def build_session(retries: int = 3, backoff_factor: float = 0.5) -> requests.Session:
    """Create a requests session that retries throttled and failed requests."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET", "HEAD"),
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "application/pdf, text/html;q=0.9, */*;q=0.8",
    })
    return session


def discover_pdf_links(
    index_url: str,
    session: Optional[requests.Session] = None,
    timeout: int = 30,
) -> list[str]:
    """
    Return absolute URLs of every PDF linked from an HTML index page.

    Links are matched on the path ending in ``.pdf`` (case-insensitive),
    de-duplicated, and returned in document order.
    """
    session = session or build_session()
    response = session.get(index_url, timeout=timeout)
    response.raise_for_status()

    soup = BeautifulSoup(response.text, "html.parser")
    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        url = urljoin(index_url, anchor["href"].strip())
        if not urlparse(url).path.lower().endswith(".pdf"):
            continue
        if url not in links:
            links.append(url)

    logger.info(f"Found {len(links)} PDF links on {index_url}")
    return links


def filename_from_url(url: str) -> str:
    """Derive a safe local filename from a filing URL."""
    name = unquote(Path(urlparse(url).path).name) or "filing.pdf"
    if not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"
    return sanitize_name(name)


class FilingDownloader:
    """
    Downloads filing PDFs into a directory.

    Existing files are kept unless ``overwrite`` is set; the returned
    DownloadedFiling is then marked as skipped.
    """

    def __init__(
        self,
        output_dir: str,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        chunk_size: int = 8192,
        overwrite: bool = False,
    ):
        self.output_dir = Path(output_dir)
        self.session = session or build_session()
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.overwrite = overwrite

        self.output_dir.mkdir(parents=True, exist_ok=True)

    def download(self, url: str) -> DownloadedFiling:
        """
        Download a single filing.

        Raises:
            requests.HTTPError: On a non-2xx response.
            ValueError: If the response body is not a PDF.
        """
        dest = self.output_dir / filename_from_url(url)

        if dest.exists() and not self.overwrite:
            logger.info(f"Already downloaded, skipping: {dest.name}")
            return DownloadedFiling(
                url=url,
                path=str(dest),
                file_hash=_hash_file(dest),
                file_size_bytes=dest.stat().st_size,
                skipped=True,
            )

        partial = dest.with_name(dest.name + ".part")
        sha256 = hashlib.sha256()
        size = 0

        with self.session.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            try:
                with open(partial, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        if size == 0 and not chunk.startswith(PDF_MAGIC):
                            raise ValueError(
                                f"Response from {url} is not a PDF "
                                f"(Content-Type: {response.headers.get('Content-Type', '?')})"
                            )
                        sha256.update(chunk)
                        size += len(chunk)
                        f.write(chunk)
                if size == 0:
                    raise ValueError(f"Empty response from {url}")
            except BaseException:
                partial.unlink(missing_ok=True)
                raise

        os.replace(partial, dest)
        logger.info(f"Downloaded {dest.name} ({size} bytes)")

        return DownloadedFiling(
            url=url,
            path=str(dest),
            file_hash=sha256.hexdigest(),
            file_size_bytes=size,
        )

    def download_all(
        self,
        urls: list[str],
        progress_callback: Optional[callable] = None,
    ) -> tuple[list[DownloadedFiling], list[tuple[str, str]]]:
        """
        Download every URL, continuing past individual failures.

        Returns:
            (downloaded filings, [(url, error message), ...])
        """
        downloaded: list[DownloadedFiling] = []
        errors: list[tuple[str, str]] = []

        for idx, url in enumerate(urls, start=1):
            try:
                downloaded.append(self.download(url))
            except (requests.RequestException, ValueError, OSError) as e:
                logger.warning(f"Failed to download {url}: {e}")
                errors.append((url, str(e)))

            if progress_callback:
                progress_callback(idx, len(urls))

        return downloaded, errors


def _hash_file(path: Path) -> str:
    """Compute SHA-256 hash of a file."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()
