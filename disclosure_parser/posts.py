"""
Post Frontmatter Checker
========================
Loads the Markdown write-ups that accompany the extractor and validates
their TOML frontmatter against the static-site content contract:

    +++
    title = "..."
    description = "..."
    date = 2021-03-14
    draft = false
    updated = 2021-04-02          # optional

    [taxonomies]
    tags = ["ocr", "python"]      # optional

    [extra]
    math = false                  # optional rendering flags
    math_auto_render = false
    comments = true
    toc = true
    +++

Images are referenced by a filename relative to the post's directory.
"""

from __future__ import annotations

import logging
import re
import tomllib
from pathlib import Path

from .models import ContentIssue, ContentReport, Post

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(
    r"\A\+\+\+[ \t]*\r?\n(.*?)^\+\+\+[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)

IMAGE_PATTERN = re.compile(
    r"!\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)"
)

FENCED_CODE_PATTERN = re.compile(r"^(```|~~~).*?^\1", re.DOTALL | re.MULTILINE)

SECTION_INDEX = "_index.md"


def split_frontmatter(text: str) -> tuple[dict, str]:
    """
    Split a post into its parsed frontmatter and Markdown body.

    Raises:
        ValueError: If the +++ block is missing or not valid TOML.
    """
    text = text.lstrip("\ufeff")
    match = FRONTMATTER_PATTERN.match(text)
    if not match:
        raise ValueError("Missing or unterminated +++ frontmatter block")

    frontmatter = tomllib.loads(match.group(1))
    return frontmatter, text[match.end():]


def load_post(path: str | Path) -> Post:
    """Load and validate a single post."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    frontmatter, body = split_frontmatter(text)
    return Post(**{**frontmatter, "body": body, "path": str(path)})


def find_image_references(body: str) -> list[str]:
    """
    Return relative image targets referenced by a Markdown body.

    URLs, absolute paths and images inside fenced code blocks are skipped.
    """
    body = FENCED_CODE_PATTERN.sub("", body)
    refs: list[str] = []
    for target in IMAGE_PATTERN.findall(body):
        if "://" in target or target.startswith(("/", "#", "data:")):
            continue
        if target not in refs:
            refs.append(target)
    return refs


def check_content_dir(content_dir: str | Path) -> ContentReport:
    """
    Validate every post under a content directory.

    Section index files (_index.md) are not posts and are skipped.
    Tags are counted for published posts only.
    """
    content_dir = Path(content_dir)
    if not content_dir.is_dir():
        raise FileNotFoundError(f"Content directory not found: {content_dir}")

    report = ContentReport()

    for path in sorted(content_dir.rglob("*.md")):
        if path.name == SECTION_INDEX:
            continue

        report.files_checked += 1
        rel = str(path.relative_to(content_dir))

        try:
            post = load_post(path)
        except (ValueError, OSError) as e:
            logger.warning(f"Invalid post {rel}: {e}")
            report.errors.append(ContentIssue(path=rel, message=str(e)))
            continue

        if post.draft:
            report.drafts += 1
        else:
            report.published += 1
            report.add_tags(post.tags)

        for ref in find_image_references(post.body):
            if not (path.parent / ref).exists():
                report.missing_images.append(
                    ContentIssue(path=rel, message=f"Missing image: {ref}")
                )

    logger.info(
        f"Checked {report.files_checked} posts: {report.published} published, "
        f"{report.drafts} drafts, {len(report.errors)} errors, "
        f"{len(report.missing_images)} missing images"
    )
    return report
