"""
Data Models
===========
Pydantic models for structured table extraction output and for the
frontmatter contract of the tutorial posts.
All models are serializable to JSON.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Optional, Union

from pydantic import (
    BaseModel,
    Field,
    StringConstraints,
    computed_field,
    field_validator,
)


# ─── Enums ────────────────────────────────────────────────────────────────────


class AnomalyType(str, Enum):
    """Types of issues detected while extracting a filing."""
    NO_TABLE_FOUND = "no_table_found"
    NO_ROWS_FOUND = "no_rows_found"
    EMPTY_ROW = "empty_row"
    LOW_CONFIDENCE_WORD = "low_confidence_word"
    RAGGED_ROW = "ragged_row"
    SINGLE_COLUMN = "single_column"


# ─── Geometry / OCR Models ────────────────────────────────────────────────────


class BoundingBox(BaseModel):
    """Axis-aligned pixel box: top-left corner plus size."""
    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(ge=0)
    height: int = Field(ge=0)

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def offset(self, dx: int, dy: int) -> BoundingBox:
        return BoundingBox(
            x=self.x + dx, y=self.y + dy,
            width=self.width, height=self.height,
        )


class OcrWord(BaseModel):
    """
    A single word read by the OCR engine.
    The box is expressed in table-region coordinates.
    """
    text: str
    box: BoundingBox
    confidence: float = Field(
        description="OCR confidence 0-100"
    )
    order_index: int = Field(
        ge=0,
        description="Position in the OCR engine's reading order for the row"
    )
    row_index: int = Field(ge=0)


class TableRow(BaseModel):
    """One reassembled table row: a cell per detected column."""
    index: int = Field(ge=0)
    box: BoundingBox
    cells: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def is_empty(self) -> bool:
        return not any(c.strip() for c in self.cells)


class ColumnCluster(BaseModel):
    """A column found by clustering word boxes, ordered left to right."""
    index: int = Field(ge=0)
    left: int
    right: int
    word_count: int = 0


class ExtractedTable(BaseModel):
    """The table found on a single page."""
    page_number: int = Field(ge=1)
    region: BoundingBox
    columns: list[ColumnCluster] = Field(default_factory=list)
    rows: list[TableRow] = Field(default_factory=list)
    words: list[OcrWord] = Field(default_factory=list)

    @computed_field
    @property
    def column_count(self) -> int:
        return len(self.columns)

    @computed_field
    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_records(self) -> list[list[str]]:
        """Return the table as a plain list of cell rows."""
        return [list(row.cells) for row in self.rows]


# ─── Anomaly Model ────────────────────────────────────────────────────────────


class Anomaly(BaseModel):
    """An issue detected on a page of a filing."""
    type: AnomalyType
    severity: int = Field(
        ge=0, le=100,
        description="Severity score 0-100"
    )
    message: str
    page_number: Optional[int] = None
    context: Optional[dict] = None


# ─── Filing / Extraction Result Models ───────────────────────────────────────


class FilingMetadata(BaseModel):
    """Metadata about the source PDF filing."""
    name: str = ""
    source_url: str = ""
    source_pdf: str = ""
    total_pages: int = 0
    file_hash: str = ""
    file_size_bytes: int = 0


class ExtractionVersion(BaseModel):
    """Version tracking for an extraction run."""
    extractor_version: str = "1.0.0"
    extraction_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    page_count: int = 0
    table_count: int = 0


class ValidationReport(BaseModel):
    """Post-extraction quality report."""
    pages_processed: int = 0
    pages_with_tables: int = 0
    pages_without_table: list[int] = Field(default_factory=list)
    total_rows: int = 0
    total_words: int = 0
    empty_rows: int = 0
    ragged_rows: int = 0
    low_confidence_words: int = 0
    anomaly_breakdown: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.pages_processed == 0:
            return 0.0
        return round(
            self.pages_with_tables / self.pages_processed * 100,
            2
        )


class ExtractionResult(BaseModel):
    """
    Complete output of an extraction run.
    This is the top-level JSON structure written to disk and served by the API.
    """
    filing: FilingMetadata
    version: ExtractionVersion
    tables: list[ExtractedTable] = Field(default_factory=list)
    anomalies: list[Anomaly] = Field(default_factory=list)
    validation: ValidationReport = Field(
        default_factory=ValidationReport
    )


class DownloadedFiling(BaseModel):
    """Outcome of fetching one filing PDF."""
    url: str
    path: str
    file_hash: str = ""
    file_size_bytes: int = 0
    skipped: bool = False


# ─── Post Models ──────────────────────────────────────────────────────────────


PostDate = Union[datetime, date]

# A free-text taxonomy label
Tag = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PostExtra(BaseModel):
    """Rendering flags under [extra]."""
    math: bool = False
    math_auto_render: bool = False
    comments: bool = False
    toc: bool = False


class PostTaxonomies(BaseModel):
    """Taxonomy labels under [taxonomies]."""
    tags: list[Tag] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: list[str]) -> list[str]:
        return list(dict.fromkeys(tags))


class Post(BaseModel):
    """A Markdown post with TOML frontmatter."""
    title: str = Field(min_length=1)
    description: str
    date: PostDate
    draft: bool
    updated: Optional[PostDate] = None
    taxonomies: PostTaxonomies = Field(default_factory=PostTaxonomies)
    extra: PostExtra = Field(default_factory=PostExtra)
    body: str = ""
    path: str = ""

    @property
    def tags(self) -> list[str]:
        return self.taxonomies.tags


class ContentIssue(BaseModel):
    """A problem found in one content file."""
    path: str
    message: str


class ContentReport(BaseModel):
    """Result of checking a content directory."""
    files_checked: int = 0
    published: int = 0
    drafts: int = 0
    errors: list[ContentIssue] = Field(default_factory=list)
    missing_images: list[ContentIssue] = Field(default_factory=list)
    tags: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def ok(self) -> bool:
        return not self.errors and not self.missing_images

    def add_tags(self, tags: list[str]):
        counts = Counter(self.tags)
        counts.update(tags)
        self.tags = dict(sorted(counts.items()))
