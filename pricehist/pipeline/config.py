"""
Configuration Module for the Price History Pipeline.

This module is the single source of truth for every tunable knob of a run.
Defaults live here as module constants, can be overridden through environment
variables (a `.env` file in the project root is picked up automatically), and
are frozen into a `PipelineConfig` object that every stage receives through
its constructor. No stage reads globals at run time.

Key Responsibilities:
- Resolves the default directories (snapshots, output, work files, logs).
- Declares the raw snapshot schema and the final StatRecord column order.
- Validates knob values before any I/O happens.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from .dates import canonical_boundary
from .errors import DateParseError, ValidationError

# --- SETUP ---
load_dotenv()
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


def env_int(name: str, default: int):
    """
    Reads an integer knob from the environment.

    An unparsable value is returned as the raw string so that
    `PipelineConfig.validate()` rejects it with a ValidationError instead of
    the import failing.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return raw


# --- DIRECTORY DEFAULTS ---
SNAPSHOT_DIR: Path = Path(os.getenv("PRICEHIST_SNAPSHOT_DIR", "/data/steam"))
WORK_DIR: Path = Path(os.getenv("PRICEHIST_WORK_DIR", str(PROJECT_ROOT / "data" / "work")))
OUTPUT_PATH: Path = Path(os.getenv("PRICEHIST_OUTPUT", str(PROJECT_ROOT / "data" / "gold" / "top_records.csv")))
DATABASE_PATH: str = os.getenv("PRICEHIST_DATABASE", ":memory:")

# --- DISCOVERY ---
# Snapshot files are grouped into one category by glob pattern.
CATEGORY_NAME: str = "steam_queries"
CATEGORY_PATTERN: str = os.getenv("PRICEHIST_CATEGORY_PATTERN", "*steam*.csv.gz")

# --- SELECTION KNOBS ---
TOP_K: int = env_int("PRICEHIST_TOP_K", 25)
LOOKUP_MIN_REVIEWS: int = env_int("PRICEHIST_LOOKUP_MIN_REVIEWS", 0)
JOIN_MIN_REVIEWS: int = env_int("PRICEHIST_JOIN_MIN_REVIEWS", 0)
BUNDLE_DELIMITER: str = ","
PREVIEW_ROWS: int = env_int("PRICEHIST_PREVIEW_ROWS", 150)

# --- DATE FORMATS ---
# Snapshots carry dotted dates (2023.01.02); filenames and the boundary use dashes.
INPUT_DATE_FORMATS: Tuple[str, ...] = ("%Y.%m.%d", "%Y-%m-%d")
OUTPUT_DATE_FORMAT: str = os.getenv("PRICEHIST_OUTPUT_DATE_FORMAT", "%Y-%m-%d")

# --- SCHEMA DEFINITION ---
# Column name -> semantic kind of the raw daily snapshot.
OBSERVATION_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("query_date", "date"),
    ("product_id", "string"),
    ("title", "string"),
    ("grade", "int"),
    ("review_count", "int"),
    ("full_price", "string"),
    ("discount_price", "string"),
)

# --- FINAL PROJECTION ---
STAT_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("query_date", "VARCHAR"),
    ("product_id", "VARCHAR"),
    ("title", "VARCHAR"),
    ("retail_price", "DOUBLE"),
    ("sale_price", "DOUBLE"),
    ("time0", "BIGINT"),
    ("grade", "BIGINT"),
    ("review_count", "BIGINT"),
    ("cur_time", "BIGINT"),
    ("delta_t", "BIGINT"),
    ("discount_percent", "DOUBLE"),
)


@dataclass(frozen=True)
class PipelineConfig:
    """
    The Master Configuration object threaded through every stage.

    'frozen=True' keeps a run's settings immutable once the pipeline starts.
    Use `with_overrides()` to derive a variant (the CLI does this for flags).
    """
    snapshot_dir: Path = SNAPSHOT_DIR
    category_pattern: str = CATEGORY_PATTERN
    category_name: str = CATEGORY_NAME
    output_path: Path = OUTPUT_PATH
    work_dir: Path = WORK_DIR
    database_path: str = DATABASE_PATH
    top_k: int = TOP_K
    lookup_min_reviews: int = LOOKUP_MIN_REVIEWS
    join_min_reviews: int = JOIN_MIN_REVIEWS
    bundle_delimiter: str = BUNDLE_DELIMITER
    input_date_formats: Tuple[str, ...] = field(default=INPUT_DATE_FORMATS)
    output_date_format: str = OUTPUT_DATE_FORMAT
    boundary_date: Optional[str] = os.getenv("PRICEHIST_BOUNDARY_DATE") or None
    preview_rows: int = PREVIEW_ROWS
    shard_by_file: bool = False
    keep_intermediate: bool = False

    def with_overrides(self, **changes) -> "PipelineConfig":
        """Returns a copy with the non-None values of `changes` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def validate(self) -> "PipelineConfig":
        """
        Rejects knob values that would make the run meaningless.

        Raises:
            ValidationError: On a non-integer count knob, a non-positive top-K, an
                             empty category pattern or delimiter, no input date
                             formats or a malformed boundary date.
        """
        for name in ("top_k", "lookup_min_reviews", "join_min_reviews", "preview_rows"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{name} must be an integer, got {value!r}")
        if self.top_k <= 0:
            raise ValidationError(f"top_k must be a positive integer, got {self.top_k!r}")
        if not self.category_pattern:
            raise ValidationError("category_pattern must not be empty")
        if not self.bundle_delimiter:
            raise ValidationError("bundle_delimiter must not be empty")
        if not self.input_date_formats:
            raise ValidationError("at least one input date format is required")
        if self.preview_rows < 0:
            raise ValidationError(f"preview_rows must be >= 0, got {self.preview_rows}")
        if self.boundary_date is not None:
            try:
                canonical = canonical_boundary(self.boundary_date)
            except DateParseError as error:
                raise ValidationError(f"boundary_date '{self.boundary_date}' is malformed: {error}") from error
            if canonical != self.boundary_date:
                raise ValidationError(f"boundary_date must be YYYY-MM-DD, got '{self.boundary_date}'")
        return self


def load_config(**overrides) -> PipelineConfig:
    """
    Builds and validates the run configuration.

    Args:
        **overrides: Field values that take precedence over the environment
                     defaults. None values are ignored.

    Returns:
        PipelineConfig: A validated, immutable configuration.
    """
    return PipelineConfig().with_overrides(**overrides).validate()
