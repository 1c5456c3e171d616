import csv
import gzip
from pathlib import Path

import pytest

from pricehist.pipeline.config import PipelineConfig
from pricehist.utils.logger import MemoryObserver, register_observer, unregister_observer

HEADER = ["query_date", "product_id", "title", "grade", "review_count", "full_price", "discount_price", "url"]


def write_snapshot(directory: Path, stamp: str, rows, header=HEADER) -> Path:
    """
    Writes one gzipped daily snapshot named like the production files.

    Args:
        directory (Path): Snapshot directory.
        stamp (str): YYYYMMDD date stamp used in the filename.
        rows: Iterable of row sequences (or dicts keyed by header).
    """
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"steam_queries_{stamp}.csv.gz"
    with gzip.open(path, "wt", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for row in rows:
            if isinstance(row, dict):
                row = [row.get(col, "") for col in header]
            writer.writerow(row)
    return path


def obs(day, product_id, reviews, full="9.99", discount="9.99", grade=7, title=None):
    """A raw snapshot row; `day` is the dotted query date (2023.01.02)."""
    return [day, product_id, title or f"Game {product_id}", grade, reviews, full, discount, "https://store/app"]


@pytest.fixture
def snapshot_dir(tmp_path):
    return tmp_path / "data" / "steam"


@pytest.fixture
def config(tmp_path, snapshot_dir):
    """A configuration pointing every path at the temporary directory."""
    return PipelineConfig(
        snapshot_dir=snapshot_dir,
        output_path=tmp_path / "out" / "top_records.csv",
        work_dir=tmp_path / "work",
        database_path=":memory:",
        boundary_date=None,
        preview_rows=0,
    )


@pytest.fixture
def captured_logs():
    """Captures every message logged by loggers created during the test."""
    observer = MemoryObserver()
    register_observer(observer)
    yield observer
    unregister_observer(observer)
