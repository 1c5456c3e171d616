from datetime import date

import pytest

from conftest import HEADER, obs, write_snapshot
from pricehist.pipeline.bronze.store import SnapshotStore
from pricehist.pipeline.config import OBSERVATION_COLUMNS
from pricehist.pipeline.errors import SchemaError, SkipReport, ValidationError
from pricehist.pipeline.records import Schema

SCHEMA = Schema.from_pairs(OBSERVATION_COLUMNS)


@pytest.fixture
def store(config):
    with SnapshotStore(config) as s:
        yield s


def test_category_lists_files_in_filename_order(store, snapshot_dir, config):
    write_snapshot(snapshot_dir, "20230103", [])
    write_snapshot(snapshot_dir, "20230101", [])
    (snapshot_dir / "notes.txt").write_text("not a snapshot")

    category = store.add_category(config.category_name, snapshot_dir, config.category_pattern)

    assert [p.name for p in category.files] == ["steam_queries_20230101.csv.gz", "steam_queries_20230103.csv.gz"]
    assert category.boundary_date == "2023-01-01"


def test_empty_category_is_a_validation_error(store, snapshot_dir, config):
    snapshot_dir.mkdir(parents=True)
    with pytest.raises(ValidationError):
        store.add_category(config.category_name, snapshot_dir, config.category_pattern)

    with pytest.raises(ValidationError):
        store.category("never_registered")


def test_scan_streams_typed_rows_across_files(store, snapshot_dir, config):
    write_snapshot(snapshot_dir, "20230101", [obs("2023.01.01", "1", 3)])
    write_snapshot(snapshot_dir, "20230102", [obs("2023.01.02", "2", 4), obs("2023.01.02", "1", 5)])
    store.add_category(config.category_name, snapshot_dir, config.category_pattern)

    rows = list(store.scan(config.category_name, SCHEMA))

    assert [(r["query_date"], r["product_id"], r["review_count"]) for r in rows] == [
        (date(2023, 1, 1), "1", 3),
        (date(2023, 1, 2), "2", 4),
        (date(2023, 1, 2), "1", 5),
    ]
    assert "url" not in rows[0]


def test_missing_column_in_snapshot_is_a_schema_error(store, snapshot_dir, config):
    header = [c for c in HEADER if c != "discount_price"]
    write_snapshot(snapshot_dir, "20230101", [["2023.01.01", "1", "t", 1, 1, "1.0", "u"]], header=header)
    store.add_category(config.category_name, snapshot_dir, config.category_pattern)

    with pytest.raises(SchemaError):
        list(store.scan(config.category_name, SCHEMA))


def test_bad_rows_are_skipped_and_counted(store, snapshot_dir, config):
    write_snapshot(snapshot_dir, "20230101", [obs("2023.01.01", "1", "lots"), obs("2023.01.01", "2", 3)])
    store.add_category(config.category_name, snapshot_dir, config.category_pattern)
    skips = SkipReport()

    rows = list(store.scan(config.category_name, SCHEMA, skips))

    assert [r["product_id"] for r in rows] == ["2"]
    assert skips["NumericParseError"] == 1


def test_stream_imports_transformed_rows(store, snapshot_dir, config):
    write_snapshot(snapshot_dir, "20230101", [obs("2023.01.01", "1", 3), obs("2023.01.01", "2", 0)])
    store.add_category(config.category_name, snapshot_dir, config.category_pattern)

    def reviewed(rows):
        for r in rows:
            if r["review_count"] > 0:
                yield {"product_id": r["product_id"], "review_count": r["review_count"]}

    count = store.stream(config.category_name, SCHEMA, reviewed, "reviewed",
                         [("product_id", "VARCHAR"), ("review_count", "BIGINT")])

    assert count == 1
    assert list(store.export_rows("reviewed")) == [{"product_id": "1", "review_count": 3}]


def test_export_csv_writes_header_and_empty_cells_for_null(store, tmp_path):
    columns = [("product_id", "VARCHAR"), ("discount_percent", "DOUBLE")]
    store.import_rows("t", columns, [{"product_id": "b", "discount_percent": 0.5}, {"product_id": "a"}])

    path = store.export_csv("t", tmp_path / "out" / "t.csv")

    assert path.read_text().splitlines() == ["product_id,discount_percent", "b,0.5", "a,"]


def test_reset_drops_every_table(store):
    store.import_rows("one", [("x", "BIGINT")], [{"x": 1}])
    store.import_rows("two", [("x", "BIGINT")], [])
    assert store.summary() == {"one": 1, "two": 0}

    store.reset()

    assert store.tables() == []


def test_table_names_are_validated(store):
    with pytest.raises(ValidationError):
        store.import_rows("bad; DROP TABLE x", [("x", "BIGINT")], [])
