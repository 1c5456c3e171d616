import pandas as pd
import pytest

from conftest import obs, write_snapshot
from pricehist.pipeline.errors import SchemaError, SkipReport, ValidationError
from pricehist.pipeline.config import env_int, load_config
from pricehist.pipeline.run_pipeline import main, run

EXPECTED_COLUMNS = [
    "query_date", "product_id", "title", "retail_price", "sale_price",
    "time0", "grade", "review_count", "cur_time", "delta_t", "discount_percent",
]


@pytest.fixture
def corpus(snapshot_dir):
    """
    Four daily snapshots.

    - 'veteran' is listed from day 1 (left-censored).
    - 'rookie' launches on day 2 and goes on sale on day 3.
    - 'freebie' launches on day 2 and is free.
    - '11,12' is a bundle; 'ghost' never gets a review.
    """
    write_snapshot(snapshot_dir, "20230101", [
        obs("2023.01.01", "veteran", 1000, "29.99", "29.99"),
    ])
    write_snapshot(snapshot_dir, "20230102", [
        obs("2023.01.02", "veteran", 1001, "29.99", "9.99"),
        obs("2023.01.02", "rookie", 5, "20.00", "20.00", grade=6),
        obs("2023.01.02", "freebie", 50, "0", "0"),
        obs("2023.01.02", "11,12", 5000, "40.00", "30.00"),
        obs("2023.01.02", "ghost", 0, "5.00", "5.00"),
    ])
    write_snapshot(snapshot_dir, "20230103", [
        obs("2023.01.03", "rookie", 12, "20.00", "15.00", grade=8),
        obs("2023.01.03", "freebie", 55, "0", "0"),
    ])
    write_snapshot(snapshot_dir, "20230104", [
        obs("2023.01.04", "rookie", 11, "20.00", "not-a-price", grade=8),
    ])
    return snapshot_dir


def read_output(path):
    return pd.read_csv(path, dtype={"product_id": str, "query_date": str})


def test_full_run_produces_clean_price_history(config, corpus):
    skips = SkipReport()
    output = run(config, skips)

    df = read_output(output)

    assert list(df.columns) == EXPECTED_COLUMNS
    assert set(df["product_id"]) == {"rookie", "freebie"}
    assert "veteran" not in set(df["product_id"])

    rookie = df[df["product_id"] == "rookie"].reset_index(drop=True)
    assert list(rookie["query_date"]) == ["2023-01-02", "2023-01-03"]
    assert list(rookie["delta_t"]) == [0, 86400]
    assert set(rookie["grade"]) == {8}
    assert set(rookie["review_count"]) == {12}
    assert rookie.loc[1, "discount_percent"] == pytest.approx(0.25)

    freebie = df[df["product_id"] == "freebie"]
    assert freebie["discount_percent"].isna().all()

    assert skips["NumericParseError"] == 1


def test_every_output_product_exists_in_the_raw_log(config, corpus):
    df = read_output(run(config))

    raw_ids = set()
    for path in corpus.glob("*.csv.gz"):
        raw_ids |= set(pd.read_csv(path, dtype={"product_id": str})["product_id"])

    assert set(df["product_id"]) <= raw_ids


def test_absent_discount_is_an_empty_cell(config, corpus):
    lines = run(config).read_text().splitlines()
    free_rows = [line for line in lines if ",freebie," in line]

    assert free_rows
    assert all(line.endswith(",") for line in free_rows)
    assert not any("nan" in line.lower() for line in lines)


def test_top_k_limits_products(config, corpus):
    df = read_output(run(config.with_overrides(top_k=1)))
    # freebie peaked at 55 reviews, rookie at 12
    assert set(df["product_id"]) == {"freebie"}


def test_two_runs_are_byte_identical(config, corpus, tmp_path):
    first = run(config.with_overrides(output_path=tmp_path / "a.csv")).read_bytes()
    second = run(config.with_overrides(output_path=tmp_path / "b.csv")).read_bytes()

    assert first == second


def test_product_first_seen_on_boundary_yields_no_rows(config, snapshot_dir):
    """
    Product 42 is seen on both days; the boundary is the first day, so its
    launch date is unknown and it must not appear in the output.
    """
    write_snapshot(snapshot_dir, "20230101", [obs("2023.01.01", "42", 10, "19.99", "19.99")])
    write_snapshot(snapshot_dir, "20230102", [obs("2023.01.02", "42", 20, "19.99", "14.99")])

    df = read_output(run(config.with_overrides(boundary_date="2023-01-01")))

    assert (df["product_id"] == "42").sum() == 0


def test_missing_column_aborts_before_output(config, snapshot_dir):
    header = ["query_date", "product_id", "title", "grade", "full_price", "discount_price"]
    write_snapshot(snapshot_dir, "20230101", [["2023.01.01", "1", "t", 1, "1.0", "1.0"]], header=header)

    with pytest.raises(SchemaError):
        run(config)
    assert not config.output_path.exists()


def test_invalid_configuration_is_rejected_before_io(config):
    with pytest.raises(ValidationError):
        load_config(snapshot_dir=config.snapshot_dir, top_k=0)
    with pytest.raises(ValidationError):
        load_config(snapshot_dir=config.snapshot_dir, boundary_date="")
    with pytest.raises(ValidationError):
        load_config(snapshot_dir=config.snapshot_dir, boundary_date="01/01/2023")


def test_cli_reports_skips_and_exit_codes(tmp_path, corpus, captured_logs):
    argv = [
        "--snapshots", str(corpus),
        "--output", str(tmp_path / "cli.csv"),
        "--work-dir", str(tmp_path / "work"),
        "--database", ":memory:",
        "--preview-rows", "5",
        "--keep-intermediate",
    ]

    assert main(argv) == 0
    assert (tmp_path / "cli.csv").exists()
    assert (tmp_path / "work" / "sorted_appids.csv").exists()

    messages = captured_logs.messages()
    assert any("PIPELINE FINISHED" in m for m in messages)
    assert any("NumericParseError=1" in m for m in captured_logs.messages("WARNING"))

    assert main(argv + ["--top-k", "0"]) == 1
    assert main(["--snapshots", str(tmp_path / "missing"), "--output", str(tmp_path / "x.csv")]) == 1


def test_unreviewed_listing_on_boundary_day_is_still_left_censored(config, snapshot_dir):
    write_snapshot(snapshot_dir, "20230101", [obs("2023.01.01", "P", "")])
    write_snapshot(snapshot_dir, "20230102", [obs("2023.01.02", "P", 5), obs("2023.01.02", "N", 2)])
    skips = SkipReport()

    df = read_output(run(config, skips))

    assert "P" not in set(df["product_id"])
    assert list(df["product_id"]) == ["N"]
    assert skips["negative_delta_t"] == 0


def test_blank_product_id_is_skipped_and_the_run_completes(config, corpus):
    write_snapshot(corpus, "20230105", [obs("2023.01.05", "", 7), obs("2023.01.05", "rookie", 12, "20.00", "10.00")])
    skips = SkipReport()

    df = read_output(run(config, skips))

    assert set(df["product_id"]) == {"rookie", "freebie"}
    assert skips["missing_product_id"] == 1


def test_non_numeric_knobs_are_validation_errors(config, monkeypatch):
    monkeypatch.setenv("PRICEHIST_TOP_K", "lots")
    assert env_int("PRICEHIST_TOP_K", 25) == "lots"
    monkeypatch.setenv("PRICEHIST_TOP_K", " 7 ")
    assert env_int("PRICEHIST_TOP_K", 25) == 7

    with pytest.raises(ValidationError):
        config.with_overrides(top_k="lots").validate()
    with pytest.raises(ValidationError):
        config.with_overrides(join_min_reviews="none").validate()
