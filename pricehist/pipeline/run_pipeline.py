"""
Main Execution Entry Point for the Price History Pipeline.

Runs the whole batch in order:

1. Bronze: register the snapshot category and derive the boundary date.
2. Silver: first pass, build the ranked per-product lookup.
3. Gold: second pass, join every observation to the lookup and derive metrics.
4. Export: write the StatRecord table to CSV and preview the first rows.

Usage:
    python -m pricehist.pipeline.run_pipeline --snapshots /data/steam
    python -m pricehist.pipeline.run_pipeline --snapshots ./data/raw --top-k 50 --keep-intermediate
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .bronze.store import SnapshotStore
from .config import PipelineConfig, load_config
from .errors import PipelineError, SkipReport
from .gold.derive import STATS_TABLE, StatsBuilder
from .silver.lookup import LookupTableBuilder
from pricehist.utils.logger import get_logger


def resolve_boundary(config: PipelineConfig, store: SnapshotStore) -> str:
    """
    Picks the left-censoring boundary: the configured override, else the date
    stamped on the earliest snapshot filename.

    Raises:
        DateParseError: If the earliest filename carries no valid date.
    """
    if config.boundary_date:
        return config.boundary_date
    return store.category(config.category_name).boundary_date


def run(config: PipelineConfig, skips: Optional[SkipReport] = None) -> Path:
    """
    Executes one full pipeline run.

    Args:
        config (PipelineConfig): The validated run configuration.
        skips (SkipReport, optional): Collects row-level skips; a fresh one is used if omitted.

    Returns:
        Path: The written output CSV.

    Raises:
        PipelineError: On any fatal schema, date or validation error. Nothing
                       is written to `config.output_path` in that case.
    """
    log = get_logger("PriceHistoryPipeline")
    skips = skips if skips is not None else SkipReport()

    with SnapshotStore(config) as store:
        # 1. Bronze: start from an empty database and register the snapshots
        store.reset()
        store.add_category(config.category_name, config.snapshot_dir, config.category_pattern)
        boundary = resolve_boundary(config, store)
        log.info(f"Boundary date (first snapshot): {boundary}")

        # 2. Silver: ranked lookup
        lookup = LookupTableBuilder(config, store, boundary, skips).build()

        # 3. Gold: join and derive
        written = StatsBuilder(config, store, lookup, skips).build()

        # 4. Export
        output = store.export_csv(STATS_TABLE, config.output_path)
        log.info(f"✅ {written:,} price-history rows saved to: {output}")
        store.summary()

        if config.preview_rows:
            preview = store.export_frame(STATS_TABLE, limit=config.preview_rows)
            log.info(f"Preview (first {len(preview)} rows):\n{preview.to_string(index=False)}")

    return output


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Storefront Price History: daily snapshots -> discount-over-time dataset")

    parser.add_argument("--snapshots", type=Path, help="Directory holding the daily snapshot files.")
    parser.add_argument("--pattern", help="Glob pattern selecting snapshot files (default '*steam*.csv.gz').")
    parser.add_argument("--output", type=Path, help="Destination CSV for the final dataset.")
    parser.add_argument("--work-dir", type=Path, help="Where intermediate lookup CSVs are written.")
    parser.add_argument("--database", help="DuckDB database file (default: in-memory).")
    parser.add_argument("--top-k", type=int, help="Number of most-reviewed products to keep (default 25).")
    parser.add_argument("--lookup-min-reviews", type=int, help="Products need more reviews than this to enter the lookup.")
    parser.add_argument("--join-min-reviews", type=int, help="Review threshold re-checked during the join.")
    parser.add_argument("--boundary-date", help="Override the boundary date (YYYY-MM-DD).")
    parser.add_argument("--output-date-format", help="strftime format for query_date in the output.")
    parser.add_argument("--preview-rows", type=int, help="Rows to print after the run (0 disables).")
    parser.add_argument("--shard-by-file", action="store_true", default=None,
                        help="Aggregate each snapshot separately, then merge the partial results.")
    parser.add_argument("--keep-intermediate", action="store_true", default=None,
                        help="Also export the intermediate lookup tables as CSV.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parses command-line arguments and triggers one pipeline run.

    Returns:
        int: Process exit code (0 on success, 1 on a fatal pipeline error).
    """
    log = get_logger("PriceHistoryOrchestrator")
    args = build_parser().parse_args(argv)

    try:
        config = load_config(
            snapshot_dir=args.snapshots,
            category_pattern=args.pattern,
            output_path=args.output,
            work_dir=args.work_dir,
            database_path=args.database,
            top_k=args.top_k,
            lookup_min_reviews=args.lookup_min_reviews,
            join_min_reviews=args.join_min_reviews,
            boundary_date=args.boundary_date,
            output_date_format=args.output_date_format,
            preview_rows=args.preview_rows,
            shard_by_file=args.shard_by_file,
            keep_intermediate=args.keep_intermediate,
        )
    except PipelineError as error:
        log.error(f"Invalid configuration: {error}")
        return 1

    log.info(f"=== PRICE HISTORY PIPELINE STARTED | Snapshots: {config.snapshot_dir} | Top-K: {config.top_k} ===")

    skips = SkipReport()
    try:
        run(config, skips)
    except PipelineError as error:
        log.error(f"{type(error).__name__}: {error}")
        log.info(f"Skipped rows: {skips.summary()}")
        log.info("=== PRICE HISTORY PIPELINE ABORTED ===")
        return 1

    if skips.total:
        log.warning(f"Skipped rows: {skips.summary()}")
    else:
        log.info(f"Skipped rows: {skips.summary()}")
    log.info("=== PRICE HISTORY PIPELINE FINISHED ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
