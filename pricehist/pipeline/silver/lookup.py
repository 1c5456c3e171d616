"""
Silver Layer: the ranked per-product lookup table.

Runs the first full pass over the snapshot category and reduces it to the
RankedLookup that the Gold layer joins against:

    aggregate -> drop bundles -> drop left-censored -> time0 + activity filter -> top-K
"""

from itertools import chain
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .aggregate import GroupByAggregator, aggregate_shards, first, last, max_
from .filters import BoundaryFilter, BundleFilter
from ..base import BaseStage
from ..bronze.store import SnapshotStore
from ..config import PipelineConfig
from ..dates import to_epoch_seconds
from ..errors import SkipReport, ValidationError
from ..records import LookupRecord, LookupSummary, Schema
from pricehist.utils.logger import get_logger

# --- SCHEMAS ---
# Only the date and the id decide whether an observation counts toward first-seen;
# a blank or garbled grade or review count reads as 0.
AGGREGATION_SCHEMA = Schema.from_pairs((
    ("query_date", "date"),
    ("product_id", "string"),
    ("grade", "count"),
    ("review_count", "count"),
))

LOOKUP_TABLE = "ranked_lookup"
SUMMARY_COLUMNS = (
    ("product_id", "VARCHAR"),
    ("first_seen_date", "VARCHAR"),
    ("last_grade", "BIGINT"),
    ("max_review_count", "BIGINT"),
)
LOOKUP_COLUMNS = (
    ("product_id", "VARCHAR"),
    ("time0", "BIGINT"),
    ("last_grade", "BIGINT"),
    ("max_review_count", "BIGINT"),
)


def build_aggregator(schema: Schema = AGGREGATION_SCHEMA, skips: Optional[SkipReport] = None) -> GroupByAggregator:
    """The per-product reduction: first-seen date, latest grade, peak review count."""
    return GroupByAggregator(
        schema,
        key="product_id",
        order_by="query_date",
        reducers={
            "first_seen_date": first("query_date"),
            "last_grade": last("grade"),
            "max_review_count": max_("review_count"),
        },
        skips=skips,
    )


def summarize(aggregator: GroupByAggregator) -> Iterator[LookupSummary]:
    for record in aggregator.results():
        yield LookupSummary(
            product_id=record["product_id"],
            first_seen_date=record["first_seen_date"],
            last_grade=record["last_grade"],
            max_review_count=record["max_review_count"],
        )


class LookupBuilder(BaseStage):
    """
    Converts first-seen dates to `time0` and drops inactive products.

    Products whose peak review count is not above `lookup_min_reviews` are
    treated as noise (unreleased or never reviewed).
    """

    def process(self, rows: Iterable[LookupSummary]) -> Iterator[LookupRecord]:
        self.rows_in = self.rows_out = 0
        threshold = self.config.lookup_min_reviews
        for row in rows:
            self.rows_in += 1
            if row.max_review_count <= threshold:
                continue
            self.rows_out += 1
            yield LookupRecord(
                product_id=row.product_id,
                time0=to_epoch_seconds(row.first_seen_date),
                last_grade=row.last_grade,
                max_review_count=row.max_review_count,
            )


class TopKSelector(BaseStage):
    """
    Keeps the N most-reviewed products.

    The sort is stable, so products with equal review counts keep their input
    order. This stage has to see every row before emitting the first one.

    Raises:
        ValidationError: If N is not a positive integer.
    """

    def __init__(self, config: PipelineConfig, skips: Optional[SkipReport] = None, top_k: Optional[int] = None) -> None:
        super().__init__(config, skips)
        n = config.top_k if top_k is None else top_k
        if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
            raise ValidationError(f"top-K must be a positive integer, got {n!r}")
        self.top_k = n

    def process(self, rows: Iterable[LookupRecord]) -> Iterator[LookupRecord]:
        ranked: List[LookupRecord] = sorted(rows, key=lambda r: r.max_review_count, reverse=True)
        self.rows_in = len(ranked)
        selected = ranked[: self.top_k]
        self.rows_out = len(selected)
        return iter(selected)


class LookupTableBuilder:
    """
    Orchestrates the Silver pass from snapshot category to RankedLookup.

    Attributes:
        config (PipelineConfig): The run configuration.
        store (SnapshotStore): Source of the snapshot rows.
        skips (SkipReport): Shared row-level skip tally.
    """

    def __init__(self, config: PipelineConfig, store: SnapshotStore, boundary_date: str,
                 skips: Optional[SkipReport] = None) -> None:
        self.config = config
        self.store = store
        self.skips = skips if skips is not None else SkipReport()
        self.log = get_logger("LookupTableBuilder")

        # All stages are built up front so bad settings fail before the scan.
        self.bundles = BundleFilter(config, self.skips)
        self.boundary = BoundaryFilter(config, boundary_date, self.skips)
        self.builder = LookupBuilder(config, self.skips)
        self.selector = TopKSelector(config, self.skips)

    def aggregate(self) -> GroupByAggregator:
        """First full pass: one partial state per product."""
        streams = []

        def opened():
            for stream in self.store.scan_files(self.config.category_name, AGGREGATION_SCHEMA, self.skips):
                streams.append(stream)
                yield stream

        if self.config.shard_by_file:
            self.log.info("Aggregating one shard per snapshot file.")
            aggregator = aggregate_shards(opened(), lambda: build_aggregator(skips=self.skips))
        else:
            aggregator = build_aggregator(skips=self.skips).consume(chain.from_iterable(opened()))

        defaulted = sum(stream.values_defaulted for stream in streams)
        if defaulted:
            self.log.warning(f"{defaulted:,} unreadable grade/review_count values were read as 0.")
        self.log.info(f"Aggregated {aggregator.rows_seen:,} observations into {len(aggregator):,} products.")
        return aggregator

    def _checkpoint(self, name: str, columns, rows: Iterable) -> Iterable:
        # Optionally materialize a stage's output under the file names the shell scripts used.
        if not self.config.keep_intermediate:
            return rows
        rows = list(rows)
        table = name.replace(".csv", "")
        self.store.import_rows(table, columns, rows)
        self.store.export_csv(table, Path(self.config.work_dir) / name)
        return rows

    def build(self) -> List[LookupRecord]:
        """
        Runs the whole Silver pass and stores the result in the 'ranked_lookup' table.

        Returns:
            List[LookupRecord]: The ranked lookup, most-reviewed first.
        """
        self.log.info("=== SILVER PASS STARTED ===")
        aggregator = self.aggregate()

        rows = self._checkpoint("all_first_seen_dates.csv", SUMMARY_COLUMNS, self.bundles.process(summarize(aggregator)))
        rows = self._checkpoint("first_seen_dates.csv", SUMMARY_COLUMNS, self.boundary.process(rows))
        rows = self._checkpoint("appids_list.csv", LOOKUP_COLUMNS, self.builder.process(rows))
        ranked = list(self.selector.process(rows))
        self._checkpoint("sorted_appids.csv", LOOKUP_COLUMNS, ranked)

        for stage in (self.bundles, self.boundary, self.builder, self.selector):
            stage.report()
        censored = self.boundary.rows_in - self.boundary.rows_out
        self.log.info(f"Boundary {self.boundary.boundary}: {censored:,} left-censored products removed.")

        self.store.import_rows(LOOKUP_TABLE, LOOKUP_COLUMNS, ranked)
        if not ranked:
            self.log.warning("Ranked lookup is empty: no product survived the filters.")
        self.log.info("=== SILVER PASS FINISHED ===")
        return ranked
