"""
Gold Layer: join the raw log back onto the ranked lookup.

Second full pass over the snapshot category. Every daily observation whose
product survived the Silver pass is enriched with the product's lookup values
and the derived metrics used for discount-over-time curves:

    cur_time          UTC-midnight epoch seconds of the observation date
    delta_t           seconds since the product was first seen
    discount_percent  (retail - sale) / retail, only when retail > 0
"""

from typing import Dict, Iterable, Iterator, Mapping, Optional

from ..base import BaseStage
from ..bronze.store import SnapshotStore
from ..config import STAT_COLUMNS, PipelineConfig
from ..dates import format_date, parse_date, to_epoch_seconds
from ..errors import DateParseError, NumericParseError, SkipReport
from ..records import LookupRecord, Schema, StatRecord, parse_float
from pricehist.utils.logger import get_logger

# --- SCHEMAS ---
# The date stays text here so a malformed date costs one counted row in this stage.
JOIN_SCHEMA = Schema.from_pairs(
    (name, "string") for name in ("query_date", "product_id", "title", "full_price", "discount_price")
)

STATS_TABLE = "stat_records"


class JoinAndDeriveEngine(BaseStage):
    """
    Streaming inner join of observations against the RankedLookup.

    Args:
        config (PipelineConfig): The run configuration.
        lookup (Iterable[LookupRecord]): The ranked lookup; indexed by product_id.
        skips (SkipReport, optional): Shared tally of row-level skips.
    """

    def __init__(self, config: PipelineConfig, lookup: Iterable[LookupRecord],
                 skips: Optional[SkipReport] = None) -> None:
        super().__init__(config, skips)
        self.index: Dict[str, LookupRecord] = {}
        for record in lookup:
            # The first occurrence wins, as with the ranked order.
            self.index.setdefault(record.product_id, record)
        self.unmatched = 0
        self.guarded = 0

    def derive(self, row: Mapping[str, str], match: LookupRecord) -> StatRecord:
        """
        Builds the StatRecord for one matched observation.

        Raises:
            DateParseError: If the observation date is malformed.
            NumericParseError: If either price is not a finite number.
        """
        observed = parse_date(row["query_date"], self.config.input_date_formats)
        cur_time = to_epoch_seconds(observed)
        delta_t = cur_time - match.time0

        retail_price = parse_float(row["full_price"])
        sale_price = parse_float(row["discount_price"])

        discount_percent = None
        if retail_price > 0:
            discount_percent = (retail_price - sale_price) / retail_price

        return StatRecord(
            query_date=format_date(observed, self.config.output_date_format),
            product_id=row["product_id"],
            title=row["title"],
            retail_price=retail_price,
            sale_price=sale_price,
            time0=match.time0,
            grade=match.last_grade,
            review_count=match.max_review_count,
            cur_time=cur_time,
            delta_t=delta_t,
            discount_percent=discount_percent,
        )

    def process(self, rows: Iterable[Mapping[str, str]]) -> Iterator[StatRecord]:
        self.rows_in = self.rows_out = 0
        self.unmatched = self.guarded = 0
        min_reviews = self.config.join_min_reviews

        for row in rows:
            self.rows_in += 1
            match = self.index.get(row["product_id"])
            if match is None:
                self.unmatched += 1
                continue

            # Guaranteed by the Silver pass; re-checked in case the lookup came from elsewhere.
            if match.time0 <= 0 or match.max_review_count <= min_reviews:
                self.guarded += 1
                continue

            try:
                record = self.derive(row, match)
            except (DateParseError, NumericParseError) as error:
                self.skips.record(error)
                self.log.debug(f"Skipping {row['product_id']} on {row['query_date']}: {error}")
                continue
            if record.delta_t < 0:
                # Observed before its first-seen date: the lookup does not belong to this log.
                self.skips.record("negative_delta_t")
                continue

            self.rows_out += 1
            yield record

    def report(self) -> None:
        super().report()
        self.log.info(f"{self.unmatched:,} rows had no lookup match, {self.guarded:,} failed the lookup guards.")


class StatsBuilder:
    """
    Orchestrates the Gold pass: category -> JoinAndDeriveEngine -> 'stat_records' table.
    """

    def __init__(self, config: PipelineConfig, store: SnapshotStore, lookup: Iterable[LookupRecord],
                 skips: Optional[SkipReport] = None) -> None:
        self.config = config
        self.store = store
        self.skips = skips if skips is not None else SkipReport()
        self.engine = JoinAndDeriveEngine(config, lookup, self.skips)
        self.log = get_logger("StatsBuilder")

    def build(self) -> int:
        """
        Streams the whole category through the join and stores the StatRecords.

        Returns:
            int: Number of StatRecords written to the 'stat_records' table.
        """
        self.log.info("=== GOLD PASS STARTED ===")
        self.log.info(f"Joining against {len(self.engine.index):,} ranked products.")
        count = self.store.stream(
            self.config.category_name,
            JOIN_SCHEMA,
            self.engine.process,
            STATS_TABLE,
            STAT_COLUMNS,
            self.skips,
        )
        self.engine.report()
        self.log.info("=== GOLD PASS FINISHED ===")
        return count
