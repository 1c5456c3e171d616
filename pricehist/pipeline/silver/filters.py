"""
Row filters applied to the aggregated lookup table.

Both filters work on LookupSummary rows, i.e. after the group-by: bundle
detection is keyed on the product_id as emitted by the aggregation, and the
boundary filter needs each product's first-seen date.
"""

from typing import Iterable, Iterator, Optional

from ..base import BaseStage
from ..config import PipelineConfig
from ..dates import canonical_boundary, format_date
from ..errors import DateParseError, SkipReport, ValidationError
from ..records import LookupSummary


class BundleFilter(BaseStage):
    """Drops composite products, whose product_id lists several ids ('123,456')."""

    def __init__(self, config: PipelineConfig, skips: Optional[SkipReport] = None) -> None:
        super().__init__(config, skips)
        if not config.bundle_delimiter:
            raise ValidationError("bundle_delimiter must not be empty")
        self.delimiter = config.bundle_delimiter

    def is_bundle(self, row: LookupSummary) -> bool:
        return self.delimiter in row.product_id

    def process(self, rows: Iterable[LookupSummary]) -> Iterator[LookupSummary]:
        self.rows_in = self.rows_out = 0
        for row in rows:
            self.rows_in += 1
            if self.is_bundle(row):
                self.log.debug(f"Dropping bundle '{row.product_id}'.")
                continue
            self.rows_out += 1
            yield row


class BoundaryFilter(BaseStage):
    """
    Drops left-censored products.

    A product whose first-seen date equals the boundary (the date of the very
    first snapshot) may have been listed long before collection started, so
    its release date is unknown. The comparison is string equality on the
    canonical YYYY-MM-DD form.

    Args:
        config (PipelineConfig): The run configuration.
        boundary_date (str): The boundary in YYYY-MM-DD form.

    Raises:
        ValidationError: If the boundary is empty or malformed. The filter is
                         never built in that case, so no row can slip through.
    """

    def __init__(self, config: PipelineConfig, boundary_date: str, skips: Optional[SkipReport] = None) -> None:
        super().__init__(config, skips)
        if boundary_date is None or not str(boundary_date).strip():
            raise ValidationError("boundary date is empty")
        try:
            self.boundary = canonical_boundary(boundary_date)
        except DateParseError as error:
            raise ValidationError(f"boundary date '{boundary_date}' is malformed: {error}") from error
        if self.boundary != str(boundary_date).strip():
            raise ValidationError(f"boundary date '{boundary_date}' is not in canonical YYYY-MM-DD form")

    def process(self, rows: Iterable[LookupSummary]) -> Iterator[LookupSummary]:
        self.rows_in = self.rows_out = 0
        for row in rows:
            self.rows_in += 1
            if format_date(row.first_seen_date) == self.boundary:
                continue
            self.rows_out += 1
            yield row
