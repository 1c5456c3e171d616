"""
Typed record streams and the record types that flow between stages.

A RecordStream wraps any iterable of raw rows (dicts keyed by source column
name, values usually text) and yields dicts restricted to, and coerced by, a
declared schema. The stream is lazy: it holds one row at a time.
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, Iterator, Optional, Sequence, Tuple

from .config import INPUT_DATE_FORMATS
from .dates import format_date, parse_date
from .errors import DateParseError, NumericParseError, SchemaError, SkipReport

# "count" is a lenient integer: blank or unparsable values read as 0 instead of
# dropping the row.
KINDS = ("string", "int", "count", "float", "date")


@dataclass(frozen=True)
class Column:
    name: str
    kind: str = "string"

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise SchemaError(f"column '{self.name}' has unknown kind '{self.kind}'")


class Schema:
    """
    An ordered set of typed columns.

    Args:
        columns (Iterable[Column]): The declared columns, in output order.

    Raises:
        SchemaError: On duplicate column names.
    """

    def __init__(self, columns: Iterable[Column]) -> None:
        self.columns: Tuple[Column, ...] = tuple(columns)
        names = [c.name for c in self.columns]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise SchemaError(f"duplicate columns in schema: {duplicates}")
        self._kinds: Dict[str, str] = {c.name: c.kind for c in self.columns}

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]]) -> "Schema":
        return cls(Column(name, kind) for name, kind in pairs)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def __contains__(self, name: str) -> bool:
        return name in self._kinds

    def __repr__(self) -> str:
        return f"Schema({', '.join(f'{c.name}:{c.kind}' for c in self.columns)})"

    def kind_of(self, name: str) -> str:
        try:
            return self._kinds[name]
        except KeyError:
            raise SchemaError(f"column '{name}' is not part of {self!r}") from None

    def select(self, *names: str) -> "Schema":
        """Returns the sub-schema holding `names`, in the order given."""
        return Schema(Column(name, self.kind_of(name)) for name in names)

    def require(self, header: Iterable[str]) -> None:
        """
        Checks that a source header provides every declared column.

        Raises:
            SchemaError: Listing the missing columns.
        """
        available = set(header)
        missing = [name for name in self.names if name not in available]
        if missing:
            raise SchemaError(f"missing required columns {missing}; source has {sorted(available)}")


def parse_int(value: Any) -> int:
    """
    Parses an integer field ('12', ' 12 ', '12.0').

    Raises:
        NumericParseError: On empty, non-numeric or fractional values.
    """
    if isinstance(value, bool):
        raise NumericParseError(f"boolean {value!r} is not an integer")
    if isinstance(value, int):
        return value
    text = "" if value is None else str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        raise NumericParseError(f"'{text}' is not an integer") from None
    if not number.is_integer():
        raise NumericParseError(f"'{text}' is not a whole number")
    return int(number)


def parse_float(value: Any) -> float:
    """
    Parses a decimal field such as a string-encoded price.

    Raises:
        NumericParseError: On empty, non-numeric, NaN or infinite values.
    """
    if isinstance(value, bool):
        raise NumericParseError(f"boolean {value!r} is not a number")
    text = "" if value is None else str(value).strip()
    try:
        number = float(text)
    except ValueError:
        raise NumericParseError(f"'{text}' is not a number") from None
    if not math.isfinite(number):
        raise NumericParseError(f"'{text}' is not a finite number")
    return number


class RecordStream:
    """
    Lazy, schema-checked iterator over tabular rows.

    Each raw row is projected onto the schema's columns and coerced per kind.
    Extra source columns are dropped. A row whose value cannot be coerced is
    skipped and tallied in `skips`; a source lacking a declared column raises
    SchemaError before the first row is produced.

    Attributes:
        schema (Schema): The declared columns.
        source (str): A label for log messages (usually the snapshot filename).
        rows_read (int): Raw rows consumed so far.
        rows_emitted (int): Typed rows yielded so far.
        values_defaulted (int): Non-blank "count" values that could not be read and became 0.
    """

    def __init__(
        self,
        schema: Schema,
        rows: Iterable[Dict[str, Any]],
        header: Optional[Sequence[str]] = None,
        date_formats: Sequence[str] = INPUT_DATE_FORMATS,
        skips: Optional[SkipReport] = None,
        source: str = "<rows>",
    ) -> None:
        self.schema = schema
        self.source = source
        self.date_formats = tuple(date_formats)
        self.skips = skips if skips is not None else SkipReport()
        self.rows_read = 0
        self.rows_emitted = 0
        self.values_defaulted = 0
        self._rows = rows
        self._checked = False
        if header is not None:
            schema.require(header)
            self._checked = True

    def _coerce(self, name: str, kind: str, value: Any) -> Any:
        if kind == "int":
            return parse_int(value)
        if kind == "count":
            try:
                return parse_int(value)
            except NumericParseError:
                if value is not None and str(value).strip():
                    self.values_defaulted += 1
                return 0
        if kind == "float":
            return parse_float(value)
        if kind == "date":
            return parse_date(value, self.date_formats)
        return "" if value is None else str(value)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        for raw in self._rows:
            if not self._checked:
                self.schema.require(raw.keys())
                self._checked = True
            self.rows_read += 1
            try:
                record = {c.name: self._coerce(c.name, c.kind, raw[c.name]) for c in self.schema.columns}
            except (NumericParseError, DateParseError) as error:
                self.skips.record(error)
                continue
            self.rows_emitted += 1
            yield record


@dataclass(frozen=True)
class LookupSummary:
    """One row per distinct product across the whole snapshot history."""
    product_id: str
    first_seen_date: date
    last_grade: int
    max_review_count: int

    def as_row(self, date_format: str = "%Y.%m.%d") -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "first_seen_date": format_date(self.first_seen_date, date_format),
            "last_grade": self.last_grade,
            "max_review_count": self.max_review_count,
        }


@dataclass(frozen=True)
class LookupRecord:
    """A RankedLookup row: the compact per-product record joined in the second pass."""
    product_id: str
    time0: int
    last_grade: int
    max_review_count: int

    def as_row(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "time0": self.time0,
            "last_grade": self.last_grade,
            "max_review_count": self.max_review_count,
        }


@dataclass(frozen=True)
class StatRecord:
    """
    One row of the final dataset.

    `discount_percent` is None when the retail price is not positive; the field
    is then left out of `as_row()` and written as an empty cell.
    """
    query_date: str
    product_id: str
    title: str
    retail_price: float
    sale_price: float
    time0: int
    grade: int
    review_count: int
    cur_time: int
    delta_t: int
    discount_percent: Optional[float] = None

    def __post_init__(self) -> None:
        if self.retail_price > 0:
            if self.discount_percent is None:
                raise ValueError("discount_percent is required when retail_price > 0")
        elif self.discount_percent is not None:
            raise ValueError("discount_percent must be absent when retail_price <= 0")

    def as_row(self) -> Dict[str, Any]:
        row = {
            "query_date": self.query_date,
            "product_id": self.product_id,
            "title": self.title,
            "retail_price": self.retail_price,
            "sale_price": self.sale_price,
            "time0": self.time0,
            "grade": self.grade,
            "review_count": self.review_count,
            "cur_time": self.cur_time,
            "delta_t": self.delta_t,
        }
        if self.discount_percent is not None:
            row["discount_percent"] = self.discount_percent
        return row
