"""
Date normalization helpers.

Snapshot rows carry dotted dates (2023.01.02), filenames carry compact dates
(steam_20230102.csv.gz) and the boundary is compared in the dashed canonical
form (2023-01-02). Everything is turned into a `datetime.date` as soon as it is
read; the textual forms only exist at the edges.
"""

import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from .errors import DateParseError

CANONICAL_FORMAT = "%Y-%m-%d"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FILENAME_DATE = re.compile(r"^\d{8}$")


def parse_date(value, formats: Sequence[str]) -> date:
    """
    Parses `value` with the first matching format.

    Args:
        value: A date string, or an already-parsed date (returned unchanged).
        formats (Sequence[str]): strptime formats tried in order.

    Returns:
        date: The parsed calendar date.

    Raises:
        DateParseError: If the value is empty or matches none of the formats.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = "" if value is None else str(value).strip()
    if not text:
        raise DateParseError("empty date value")
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise DateParseError(f"'{text}' does not match any of {list(formats)}")


def format_date(value: date, fmt: str = CANONICAL_FORMAT) -> str:
    return value.strftime(fmt)


def to_epoch_seconds(value: date) -> int:
    """Seconds between the Unix epoch and UTC midnight of `value`."""
    midnight = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return int((midnight - _EPOCH).total_seconds())


def canonical_boundary(value) -> str:
    """
    Validates a boundary date and returns it in canonical YYYY-MM-DD form.

    Raises:
        DateParseError: If the value is not a valid canonical date.
    """
    return format_date(parse_date(value, (CANONICAL_FORMAT,)))


def date_from_filename(path) -> date:
    """
    Extracts the snapshot date encoded in a filename.

    The date is the text after the last '_' of the name up to its first '.',
    written as YYYYMMDD (e.g. 'steam_queries_20230101.csv.gz').

    Raises:
        DateParseError: If the name carries no valid YYYYMMDD stamp.
    """
    name = Path(path).name
    stem = name.split(".", 1)[0]
    stamp = stem.rsplit("_", 1)[-1]
    if not _FILENAME_DATE.match(stamp):
        raise DateParseError(f"no YYYYMMDD date stamp in filename '{name}'")
    try:
        return datetime.strptime(stamp, "%Y%m%d").date()
    except ValueError as error:
        raise DateParseError(f"invalid date stamp '{stamp}' in filename '{name}'") from error


def boundary_from_files(paths: Iterable) -> str:
    """
    Derives the boundary date from the lexicographically first snapshot filename.

    Returns:
        str: The boundary in canonical YYYY-MM-DD form.

    Raises:
        DateParseError: If there are no files or the first name has no date stamp.
    """
    names = sorted(Path(p).name for p in paths)
    if not names:
        raise DateParseError("cannot derive a boundary date from an empty snapshot set")
    return format_date(date_from_filename(names[0]))
