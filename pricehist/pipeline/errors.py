"""
Error taxonomy and row-level skip accounting.

Fatal errors (bad configuration, missing columns, an unreadable boundary date)
propagate and abort the run before any output is written. Row-level errors are
raised by the parsing helpers, caught by the streaming stages and tallied in a
SkipReport so the run can report them at the end.
"""

from collections import Counter
from typing import Dict


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class SchemaError(PipelineError):
    """A required column is missing or misnamed."""


class DateParseError(PipelineError, ValueError):
    """A date string matches none of the accepted formats."""


class NumericParseError(PipelineError, ValueError):
    """A numeric field (price, grade, review count) cannot be parsed."""


class ValidationError(PipelineError, ValueError):
    """A configuration value is rejected before any I/O."""


class SkipReport:
    """
    Counts rows dropped for row-level errors, keyed by reason.

    One instance is shared by all stages of a run. Reasons are the error class
    name for parse failures (e.g. 'NumericParseError') or a short label for
    guard violations (e.g. 'negative_delta_t').
    """

    def __init__(self) -> None:
        self._counts: Counter = Counter()

    def record(self, reason) -> None:
        if isinstance(reason, BaseException):
            reason = type(reason).__name__
        self._counts[reason] += 1

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def counts(self) -> Dict[str, int]:
        return dict(sorted(self._counts.items()))

    def __getitem__(self, reason: str) -> int:
        return self._counts.get(reason, 0)

    def summary(self) -> str:
        if not self._counts:
            return "no rows skipped"
        details = ", ".join(f"{reason}={count:,}" for reason, count in self.counts().items())
        return f"{self.total:,} rows skipped ({details})"
