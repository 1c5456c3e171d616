from abc import ABC, abstractmethod
from typing import Iterable, Iterator, Optional

from .config import PipelineConfig
from .errors import SkipReport
from pricehist.utils.logger import get_logger


class BaseStage(ABC):
    """
    The Abstract Blueprint for a streaming pipeline stage.

    Every stage consumes its predecessor's output as a lazy iterable and
    returns a lazy iterator, so stages compose by plain function application:
    `top_k.process(builder.process(boundary.process(...)))`.

    Configuration is validated in the constructor; a stage that cannot be built
    raises before any row is read.

    Attributes:
        config (PipelineConfig): The run configuration.
        skips (SkipReport): Shared tally of row-level skips for the run.
        rows_in (int): Rows consumed by the last `process()` call.
        rows_out (int): Rows produced by the last `process()` call.
    """

    def __init__(self, config: PipelineConfig, skips: Optional[SkipReport] = None) -> None:
        self.config = config
        self.skips = skips if skips is not None else SkipReport()
        self.log = get_logger(type(self).__name__)
        self.rows_in = 0
        self.rows_out = 0

    @abstractmethod
    def process(self, rows: Iterable) -> Iterator:
        """
        Transforms the incoming rows.

        Implementation Contract:
        - Must be lazy unless the stage inherently needs all rows (ranking).
        - Must update `rows_in` / `rows_out`.
        - Must not mutate the incoming rows.
        """
        pass

    def report(self) -> None:
        """Logs the row counts of the last pass."""
        dropped = self.rows_in - self.rows_out
        self.log.info(f"{self.rows_in:,} rows in, {self.rows_out:,} rows out ({dropped:,} dropped).")
