"""
Streaming group-by with mixed per-column reducers.

The aggregator folds a record stream into one partial state per key. Each
output column owns a reducer (`first`, `last` or `max`) that knows how to
start a state from one row, step it with the next row and combine two partial
states. `first` and `last` always compare the explicit ordering column, never
arrival order, which makes partial aggregates mergeable in any order.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from ..errors import SchemaError, SkipReport
from ..records import Schema
from pricehist.utils.logger import get_logger


class Reducer(ABC):
    """
    The Abstract Blueprint for a per-column reducer.

    Attributes:
        column (str): The input column the reducer reads.
    """

    name = "reducer"

    def __init__(self, column: str) -> None:
        self.column = column

    def __repr__(self) -> str:
        return f"{self.name}({self.column})"

    @abstractmethod
    def start(self, value: Any, order: Any) -> Any:
        """Builds the initial state from the first row seen for a key."""
        pass

    @abstractmethod
    def step(self, state: Any, value: Any, order: Any) -> Any:
        """Folds one more row into the state."""
        pass

    @abstractmethod
    def combine(self, left: Any, right: Any) -> Any:
        """Merges two partial states; `left` holds the earlier-encountered rows."""
        pass

    def finish(self, state: Any) -> Any:
        return state


class First(Reducer):
    """Value paired with the smallest ordering value; ties keep the earliest-encountered row."""

    name = "first"

    def start(self, value, order):
        return (order, value)

    def step(self, state, value, order):
        return (order, value) if order < state[0] else state

    def combine(self, left, right):
        return right if right[0] < left[0] else left

    def finish(self, state):
        return state[1]


class Last(Reducer):
    """Value paired with the largest ordering value; ties keep the earliest-encountered row."""

    name = "last"

    def start(self, value, order):
        return (order, value)

    def step(self, state, value, order):
        return (order, value) if order > state[0] else state

    def combine(self, left, right):
        return right if right[0] > left[0] else left

    def finish(self, state):
        return state[1]


class Max(Reducer):
    """Running maximum; ties keep the first occurrence."""

    name = "max"

    def start(self, value, order):
        return value

    def step(self, state, value, order):
        return value if value > state else state

    def combine(self, left, right):
        return right if right > left else left


def first(column: str) -> First:
    return First(column)


def last(column: str) -> Last:
    return Last(column)


def max_(column: str) -> Max:
    return Max(column)


class GroupByAggregator:
    """
    One forward pass, one output record per distinct key.

    Memory is O(distinct keys): only the partial state of each key is kept.
    Outputs come back in first-seen key order.

    Args:
        schema (Schema): Schema of the incoming records.
        key (str): The grouping column (e.g. 'product_id').
        order_by (str): The ordering column used by `first`/`last` (e.g. 'query_date').
        reducers (Mapping[str, Reducer]): Output column -> reducer.
        skips (SkipReport): Tally for records lacking a key or ordering value
                            (reason "missing_<column>"); such records are not folded.

    Raises:
        SchemaError: If the key, the ordering column or a reducer's input column
                     is not in the schema.
    """

    def __init__(self, schema: Schema, key: str, order_by: str, reducers: Mapping[str, Reducer],
                 skips: Optional[SkipReport] = None) -> None:
        if order_by not in schema:
            raise SchemaError(f"ordering column '{order_by}' is not in {schema!r}")
        if key not in schema:
            raise SchemaError(f"key column '{key}' is not in {schema!r}")
        unknown = [r.column for r in reducers.values() if r.column not in schema]
        if unknown:
            raise SchemaError(f"reducer columns {unknown} are not in {schema!r}")
        if not reducers:
            raise SchemaError("at least one reducer is required")

        self.schema = schema
        self.key = key
        self.order_by = order_by
        self.reducers: Dict[str, Reducer] = dict(reducers)
        self.states: Dict[Any, List[Any]] = {}
        self.skips = skips if skips is not None else SkipReport()
        self.rows_seen = 0
        self.log = get_logger("GroupByAggregator")

    def _missing(self, record: Mapping[str, Any]) -> Optional[str]:
        for column in (self.key, self.order_by):
            value = record.get(column)
            if value is None or (isinstance(value, str) and not value.strip()):
                return column
        return None

    def add(self, record: Mapping[str, Any]) -> bool:
        """
        Folds one record into the state of its key.

        Returns:
            bool: False if the record had no key or ordering value and was skipped.
        """
        self.rows_seen += 1
        missing = self._missing(record)
        if missing is not None:
            self.skips.record(f"missing_{missing}")
            return False
        key = record[self.key]
        order = record[self.order_by]
        state = self.states.get(key)
        if state is None:
            self.states[key] = [r.start(record[r.column], order) for r in self.reducers.values()]
            return True
        for i, reducer in enumerate(self.reducers.values()):
            state[i] = reducer.step(state[i], record[reducer.column], order)
        return True

    def consume(self, records: Iterable[Mapping[str, Any]]) -> "GroupByAggregator":
        for record in records:
            self.add(record)
        self.log.debug(f"Aggregated {self.rows_seen:,} rows into {len(self.states):,} keys.")
        return self

    def merge(self, other: "GroupByAggregator") -> "GroupByAggregator":
        """
        Folds another partial aggregate (same key, ordering and reducers) into this one.

        Raises:
            SchemaError: If the two aggregators were built differently.
        """
        if (other.key, other.order_by, list(map(repr, other.reducers.values())), list(other.reducers)) != (
            self.key, self.order_by, list(map(repr, self.reducers.values())), list(self.reducers)
        ):
            raise SchemaError("cannot merge aggregators with different keys or reducers")

        for key, theirs in other.states.items():
            mine = self.states.get(key)
            if mine is None:
                self.states[key] = list(theirs)
                continue
            for i, reducer in enumerate(self.reducers.values()):
                mine[i] = reducer.combine(mine[i], theirs[i])
        self.rows_seen += other.rows_seen
        return self

    def results(self) -> Iterator[Dict[str, Any]]:
        """Yields `{key: ..., <output column>: ...}` per distinct key."""
        names = list(self.reducers)
        reducers = list(self.reducers.values())
        for key, state in self.states.items():
            record = {self.key: key}
            for name, reducer, partial in zip(names, reducers, state):
                record[name] = reducer.finish(partial)
            yield record

    def __len__(self) -> int:
        return len(self.states)


def aggregate_shards(shards: Iterable[Iterable[Mapping[str, Any]]], build) -> GroupByAggregator:
    """
    Aggregates each shard separately, then merges the partial results.

    Args:
        shards: One record iterable per shard (e.g. per snapshot file).
        build: Zero-argument factory returning a fresh GroupByAggregator.

    Returns:
        GroupByAggregator: The merged aggregate, equal to a single pass over all shards.
    """
    merged: Optional[GroupByAggregator] = None
    for shard in shards:
        partial = build().consume(shard)
        merged = partial if merged is None else merged.merge(partial)
    return merged if merged is not None else build()
