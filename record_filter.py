#!/usr/bin/env python3
"""
Record filters applied before records reach the handlers.

Filters are conjunctive; an unset filter lets every record through. Records
that lack the attribute a filter looks at (a start time or a cache id) are not
affected by that filter.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from ordered_set import OrderedSet

from stat_models import OperationType, Record, record_cache_ids, record_start_time


def match_operations(record: Record, ops: OrderedSet) -> bool:
    """True if the record kind is in the whitelist."""
    return record.op in ops


def match_time_window(record: Record, start_from: Optional[int], start_to: Optional[int]) -> bool:
    """True if the record start time is inside [start_from, start_to] (inclusive)."""
    start_time = record_start_time(record)
    if start_time is None:
        return True
    if start_from is not None and start_time < start_from:
        return False
    if start_to is not None and start_time > start_to:
        return False
    return True


def match_cache_ids(record: Record, cache_ids: OrderedSet) -> bool:
    """True if any cache the record touches is in the whitelist."""
    record_ids = record_cache_ids(record)
    if record_ids is None:
        return True
    return any(cache_id in cache_ids for cache_id in record_ids)


@dataclass(frozen=True)
class RecordFilter:
    """Immutable filter configuration."""
    ops: Optional[OrderedSet] = None
    start_time_from: Optional[int] = None
    start_time_to: Optional[int] = None
    cache_ids: Optional[OrderedSet] = None
    _predicates: List[Callable[[Record], bool]] = field(default_factory=list, init=False, repr=False, compare=False)

    def __post_init__(self):
        predicates = []

        if self.ops is not None:
            ops = self.ops
            predicates.append(lambda record: match_operations(record, ops))

        if self.start_time_from is not None or self.start_time_to is not None:
            start_from, start_to = self.start_time_from, self.start_time_to
            predicates.append(lambda record: match_time_window(record, start_from, start_to))

        if self.cache_ids is not None:
            cache_ids = self.cache_ids
            predicates.append(lambda record: match_cache_ids(record, cache_ids))

        object.__setattr__(self, '_predicates', predicates)

    @property
    def is_empty(self) -> bool:
        return not self._predicates

    def matches(self, record: Record) -> bool:
        return all(predicate(record) for predicate in self._predicates)

    def __call__(self, record: Record) -> bool:
        return self.matches(record)


def parse_operation_types(value: str) -> OrderedSet:
    """Parses a comma separated list of operation names (case-sensitive).

    Raises:
        ValueError: on an unknown operation name.
    """
    ops = OrderedSet()
    for name in _split_list(value):
        if name not in OperationType.__members__:
            raise ValueError(f"Unknown operation type '{name}'. "
                             f"Expected one of: {', '.join(OperationType.__members__)}")
        ops.add(OperationType[name])
    return ops


def parse_cache_ids(value: str) -> OrderedSet:
    """Parses a comma separated list of cache ids; negative ids are allowed.

    Raises:
        ValueError: on a value that is not an integer.
    """
    cache_ids = OrderedSet()
    for item in _split_list(value):
        try:
            cache_ids.add(int(item))
        except ValueError:
            raise ValueError(f"Invalid cache id '{item}'")
    return cache_ids


def _split_list(value: str) -> Iterable[str]:
    items = [item.strip() for item in value.split(',')]
    if not any(items):
        raise ValueError("Expected a non-empty comma separated list")
    return [item for item in items if item]
