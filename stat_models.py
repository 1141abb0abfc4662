#!/usr/bin/env python3
"""
Data models for performance statistics records.

Every record is an immutable dataclass tagged with the node that produced the
capture file and the operation kind it was decoded from.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple, Union
from uuid import UUID


class OperationType(IntEnum):
    """Operation kind. The value is the op-byte used on the wire."""
    CACHE_START = 0
    CACHE_GET = 1
    CACHE_PUT = 2
    CACHE_REMOVE = 3
    CACHE_GET_AND_PUT = 4
    CACHE_GET_AND_REMOVE = 5
    CACHE_INVOKE = 6
    CACHE_LOCK = 7
    CACHE_GET_ALL = 8
    CACHE_PUT_ALL = 9
    CACHE_REMOVE_ALL = 10
    CACHE_INVOKE_ALL = 11
    TX_COMMIT = 12
    TX_ROLLBACK = 13
    QUERY = 14
    QUERY_READS = 15
    TASK = 16
    JOB = 17

    def __str__(self) -> str:
        return self.name

    @property
    def is_cache_operation(self) -> bool:
        return OperationType.CACHE_GET <= self <= OperationType.CACHE_INVOKE_ALL

    @property
    def is_transaction(self) -> bool:
        return self in (OperationType.TX_COMMIT, OperationType.TX_ROLLBACK)


class QueryType(IntEnum):
    SPI = 0
    SCAN = 1
    SQL = 2
    SQL_FIELDS = 3
    TEXT = 4
    SET = 5
    INDEX = 6

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class SessionId:
    """Task session: originating node plus a monotonic counter."""
    node_id: UUID
    counter: int

    def __str__(self) -> str:
        return f"{self.counter & 0xFFFFFFFFFFFFFFFF:x}-{self.node_id}"


@dataclass(frozen=True)
class CacheStartRecord:
    node_id: UUID
    cache_id: int
    cache_name: str
    op: OperationType = OperationType.CACHE_START


@dataclass(frozen=True)
class CacheOperationRecord:
    node_id: UUID
    op: OperationType
    cache_id: int
    start_time: int
    duration: int


@dataclass(frozen=True)
class TransactionRecord:
    node_id: UUID
    cache_ids: Tuple[int, ...]
    start_time: int
    duration: int
    committed: bool

    @property
    def op(self) -> OperationType:
        return OperationType.TX_COMMIT if self.committed else OperationType.TX_ROLLBACK


@dataclass(frozen=True)
class QueryRecord:
    node_id: UUID
    query_type: QueryType
    text: str
    query_id: int
    start_time: int
    duration: int
    success: bool
    op: OperationType = OperationType.QUERY


@dataclass(frozen=True)
class QueryReadsRecord:
    node_id: UUID
    query_type: QueryType
    query_node_id: UUID
    query_id: int
    logical_reads: int
    physical_reads: int
    op: OperationType = OperationType.QUERY_READS


@dataclass(frozen=True)
class TaskRecord:
    node_id: UUID
    session_id: SessionId
    task_name: str
    start_time: int
    duration: int
    affinity_partition_id: int
    op: OperationType = OperationType.TASK


@dataclass(frozen=True)
class JobRecord:
    node_id: UUID
    session_id: SessionId
    queued_time: int
    start_time: int
    duration: int
    timed_out: bool
    op: OperationType = OperationType.JOB


Record = Union[
    CacheStartRecord,
    CacheOperationRecord,
    TransactionRecord,
    QueryRecord,
    QueryReadsRecord,
    TaskRecord,
    JobRecord,
]


def record_start_time(record: Record) -> Optional[int]:
    """Start time of the record, or None for kinds that have none."""
    return getattr(record, 'start_time', None)


def record_cache_ids(record: Record) -> Optional[Tuple[int, ...]]:
    """Cache ids the record is associated with, or None for kinds without a cache."""
    if isinstance(record, TransactionRecord):
        return record.cache_ids
    if isinstance(record, (CacheStartRecord, CacheOperationRecord)):
        return (record.cache_id,)
    return None
