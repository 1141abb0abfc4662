#!/usr/bin/env python3
"""
Sample records and capture file helpers shared by the tests.
"""

import os
from typing import Iterable, Iterator, List, Optional, Tuple
from uuid import UUID

from record_codec import DEFAULT_MAX_STRING_LENGTH, RecordEncoder, StringDictionary, decode
from stat_models import (
    CacheOperationRecord,
    CacheStartRecord,
    JobRecord,
    OperationType,
    QueryReadsRecord,
    QueryRecord,
    QueryType,
    Record,
    SessionId,
    TaskRecord,
    TransactionRecord,
)


NODE_ID = UUID('6f1b1f4e-9a3c-4c2b-8f3e-2d1c0b9a8e7f')
OTHER_NODE_ID = UUID('0a4c7e2d-1b3f-4d5a-9c8e-7f6a5b4c3d2e')


def cache_start(cache_id: int = 0, name: str = 'cache', node_id: UUID = NODE_ID) -> CacheStartRecord:
    return CacheStartRecord(node_id, cache_id, name)


def cache_get(cache_id: int = 0, start_time: int = 0, duration: int = 0,
              node_id: UUID = NODE_ID) -> CacheOperationRecord:
    return CacheOperationRecord(node_id, OperationType.CACHE_GET, cache_id, start_time, duration)


def transaction(cache_ids: Tuple[int, ...] = (0,), start_time: int = 0, duration: int = 0,
                committed: bool = True, node_id: UUID = NODE_ID) -> TransactionRecord:
    return TransactionRecord(node_id, tuple(cache_ids), start_time, duration, committed)


def query(text: str = 'query', start_time: int = 0, node_id: UUID = NODE_ID) -> QueryRecord:
    return QueryRecord(node_id, QueryType.SQL_FIELDS, text, 0, start_time, 0, True)


def query_reads(node_id: UUID = NODE_ID) -> QueryReadsRecord:
    return QueryReadsRecord(node_id, QueryType.SQL_FIELDS, NODE_ID, 0, 0, 0)


def task(task_name: str = '', start_time: int = 0, node_id: UUID = NODE_ID) -> TaskRecord:
    return TaskRecord(node_id, SessionId(NODE_ID, 0), task_name, start_time, 0, 0)


def job(start_time: int = 0, node_id: UUID = NODE_ID) -> JobRecord:
    return JobRecord(node_id, SessionId(NODE_ID, 0), 0, start_time, 0, True)


def one_of_each_kind() -> List[Record]:
    """One record for every kind printed by the reader (8 operation types)."""
    return [
        cache_start(),
        cache_get(),
        transaction(committed=True),
        transaction(committed=False),
        query(),
        query_reads(),
        task(),
        job(),
    ]


def encode_records(records: Iterable[Record]) -> List[bytes]:
    """Encodes records with one shared encoder and returns the frames."""
    encoder = RecordEncoder()
    return [encoder.encode(record) for record in records]


def capture_file_name(node_id: UUID = NODE_ID, creation_ts: int = 1000) -> str:
    return f"node-{node_id}-{creation_ts}.prf"


def write_capture(directory, records: Iterable[Record], node_id: UUID = NODE_ID,
                  creation_ts: int = 1000, tail: bytes = b'') -> str:
    """Writes a capture file with the given records followed by raw `tail` bytes."""
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(str(directory), capture_file_name(node_id, creation_ts))
    with open(path, 'wb') as f:
        f.write(b''.join(encode_records(records)) + tail)
    return path


def decode_records(data: bytes, node_id: UUID = NODE_ID, dictionary: Optional[StringDictionary] = None,
                   max_length: int = DEFAULT_MAX_STRING_LENGTH) -> Iterator[Record]:
    """Decodes every complete frame of an in-memory stream; a truncated tail is ignored."""
    if dictionary is None:
        dictionary = StringDictionary()
    offset = 0
    while offset < len(data):
        result = decode(data, dictionary, node_id, offset, max_length)
        if result is None:
            return
        record, consumed = result
        offset += consumed
        if record is not None:
            yield record
