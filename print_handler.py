#!/usr/bin/env python3
"""
Handler that prints every record as one line of text or JSON.

Text lines look like

    CACHE_GET [nodeId=..., cacheId=1, startTime=10, duration=5]

Strings are printed verbatim, without quoting or escaping. JSON lines carry the
same keys plus an `op` field.
"""

import json
import sys
from enum import Enum, StrEnum
from typing import Any, TextIO, Tuple
from uuid import UUID

from stat_dispatcher import StatisticsHandler
from stat_models import (
    CacheOperationRecord,
    CacheStartRecord,
    JobRecord,
    OperationType,
    QueryReadsRecord,
    QueryRecord,
    SessionId,
    TaskRecord,
    TransactionRecord,
)


class OutputFormat(StrEnum):
    TEXT = 'text'
    JSON = 'json'


def format_text_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, tuple)):
        return '[' + ', '.join(format_text_value(item) for item in value) + ']'
    return str(value)


def format_json_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, (UUID, SessionId)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [format_json_value(item) for item in value]
    return value


class PrintHandler(StatisticsHandler):
    """Writes one line per record to `file` and flushes it right away.

    The handler does not own the file: whoever opened it closes it.
    """

    def __init__(self, file: TextIO = sys.stdout, output_format: OutputFormat = OutputFormat.TEXT):
        self.file = file
        self.output_format = OutputFormat(output_format)
        self.lines_written = 0

    def cache_start(self, record: CacheStartRecord) -> None:
        self.print(record.op, ('nodeId', record.node_id), ('cacheId', record.cache_id),
                   ('name', record.cache_name))

    def cache_operation(self, record: CacheOperationRecord) -> None:
        self.print(record.op, ('nodeId', record.node_id), ('cacheId', record.cache_id),
                   ('startTime', record.start_time), ('duration', record.duration))

    def transaction(self, record: TransactionRecord) -> None:
        self.print(record.op, ('nodeId', record.node_id), ('cacheIds', record.cache_ids),
                   ('startTime', record.start_time), ('duration', record.duration))

    def query(self, record: QueryRecord) -> None:
        self.print(record.op, ('nodeId', record.node_id), ('type', record.query_type),
                   ('text', record.text), ('id', record.query_id), ('startTime', record.start_time),
                   ('duration', record.duration), ('success', record.success))

    def query_reads(self, record: QueryReadsRecord) -> None:
        self.print(record.op, ('nodeId', record.node_id), ('type', record.query_type),
                   ('queryNodeId', record.query_node_id), ('id', record.query_id),
                   ('logicalReads', record.logical_reads), ('physicalReads', record.physical_reads))

    def task(self, record: TaskRecord) -> None:
        self.print(record.op, ('nodeId', record.node_id), ('sesId', record.session_id),
                   ('taskName', record.task_name), ('startTime', record.start_time),
                   ('duration', record.duration), ('affPartId', record.affinity_partition_id))

    def job(self, record: JobRecord) -> None:
        self.print(record.op, ('nodeId', record.node_id), ('sesId', record.session_id),
                   ('queuedTime', record.queued_time), ('startTime', record.start_time),
                   ('duration', record.duration), ('timedOut', record.timed_out))

    def print(self, op: OperationType, *fields: Tuple[str, Any]) -> None:
        """Formats and writes one line for operation `op` with (key, value) fields."""
        if self.output_format == OutputFormat.JSON:
            line = json.dumps({'op': op.name, **{key: format_json_value(value) for key, value in fields}},
                              ensure_ascii=False)
        else:
            line = f"{op.name} [" + ', '.join(f"{key}={format_text_value(value)}" for key, value in fields) + ']'

        self.file.write(line + '\n')
        self.file.flush()
        self.lines_written += 1
