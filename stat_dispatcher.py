#!/usr/bin/env python3
"""
Reads capture files one after another and routes records to handlers.

Files are drained sequentially in scanner order. Records are never merged by
start time: clocks of different nodes are not synchronised, so the output
keeps the order in which every node recorded its operations.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from file_scanner import CaptureFile
from record_codec import DEFAULT_MAX_STRING_LENGTH, CorruptFrameError
from stat_models import (
    CacheOperationRecord,
    CacheStartRecord,
    JobRecord,
    QueryReadsRecord,
    QueryRecord,
    Record,
    TaskRecord,
    TransactionRecord,
)
from stream_reader import DEFAULT_READ_BUFFER_SIZE, StreamReader, StreamReadError


class StatisticsHandler:
    """Consumer of decoded records with one method per record kind.

    Handlers get a record for the duration of the call only; the default
    implementations ignore the record.
    """

    def cache_start(self, record: CacheStartRecord) -> None:
        pass

    def cache_operation(self, record: CacheOperationRecord) -> None:
        pass

    def transaction(self, record: TransactionRecord) -> None:
        pass

    def query(self, record: QueryRecord) -> None:
        pass

    def query_reads(self, record: QueryReadsRecord) -> None:
        pass

    def task(self, record: TaskRecord) -> None:
        pass

    def job(self, record: JobRecord) -> None:
        pass


_HANDLER_METHODS: Dict[type, str] = {
    CacheStartRecord: 'cache_start',
    CacheOperationRecord: 'cache_operation',
    TransactionRecord: 'transaction',
    QueryRecord: 'query',
    QueryReadsRecord: 'query_reads',
    TaskRecord: 'task',
    JobRecord: 'job',
}


@dataclass
class ReadResult:
    """Outcome of one run over a set of capture files."""
    files_read: int = 0
    records_read: int = 0
    records_dispatched: int = 0
    failed_files: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def has_errors(self) -> bool:
        return bool(self.failed_files)


class StatisticsReader:
    """Drives stream readers over capture files and dispatches their records.

    A corrupt or unreadable file stops that file only; exceptions raised by
    handlers abort the whole run. Setting `cancel_event` stops the run between
    two records.
    """

    def __init__(self, handlers: Sequence[StatisticsHandler], record_filter: Optional[Callable[[Record], bool]] = None,
                 max_string_length: int = DEFAULT_MAX_STRING_LENGTH,
                 read_buffer_size: int = DEFAULT_READ_BUFFER_SIZE,
                 cancel_event: Optional[threading.Event] = None):
        if not handlers:
            raise ValueError("At least one handler is required")
        self.handlers = list(handlers)
        self.record_filter = record_filter
        self.max_string_length = max_string_length
        self.read_buffer_size = read_buffer_size
        self.cancel_event = cancel_event or threading.Event()

    def read(self, capture_files: Iterable[CaptureFile]) -> ReadResult:
        result = ReadResult()

        for capture_file in capture_files:
            if self.cancel_event.is_set():
                result.cancelled = True
                break

            logging.info(f"Reading {capture_file.path} (node {capture_file.node_id})")
            self._read_file(capture_file, result)
            result.files_read += 1

            if result.cancelled:
                break

        logging.info(f"Read {result.records_read} record(s) from {result.files_read} file(s), "
                     f"{result.records_dispatched} passed filters")
        return result

    def _read_file(self, capture_file: CaptureFile, result: ReadResult) -> None:
        try:
            with StreamReader(capture_file, self.max_string_length, self.read_buffer_size) as reader:
                for record in reader:
                    result.records_read += 1
                    self.dispatch(record, result)

                    if self.cancel_event.is_set():
                        result.cancelled = True
                        return
        except CorruptFrameError as e:
            logging.error(f"Corrupt capture file {capture_file.path} at offset {e.offset}: {e.reason}")
            result.failed_files.append(capture_file.path)
        except StreamReadError as e:
            logging.error(f"Failed to read capture file {capture_file.path}: {e.reason}")
            result.failed_files.append(capture_file.path)

    def dispatch(self, record: Record, result: Optional[ReadResult] = None) -> bool:
        """Passes the record to every handler if it matches the filter."""
        if self.record_filter is not None and not self.record_filter(record):
            return False

        method_name = _HANDLER_METHODS[type(record)]
        for handler in self.handlers:
            getattr(handler, method_name)(record)

        if result is not None:
            result.records_dispatched += 1
        return True
