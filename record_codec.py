#!/usr/bin/env python3
"""
Codec for performance statistics frames.

A capture file is a plain concatenation of frames: one op-byte followed by the
payload of that operation. Strings are written by reference to a per-stream
dictionary; the first occurrence of a string carries its bytes inline, later
occurrences only carry the handle.

The codec does no I/O. `decode` works on whatever prefix of the stream is
buffered and reports an incomplete frame by returning None, so the caller can
refill and retry.
"""

import struct
from typing import Callable, Dict, Optional, Tuple
from uuid import UUID

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


STRING_DEFINITION_OP = 0xFE
EXTENSION_OP = 0xFF

DEFAULT_MAX_STRING_LENGTH = 16 * 1024 * 1024

_BYTE = struct.Struct('>B')
_INT = struct.Struct('>i')
_LONG = struct.Struct('>q')
_UUID = struct.Struct('>QQ')


class CorruptFrameError(Exception):
    """Malformed frame. `offset` points at the first byte of the frame."""

    def __init__(self, reason: str, offset: int = 0):
        super().__init__(reason)
        self.reason = reason
        self.offset = offset

    def __str__(self) -> str:
        return f"{self.reason} (offset {self.offset})"


class StringDictionary:
    """Write-once mapping of string handles to their raw bytes for one stream."""

    def __init__(self):
        self._strings: Dict[int, bytes] = {}

    def define(self, handle: int, value: bytes) -> None:
        """Installs a definition. Repeating an identical definition is a no-op."""
        known = self._strings.get(handle)
        if known is None:
            self._strings[handle] = bytes(value)
        elif known != value:
            raise CorruptFrameError(f"Conflicting definition of string handle {handle}")

    def lookup(self, handle: int) -> bytes:
        try:
            return self._strings[handle]
        except KeyError:
            raise CorruptFrameError(f"Reference to undefined string handle {handle}")

    def __contains__(self, handle: int) -> bool:
        return handle in self._strings

    def __len__(self) -> int:
        return len(self._strings)


class _NeedMore(Exception):
    pass


class _FrameCursor:
    """Reads primitives of one frame out of the buffer.

    Definitions met along the way are kept aside in `pending` and only reach
    the dictionary once the whole frame is decoded.
    """

    def __init__(self, buf, pos: int, dictionary: StringDictionary, max_length: int):
        self.buf = buf
        self.pos = pos
        self.dictionary = dictionary
        self.max_length = max_length
        self.pending: Dict[int, bytes] = {}

    def _need(self, size: int) -> None:
        if self.pos + size > len(self.buf):
            raise _NeedMore()

    def _unpack(self, fmt: struct.Struct):
        self._need(fmt.size)
        values = fmt.unpack_from(self.buf, self.pos)
        self.pos += fmt.size
        return values

    def read_byte(self) -> int:
        return self._unpack(_BYTE)[0]

    def read_int(self) -> int:
        return self._unpack(_INT)[0]

    def read_long(self) -> int:
        return self._unpack(_LONG)[0]

    def read_bool(self) -> bool:
        value = self.read_byte()
        if value not in (0, 1):
            raise CorruptFrameError(f"Invalid boolean value {value}")
        return value == 1

    def read_uuid(self) -> UUID:
        most, least = self._unpack(_UUID)
        return UUID(int=(most << 64) | least)

    def read_session_id(self) -> SessionId:
        node_id = self.read_uuid()
        return SessionId(node_id, self.read_long())

    def read_query_type(self) -> QueryType:
        value = self.read_byte()
        try:
            return QueryType(value)
        except ValueError:
            raise CorruptFrameError(f"Unknown query type {value}")

    def read_length(self, what: str) -> int:
        length = self.read_int()
        if length < 0 or length > self.max_length:
            raise CorruptFrameError(f"Invalid {what} length {length}")
        return length

    def read_raw(self, length: int) -> bytes:
        self._need(length)
        value = bytes(self.buf[self.pos:self.pos + length])
        self.pos += length
        return value

    def read_definition(self) -> Tuple[int, bytes]:
        handle = self.read_int()
        value = self.read_raw(self.read_length('string'))
        self.define(handle, value)
        return handle, value

    def define(self, handle: int, value: bytes) -> None:
        known = self.pending.get(handle)
        if known is not None and known != value:
            raise CorruptFrameError(f"Conflicting definition of string handle {handle}")
        if handle in self.dictionary and self.dictionary.lookup(handle) != value:
            raise CorruptFrameError(f"Conflicting definition of string handle {handle}")
        self.pending[handle] = value

    def read_string(self) -> str:
        cached = self.read_bool()
        if not cached:
            _, value = self.read_definition()
        else:
            handle = self.read_int()
            value = self.pending.get(handle)
            if value is None:
                value = self.dictionary.lookup(handle)
        return value.decode('utf-8', errors='replace')

    def read_int_list(self) -> Tuple[int, ...]:
        count = self.read_int()
        if count < 0 or count * _INT.size > self.max_length:
            raise CorruptFrameError(f"Invalid list size {count}")
        self._need(count * _INT.size)
        values = struct.unpack_from(f'>{count}i', self.buf, self.pos)
        self.pos += count * _INT.size
        return values

    def commit(self) -> None:
        for handle, value in self.pending.items():
            self.dictionary.define(handle, value)


def _decode_cache_start(cur: _FrameCursor, node_id: UUID, op: OperationType) -> Record:
    cache_id = cur.read_int()
    return CacheStartRecord(node_id, cache_id, cur.read_string())


def _decode_cache_operation(cur: _FrameCursor, node_id: UUID, op: OperationType) -> Record:
    return CacheOperationRecord(node_id, op, cur.read_int(), cur.read_long(), cur.read_long())


def _decode_transaction(cur: _FrameCursor, node_id: UUID, op: OperationType) -> Record:
    cache_ids = cur.read_int_list()
    return TransactionRecord(node_id, cache_ids, cur.read_long(), cur.read_long(),
                             op == OperationType.TX_COMMIT)


def _decode_query(cur: _FrameCursor, node_id: UUID, op: OperationType) -> Record:
    query_type = cur.read_query_type()
    text = cur.read_string()
    return QueryRecord(node_id, query_type, text, cur.read_long(), cur.read_long(),
                       cur.read_long(), cur.read_bool())


def _decode_query_reads(cur: _FrameCursor, node_id: UUID, op: OperationType) -> Record:
    query_type = cur.read_query_type()
    return QueryReadsRecord(node_id, query_type, cur.read_uuid(), cur.read_long(),
                            cur.read_long(), cur.read_long())


def _decode_task(cur: _FrameCursor, node_id: UUID, op: OperationType) -> Record:
    session_id = cur.read_session_id()
    task_name = cur.read_string()
    return TaskRecord(node_id, session_id, task_name, cur.read_long(), cur.read_long(),
                      cur.read_int())


def _decode_job(cur: _FrameCursor, node_id: UUID, op: OperationType) -> Record:
    return JobRecord(node_id, cur.read_session_id(), cur.read_long(), cur.read_long(),
                     cur.read_long(), cur.read_bool())


_DECODERS: Dict[OperationType, Callable[[_FrameCursor, UUID, OperationType], Record]] = {
    OperationType.CACHE_START: _decode_cache_start,
    OperationType.TX_COMMIT: _decode_transaction,
    OperationType.TX_ROLLBACK: _decode_transaction,
    OperationType.QUERY: _decode_query,
    OperationType.QUERY_READS: _decode_query_reads,
    OperationType.TASK: _decode_task,
    OperationType.JOB: _decode_job,
}
_DECODERS.update((op, _decode_cache_operation) for op in OperationType if op.is_cache_operation)


def decode(buf, dictionary: StringDictionary, node_id: UUID, offset: int = 0,
           max_length: int = DEFAULT_MAX_STRING_LENGTH) -> Optional[Tuple[Optional[Record], int]]:
    """Decodes the frame starting at `offset` of `buf`.

    Returns None when `buf` holds only a proper prefix of a frame. Otherwise
    returns (record, consumed), where record is None for frames that only
    carry dictionary or extension data.

    Raises:
        CorruptFrameError: unknown op-byte, dangling string reference,
            conflicting definition or an out-of-range length field.
    """
    cur = _FrameCursor(buf, offset, dictionary, max_length)
    try:
        op_byte = cur.read_byte()
        if op_byte == STRING_DEFINITION_OP:
            cur.read_definition()
            record = None
        elif op_byte == EXTENSION_OP:
            cur.read_raw(cur.read_length('extension frame'))
            record = None
        else:
            try:
                op = OperationType(op_byte)
            except ValueError:
                raise CorruptFrameError(f"Unknown operation type {op_byte}")
            record = _DECODERS[op](cur, node_id, op)
    except _NeedMore:
        return None
    except CorruptFrameError as e:
        e.offset = offset
        raise

    cur.commit()
    return record, cur.pos - offset


class RecordEncoder:
    """Serialises records into frames.

    Keeps the writer side of the string dictionary: every distinct string gets
    its own handle and is defined inline the first time it is written.
    """

    def __init__(self):
        self._handles: Dict[bytes, int] = {}

    def encode(self, record: Record) -> bytes:
        """Encodes one record as a complete frame."""
        parts = [_BYTE.pack(record.op)]

        if isinstance(record, CacheStartRecord):
            parts += [_INT.pack(record.cache_id), self._string(record.cache_name)]
        elif isinstance(record, CacheOperationRecord):
            if not record.op.is_cache_operation:
                raise ValueError(f"Not a cache operation: {record.op}")
            parts += [_INT.pack(record.cache_id), _LONG.pack(record.start_time),
                      _LONG.pack(record.duration)]
        elif isinstance(record, TransactionRecord):
            parts.append(_INT.pack(len(record.cache_ids)))
            parts += [_INT.pack(cache_id) for cache_id in record.cache_ids]
            parts += [_LONG.pack(record.start_time), _LONG.pack(record.duration)]
        elif isinstance(record, QueryRecord):
            parts += [_BYTE.pack(record.query_type), self._string(record.text),
                      _LONG.pack(record.query_id), _LONG.pack(record.start_time),
                      _LONG.pack(record.duration), _bool(record.success)]
        elif isinstance(record, QueryReadsRecord):
            parts += [_BYTE.pack(record.query_type), _uuid(record.query_node_id),
                      _LONG.pack(record.query_id), _LONG.pack(record.logical_reads),
                      _LONG.pack(record.physical_reads)]
        elif isinstance(record, TaskRecord):
            parts += [_session_id(record.session_id), self._string(record.task_name),
                      _LONG.pack(record.start_time), _LONG.pack(record.duration),
                      _INT.pack(record.affinity_partition_id)]
        elif isinstance(record, JobRecord):
            parts += [_session_id(record.session_id), _LONG.pack(record.queued_time),
                      _LONG.pack(record.start_time), _LONG.pack(record.duration),
                      _bool(record.timed_out)]
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

        return b''.join(parts)

    def encode_string_definition(self, value: str) -> bytes:
        """Encodes a standalone definition frame; later references use the handle only."""
        raw = value.encode('utf-8')
        handle = self._handles.setdefault(raw, len(self._handles))
        return _BYTE.pack(STRING_DEFINITION_OP) + _INT.pack(handle) + _INT.pack(len(raw)) + raw

    def _string(self, value: str) -> bytes:
        raw = value.encode('utf-8')
        handle = self._handles.get(raw)
        if handle is not None:
            return _bool(True) + _INT.pack(handle)

        handle = len(self._handles)
        self._handles[raw] = handle
        return _bool(False) + _INT.pack(handle) + _INT.pack(len(raw)) + raw


def encode_extension_frame(payload: bytes) -> bytes:
    return _BYTE.pack(EXTENSION_OP) + _INT.pack(len(payload)) + payload


def _bool(value: bool) -> bytes:
    return _BYTE.pack(1 if value else 0)


def _uuid(value: UUID) -> bytes:
    return _UUID.pack(value.int >> 64, value.int & 0xFFFFFFFFFFFFFFFF)


def _session_id(value: SessionId) -> bytes:
    return _uuid(value.node_id) + _LONG.pack(value.counter)
