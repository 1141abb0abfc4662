#!/usr/bin/env python3
"""
Sequential reader of a single capture file.
"""

import logging
from typing import BinaryIO, Iterator, Optional

from file_scanner import CaptureFile
from record_codec import DEFAULT_MAX_STRING_LENGTH, CorruptFrameError, StringDictionary, decode
from stat_models import Record


DEFAULT_READ_BUFFER_SIZE = 64 * 1024


class StreamReadError(Exception):
    """Reading the byte source failed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class StreamReader:
    """Decodes the records of one capture file in on-disk order.

    The reader owns the file handle and the string dictionary of the stream.
    Use it as a context manager so the file is closed on every exit path:

        with StreamReader(capture_file) as reader:
            for record in reader:
                ...

    A partial frame at the end of the file is a normal truncation (the
    producer may be killed mid-write) and ends the stream quietly.
    """

    def __init__(self, capture_file: CaptureFile, max_string_length: int = DEFAULT_MAX_STRING_LENGTH,
                 read_buffer_size: int = DEFAULT_READ_BUFFER_SIZE):
        self.capture_file = capture_file
        self.max_string_length = max_string_length
        self.read_buffer_size = read_buffer_size
        self.dictionary = StringDictionary()
        # Смещение первого байта, который ещё не разобран
        self.offset = 0
        self.truncated_bytes = 0
        self._source: Optional[BinaryIO] = None

    def __enter__(self) -> 'StreamReader':
        try:
            self._source = self.capture_file.open()
        except OSError as e:
            raise StreamReadError(self.capture_file.path, str(e))
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def close(self) -> None:
        if self._source is not None:
            self._source.close()
            self._source = None

    def _read_chunk(self) -> bytes:
        try:
            return self._source.read(self.read_buffer_size)
        except OSError as e:
            raise StreamReadError(self.capture_file.path, str(e))

    def __iter__(self) -> Iterator[Record]:
        if self._source is None:
            raise RuntimeError("StreamReader must be opened before iterating")

        node_id = self.capture_file.node_id
        buf = bytearray()
        pos = 0
        eof = False

        while True:
            if pos < len(buf):
                try:
                    result = decode(buf, self.dictionary, node_id, pos, self.max_string_length)
                except CorruptFrameError as e:
                    e.offset = self.offset
                    raise

                if result is not None:
                    record, consumed = result
                    pos += consumed
                    self.offset += consumed
                    if record is not None:
                        yield record
                    continue

            if eof:
                break

            # Сдвигаем буфер, чтобы не держать в памяти уже разобранные кадры
            if pos:
                del buf[:pos]
                pos = 0

            chunk = self._read_chunk()
            if chunk:
                buf += chunk
            else:
                eof = True

        self.truncated_bytes = len(buf) - pos
        if self.truncated_bytes:
            logging.info(f"Truncated frame of {self.truncated_bytes} bytes at offset {self.offset} "
                         f"in {self.capture_file.path}")
