#!/usr/bin/env python3
"""
Discovery of performance statistics capture files.

Capture files are named `<prefix>-<node uuid>-<creation ts>.<ext>`, e.g.
`node-2d5c3f3a-7c1e-4a4e-9d55-6b0c1f2a9e01-1700000000000.prf`. Files written
before rollover support carry no timestamp (`node-<uuid>.prf`).
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import BinaryIO, List
from uuid import UUID


DEFAULT_FILE_PREFIX = 'node'
DEFAULT_FILE_EXTENSION = 'prf'

_UUID_PATTERN = r'[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}'


class BadFileNameError(ValueError):
    """The file name does not follow the capture file naming convention."""


@dataclass(frozen=True)
class CaptureFile:
    """One capture file and the node that produced it."""
    path: str
    node_id: UUID
    creation_ts: int = 0

    def open(self) -> BinaryIO:
        return open(self.path, 'rb')


class FileScanner:
    """Finds capture files in a file or directory path."""

    def __init__(self, prefix: str = DEFAULT_FILE_PREFIX, extension: str = DEFAULT_FILE_EXTENSION):
        self.prefix = prefix
        self.extension = extension
        self.name_pattern = re.compile(
            rf'^{re.escape(prefix)}-({_UUID_PATTERN})(?:-(\d+))?\.{re.escape(extension)}$'
        )

    def parse_name(self, path: str) -> CaptureFile:
        """Builds a CaptureFile from the naming convention of `path`.

        Raises:
            BadFileNameError: if the base name does not match the convention.
        """
        name = os.path.basename(path)
        match = self.name_pattern.match(name)
        if not match:
            raise BadFileNameError(
                f"Unexpected capture file name '{name}', expected "
                f"{self.prefix}-<uuid>-<timestamp>.{self.extension}"
            )
        node_id, creation_ts = match.groups()
        return CaptureFile(path, UUID(node_id), int(creation_ts) if creation_ts else 0)

    def scan(self, path: str) -> List[CaptureFile]:
        """Returns capture files ordered by (node id, creation timestamp).

        A regular file must be named by the convention. A directory is listed
        non-recursively and entries with other names are skipped.
        """
        if os.path.isfile(path):
            return [self.parse_name(path)]

        if not os.path.isdir(path):
            raise FileNotFoundError(f"Performance statistics file or directory does not exist: {path}")

        files = []
        for entry in os.scandir(path):
            if not entry.is_file():
                continue
            try:
                files.append(self.parse_name(entry.path))
            except BadFileNameError:
                logging.debug(f"Skipping {entry.path}: not a capture file")

        files.sort(key=lambda f: (f.node_id, f.creation_ts, f.path))
        logging.info(f"Found {len(files)} capture file(s) in {path}")
        return files
