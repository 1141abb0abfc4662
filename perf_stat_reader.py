#!/usr/bin/env python3
"""
Performance statistics reader.

Prints operations recorded in performance statistics capture files of a data
grid cluster, one line per operation, to the console or to a file.

Usage:
    python perf_stat_reader.py <path_to_files> [--out <file>] [--ops <ops>]
                               [--from <ms>] [--to <ms>] [--cache-ids <ids>]
"""

import argparse
import logging
import os
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, TextIO

from file_scanner import BadFileNameError, CaptureFile, FileScanner
from print_handler import OutputFormat, PrintHandler
from reader_config import ConfigError, ReaderConfig, load_config
from record_filter import RecordFilter, parse_cache_ids, parse_operation_types
from stat_dispatcher import StatisticsReader


EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FAILURE = 2
EXIT_CANCELLED = 130

# Options with signed values; argparse takes '-1,2' for an option flag otherwise.
SIGNED_VALUE_OPTIONS = ('--from', '--to', '--cache-ids')


class ReaderArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports usage errors with exit code 1."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        print(f"Error: {message}", file=sys.stderr)
        sys.exit(EXIT_USAGE)


def _list_argument(parse):
    def parse_argument(value: str):
        try:
            return parse(value)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e))
    return parse_argument


def join_signed_values(argv: Sequence[str]) -> List[str]:
    """Rewrites `--cache-ids -1,2` as `--cache-ids=-1,2` so negative values parse."""
    joined = []
    args = iter(argv)
    for arg in args:
        if arg == '--':
            joined.append(arg)
            joined.extend(args)
            break

        if arg in SIGNED_VALUE_OPTIONS:
            value = next(args, None)
            if value is None:
                joined.append(arg)
            elif value.startswith('-') and value[1:2].isdigit():
                joined.append(f"{arg}={value}")
            else:
                joined += [arg, value]
        else:
            joined.append(arg)

    return joined


def build_parser() -> argparse.ArgumentParser:
    parser = ReaderArgumentParser(
        prog='perf-stat-reader',
        description="Read performance statistics files to the console or to a file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Print every operation recorded by all nodes:
    perf-stat-reader /opt/grid/work/perf_stat

    # Write operations of one node to a file:
    perf-stat-reader /opt/grid/work/perf_stat/node-<uuid>-<ts>.prf --out report.txt

    # Only transactions touching caches 1 or 2 within a time window, as JSON lines:
    perf-stat-reader ./perf_stat --ops TX_COMMIT,TX_ROLLBACK --cache-ids 1,2 \\
        --from 1700000000000 --to 1700000060000 --format json
        """
    )

    parser.add_argument(
        'path',
        help='Performance statistics file or files directory'
    )

    parser.add_argument(
        '--out',
        help='Output file; must not exist (default: standard output)'
    )

    parser.add_argument(
        '--ops',
        type=_list_argument(parse_operation_types),
        help='Comma separated operation types to print, e.g. CACHE_START,TX_COMMIT'
    )

    parser.add_argument(
        '--from',
        dest='start_time_from',
        type=int,
        metavar='MS',
        help='Print operations that started at or after this time (epoch milliseconds)'
    )

    parser.add_argument(
        '--to',
        dest='start_time_to',
        type=int,
        metavar='MS',
        help='Print operations that started at or before this time (epoch milliseconds)'
    )

    parser.add_argument(
        '--cache-ids',
        type=_list_argument(parse_cache_ids),
        help='Comma separated cache ids to print operations for'
    )

    parser.add_argument(
        '--format', '-f',
        choices=[f.value for f in OutputFormat],
        help='Output format (default: text, or the value from the configuration file)'
    )

    parser.add_argument(
        '--config',
        help='YAML file with reader settings'
    )

    verbosity_group = parser.add_mutually_exclusive_group()

    verbosity_group.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity level. Use -v for INFO, -vv for DEBUG, -vvv for DEBUG with timestamps'
    )

    verbosity_group.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Suppress all diagnostics except errors'
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point of the statistics reader. Always exits through sys.exit."""
    parser = build_parser()
    args = parser.parse_args(join_signed_values(sys.argv[1:] if argv is None else argv))

    _configure_logging(-1 if args.quiet else args.verbose)

    if (args.start_time_from is not None and args.start_time_to is not None
            and args.start_time_from > args.start_time_to):
        parser.error("--from must not be greater than --to")

    if not os.path.exists(args.path):
        _fail(f"Performance statistics file or files directory does not exist: {args.path}")

    if args.out is not None and os.path.exists(args.out):
        _fail(f"Failed to create output file: file with the given name already exists: {args.out}")

    if args.out is not None and not os.path.isdir(os.path.dirname(os.path.abspath(args.out))):
        _fail(f"Failed to create output file: directory does not exist: {os.path.dirname(args.out)}")

    try:
        config = load_config(args.config).with_overrides(
            output_format=OutputFormat(args.format) if args.format else None
        )
    except ConfigError as e:
        _fail(str(e))

    try:
        capture_files = FileScanner(config.file_prefix, config.file_extension).scan(args.path)
    except (BadFileNameError, FileNotFoundError) as e:
        _fail(str(e))

    if not capture_files:
        logging.warning(f"No performance statistics files found in {args.path}")

    record_filter = RecordFilter(
        ops=args.ops,
        start_time_from=args.start_time_from,
        start_time_to=args.start_time_to,
        cache_ids=args.cache_ids,
    )

    try:
        exit_code = read_statistics(capture_files, args.out, record_filter, config)
    except FileExistsError:
        _fail(f"Failed to create output file: file with the given name already exists: {args.out}")
    except OSError as e:
        print(f"Error: Failed to write output: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    sys.exit(exit_code)


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(EXIT_USAGE)


def _configure_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level."""
    if verbosity == -1:
        # Quiet
        level = logging.ERROR
    elif verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format='%(levelname)s: %(message)s',
        stream=sys.stderr
    )

    # For very verbose mode, show more detailed format
    if verbosity >= 3:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            stream=sys.stderr,
            force=True  # Override previous configuration
        )


@contextmanager
def open_output(out_file: Optional[str]) -> Iterator[TextIO]:
    """Opens the output sink. A file is created exclusively and closed on exit."""
    if out_file is None:
        try:
            yield sys.stdout
        finally:
            sys.stdout.flush()
        return

    with open(out_file, 'x', encoding='utf-8') as f:
        yield f


@contextmanager
def cancel_on_signals(cancel_event: threading.Event) -> Iterator[threading.Event]:
    """Sets `cancel_event` on SIGINT/SIGTERM while the block runs."""
    def handle_signal(signum, frame):
        logging.warning(f"Cancelled by signal {signal.Signals(signum).name}, stopping after the current record")
        cancel_event.set()

    previous = {signum: signal.signal(signum, handle_signal) for signum in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield cancel_event
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def read_statistics(capture_files: Sequence[CaptureFile], out_file: Optional[str] = None,
                    record_filter: Optional[RecordFilter] = None, config: Optional[ReaderConfig] = None,
                    cancel_event: Optional[threading.Event] = None) -> int:
    """Prints records of the capture files and returns the process exit code."""
    config = config or ReaderConfig()
    cancel_event = cancel_event or threading.Event()

    with open_output(out_file) as out, cancel_on_signals(cancel_event):
        handler = PrintHandler(out, config.output_format)
        reader = StatisticsReader(
            [handler],
            record_filter=record_filter if record_filter is not None and not record_filter.is_empty else None,
            max_string_length=config.max_string_length,
            read_buffer_size=config.read_buffer_size,
            cancel_event=cancel_event,
        )
        result = reader.read(capture_files)

    if result.cancelled:
        logging.warning(f"Cancelled after {result.records_read} record(s)")
        return EXIT_CANCELLED

    if result.has_errors:
        logging.info(f"Failed to read {len(result.failed_files)} of {result.files_read} capture file(s)")
        return EXIT_FAILURE

    return EXIT_OK


if __name__ == "__main__":
    main()
