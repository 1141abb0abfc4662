#!/usr/bin/env python3
"""
Unit tests for PrintHandler.
"""

import json
from io import StringIO
from unittest.mock import MagicMock

from print_handler import OutputFormat, PrintHandler, format_text_value
from stat_models import (
    CacheOperationRecord,
    CacheStartRecord,
    JobRecord,
    OperationType,
    QueryReadsRecord,
    QueryRecord,
    QueryType,
    SessionId,
    TaskRecord,
    TransactionRecord,
)
from stat_samples import NODE_ID, OTHER_NODE_ID


N = str(NODE_ID)
O = str(OTHER_NODE_ID)


def print_records(records, output_format=OutputFormat.TEXT):
    output = StringIO()
    handler = PrintHandler(output, output_format)
    for record in records:
        method = {
            CacheStartRecord: handler.cache_start,
            CacheOperationRecord: handler.cache_operation,
            TransactionRecord: handler.transaction,
            QueryRecord: handler.query,
            QueryReadsRecord: handler.query_reads,
            TaskRecord: handler.task,
            JobRecord: handler.job,
        }[type(record)]
        method(record)
    return output.getvalue().splitlines()


class TestTextFormat:
    """Text lines: OP [key=value, ...]."""

    def test_cache_start(self):
        lines = print_records([CacheStartRecord(NODE_ID, -7, 'orders')])

        assert lines == [f"CACHE_START [nodeId={N}, cacheId=-7, name=orders]"]

    def test_cache_operation(self):
        lines = print_records([CacheOperationRecord(NODE_ID, OperationType.CACHE_GET_AND_PUT, 3, 10, 5)])

        assert lines == [f"CACHE_GET_AND_PUT [nodeId={N}, cacheId=3, startTime=10, duration=5]"]

    def test_transactions(self):
        lines = print_records([
            TransactionRecord(NODE_ID, (1, 2), 10, 5, True),
            TransactionRecord(NODE_ID, (), 10, 5, False),
        ])

        assert lines == [
            f"TX_COMMIT [nodeId={N}, cacheIds=[1, 2], startTime=10, duration=5]",
            f"TX_ROLLBACK [nodeId={N}, cacheIds=[], startTime=10, duration=5]",
        ]

    def test_query_text_is_not_escaped(self):
        lines = print_records([QueryRecord(NODE_ID, QueryType.SQL_FIELDS, 'select a, b from t where c = "]"',
                                           7, 10, 5, False)])

        assert lines == [f'QUERY [nodeId={N}, type=SQL_FIELDS, text=select a, b from t where c = "]", '
                         f'id=7, startTime=10, duration=5, success=false]']

    def test_query_reads(self):
        lines = print_records([QueryReadsRecord(NODE_ID, QueryType.SCAN, OTHER_NODE_ID, 7, 100, 3)])

        assert lines == [f"QUERY_READS [nodeId={N}, type=SCAN, queryNodeId={O}, id=7, "
                         f"logicalReads=100, physicalReads=3]"]

    def test_task_and_job(self):
        lines = print_records([
            TaskRecord(NODE_ID, SessionId(OTHER_NODE_ID, 255), 'MyTask', 10, 5, 12),
            JobRecord(NODE_ID, SessionId(OTHER_NODE_ID, 255), 2, 10, 5, True),
        ])

        assert lines == [
            f"TASK [nodeId={N}, sesId=ff-{O}, taskName=MyTask, startTime=10, duration=5, affPartId=12]",
            f"JOB [nodeId={N}, sesId=ff-{O}, queuedTime=2, startTime=10, duration=5, timedOut=true]",
        ]

    def test_format_text_value(self):
        assert format_text_value(True) == 'true'
        assert format_text_value(0) == '0'
        assert format_text_value((1, -2)) == '[1, -2]'
        assert format_text_value(NODE_ID) == N


class TestJsonFormat:
    """JSON lines carry the same keys plus 'op'."""

    def test_json_lines(self):
        lines = print_records([
            CacheStartRecord(NODE_ID, 1, 'cache'),
            TransactionRecord(NODE_ID, (1, 2), 10, 5, False),
            QueryRecord(NODE_ID, QueryType.SQL, 'текст', 7, 10, 5, True),
            JobRecord(NODE_ID, SessionId(OTHER_NODE_ID, 1), 2, 10, 5, False),
        ], OutputFormat.JSON)

        objects = [json.loads(line) for line in lines]

        assert objects[0] == {'op': 'CACHE_START', 'nodeId': N, 'cacheId': 1, 'name': 'cache'}
        assert objects[1] == {'op': 'TX_ROLLBACK', 'nodeId': N, 'cacheIds': [1, 2], 'startTime': 10, 'duration': 5}
        assert objects[2]['type'] == 'SQL'
        assert objects[2]['text'] == 'текст'
        assert objects[2]['success'] is True
        assert objects[3]['sesId'] == f"1-{O}"
        assert objects[3]['timedOut'] is False

    def test_json_keys_match_text_keys(self):
        record = QueryReadsRecord(NODE_ID, QueryType.SCAN, OTHER_NODE_ID, 7, 100, 3)

        text_line = print_records([record])[0]
        json_line = json.loads(print_records([record], OutputFormat.JSON)[0])

        text_keys = [part.split('=')[0] for part in text_line[len('QUERY_READS ['):-1].split(', ')]
        assert list(json_line) == ['op'] + text_keys


class TestSink:
    """Output sink handling."""

    def test_every_line_is_flushed(self):
        sink = MagicMock()
        handler = PrintHandler(sink)

        handler.cache_start(CacheStartRecord(NODE_ID, 1, 'a'))
        handler.cache_start(CacheStartRecord(NODE_ID, 2, 'b'))

        assert sink.write.call_count == 2
        assert sink.flush.call_count == 2
        assert handler.lines_written == 2

    def test_output_format_from_string(self):
        handler = PrintHandler(StringIO(), 'json')

        assert handler.output_format == OutputFormat.JSON
