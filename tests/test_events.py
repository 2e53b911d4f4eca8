import json
import logging
import unittest
from datetime import datetime

from core.events import (BatchCommitted, CountResolved, EventBus, JobFailed, JobStateChanged, LoggingListener,
                         RecordingListener, RunFailed, RunStarted, SampleRow, TableCreatePlanned)
from core.reconciliation import RowCount


class TestEventBus(unittest.TestCase):

    def test_fan_out_in_order(self):
        first, second = RecordingListener(), RecordingListener()
        bus = EventBus([first])
        bus.subscribe(second)
        bus.emit(RunStarted(tables=2))
        bus.emit(BatchCommitted(table="t", rows_total=10, batch_rows=10))
        self.assertEqual(first.kinds, ["RunStarted", "BatchCommitted"])
        self.assertEqual(second.kinds, first.kinds)

    def test_unsubscribe(self):
        recorder = RecordingListener()
        bus = EventBus([recorder])
        bus.unsubscribe(recorder)
        bus.emit(RunStarted())
        self.assertEqual(recorder.events, [])

    def test_broken_listener_does_not_stop_others(self):
        def broken(event):
            raise ValueError("listener bug")

        recorder = RecordingListener()
        bus = EventBus([broken, recorder])
        with self.assertLogs('core.events', level='ERROR'):
            bus.emit(RunStarted())
        self.assertEqual(len(recorder.events), 1)

    def test_of_type(self):
        recorder = RecordingListener()
        recorder(RunStarted())
        recorder(SampleRow(index=1))
        self.assertEqual(len(recorder.of_type(SampleRow)), 1)


class TestSerialization(unittest.TestCase):

    def test_to_dict(self):
        when = datetime(2024, 1, 2, 3, 4, 5)
        event = CountResolved(table="orders", side="source", count=RowCount.of(42), timestamp=when)
        self.assertEqual(event.to_dict(), {
            'event': "CountResolved",
            'table': "orders",
            'side': "source",
            'count': 42,
            'timestamp': "2024-01-02T03:04:05",
        })

    def test_unknown_count_is_null(self):
        record = json.loads(CountResolved(count=RowCount.unknown("gone")).to_json())
        self.assertIsNone(record['count'])

    def test_sample_values_are_json_safe(self):
        record = json.loads(SampleRow(table="t", index=1, values=(1, b"\x00", None)).to_json())
        self.assertEqual(record['values'], [1, "b'\\x00'", None])


class TestLoggingListener(unittest.TestCase):

    def setUp(self):
        self.log = logging.getLogger("tablesync.test")

    def test_human_rendering(self):
        listener = LoggingListener(self.log)
        with self.assertLogs(self.log, level='INFO') as cm:
            listener(BatchCommitted(table="t", rows_total=2000, batch_rows=1000))
            listener(TableCreatePlanned(table="t", target_table="t", ddl="CREATE TABLE t (a TEXT)", executed=False))
        self.assertIn("Committed 2000 rows", cm.output[0])
        self.assertIn("would be created", cm.output[1])

    def test_unknown_count_warns(self):
        listener = LoggingListener(self.log)
        with self.assertLogs(self.log, level='WARNING') as cm:
            listener(CountResolved(table="t", side="target", count=RowCount.unknown("no such table")))
        self.assertIn("no such table", cm.output[0])

    def test_failures_are_errors(self):
        listener = LoggingListener(self.log)
        with self.assertLogs(self.log, level='ERROR') as cm:
            listener(JobFailed(table="t", error="boom", code="WRITE_ERROR"))
            listener(RunFailed(table="t", error="boom", completed_tables=2))
        self.assertEqual(len(cm.output), 2)
        self.assertIn("after 2 completed table(s)", cm.output[1])

    def test_json_rendering(self):
        listener = LoggingListener(self.log, fmt="json")
        with self.assertLogs(self.log, level='DEBUG') as cm:
            listener(RunStarted(tables=3, dry_run=True))
            listener(JobStateChanged(table="t", state="writing"))
        started = json.loads(cm.records[0].getMessage())
        self.assertEqual(started['event'], "RunStarted")
        self.assertEqual(started['tables'], 3)
        self.assertEqual(cm.records[1].levelno, logging.DEBUG)


if __name__ == '__main__':
    unittest.main()
