"""
Table copier tests against real SQLite source and target databases.

Test coverage:
- Batch commits and final migrated count
- Rollback of the open batch on insert failure
- Dry runs never touching the target
- Auto-create idempotence and append-only re-runs
- Column mappings, custom queries and incremental windows
- Extraction failures and unknown counts
"""

from unittest.mock import MagicMock

import pytest

from core.errors import ExtractionError, WriteError
from core.events import (BatchCommitted, CountResolved, JobStateChanged, SampleRow, StatementPlanned,
                         TableCreatePlanned)
from core.reconciliation import Reconciliation
from core.schema_ir import ColumnMapping, TableJob
from core.table_copier import DRY_RUN_SAMPLE_ROWS, BatchTransaction, JobState, TableCopier
from sqlite_helpers import create_table, read_rows, table_names


def fill_numbers(path, count, table="numbers"):
    create_table(
        path,
        f"CREATE TABLE {table} (id INTEGER NOT NULL, label VARCHAR(20))",
        [(i, f"row-{i}") for i in range(1, count + 1)],
        f"INSERT INTO {table} VALUES (?, ?)",
    )


def column_names(path, table):
    return [row[1] for row in read_rows(path, f"PRAGMA table_info({table})")]


class TestBatching:

    def test_2500_rows_in_batches_of_1000(self, source_path, target_path, source, target, events, recorder):
        fill_numbers(source_path, 2500)
        create_table(target_path, "CREATE TABLE numbers (id INTEGER, label TEXT)")
        target.commit = MagicMock(wraps=target.commit)

        result = TableCopier(source, target, events).copy(TableJob(source_table="numbers", batch_size=1000))

        assert target.commit.call_count == 3
        assert result.commits == 3
        assert result.migrated_rows == 2500
        assert [e.batch_rows for e in recorder.of_type(BatchCommitted)] == [1000, 1000, 500]
        assert [e.rows_total for e in recorder.of_type(BatchCommitted)] == [1000, 2000, 2500]
        assert read_rows(target_path, "SELECT COUNT(*) FROM numbers") == [(2500,)]
        assert result.classification is Reconciliation.MATCH

    def test_exact_multiple_reports_only_row_carrying_commits(self, source_path, target_path, source, target,
                                                              events, recorder):
        fill_numbers(source_path, 2000)
        create_table(target_path, "CREATE TABLE numbers (id INTEGER, label TEXT)")
        target.commit = MagicMock(wraps=target.commit)

        result = TableCopier(source, target, events).copy(TableJob(source_table="numbers", batch_size=1000))

        assert target.commit.call_count == 3
        assert result.commits == 2
        assert [e.batch_rows for e in recorder.of_type(BatchCommitted)] == [1000, 1000]
        assert read_rows(target_path, "SELECT COUNT(*) FROM numbers") == [(2000,)]

    def test_empty_source_closes_transaction_without_reporting(self, source_path, target_path, source, target,
                                                                events, recorder):
        fill_numbers(source_path, 0)
        create_table(target_path, "CREATE TABLE numbers (id INTEGER, label TEXT)")
        target.commit = MagicMock(wraps=target.commit)

        result = TableCopier(source, target, events).copy(TableJob(source_table="numbers"))

        target.commit.assert_called_once()
        assert result.migrated_rows == 0
        assert result.commits == 0
        assert recorder.of_type(BatchCommitted) == []
        assert result.source_count.value == 0
        assert result.target_count.value == 0

    def test_batch_transaction_rolls_back_on_error(self):
        target = MagicMock()
        with pytest.raises(RuntimeError):
            with BatchTransaction(target, batch_size=10) as batch:
                batch.row_written()
                raise RuntimeError("insert failed")
        target.rollback.assert_called_once()
        target.commit.assert_not_called()

    def test_batch_transaction_dry_run_is_inert(self):
        target = MagicMock()
        with BatchTransaction(target, batch_size=1, dry_run=True) as batch:
            batch.row_written()
            batch.row_written()
        target.cursor.assert_not_called()
        target.commit.assert_not_called()
        assert batch.rows == 2
        assert batch.commits == 0


class TestFailureRollback:

    def test_insert_failure_keeps_committed_batches_only(self, source_path, target_path, source, target, events):
        create_table(
            source_path,
            "CREATE TABLE items (id INTEGER, val TEXT)",
            [(i, None if i == 1500 else f"v{i}") for i in range(1, 2501)],
            "INSERT INTO items VALUES (?, ?)",
        )
        create_table(target_path, "CREATE TABLE items (id INTEGER, val TEXT NOT NULL)")
        copier = TableCopier(source, target, events)

        with pytest.raises(WriteError) as excinfo:
            copier.copy(TableJob(source_table="items", batch_size=1000))

        assert excinfo.value.table == "items"
        assert "row 1500" in str(excinfo.value)
        assert copier.state is JobState.FAILED
        assert read_rows(target_path, "SELECT COUNT(*), MAX(id) FROM items") == [(1000, 1000)]

    def test_ddl_failure_is_a_write_error(self, source_path, source, target, events):
        fill_numbers(source_path, 3)
        job = TableJob(source_table="numbers", auto_create=True,
                       columns=(ColumnMapping(source="id", target_type="NOT A TYPE ("),))
        with pytest.raises(WriteError):
            TableCopier(source, target, events).copy(job)

    def test_ddl_failure_survives_failing_rollback(self, source_path, source, target, events, recorder):
        fill_numbers(source_path, 3)
        target.execute = MagicMock(side_effect=RuntimeError("server closed the connection"))
        target.rollback = MagicMock(side_effect=RuntimeError("connection already closed"))
        copier = TableCopier(source, target, events)

        with pytest.raises(WriteError) as excinfo:
            copier.copy(TableJob(source_table="numbers", auto_create=True))

        assert excinfo.value.table == "numbers"
        assert "server closed the connection" in str(excinfo.value)
        target.rollback.assert_called_once()
        assert copier.state is JobState.FAILED
        assert recorder.of_type(JobStateChanged)[-1].state == "failed"


class TestDryRun:

    def test_dry_run_leaves_target_untouched(self, source_path, target_path, source, target, events, recorder):
        fill_numbers(source_path, 8)
        target.commit = MagicMock(wraps=target.commit)

        result = TableCopier(source, target, events).copy(
            TableJob(source_table="numbers", auto_create=True, dry_run=True))

        assert table_names(target_path) == []
        target.commit.assert_not_called()
        assert result.migrated_rows == 8
        assert result.commits == 0
        assert result.source_count.value == 8
        assert not result.target_count.known

        samples = recorder.of_type(SampleRow)
        assert len(samples) == DRY_RUN_SAMPLE_ROWS
        assert samples[0].values == (1, "row-1")
        assert [s.index for s in samples] == [1, 2, 3, 4, 5]

        created = recorder.of_type(TableCreatePlanned)
        assert len(created) == 1
        assert not created[0].executed
        assert created[0].ddl.startswith("CREATE TABLE `numbers`")

        insert = [e for e in recorder.of_type(StatementPlanned) if e.statement == "insert"]
        assert insert[0].sql == "INSERT INTO `numbers` (`id`, `label`) VALUES (?, ?)"
        assert insert[0].dry_run


class TestAutoCreate:

    def test_columns_follow_source_order(self, users_source, target_path, source, target, events):
        TableCopier(source, target, events).copy(TableJob(source_table="users", auto_create=True))
        assert column_names(target_path, "users") == ["user_id", "name", "balance"]
        notnull = {row[1]: row[3] for row in read_rows(target_path, "PRAGMA table_info(users)")}
        assert notnull == {"user_id": 1, "name": 0, "balance": 0}

    def test_rerun_is_append_only(self, users_source, target_path, source, target, events, recorder):
        copier = TableCopier(source, target, events)
        job = TableJob(source_table="users", auto_create=True)
        copier.copy(job)
        assert len(recorder.of_type(TableCreatePlanned)) == 1

        create_table(target_path, "CREATE TABLE unrelated (x INTEGER)")
        with target.connection:
            target.connection.execute("INSERT INTO users VALUES (99, 'zed', 0)")

        recorder.events.clear()
        result = copier.copy(job)

        assert recorder.of_type(TableCreatePlanned) == []
        assert read_rows(target_path, "SELECT COUNT(*) FROM users") == [(7,)]
        assert read_rows(target_path, "SELECT name FROM users WHERE user_id = 99") == [("zed",)]
        assert result.classification is Reconciliation.SURPLUS
        assert result.diff == 4

    def test_state_sequence(self, users_source, source, target, events, recorder):
        TableCopier(source, target, events).copy(TableJob(source_table="users", auto_create=True))
        states = [e.state for e in recorder.of_type(JobStateChanged)]
        assert states == ["counting_source", "extracting", "ensuring_ddl", "writing",
                          "counting_target", "reconciled"]


class TestMappings:

    def test_renamed_column_round_trip(self, users_source, target_path, source, target, events):
        job = TableJob(
            source_table="users",
            target_table="customers",
            auto_create=True,
            columns=(ColumnMapping(source="user_id", target="customer_id"), ColumnMapping(source="name")),
        )
        result = TableCopier(source, target, events).copy(job)

        assert result.target_table == "customers"
        assert column_names(target_path, "customers") == ["customer_id", "name"]
        original = read_rows(users_source, "SELECT user_id, name FROM users ORDER BY user_id")
        copied = read_rows(target_path, "SELECT customer_id, name FROM customers ORDER BY customer_id")
        assert copied == original

    def test_custom_query(self, users_source, target_path, source, target, events):
        job = TableJob(target_table="big_spenders", auto_create=True,
                       select_sql="SELECT user_id AS id, name FROM users WHERE balance > 15")
        result = TableCopier(source, target, events).copy(job)

        assert result.table == "big_spenders"
        assert result.source_count.value == 1
        # Result-set columns carry no declared type, so both land as TEXT
        assert read_rows(target_path, "SELECT id, name FROM big_spenders") == [("2", "bob")]
        assert result.classification is Reconciliation.MATCH


class TestIncremental:

    @pytest.mark.parametrize("bind_bounds", [False, True])
    def test_window(self, source_path, target_path, source, target, events, bind_bounds):
        fill_numbers(source_path, 10)
        job = TableJob(source_table="numbers", auto_create=True, incremental_key="id", since="3", until="7")

        result = TableCopier(source, target, events, bind_bounds=bind_bounds).copy(job)

        assert result.source_count.value == 4
        assert result.migrated_rows == 4
        assert read_rows(target_path, "SELECT MIN(id), MAX(id) FROM numbers") == [(4, 7)]


class FlakyCursor:
    """Cursor wrapper whose second fetchmany fails"""

    def __init__(self, cursor):
        self.cursor = cursor
        self.fetches = 0

    @property
    def description(self):
        return self.cursor.description

    def execute(self, *args):
        return self.cursor.execute(*args)

    def fetchmany(self, size):
        self.fetches += 1
        if self.fetches > 1:
            raise RuntimeError("connection reset by peer")
        return self.cursor.fetchmany(size)

    def close(self):
        self.cursor.close()


class TestSourceFailures:

    def test_mid_stream_fetch_failure(self, source_path, target_path, source, target, events):
        fill_numbers(source_path, 5)
        create_table(target_path, "CREATE TABLE numbers (id INTEGER, label TEXT)")
        real_stream_cursor = source.stream_cursor
        source.stream_cursor = lambda batch_size: FlakyCursor(real_stream_cursor(batch_size))

        with pytest.raises(ExtractionError) as excinfo:
            TableCopier(source, target, events).copy(TableJob(source_table="numbers", batch_size=2))

        assert "after 2 rows" in str(excinfo.value)
        assert read_rows(target_path, "SELECT COUNT(*) FROM numbers") == [(2,)]

    def test_missing_source_table(self, source, target, events, recorder):
        copier = TableCopier(source, target, events)
        with pytest.raises(ExtractionError) as excinfo:
            copier.copy(TableJob(source_table="ghost"))
        assert excinfo.value.table == "ghost"
        assert recorder.of_type(JobStateChanged)[-1].state == "failed"
        counts = recorder.of_type(CountResolved)
        assert len(counts) == 1 and not counts[0].count.known

    def test_count_failure_becomes_unknown(self, users_source, source, target, events):
        source.query_scalar = MagicMock(side_effect=RuntimeError("statement timeout"))

        result = TableCopier(source, target, events).copy(TableJob(source_table="users", auto_create=True))

        assert result.migrated_rows == 3
        assert not result.source_count.known
        assert result.source_count.error == "statement timeout"
        assert result.target_count.value == 3
        assert result.classification is Reconciliation.UNKNOWN
        assert result.source_rows == -1
