import pytest

from core.errors import ErrorCode, PlanningError
from core.schema_ir import DEFAULT_BATCH_SIZE, ColumnMapping, TableJob


class TestTableJob:

    def test_defaults(self):
        job = TableJob(source_table="orders", batch_size=0)
        assert job.batch_size == DEFAULT_BATCH_SIZE
        assert job.target_name == "orders"
        assert job.display_name == "orders"
        assert not job.is_custom_query

    def test_custom_query_names(self):
        job = TableJob(target_table="report", select_sql="SELECT 1 AS one")
        assert job.is_custom_query
        assert job.display_name == "report"
        job.validate()

    def test_with_dry_run_copies(self):
        job = TableJob(source_table="orders")
        dry = job.with_dry_run(True)
        assert dry.dry_run and not job.dry_run

    def test_mappings_are_stored_as_tuple(self):
        mapping = ColumnMapping(source="user_id", target="customer_id")
        job = TableJob(source_table="users", columns=[mapping])
        assert job.columns == (mapping,)

    @pytest.mark.parametrize("job", [
        TableJob(source_table=" "),
        TableJob(select_sql="SELECT 1"),
        TableJob(source_table="t", columns=(ColumnMapping(source=""),)),
        TableJob(source_table="t", columns=(ColumnMapping(source="a"), ColumnMapping(source="a", target="b"))),
        TableJob(source_table="t", columns=(ColumnMapping(source="a", target="x"), ColumnMapping(source="b", target="x"))),
    ])
    def test_invalid(self, job):
        with pytest.raises(PlanningError) as excinfo:
            job.validate()
        assert excinfo.value.code is ErrorCode.PLANNING_ERROR


class TestColumnMapping:

    def test_target_defaults_to_source(self):
        assert ColumnMapping(source="name").target_name == "name"

    def test_from_dict(self):
        mapping = ColumnMapping.from_dict({"source": " user_id ", "target": "customer_id",
                                           "target_type": "BIGINT", "nullable": 0, "default_value": "0"})
        assert mapping == ColumnMapping(source="user_id", target="customer_id", target_type="BIGINT",
                                        nullable=False, default_value="0")
        assert ColumnMapping.from_dict({"source": "a"}).nullable is None
