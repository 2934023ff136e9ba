"""Tests for the BigQuery backends (mocked client)."""

import json
from unittest.mock import MagicMock

import pytest
from google.api_core.exceptions import ServiceUnavailable

from dqsync.errors import PermanentError, SchedulerFailure, StoreFailure
from dqsync.query_builder import IdentifierError
from dqsync.reconciler import Reconciler
from dqsync.schemas import (
    ChangeAction,
    ChangeBatch,
    ChangeEvent,
    CheckType,
    GeneratedJob,
    InvalidReason,
    OutcomeAction,
    QueryParam,
    ResultStatus,
)
from dqsync.stores import InMemoryChangeFeed, InMemoryJobScheduler
from dqsync.stores.bigquery import (
    BigQueryChangeFeed,
    BigQueryDefinitionStore,
    BigQueryJobScheduler,
    BigQueryResultsStore,
    build_backends,
)
from dqsync.synchronizer import JobSynchronizer


def _client(rows=None, affected=None, updated=None):
    client = MagicMock()
    job = client.query.return_value
    job.result.return_value = rows or []
    job.num_dml_affected_rows = affected
    job.dml_stats = MagicMock(updated_row_count=updated) if updated is not None else None
    return client


def _last_call(client):
    args, kwargs = client.query.call_args
    params = {p.name: p for p in kwargs["job_config"].query_parameters}
    return args[0], params


class TestTablePaths:
    """Tests for table path validation."""

    def test_project_dataset_table(self):
        store = BigQueryDefinitionStore(_client(), dataset="dq", table="check_definitions", project="my-proj")
        assert store.table == "`my-proj.dq.check_definitions`"

    def test_invalid_table_rejected(self):
        with pytest.raises(IdentifierError):
            BigQueryDefinitionStore(_client(), dataset="dq", table="defs; DROP")

    def test_build_backends(self, test_config):
        backends = build_backends(test_config, client=_client())
        assert backends.store.table == "`test-project.dq_test.check_definitions`"
        assert backends.feed.table == "`test-project.dq_test.check_definition_changes`"
        assert backends.scheduler.table == "`test-project.dq_test.generated_jobs`"
        assert backends.results.table == "`test-project.dq_test.check_results`"


class TestBigQueryDefinitionStore:
    """Tests for BigQueryDefinitionStore."""

    def test_get_binds_id(self):
        client = _client(rows=[{"check_id": "a", "check_type": "UNIQUENESS", "columns_key": "k"}])
        store = BigQueryDefinitionStore(client, dataset="dq", table="defs")

        definition = store.get("a")

        sql, params = _last_call(client)
        assert "WHERE check_id = @check_id" in sql
        assert params["check_id"].value == "a"
        assert definition.key_columns == ("k",)

    def test_free_text_filter_is_invalidated_not_raised(self):
        """A legacy WHERE-clause filter comes back as an invalidation outcome."""
        row = {
            "check_id": "c1",
            "check_name": "C1",
            "check_type": "UNIQUENESS",
            "schedule": "every 1 hours",
            "target_schema": "sales",
            "target_table": "orders",
            "columns_key": "order_id",
            "row_filter": "status = 'active'",
        }
        client = _client(rows=[row], affected=1)
        store = BigQueryDefinitionStore(client, dataset="dq", table="defs")
        assert store.get("c1").row_filter == "status = 'active'"

        reconciler = Reconciler(InMemoryChangeFeed(), JobSynchronizer(store, InMemoryJobScheduler()))
        outcome = reconciler.reconcile_one("c1")

        assert outcome.action == OutcomeAction.INVALIDATED
        assert outcome.reason == InvalidReason.INVALID_PARAMETER
        sql, params = _last_call(client)
        assert sql.startswith("DELETE FROM `dq.defs`")
        assert params["check_id"].value == "c1"

    def test_get_missing(self):
        assert BigQueryDefinitionStore(_client(), dataset="dq", table="defs").get("a") is None

    def test_upsert_is_parameterized_merge(self, uniqueness_check):
        client = _client()
        store = BigQueryDefinitionStore(client, dataset="dq", table="defs")

        store.upsert(uniqueness_check.with_changes(check_name="x'; DROP TABLE y; --"))

        sql, params = _last_call(client)
        assert sql.startswith("MERGE `dq.defs` T")
        assert "DROP TABLE" not in sql
        assert params["check_name"].value == "x'; DROP TABLE y; --"
        assert params["columns_key"].value == "order_id"
        assert params["is_active"].type_ == "BOOL"

    def test_upsert_rejects_type_change(self, uniqueness_check):
        client = _client(rows=[{"check_id": "orders_unique", "check_type": "FRESHNESS"}])
        store = BigQueryDefinitionStore(client, dataset="dq", table="defs")
        with pytest.raises(PermanentError):
            store.upsert(uniqueness_check)
        assert client.query.call_count == 1

    def test_delete_reports_affected_rows(self):
        assert BigQueryDefinitionStore(_client(affected=1), dataset="dq", table="defs").delete("a") is True
        assert BigQueryDefinitionStore(_client(affected=0), dataset="dq", table="defs").delete("a") is False

    def test_api_error_wrapped(self):
        client = _client()
        client.query.side_effect = ServiceUnavailable("backend down")
        store = BigQueryDefinitionStore(client, dataset="dq", table="defs")
        with pytest.raises(StoreFailure, match="backend down"):
            store.get("a")


class TestBigQueryChangeFeed:
    """Tests for BigQueryChangeFeed."""

    def test_has_pending(self):
        feed = BigQueryChangeFeed(_client(rows=[{"pending": True}]), dataset="dq", table="changes")
        assert feed.has_pending() is True

    def test_drain(self):
        rows = [
            {"seq": 4, "action": "INSERT", "check_id": "a", "changed_at": None},
            {"seq": 9, "action": "DELETE", "check_id": "a", "changed_at": None},
        ]
        client = _client(rows=rows)
        feed = BigQueryChangeFeed(client, dataset="dq", table="changes")

        batch = feed.drain(limit=50)

        sql, params = _last_call(client)
        assert "WHERE acknowledged_at IS NULL ORDER BY seq LIMIT @limit" in sql
        assert params["limit"].value == 50
        assert [e.action for e in batch.events] == [ChangeAction.INSERT, ChangeAction.DELETE]
        assert batch.high_watermark == 9

    def test_drain_empty(self):
        assert BigQueryChangeFeed(_client(), dataset="dq", table="changes").drain().is_empty

    def test_acknowledge_exact_seqs(self):
        client = _client(affected=2)
        feed = BigQueryChangeFeed(client, dataset="dq", table="changes")
        batch = ChangeBatch(
            events=(ChangeEvent(ChangeAction.INSERT, "a", seq=4), ChangeEvent(ChangeAction.DELETE, "a", seq=9)),
            high_watermark=9,
        )

        feed.acknowledge(batch)

        sql, params = _last_call(client)
        assert "seq IN UNNEST(@seqs)" in sql
        assert params["seqs"].values == [4, 9]

    def test_acknowledge_subset_stamps_remaining_seqs(self):
        rows = [
            {"seq": 4, "action": "INSERT", "check_id": "a", "changed_at": None},
            {"seq": 6, "action": "INSERT", "check_id": "b", "changed_at": None},
        ]
        batch = BigQueryChangeFeed(_client(rows=rows), dataset="dq", table="changes").drain()
        assert batch.positions == (4, 6)

        client = _client(affected=1)
        BigQueryChangeFeed(client, dataset="dq", table="changes").acknowledge(batch.excluding(["a"]))

        sql, params = _last_call(client)
        assert params["seqs"].values == [6]

    def test_acknowledge_empty_batch_is_noop(self):
        client = _client()
        BigQueryChangeFeed(client, dataset="dq", table="changes").acknowledge(ChangeBatch())
        client.query.assert_not_called()


class TestBigQueryJobScheduler:
    """Tests for BigQueryJobScheduler."""

    def _job(self):
        return GeneratedJob(
            job_name="dq_task_a",
            check_id="a",
            check_type=CheckType.UNIQUENESS,
            schedule="every 1 hours",
            statement="INSERT INTO `r` SELECT 1",
            parameters=(QueryParam("keys", "STRING", "k"),),
        )

    def test_create_binds_job_name(self):
        client = _client(updated=0)
        scheduler = BigQueryJobScheduler(client, dataset="dq", table="jobs")

        replaced = scheduler.create_or_replace(self._job())

        sql, params = _last_call(client)
        assert "USING (SELECT @job_name AS job_name)" in sql
        assert "dq_task_a" not in sql
        assert params["job_name"].value == "dq_task_a"
        assert json.loads(params["parameters"].value) == [{"name": "keys", "type": "STRING", "value": "k"}]
        assert replaced is False

    def test_replace_detected(self):
        scheduler = BigQueryJobScheduler(_client(updated=1), dataset="dq", table="jobs")
        assert scheduler.create_or_replace(self._job()) is True

    def test_delete_if_exists(self):
        client = _client(affected=0)
        scheduler = BigQueryJobScheduler(client, dataset="dq", table="jobs")
        assert scheduler.delete_if_exists("dq_task_a") is False
        sql, params = _last_call(client)
        assert "WHERE job_name = @job_name" in sql

    def test_find_job_name(self):
        scheduler = BigQueryJobScheduler(_client(rows=[{"job_name": "dq_task_a"}]), dataset="dq", table="jobs")
        assert scheduler.find_job_name("a") == "dq_task_a"

    def test_get_job_parses_parameters(self):
        row = {
            "job_name": "dq_task_a",
            "check_id": "a",
            "check_type": "UNIQUENESS",
            "schedule": "every 1 hours",
            "statement": "INSERT ...",
            "parameters": '[{"name": "keys", "type": "STRING", "value": "k"}]',
            "updated_at": None,
        }
        job = BigQueryJobScheduler(_client(rows=[row]), dataset="dq", table="jobs").get_job("dq_task_a")
        assert job.parameters == (QueryParam("keys", "STRING", "k"),)

    def test_api_error_wrapped(self):
        client = _client()
        client.query.side_effect = ServiceUnavailable("scheduler down")
        scheduler = BigQueryJobScheduler(client, dataset="dq", table="jobs")
        with pytest.raises(SchedulerFailure):
            scheduler.delete_if_exists("dq_task_a")


class TestBigQueryResultsStore:
    """Tests for BigQueryResultsStore."""

    def test_recent_results(self):
        row = {
            "check_id": "a",
            "check_name": "A",
            "check_type": "UNIQUENESS",
            "result": "KO",
            "details": '{"duplicate_count": 2}',
            "executed_at": "2024-01-01T00:00:00+00:00",
        }
        client = _client(rows=[row])
        results = BigQueryResultsStore(client, dataset="dq", table="results").recent_results("a", limit=5)

        sql, params = _last_call(client)
        assert "ORDER BY executed_at DESC LIMIT @limit" in sql
        assert params["limit"].value == 5
        assert results[0].result == ResultStatus.KO
        assert results[0].details == {"duplicate_count": 2}
