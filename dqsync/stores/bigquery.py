"""
BigQuery collaborator backends.

Tables (all in one dataset, names configurable):
- check_definitions: one row per declared check
- check_definition_changes: change capture rows
  (seq INT64, action STRING, check_id STRING, changed_at TIMESTAMP,
   acknowledged_at TIMESTAMP)
- generated_jobs: one row per materialized job, read by the job runtime
  (job_name, check_id, check_type, schedule, statement, parameters JSON,
   updated_at)
- check_results: appended by jobs, read here only

Every statement is parameterized: ids, job names and values are bound
with ScalarQueryParameter / ArrayQueryParameter, never interpolated.
Table paths come from configuration and are validated once.

GoogleAPIError is wrapped into StoreFailure / SchedulerFailure so the
reconciler can classify it as transient.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery

from dqsync.config import DqsyncConfig
from dqsync.errors import PermanentError, SchedulerFailure, StoreFailure
from dqsync.query_builder import qualify_path
from dqsync.schemas import (
    ChangeBatch,
    ChangeEvent,
    CheckDefinition,
    CheckResult,
    GeneratedJob,
)

from .base import Backends, ChangeFeed, DefinitionStore, JobScheduler, ResultsStore

logger = logging.getLogger(__name__)


@contextmanager
def _wrap_errors(error_cls: type, what: str) -> Iterator[None]:
    try:
        yield
    except GoogleAPIError as e:
        raise error_cls(f"{what} failed: {e}") from e


class _BigQueryTable:
    """Shared plumbing: validated table path + parameterized query helper."""

    def __init__(self, client: bigquery.Client, dataset: str, table: str, project: Optional[str] = None):
        self.client = client
        path = f"{project}.{dataset}.{table}" if project else f"{dataset}.{table}"
        self.table = qualify_path(path)

    def _query(self, sql: str, params: list) -> bigquery.QueryJob:
        job_config = bigquery.QueryJobConfig(query_parameters=params)
        job = self.client.query(sql, job_config=job_config)
        job.result()
        return job

    def _rows(self, sql: str, params: list) -> list[dict[str, Any]]:
        job_config = bigquery.QueryJobConfig(query_parameters=params)
        result = self.client.query(sql, job_config=job_config).result()
        return [dict(row) for row in result]


# =============================================================================
# Definitions
# =============================================================================

_DEFINITION_COLUMNS = [
    ("check_id", "STRING"),
    ("check_name", "STRING"),
    ("check_type", "STRING"),
    ("target_schema", "STRING"),
    ("target_table", "STRING"),
    ("columns_key", "STRING"),
    ("row_filter", "STRING"),
    ("sla_minutes", "INT64"),
    ("source_query", "STRING"),
    ("target_query", "STRING"),
    ("threshold_ratio", "FLOAT64"),
    ("schedule", "STRING"),
    ("is_active", "BOOL"),
    ("created_by", "STRING"),
    ("updated_by", "STRING"),
]


class BigQueryDefinitionStore(_BigQueryTable, DefinitionStore):
    """check_definitions table."""

    def get(self, check_id: str) -> Optional[CheckDefinition]:
        sql = f"SELECT * FROM {self.table} WHERE check_id = @check_id LIMIT 1"
        params = [bigquery.ScalarQueryParameter("check_id", "STRING", check_id)]
        with _wrap_errors(StoreFailure, f"Reading definition {check_id}"):
            rows = self._rows(sql, params)
        return CheckDefinition.from_row(rows[0]) if rows else None

    def upsert(self, definition: CheckDefinition) -> None:
        existing = self.get(definition.check_id)
        if existing is not None and existing.kind != definition.kind:
            raise PermanentError(
                f"Check {definition.check_id}: type cannot change "
                f"from {existing.check_type} to {definition.check_type}"
            )

        row = definition.to_row()
        params = [
            bigquery.ScalarQueryParameter(name, bq_type, row[name])
            for name, bq_type in _DEFINITION_COLUMNS
        ]
        names = [name for name, _ in _DEFINITION_COLUMNS]
        updates = ", ".join(f"{n} = @{n}" for n in names if n not in ("check_id", "created_by"))
        sql = (
            f"MERGE {self.table} T "
            f"USING (SELECT @check_id AS check_id) S "
            f"ON T.check_id = S.check_id "
            f"WHEN MATCHED THEN UPDATE SET {updates}, updated_at = CURRENT_TIMESTAMP() "
            f"WHEN NOT MATCHED THEN INSERT ({', '.join(names)}, created_at, updated_at) "
            f"VALUES ({', '.join('@' + n for n in names)}, CURRENT_TIMESTAMP(), CURRENT_TIMESTAMP())"
        )
        with _wrap_errors(StoreFailure, f"Upserting definition {definition.check_id}"):
            self._query(sql, params)

    def delete(self, check_id: str) -> bool:
        sql = f"DELETE FROM {self.table} WHERE check_id = @check_id"
        params = [bigquery.ScalarQueryParameter("check_id", "STRING", check_id)]
        with _wrap_errors(StoreFailure, f"Deleting definition {check_id}"):
            job = self._query(sql, params)
        return bool(job.num_dml_affected_rows)

    def list_definitions(self) -> Iterator[CheckDefinition]:
        sql = f"SELECT * FROM {self.table} ORDER BY check_id"
        with _wrap_errors(StoreFailure, "Listing definitions"):
            rows = self._rows(sql, [])
        return iter([CheckDefinition.from_row(r) for r in rows])


# =============================================================================
# Change feed
# =============================================================================

class BigQueryChangeFeed(_BigQueryTable, ChangeFeed):
    """
    check_definition_changes table.

    Rows are written by the change-capture mechanism. drain() reads
    unacknowledged rows ordered by seq; acknowledge() stamps exactly the
    drained seqs, so rows captured mid-pass stay pending.
    """

    def has_pending(self) -> bool:
        sql = f"SELECT EXISTS(SELECT 1 FROM {self.table} WHERE acknowledged_at IS NULL) AS pending"
        with _wrap_errors(StoreFailure, "Polling change feed"):
            rows = self._rows(sql, [])
        return bool(rows and rows[0]["pending"])

    def drain(self, limit: Optional[int] = None) -> ChangeBatch:
        sql = (
            f"SELECT seq, action, check_id, changed_at FROM {self.table} "
            f"WHERE acknowledged_at IS NULL ORDER BY seq"
        )
        params = []
        if limit is not None:
            sql += " LIMIT @limit"
            params.append(bigquery.ScalarQueryParameter("limit", "INT64", int(limit)))
        with _wrap_errors(StoreFailure, "Draining change feed"):
            rows = self._rows(sql, params)
        events = tuple(ChangeEvent.from_row(r) for r in rows)
        if not events:
            return ChangeBatch()
        seqs = tuple(e.seq for e in events)
        return ChangeBatch(events=events, high_watermark=max(seqs), positions=seqs)

    def acknowledge(self, batch: ChangeBatch) -> None:
        seqs = [e.seq for e in batch.events if e.seq is not None]
        if not seqs:
            return
        sql = (
            f"UPDATE {self.table} SET acknowledged_at = CURRENT_TIMESTAMP() "
            f"WHERE acknowledged_at IS NULL AND seq IN UNNEST(@seqs)"
        )
        params = [bigquery.ArrayQueryParameter("seqs", "INT64", seqs)]
        with _wrap_errors(StoreFailure, "Acknowledging change feed"):
            self._query(sql, params)
        logger.debug(f"Acknowledged {len(seqs)} change event(s), highest seq {batch.high_watermark}")


# =============================================================================
# Scheduler
# =============================================================================

class BigQueryJobScheduler(_BigQueryTable, JobScheduler):
    """
    generated_jobs table consumed by the job runtime.

    create_or_replace is a single MERGE keyed by the bound @job_name, so
    the replace is atomic from the runtime's point of view.
    """

    def create_or_replace(self, job: GeneratedJob) -> bool:
        sql = (
            f"MERGE {self.table} T "
            f"USING (SELECT @job_name AS job_name) S "
            f"ON T.job_name = S.job_name "
            f"WHEN MATCHED THEN UPDATE SET "
            f"check_id = @check_id, check_type = @check_type, schedule = @schedule, "
            f"statement = @statement, parameters = PARSE_JSON(@parameters), "
            f"updated_at = CURRENT_TIMESTAMP() "
            f"WHEN NOT MATCHED THEN INSERT "
            f"(job_name, check_id, check_type, schedule, statement, parameters, updated_at) "
            f"VALUES (@job_name, @check_id, @check_type, @schedule, @statement, "
            f"PARSE_JSON(@parameters), CURRENT_TIMESTAMP())"
        )
        params = [
            bigquery.ScalarQueryParameter("job_name", "STRING", job.job_name),
            bigquery.ScalarQueryParameter("check_id", "STRING", job.check_id),
            bigquery.ScalarQueryParameter("check_type", "STRING", job.check_type.value),
            bigquery.ScalarQueryParameter("schedule", "STRING", job.schedule),
            bigquery.ScalarQueryParameter("statement", "STRING", job.statement),
            bigquery.ScalarQueryParameter(
                "parameters", "STRING", json.dumps([p.to_dict() for p in job.parameters])
            ),
        ]
        with _wrap_errors(SchedulerFailure, f"Creating or replacing job {job.job_name}"):
            query_job = self._query(sql, params)
        stats = query_job.dml_stats
        return bool(stats and stats.updated_row_count)

    def delete_if_exists(self, job_name: str) -> bool:
        sql = f"DELETE FROM {self.table} WHERE job_name = @job_name"
        params = [bigquery.ScalarQueryParameter("job_name", "STRING", job_name)]
        with _wrap_errors(SchedulerFailure, f"Deleting job {job_name}"):
            job = self._query(sql, params)
        return bool(job.num_dml_affected_rows)

    def find_job_name(self, check_id: str) -> Optional[str]:
        sql = (
            f"SELECT job_name FROM {self.table} WHERE check_id = @check_id "
            f"ORDER BY updated_at DESC LIMIT 1"
        )
        params = [bigquery.ScalarQueryParameter("check_id", "STRING", check_id)]
        with _wrap_errors(SchedulerFailure, f"Resolving job for {check_id}"):
            rows = self._rows(sql, params)
        return rows[0]["job_name"] if rows else None

    def get_job(self, job_name: str) -> Optional[GeneratedJob]:
        sql = f"SELECT * FROM {self.table} WHERE job_name = @job_name LIMIT 1"
        params = [bigquery.ScalarQueryParameter("job_name", "STRING", job_name)]
        with _wrap_errors(SchedulerFailure, f"Reading job {job_name}"):
            rows = self._rows(sql, params)
        if not rows:
            return None
        row = rows[0]
        if isinstance(row.get("parameters"), str):
            row["parameters"] = json.loads(row["parameters"])
        return GeneratedJob.from_dict(row)


# =============================================================================
# Results
# =============================================================================

class BigQueryResultsStore(_BigQueryTable, ResultsStore):
    """check_results table (read-only here)."""

    def recent_results(self, check_id: str, limit: int = 10) -> list[CheckResult]:
        sql = (
            f"SELECT check_id, check_name, check_type, result, details, executed_at "
            f"FROM {self.table} WHERE check_id = @check_id "
            f"ORDER BY executed_at DESC LIMIT @limit"
        )
        params = [
            bigquery.ScalarQueryParameter("check_id", "STRING", check_id),
            bigquery.ScalarQueryParameter("limit", "INT64", int(limit)),
        ]
        with _wrap_errors(StoreFailure, f"Reading results for {check_id}"):
            rows = self._rows(sql, params)
        results = []
        for row in rows:
            if isinstance(row.get("details"), str):
                row["details"] = json.loads(row["details"])
            results.append(CheckResult.from_row(row))
        return results


def build_backends(config: DqsyncConfig, client: Optional[bigquery.Client] = None) -> Backends:
    """
    Wire the BigQuery backends for a configuration.

    Args:
        config: Loaded dqsync configuration
        client: Existing client (a new one is created from config otherwise)
    """
    if client is None:
        client = bigquery.Client(project=config.project, location=config.location)
    kwargs = {"dataset": config.dataset, "project": config.project}
    return Backends(
        store=BigQueryDefinitionStore(client, table=config.definitions_table, **kwargs),
        feed=BigQueryChangeFeed(client, table=config.changes_table, **kwargs),
        scheduler=BigQueryJobScheduler(client, table=config.jobs_table, **kwargs),
        results=BigQueryResultsStore(client, table=config.results_table, **kwargs),
    )
