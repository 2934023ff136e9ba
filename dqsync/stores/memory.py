"""
In-memory collaborator backends.

Used by the test suite and for local dry runs. The definition store can
be attached to an InMemoryChangeFeed, in which case every upsert/delete
emits the matching INSERT/UPDATE/DELETE event, mimicking row-level change
capture on the check_definitions table.
"""

import threading
from datetime import datetime, timezone
from typing import Iterator, Optional

from dqsync.errors import PermanentError
from dqsync.schemas import (
    ChangeAction,
    ChangeBatch,
    ChangeEvent,
    CheckDefinition,
    CheckResult,
    GeneratedJob,
)

from .base import ChangeFeed, DefinitionStore, JobScheduler, ResultsStore


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class InMemoryChangeFeed(ChangeFeed):
    """
    Change feed held in a list.

    Every published event gets a feed position. drain() returns events whose
    position is not acknowledged yet, without acknowledging them, so an
    unacknowledged event is delivered again (at-least-once). Positions are
    acknowledged individually; a skipped event stays pending even when later
    ones are committed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._events: list[tuple[int, ChangeEvent]] = []
        self._next_position = 1
        self._acknowledged: set[int] = set()

    def publish(self, event: ChangeEvent) -> int:
        """Append an event as-is; returns its feed position."""
        with self._lock:
            position = self._next_position
            self._next_position += 1
            self._events.append((position, event))
            return position

    def record(self, action: ChangeAction, check_id: str) -> ChangeEvent:
        """Append a captured change, using the feed position as seq."""
        with self._lock:
            position = self._next_position
            self._next_position += 1
            event = ChangeEvent(action=action, check_id=check_id, seq=position, changed_at=_utcnow())
            self._events.append((position, event))
            return event

    def has_pending(self) -> bool:
        with self._lock:
            return any(pos not in self._acknowledged for pos, _ in self._events)

    def drain(self, limit: Optional[int] = None) -> ChangeBatch:
        with self._lock:
            pending = [(pos, e) for pos, e in self._events if pos not in self._acknowledged]
            if limit is not None:
                pending = pending[:limit]
            if not pending:
                return ChangeBatch()
            return ChangeBatch(
                events=tuple(e for _, e in pending),
                high_watermark=pending[-1][0],
                positions=tuple(pos for pos, _ in pending),
            )

    def acknowledge(self, batch: ChangeBatch) -> None:
        with self._lock:
            self._acknowledged.update(batch.positions)

    @property
    def acknowledged_position(self) -> int:
        """Highest position P such that every event up to P is acknowledged."""
        with self._lock:
            position = 0
            while position + 1 in self._acknowledged:
                position += 1
            return position


class InMemoryDefinitionStore(DefinitionStore):
    """
    Definitions held in a dict keyed by check_id.

    Args:
        feed: Optional change feed receiving captured changes
    """

    def __init__(self, feed: Optional[InMemoryChangeFeed] = None):
        self._lock = threading.Lock()
        self._rows: dict[str, CheckDefinition] = {}
        self.feed = feed

    def get(self, check_id: str) -> Optional[CheckDefinition]:
        with self._lock:
            return self._rows.get(check_id)

    def upsert(self, definition: CheckDefinition) -> None:
        with self._lock:
            existing = self._rows.get(definition.check_id)
            if existing is not None and existing.kind != definition.kind:
                raise PermanentError(
                    f"Check {definition.check_id}: type cannot change "
                    f"from {existing.check_type} to {definition.check_type}"
                )
            now = _utcnow()
            definition = definition.with_changes(
                created_at=existing.created_at if existing else (definition.created_at or now),
                updated_at=now,
            )
            self._rows[definition.check_id] = definition
        if self.feed is not None:
            action = ChangeAction.UPDATE if existing is not None else ChangeAction.INSERT
            self.feed.record(action, definition.check_id)

    def delete(self, check_id: str) -> bool:
        with self._lock:
            deleted = self._rows.pop(check_id, None) is not None
        if deleted and self.feed is not None:
            self.feed.record(ChangeAction.DELETE, check_id)
        return deleted

    def list_definitions(self) -> Iterator[CheckDefinition]:
        with self._lock:
            rows = sorted(self._rows.values(), key=lambda d: d.check_id)
        return iter(rows)


class InMemoryJobScheduler(JobScheduler):
    """
    Jobs held in a dict keyed by job_name.

    `operations` records every mutation as (op, job_name) for inspection
    in tests.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: dict[str, GeneratedJob] = {}
        self.operations: list[tuple[str, str]] = []

    def create_or_replace(self, job: GeneratedJob) -> bool:
        with self._lock:
            replaced = job.job_name in self._jobs
            stored = GeneratedJob(
                job_name=job.job_name,
                check_id=job.check_id,
                check_type=job.check_type,
                schedule=job.schedule,
                statement=job.statement,
                parameters=job.parameters,
                updated_at=_utcnow(),
            )
            self._jobs[job.job_name] = stored
            self.operations.append(("create_or_replace", job.job_name))
            return replaced

    def delete_if_exists(self, job_name: str) -> bool:
        with self._lock:
            deleted = self._jobs.pop(job_name, None) is not None
            self.operations.append(("delete", job_name))
            return deleted

    def find_job_name(self, check_id: str) -> Optional[str]:
        with self._lock:
            for job in self._jobs.values():
                if job.check_id == check_id:
                    return job.job_name
        return None

    def get_job(self, job_name: str) -> Optional[GeneratedJob]:
        with self._lock:
            return self._jobs.get(job_name)

    @property
    def jobs(self) -> dict[str, GeneratedJob]:
        """Snapshot of current jobs."""
        with self._lock:
            return dict(self._jobs)


class InMemoryResultsStore(ResultsStore):
    """Results held in a list; append() stands in for the job runtime."""

    def __init__(self):
        self._results: list[CheckResult] = []

    def append(self, result: CheckResult) -> None:
        self._results.append(result)

    def recent_results(self, check_id: str, limit: int = 10) -> list[CheckResult]:
        matching = [r for r in self._results if r.check_id == check_id]
        matching.sort(key=lambda r: r.executed_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return matching[:limit]
