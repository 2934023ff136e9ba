"""
Collaborator interfaces used by the reconciliation core.

The core never talks to storage or scheduling directly; it goes through:
- DefinitionStore: row-level CRUD over check_definitions
- ChangeFeed: ordered, at-least-once change capture over check_definitions
- JobScheduler: create/replace/delete of generated jobs
- ResultsStore: read access to the append-only check_results table

Implementations:
- In-memory (dqsync.stores.memory) for testing and local dry runs
- BigQuery (dqsync.stores.bigquery) for production

Implementations raise StoreFailure / SchedulerFailure for infrastructure
problems and never swallow them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Optional

from dqsync.schemas import ChangeBatch, CheckDefinition, CheckResult, GeneratedJob


class DefinitionStore(ABC):
    """Row-level access to check definitions."""

    @abstractmethod
    def get(self, check_id: str) -> Optional[CheckDefinition]:
        """
        Retrieve a definition by id.

        Returns:
            The CheckDefinition if found, None otherwise
        """
        pass

    @abstractmethod
    def upsert(self, definition: CheckDefinition) -> None:
        """
        Insert or update a definition.

        Raises:
            PermanentError: If the declared type of an existing id changes
        """
        pass

    @abstractmethod
    def delete(self, check_id: str) -> bool:
        """
        Delete a definition row.

        Returns:
            True if a row was deleted, False if the id was absent
        """
        pass

    @abstractmethod
    def list_definitions(self) -> Iterator[CheckDefinition]:
        """Iterate over all definitions ordered by check_id."""
        pass


class ChangeFeed(ABC):
    """Pull-based change capture over check definitions."""

    @abstractmethod
    def has_pending(self) -> bool:
        """True when unacknowledged events exist."""
        pass

    @abstractmethod
    def drain(self, limit: Optional[int] = None) -> ChangeBatch:
        """
        Read unacknowledged events in feed order.

        Draining acknowledges nothing; events are redelivered until
        acknowledge() is called with a batch containing them.
        """
        pass

    @abstractmethod
    def acknowledge(self, batch: ChangeBatch) -> None:
        """
        Commit exactly the events of the batch.

        The batch may be a subset of a drained one (ChangeBatch.excluding);
        events left out stay pending and are delivered again.
        """
        pass


class JobScheduler(ABC):
    """External recurring-job engine."""

    @abstractmethod
    def create_or_replace(self, job: GeneratedJob) -> bool:
        """
        Atomically create or replace a job by name.

        Returns:
            True if an existing job was replaced, False if created
        """
        pass

    @abstractmethod
    def delete_if_exists(self, job_name: str) -> bool:
        """
        Delete a job by name; absence is not an error.

        Returns:
            True if a job was deleted
        """
        pass

    @abstractmethod
    def find_job_name(self, check_id: str) -> Optional[str]:
        """Name of the job currently bound to a check id, if any."""
        pass

    @abstractmethod
    def get_job(self, job_name: str) -> Optional[GeneratedJob]:
        """Retrieve a job by name."""
        pass


class ResultsStore(ABC):
    """Read access to check results (written by jobs only)."""

    @abstractmethod
    def recent_results(self, check_id: str, limit: int = 10) -> list[CheckResult]:
        """Most recent results for a check, newest first."""
        pass


@dataclass
class Backends:
    """The four collaborators wired together for one deployment."""
    store: DefinitionStore
    feed: ChangeFeed
    scheduler: JobScheduler
    results: ResultsStore
