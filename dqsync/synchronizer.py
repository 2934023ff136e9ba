"""
Job Synchronizer - Keep one scheduler job per valid definition.

create_or_replace(check_id):
1. Read + dispatch + compile the definition
2. Invalid (not UNSUPPORTED): drop job and row, report the reason
3. UNSUPPORTED: leave any existing job untouched
4. Inactive: delete the job, keep the row
5. Valid + active: create or replace the job (name is a bound parameter)

drop(check_id):
1. Resolve the job currently bound to the id through the scheduler
2. Delete it if present (absence is fine)
3. Delete the definition row

No transaction spans the job mutation and the row mutation. A failure
between the two leaves drift that the next pass for the same id repairs.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from dqsync.dispatch import CheckDispatcher
from dqsync.schemas import Outcome, OutcomeAction
from dqsync.stores.base import DefinitionStore, JobScheduler

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One non-reentrant lock per key, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


class JobSynchronizer:
    """
    Converts compile outcomes into scheduler and store mutations.

    Args:
        store: Definitions store
        scheduler: Job scheduler
        dispatcher: Dispatcher reading from the same store (built if omitted)
    """

    def __init__(
        self,
        store: DefinitionStore,
        scheduler: JobScheduler,
        dispatcher: CheckDispatcher | None = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.dispatcher = dispatcher or CheckDispatcher(store)
        self._locks = KeyedLocks()

    def create_or_replace(self, check_id: str) -> Outcome:
        """
        Materialize the current definition of check_id.

        Raises:
            NotFoundError: If the id is absent from the store
            StoreFailure / SchedulerFailure: Infrastructure failures
        """
        with self._locks.hold(check_id):
            dispatched = self.dispatcher.dispatch(check_id)
            compile_outcome = dispatched.outcome

            if compile_outcome.is_unsupported:
                logger.warning(f"Check {check_id}: {compile_outcome.message}")
                return Outcome(
                    check_id=check_id,
                    action=OutcomeAction.UNSUPPORTED,
                    message=compile_outcome.message,
                    reason=compile_outcome.reason,
                )

            if not compile_outcome.is_valid:
                logger.warning(
                    f"Check {check_id} invalid ({compile_outcome.reason.value}), dropping: "
                    f"{compile_outcome.message}"
                )
                dropped = self._drop_locked(check_id)
                return Outcome(
                    check_id=check_id,
                    action=OutcomeAction.INVALIDATED,
                    message=f"{compile_outcome.message}. The check was removed automatically.",
                    reason=compile_outcome.reason,
                    job_name=dropped.job_name,
                )

            compiled = compile_outcome.compiled
            existing_name = self.scheduler.find_job_name(check_id)

            if not dispatched.definition.is_active:
                deleted = False
                if existing_name:
                    deleted = self.scheduler.delete_if_exists(existing_name)
                logger.info(f"Check {check_id} inactive, job {'deleted' if deleted else 'absent'}")
                return Outcome(
                    check_id=check_id,
                    action=OutcomeAction.DEACTIVATED,
                    message=f"Check {check_id} is inactive; no job scheduled",
                    job_name=existing_name,
                )

            replaced = self.scheduler.create_or_replace(compiled.to_job())

            # Job bound under an older name: the new one replaces it
            if existing_name and existing_name != compiled.job_name:
                self.scheduler.delete_if_exists(existing_name)
                logger.info(f"Check {check_id}: removed job {existing_name} superseded by {compiled.job_name}")
                replaced = True

            action = OutcomeAction.REPLACED if replaced else OutcomeAction.CREATED
            logger.info(f"Check {check_id}: job {compiled.job_name} {action.value} ({compiled.check_type.value})")
            return Outcome(
                check_id=check_id,
                action=action,
                message=f"{compiled.check_type.value} job {compiled.job_name} {action.value}",
                job_name=compiled.job_name,
            )

    def drop(self, check_id: str) -> Outcome:
        """
        Remove the job bound to check_id and the definition row.

        Idempotent: dropping an absent id is a no-op returning DROPPED.

        Raises:
            StoreFailure / SchedulerFailure: Infrastructure failures
        """
        with self._locks.hold(check_id):
            return self._drop_locked(check_id)

    def _drop_locked(self, check_id: str) -> Outcome:
        job_name = self.scheduler.find_job_name(check_id)
        job_deleted = self.scheduler.delete_if_exists(job_name) if job_name else False
        row_deleted = self.store.delete(check_id)

        if job_deleted or row_deleted:
            logger.info(
                f"Check {check_id} dropped (job {job_name or '-'} deleted={job_deleted}, "
                f"row deleted={row_deleted})"
            )
            message = f"Check {check_id} dropped"
        else:
            logger.debug(f"Check {check_id} already absent, nothing to drop")
            message = f"Check {check_id} already absent"

        return Outcome(
            check_id=check_id,
            action=OutcomeAction.DROPPED,
            message=message,
            job_name=job_name,
        )
