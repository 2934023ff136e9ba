"""
Reconciler - Drive the materialized job set toward the declared set.

One reconciliation pass is an explicit cycle:
1. Drain: read unacknowledged change events from the feed
2. Collapse: order events (by seq when every event has one, else arrival
   order) and keep the final observed action per check id
3. Dispatch: run one action per id on a bounded worker pool
   - final action DELETE -> JobSynchronizer.drop
   - INSERT / UPDATE     -> JobSynchronizer.create_or_replace
4. Acknowledge: commit the events of every id whose action did not fail

Failure model:
- One id's failure becomes a FAILED Outcome; the rest of the batch runs
- Events of a failed id stay unacknowledged and are retried next pass
- A crash before acknowledge means redelivery; every action is idempotent
- Passes are single-flight: a second concurrent pass returns immediately

States: IDLE -> DRAINING -> DISPATCHING -> IDLE
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Iterable, Optional

from dqsync.errors import NotFoundError, TransientError
from dqsync.schemas import ChangeAction, ChangeEvent, Outcome, OutcomeAction
from dqsync.stores.base import ChangeFeed
from dqsync.synchronizer import JobSynchronizer

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
DEFAULT_POLL_INTERVAL = 30.0


class ReconcilerState(str, Enum):
    """Reconciliation loop state."""
    IDLE = "idle"
    DRAINING = "draining"
    DISPATCHING = "dispatching"


def order_events(events: Iterable[ChangeEvent]) -> list[ChangeEvent]:
    """Order by feed sequence number when every event has one, else keep arrival order."""
    events = list(events)
    if events and all(e.seq is not None for e in events):
        # sorted() is stable: equal seqs keep arrival order
        return sorted(events, key=lambda e: e.seq)
    return events


def collapse_events(events: Iterable[ChangeEvent]) -> list[tuple[str, ChangeAction]]:
    """
    Collapse a batch to one terminal action per check id.

    Returns:
        (check_id, final_action) pairs, in order of each id's first
        appearance in the ordered batch
    """
    final: dict[str, ChangeAction] = {}
    for event in order_events(events):
        # dict keeps first-insertion order; later events overwrite the action
        final[event.check_id] = event.action
    return list(final.items())


class Reconciler:
    """
    Consumes the change feed and routes per-id actions to the synchronizer.

    Args:
        feed: Change feed over check definitions
        synchronizer: Job synchronizer applying per-id actions
        max_workers: Upper bound of concurrent per-id actions in a pass
        batch_limit: Maximum events drained per pass (None = all pending)
    """

    def __init__(
        self,
        feed: ChangeFeed,
        synchronizer: JobSynchronizer,
        max_workers: int = DEFAULT_MAX_WORKERS,
        batch_limit: Optional[int] = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.feed = feed
        self.synchronizer = synchronizer
        self.max_workers = max_workers
        self.batch_limit = batch_limit
        self.state = ReconcilerState.IDLE
        self._pass_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Single id
    # -------------------------------------------------------------------------

    def reconcile_one(self, check_id: str) -> Outcome:
        """
        Converge the job of one id to its current definition.

        An id absent from the store is dropped (its job removed).

        Raises:
            StoreFailure / SchedulerFailure: Infrastructure failures
        """
        if self.synchronizer.store.get(check_id) is None:
            return self.synchronizer.drop(check_id)
        try:
            return self.synchronizer.create_or_replace(check_id)
        except NotFoundError:
            # Deleted between the read and the dispatch
            return self.synchronizer.drop(check_id)

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def reconcile_batch(self) -> list[Outcome]:
        """
        Run one drain -> dispatch -> acknowledge pass.

        Events of ids whose action FAILED are not acknowledged, so the
        next pass retries them against the then-current definition.

        Returns:
            One Outcome per distinct check id in the batch ([] when the feed
            is empty or another pass is running)

        Raises:
            StoreFailure: If draining or acknowledging the feed fails
        """
        if not self._pass_lock.acquire(blocking=False):
            logger.info("Reconciliation pass already in progress, skipping")
            return []

        try:
            self.state = ReconcilerState.DRAINING
            batch = self.feed.drain(limit=self.batch_limit)
            if batch.is_empty:
                logger.debug("Change feed empty, nothing to reconcile")
                return []

            actions = collapse_events(batch.events)
            logger.info(f"Reconciling {len(actions)} check(s) from {len(batch)} change event(s)")

            self.state = ReconcilerState.DISPATCHING
            outcomes = self._dispatch(actions)

            failed_ids = [o.check_id for o in outcomes if o.failed]
            self.feed.acknowledge(batch.excluding(failed_ids))
            if failed_ids:
                logger.warning(f"Leaving {len(failed_ids)} failed check(s) pending: {', '.join(failed_ids)}")

            logger.info(f"Reconciliation pass done: {len(outcomes) - len(failed_ids)} ok, {len(failed_ids)} failed")
            return outcomes
        finally:
            self.state = ReconcilerState.IDLE
            self._pass_lock.release()

    def _dispatch(self, actions: list[tuple[str, ChangeAction]]) -> list[Outcome]:
        workers = min(self.max_workers, len(actions))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dqsync") as pool:
            futures = [pool.submit(self._apply, check_id, action) for check_id, action in actions]
            return [f.result() for f in futures]

    def _apply(self, check_id: str, action: ChangeAction) -> Outcome:
        """Apply one terminal action; failures become FAILED outcomes."""
        try:
            if action == ChangeAction.DELETE:
                return self.synchronizer.drop(check_id)
            return self.synchronizer.create_or_replace(check_id)
        except Exception as e:
            logger.error(f"Check {check_id}: {action.value} failed: {e}", exc_info=True)
            return Outcome(
                check_id=check_id,
                action=OutcomeAction.FAILED,
                message=f"{action.value} failed",
                error=f"{type(e).__name__}: {e}",
            )

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def run(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stop_event: Optional[threading.Event] = None,
        max_passes: Optional[int] = None,
    ) -> int:
        """
        Reconcile whenever the feed reports a backlog.

        Level-triggered: passes run back to back while has_pending() is
        true; otherwise the loop sleeps poll_interval seconds. Transient
        feed failures, and passes with FAILED outcomes, wait poll_interval
        before the next attempt.

        Args:
            poll_interval: Seconds between polls of an idle feed
            stop_event: Set to stop the loop
            max_passes: Stop after this many non-empty passes

        Returns:
            Number of passes run
        """
        stop_event = stop_event or threading.Event()
        passes = 0

        while not stop_event.is_set():
            try:
                pending = self.feed.has_pending()
                outcomes = self.reconcile_batch() if pending else []
            except TransientError as e:
                logger.warning(f"Change feed unavailable, retrying in {poll_interval}s: {e}")
                stop_event.wait(poll_interval)
                continue

            if not outcomes:
                stop_event.wait(poll_interval)
                continue

            passes += 1
            if max_passes is not None and passes >= max_passes:
                break

            if any(o.failed for o in outcomes):
                stop_event.wait(poll_interval)

        return passes
