import pytest

from dqsync.config import DqsyncConfig
from dqsync.dispatch import CheckDispatcher
from dqsync.reconciler import Reconciler
from dqsync.schemas import CheckDefinition
from dqsync.stores import (
    Backends,
    InMemoryChangeFeed,
    InMemoryDefinitionStore,
    InMemoryJobScheduler,
    InMemoryResultsStore,
)
from dqsync.synchronizer import JobSynchronizer


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Never read or write the real ~/.config/dqsync."""
    home = tmp_path / "dqsync_home"
    monkeypatch.setenv("DQSYNC_HOME", str(home))
    return home


@pytest.fixture
def test_config():
    return DqsyncConfig(
        project="test-project",
        dataset="dq_test",
        max_workers=2,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def store(feed):
    return InMemoryDefinitionStore(feed=feed)


@pytest.fixture
def scheduler():
    return InMemoryJobScheduler()


@pytest.fixture
def results_store():
    return InMemoryResultsStore()


@pytest.fixture
def synchronizer(store, scheduler):
    return JobSynchronizer(store, scheduler, CheckDispatcher(store))


@pytest.fixture
def reconciler(feed, synchronizer):
    return Reconciler(feed, synchronizer, max_workers=2)


@pytest.fixture
def backends(store, feed, scheduler, results_store):
    return Backends(store=store, feed=feed, scheduler=scheduler, results=results_store)


@pytest.fixture
def freshness_check():
    return CheckDefinition(
        check_id="orders_fresh",
        check_name="Orders are fresh",
        check_type="FRESHNESS",
        schedule="every 15 minutes",
        target_schema="sales",
        target_table="orders",
        key_columns=("updated_at",),
        sla_minutes=60,
    )


@pytest.fixture
def uniqueness_check():
    return CheckDefinition(
        check_id="orders_unique",
        check_name="Order ids are unique",
        check_type="UNIQUENESS",
        schedule="every 1 hours",
        target_schema="sales",
        target_table="orders",
        key_columns=("order_id",),
    )


@pytest.fixture
def consistency_check():
    return CheckDefinition(
        check_id="revenue_match",
        check_name="Revenue matches ledger",
        check_type="CONSISTENCY",
        schedule="every 24 hours",
        source_query="SELECT SUM(amount) AS revenue, COUNT(*) AS orders FROM sales.orders",
        target_query="SELECT SUM(amount) AS revenue, COUNT(*) AS orders FROM finance.ledger",
        threshold_ratio=0.05,
    )
