"""Tests for dqsync.schemas module.

Tests the CheckDefinition -> CompileOutcome -> GeneratedJob -> CheckResult
lifecycle and the invariants of each schema.
"""

import pytest
from datetime import datetime, timezone

from dqsync.schemas import (
    ChangeAction,
    ChangeBatch,
    ChangeEvent,
    CheckDefinition,
    CheckResult,
    CheckType,
    CompiledCheck,
    CompileOutcome,
    GeneratedJob,
    InvalidReason,
    Outcome,
    OutcomeAction,
    QueryParam,
    ResultStatus,
    job_name_for,
    parse_key_columns,
)


# =============================================================================
# CheckType
# =============================================================================

class TestCheckType:
    """Tests for the closed check type set."""

    def test_parse_known_types(self):
        assert CheckType.parse("FRESHNESS") == CheckType.FRESHNESS
        assert CheckType.parse("UNIQUENESS") == CheckType.UNIQUENESS
        assert CheckType.parse("CONSISTENCY") == CheckType.CONSISTENCY

    def test_parse_normalizes_case_and_whitespace(self):
        assert CheckType.parse("  freshness ") == CheckType.FRESHNESS

    def test_parse_unknown_is_unsupported(self):
        assert CheckType.parse("COMPLETENESS") == CheckType.UNSUPPORTED

    def test_parse_empty_is_unsupported(self):
        assert CheckType.parse(None) == CheckType.UNSUPPORTED
        assert CheckType.parse("") == CheckType.UNSUPPORTED


# =============================================================================
# CheckDefinition
# =============================================================================

class TestCheckDefinition:
    """Tests for CheckDefinition."""

    def test_requires_check_id(self):
        with pytest.raises(ValueError, match="check_id"):
            CheckDefinition(check_id="", check_name="x", check_type="FRESHNESS")

    def test_key_columns_coerced_to_tuple(self):
        d = CheckDefinition(check_id="a", check_name="a", check_type="UNIQUENESS", key_columns="k1, k2")
        assert d.key_columns == ("k1", "k2")

    def test_parse_key_columns_drops_blanks(self):
        assert parse_key_columns(" a,, b ,") == ("a", "b")
        assert parse_key_columns(None) == ()

    def test_kind_resolves_declared_type(self):
        d = CheckDefinition(check_id="a", check_name="a", check_type="uniqueness")
        assert d.kind == CheckType.UNIQUENESS

    def test_with_changes_returns_copy(self, freshness_check):
        changed = freshness_check.with_changes(sla_minutes=5)
        assert changed.sla_minutes == 5
        assert freshness_check.sla_minutes == 60

    def test_row_round_trip(self, freshness_check):
        d = freshness_check.with_changes(row_filter={"status": "paid"})
        row = d.to_row()
        assert row["columns_key"] == "updated_at"
        assert row["row_filter"] == '{"status": "paid"}'
        assert CheckDefinition.from_row(row) == d

    def test_from_row_defaults(self):
        d = CheckDefinition.from_row({"check_id": "c1", "check_type": "FRESHNESS"})
        assert d.check_name == "c1"
        assert d.is_active is True
        assert d.key_columns == ()
        assert d.schedule == ""

    def test_from_row_accepts_key_columns_list(self):
        d = CheckDefinition.from_row({"check_id": "c1", "check_type": "UNIQUENESS", "key_columns": ["a", "b"]})
        assert d.key_columns == ("a", "b")

    def test_from_row_parses_json_filter(self):
        d = CheckDefinition.from_row({
            "check_id": "c1",
            "check_type": "UNIQUENESS",
            "row_filter": '[{"column": "amount", "op": ">", "value": 0}]',
        })
        assert d.row_filter == [{"column": "amount", "op": ">", "value": 0}]

    def test_from_row_keeps_free_text_filter(self):
        d = CheckDefinition.from_row({
            "check_id": "c1",
            "check_type": "UNIQUENESS",
            "row_filter": "status = 'active'",
        })
        assert d.row_filter == "status = 'active'"


# =============================================================================
# Job naming
# =============================================================================

class TestJobName:
    """Tests for job_name_for."""

    def test_plain_id(self):
        assert job_name_for("orders_fresh") == "dq_task_orders_fresh"

    def test_deterministic(self):
        assert job_name_for("orders-fresh") == job_name_for("orders-fresh")

    def test_sanitized_ids_do_not_collide(self):
        a = job_name_for("orders-fresh")
        b = job_name_for("orders.fresh")
        assert a != b
        assert a.startswith("dq_task_orders_fresh_")

    def test_only_safe_characters(self):
        name = job_name_for("a b/c;DROP")
        assert all(c.isalnum() or c == "_" for c in name)

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            job_name_for("")


# =============================================================================
# CompileOutcome / Outcome
# =============================================================================

class TestCompileOutcome:
    """Tests for CompileOutcome."""

    def _compiled(self):
        return CompiledCheck(
            check_id="c1",
            check_type=CheckType.FRESHNESS,
            job_name="dq_task_c1",
            schedule="every 1 hours",
            statement="INSERT ...",
            parameters=(QueryParam("check_id", "STRING", "c1"),),
        )

    def test_valid(self):
        outcome = CompileOutcome.valid(self._compiled())
        assert outcome.is_valid
        assert not outcome.is_unsupported

    def test_invalid(self):
        outcome = CompileOutcome.invalid("c1", InvalidReason.MISSING_QUERY, "no query")
        assert not outcome.is_valid
        assert outcome.reason == InvalidReason.MISSING_QUERY

    def test_unsupported(self):
        outcome = CompileOutcome.invalid("c1", InvalidReason.UNSUPPORTED_CHECK_TYPE, "nope")
        assert outcome.is_unsupported

    def test_exactly_one_of_compiled_or_reason(self):
        with pytest.raises(ValueError):
            CompileOutcome(check_id="c1")
        with pytest.raises(ValueError):
            CompileOutcome(check_id="c1", compiled=self._compiled(), reason=InvalidReason.MISSING_QUERY)

    def test_to_job(self):
        job = self._compiled().to_job()
        assert isinstance(job, GeneratedJob)
        assert job.job_name == "dq_task_c1"
        assert job.parameters[0].value == "c1"


class TestOutcome:
    """Tests for per-id Outcome."""

    def test_failed(self):
        assert Outcome("c1", OutcomeAction.FAILED, error="boom").failed
        assert not Outcome("c1", OutcomeAction.CREATED).failed

    def test_to_dict_omits_empty_fields(self):
        d = Outcome("c1", OutcomeAction.DROPPED, message="dropped").to_dict()
        assert d == {"check_id": "c1", "action": "dropped", "message": "dropped"}

    def test_to_dict_includes_reason(self):
        d = Outcome("c1", OutcomeAction.INVALIDATED, reason=InvalidReason.MISSING_KEY_COLUMN).to_dict()
        assert d["reason"] == "MissingKeyColumn"


# =============================================================================
# GeneratedJob / changes / results
# =============================================================================

class TestGeneratedJob:
    """Tests for GeneratedJob serialization."""

    def test_from_dict_of_to_dict(self):
        job = GeneratedJob(
            job_name="dq_task_c1",
            check_id="c1",
            check_type=CheckType.UNIQUENESS,
            schedule="every 1 hours",
            statement="INSERT ...",
            parameters=(QueryParam("keys", "STRING", "a,b"),),
            updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        data = job.to_dict()
        assert data["check_type"] == "UNIQUENESS"
        assert GeneratedJob.from_dict(data) == job


class TestChanges:
    """Tests for ChangeEvent and ChangeBatch."""

    def test_event_from_row(self):
        event = ChangeEvent.from_row({"seq": "7", "action": "update", "check_id": "c1"})
        assert event.action == ChangeAction.UPDATE
        assert event.seq == 7

    def test_empty_batch(self):
        batch = ChangeBatch()
        assert batch.is_empty
        assert len(batch) == 0

    def test_excluding_drops_events_and_positions(self):
        batch = ChangeBatch(
            events=(
                ChangeEvent(ChangeAction.INSERT, "a", seq=3),
                ChangeEvent(ChangeAction.INSERT, "b", seq=4),
                ChangeEvent(ChangeAction.UPDATE, "a", seq=5),
            ),
            high_watermark=5,
            positions=(3, 4, 5),
        )
        kept = batch.excluding(["a"])
        assert [e.check_id for e in kept.events] == ["b"]
        assert kept.positions == (4,)
        assert kept.high_watermark == 4

    def test_excluding_everything(self):
        batch = ChangeBatch(events=(ChangeEvent(ChangeAction.DELETE, "a", seq=1),), high_watermark=1, positions=(1,))
        kept = batch.excluding({"a"})
        assert kept.is_empty
        assert kept.high_watermark is None

    def test_excluding_nothing_is_same_batch(self):
        batch = ChangeBatch(events=(ChangeEvent(ChangeAction.DELETE, "a"),))
        assert batch.excluding([]) is batch


class TestCheckResult:
    """Tests for CheckResult."""

    def test_from_row(self):
        result = CheckResult.from_row({
            "check_id": "c1",
            "check_name": "C1",
            "check_type": "UNIQUENESS",
            "result": "KO",
            "details": {"duplicate_count": 1},
            "executed_at": "2024-01-01T00:00:00+00:00",
        })
        assert result.result == ResultStatus.KO
        assert not result.passed
        assert result.executed_at.year == 2024
        assert result.to_dict()["result"] == "KO"
