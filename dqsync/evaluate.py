"""
Dry-run evaluator - preview a check over sample rows without BigQuery.

Mirrors the semantics of the compiled statements in Python so operators
can see what a definition would report before activating it:

- row filters: same operators, NULL comparisons never match, a None
  value means IS NULL ("=") / IS NOT NULL ("!=")
- FRESHNESS: OK iff max(date) >= run_time - sla_minutes (inclusive)
- UNIQUENESS: KO iff any key group has more than one filtered row
- CONSISTENCY: per-metric relative difference with the zero rules,
  threshold defaulting to DEFAULT_THRESHOLD_RATIO

The definition is compiled first; anything the compiler rejects is
rejected here too.
"""

import operator
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from dqsync.compiler import DEFAULT_THRESHOLD_RATIO, compile_check
from dqsync.query_builder import normalize_filters
from dqsync.schemas import CheckDefinition, CheckResult, CheckType, ResultStatus

_OPS = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}


def _matches(row: dict[str, Any], filters: list[dict[str, Any]]) -> bool:
    for f in filters:
        actual = row.get(f["column"])
        expected = f["value"]
        if expected is None:
            if (f["op"] == "=") != (actual is None):
                return False
            continue
        if actual is None:
            return False
        if not _OPS[f["op"]](actual, expected):
            return False
    return True


def apply_row_filter(rows: Iterable[dict[str, Any]], row_filter: Any) -> list[dict[str, Any]]:
    """Rows satisfying every filter condition."""
    filters = normalize_filters(row_filter)
    return [r for r in rows if _matches(r, filters)]


def _as_utc(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def relative_difference(source: float, target: float) -> float:
    """
    Relative difference of target against source.

    0 when both are 0, 1 when exactly one is 0, else |s - t| / |s|.
    """
    if source == 0 and target == 0:
        return 0.0
    if source == 0 or target == 0:
        return 1.0
    return abs(source - target) / abs(source)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _metrics(rows: Iterable[dict[str, Any]]) -> dict[str, float]:
    metrics: dict[str, float] = {}
    for row in rows:
        for name, value in row.items():
            number = _as_number(value)
            if number is not None:
                metrics[name] = number
    return metrics


# =============================================================================
# Per-type evaluation
# =============================================================================

def _freshness(definition: CheckDefinition, rows: list[dict[str, Any]], run_time: datetime):
    filtered = apply_row_filter(rows, definition.row_filter)
    date_col = definition.key_columns[0]
    dates = [d for d in (_as_utc(r.get(date_col)) for r in filtered) if d is not None]
    max_date = max(dates) if dates else None

    limit = run_time - timedelta(minutes=definition.sla_minutes)
    status = ResultStatus.OK if max_date is not None and max_date >= limit else ResultStatus.KO
    details = {
        "max_date": max_date.isoformat() if max_date else None,
        "sla_minutes": definition.sla_minutes,
        "total_rows": len(filtered),
    }
    return status, details


def _uniqueness(definition: CheckDefinition, rows: list[dict[str, Any]]):
    filtered = apply_row_filter(rows, definition.row_filter)
    groups: dict[tuple, int] = {}
    for row in filtered:
        key = tuple(row.get(c) for c in definition.key_columns)
        groups[key] = groups.get(key, 0) + 1

    duplicate_count = sum(1 for n in groups.values() if n > 1)
    status = ResultStatus.OK if duplicate_count == 0 else ResultStatus.KO
    details = {
        "duplicate_count": duplicate_count,
        "keys": ",".join(definition.key_columns),
        "total_rows": len(filtered),
    }
    return status, details


def _consistency(
    definition: CheckDefinition,
    source_rows: list[dict[str, Any]],
    target_rows: list[dict[str, Any]],
):
    threshold = definition.threshold_ratio
    if threshold is None or threshold <= 0:
        threshold = DEFAULT_THRESHOLD_RATIO

    source = _metrics(source_rows)
    target = _metrics(target_rows)

    details: dict[str, Any] = {}
    failed = False
    for metric in sorted(set(source) & set(target)):
        rel_diff = relative_difference(source[metric], target[metric])
        details[metric] = {
            "source_value": source[metric],
            "target_value": target[metric],
            "rel_diff": rel_diff,
        }
        if rel_diff > threshold:
            failed = True

    return (ResultStatus.KO if failed else ResultStatus.OK), details


# =============================================================================
# Entry point
# =============================================================================

def evaluate_check(
    definition: CheckDefinition,
    rows: Optional[list[dict[str, Any]]] = None,
    *,
    source_rows: Optional[list[dict[str, Any]]] = None,
    target_rows: Optional[list[dict[str, Any]]] = None,
    run_time: Optional[datetime] = None,
) -> CheckResult:
    """
    Evaluate a definition over in-memory sample rows.

    Args:
        definition: Check to evaluate
        rows: Target table rows (FRESHNESS, UNIQUENESS)
        source_rows: Result rows of source_query (CONSISTENCY)
        target_rows: Result rows of target_query (CONSISTENCY)
        run_time: Execution time (defaults to now, UTC)

    Returns:
        The CheckResult the scheduled job would append

    Raises:
        ValueError: If the definition does not compile (message starts
            with the invalid reason)
    """
    outcome = compile_check(definition)
    if not outcome.is_valid:
        raise ValueError(f"{outcome.reason.value}: {outcome.message}")

    run_time = _as_utc(run_time) or datetime.now(timezone.utc)
    kind = outcome.compiled.check_type

    if kind == CheckType.FRESHNESS:
        status, details = _freshness(definition, rows or [], run_time)
    elif kind == CheckType.UNIQUENESS:
        status, details = _uniqueness(definition, rows or [])
    else:
        status, details = _consistency(definition, source_rows or [], target_rows or [])

    return CheckResult(
        check_id=definition.check_id,
        check_name=definition.check_name,
        check_type=kind.value,
        result=status,
        details=details,
        executed_at=run_time,
    )
