"""
Compiler - Transform a CheckDefinition into an executable validation job.

The compiler is pure: it never executes anything. For each check type it
either produces a CompiledCheck (BQ INSERT ... SELECT statement plus bound
parameters) or an InvalidReason explaining why the definition cannot be
materialized.

Every compiled statement appends exactly one row to the results table:
    (check_id, check_name, check_type, result, details, executed_at)

Runtime parameters:
- @run_time is supplied by the scheduler at each execution (the scheduled
  query run timestamp); it is the "now" of freshness checks.
- Every other @param is stored with the job (see CompiledCheck.parameters).

Same definition in, same statement and parameters out.
"""

from typing import Callable

from dqsync.query_builder import (
    FilterError,
    IdentifierError,
    build_where_clause,
    qualify_path,
    qualify_table,
    validate_column,
)
from dqsync.schemas import (
    CheckDefinition,
    CheckType,
    CompiledCheck,
    CompileOutcome,
    InvalidReason,
    QueryParam,
    job_name_for,
)
from dqsync.sql_guard import UnsafeQueryError, prepare_subquery


DEFAULT_RESULTS_TABLE = "check_results"

# Silent default for missing or non-positive consistency thresholds (1%)
DEFAULT_THRESHOLD_RATIO = 0.01

RESULT_COLUMNS = "check_id, check_name, check_type, result, details, executed_at"

CompilerFn = Callable[[CheckDefinition, str], CompileOutcome]


def _invalid(definition: CheckDefinition, reason: InvalidReason, message: str) -> CompileOutcome:
    return CompileOutcome.invalid(definition.check_id, reason, message)


def _common_params(definition: CheckDefinition) -> list[QueryParam]:
    return [
        QueryParam(name="check_id", type="STRING", value=definition.check_id),
        QueryParam(name="check_name", type="STRING", value=definition.check_name),
    ]


def _valid(
    definition: CheckDefinition,
    check_type: CheckType,
    statement: str,
    params: list[QueryParam],
) -> CompileOutcome:
    compiled = CompiledCheck(
        check_id=definition.check_id,
        check_type=check_type,
        job_name=job_name_for(definition.check_id),
        schedule=definition.schedule.strip(),
        statement=statement,
        parameters=tuple(params),
    )
    return CompileOutcome.valid(compiled)


def _lines(*parts: str) -> str:
    """Join statement lines, dropping empty optional fragments."""
    return "\n".join(p for p in parts if p)


# =============================================================================
# FRESHNESS
# =============================================================================

def compile_freshness(definition: CheckDefinition, results_table: str) -> CompileOutcome:
    """
    FRESHNESS: the newest date in the target must be within the SLA.

    OK iff MAX(date_column) >= @run_time - sla_minutes (inclusive boundary).
    The column may be DATE, DATETIME or TIMESTAMP; MAX is coerced with
    TIMESTAMP(), so DATE and DATETIME values are read as UTC.
    An empty target yields a NULL MAX and therefore KO.

    Details: {max_date, sla_minutes, total_rows}
    """
    if not definition.key_columns:
        return _invalid(
            definition,
            InvalidReason.MISSING_KEY_COLUMN,
            f"Check {definition.check_id}: FRESHNESS requires a date column in columns_key",
        )
    if len(definition.key_columns) > 1:
        return _invalid(
            definition,
            InvalidReason.INVALID_PARAMETER,
            f"Check {definition.check_id}: FRESHNESS expects a single date column, "
            f"got {', '.join(definition.key_columns)}",
        )
    if definition.sla_minutes is None or definition.sla_minutes <= 0:
        return _invalid(
            definition,
            InvalidReason.INVALID_PARAMETER,
            f"Check {definition.check_id}: FRESHNESS requires a positive sla_minutes",
        )

    params = _common_params(definition)
    params.append(QueryParam(name="sla_minutes", type="INT64", value=int(definition.sla_minutes)))

    date_col = validate_column(definition.key_columns[0])
    target = qualify_table(definition.target_schema, definition.target_table)
    where_sql = build_where_clause(definition.row_filter, params)

    statement = _lines(
        f"INSERT INTO {results_table} ({RESULT_COLUMNS})",
        "SELECT",
        "  @check_id,",
        "  @check_name,",
        "  'FRESHNESS',",
        "  CASE",
        f"    WHEN TIMESTAMP(MAX({date_col})) >= TIMESTAMP_SUB(@run_time, INTERVAL @sla_minutes MINUTE)",
        "    THEN 'OK'",
        "    ELSE 'KO'",
        "  END,",
        "  TO_JSON(STRUCT(",
        f"    TIMESTAMP(MAX({date_col})) AS max_date,",
        "    @sla_minutes AS sla_minutes,",
        "    COUNT(*) AS total_rows",
        "  )),",
        "  @run_time",
        f"FROM {target}",
        where_sql,
    )
    return _valid(definition, CheckType.FRESHNESS, statement, params)


# =============================================================================
# UNIQUENESS
# =============================================================================

def compile_uniqueness(definition: CheckDefinition, results_table: str) -> CompileOutcome:
    """
    UNIQUENESS: no two filtered rows may share the same key.

    Groups the filtered target by the key columns and counts groups with
    more than one member. OK iff that count is 0.

    Details: {duplicate_count, keys, total_rows}
    """
    if not definition.key_columns:
        return _invalid(
            definition,
            InvalidReason.MISSING_KEY_COLUMN,
            f"Check {definition.check_id}: UNIQUENESS requires key columns in columns_key",
        )

    params = _common_params(definition)
    params.append(QueryParam(name="keys", type="STRING", value=",".join(definition.key_columns)))

    keys_sql = ", ".join(validate_column(c) for c in definition.key_columns)
    target = qualify_table(definition.target_schema, definition.target_table)
    where_sql = build_where_clause(definition.row_filter, params)

    statement = _lines(
        f"INSERT INTO {results_table} ({RESULT_COLUMNS})",
        "WITH filtered AS (",
        f"  SELECT * FROM {target}",
        f"  {where_sql}" if where_sql else "",
        "),",
        "duplicates AS (",
        f"  SELECT {keys_sql}, COUNT(*) AS occurrences",
        "  FROM filtered",
        f"  GROUP BY {keys_sql}",
        "  HAVING COUNT(*) > 1",
        ")",
        "SELECT",
        "  @check_id,",
        "  @check_name,",
        "  'UNIQUENESS',",
        "  CASE WHEN COUNT(*) = 0 THEN 'OK' ELSE 'KO' END,",
        "  TO_JSON(STRUCT(",
        "    COUNT(*) AS duplicate_count,",
        "    @keys AS keys,",
        "    (SELECT COUNT(*) FROM filtered) AS total_rows",
        "  )),",
        "  @run_time",
        "FROM duplicates",
    )
    return _valid(definition, CheckType.UNIQUENESS, statement, params)


# =============================================================================
# CONSISTENCY
# =============================================================================

def _metrics_cte(name: str, rows_cte: str) -> str:
    """Pivot every row of rows_cte into (metric, value) pairs.

    Non-numeric columns yield NULL values and are dropped later.
    """
    return _lines(
        f"{name} AS (",
        "  SELECT metric, LAX_FLOAT64(row_json[metric]) AS value",
        f"  FROM (SELECT TO_JSON(r) AS row_json FROM {rows_cte} AS r),",
        "    UNNEST(JSON_KEYS(row_json, 1)) AS metric",
        ")",
    )


def compile_consistency(definition: CheckDefinition, results_table: str) -> CompileOutcome:
    """
    CONSISTENCY: metrics computed on both sides must agree within a ratio.

    Both queries run as CTEs; each result row is pivoted into
    (metric, value) pairs and metrics present on both sides are joined.

    rel_diff per metric:
        0                        both values are 0
        1                        exactly one value is 0
        |source - target| / |source|  otherwise

    OK iff no rel_diff exceeds the threshold. threshold_ratio defaults to
    DEFAULT_THRESHOLD_RATIO when absent or <= 0.

    Details: {metric: {source_value, target_value, rel_diff}, ...}
    """
    source_query = (definition.source_query or "").strip()
    target_query = (definition.target_query or "").strip()
    if not source_query or not target_query:
        return _invalid(
            definition,
            InvalidReason.MISSING_QUERY,
            f"Check {definition.check_id}: CONSISTENCY requires both source_query and target_query",
        )

    try:
        source_sql = prepare_subquery(source_query)
        target_sql = prepare_subquery(target_query)
    except UnsafeQueryError as e:
        return _invalid(
            definition,
            InvalidReason.UNSAFE_QUERY,
            f"Check {definition.check_id}: {e}",
        )

    threshold = definition.threshold_ratio
    if threshold is None or threshold <= 0:
        threshold = DEFAULT_THRESHOLD_RATIO

    params = _common_params(definition)
    params.append(QueryParam(name="threshold_ratio", type="FLOAT64", value=float(threshold)))

    statement = _lines(
        f"INSERT INTO {results_table} ({RESULT_COLUMNS})",
        "WITH source_rows AS (",
        source_sql,
        "),",
        "target_rows AS (",
        target_sql,
        "),",
        _metrics_cte("source_metrics", "source_rows") + ",",
        _metrics_cte("target_metrics", "target_rows") + ",",
        "diffs AS (",
        "  SELECT",
        "    s.metric,",
        "    s.value AS source_value,",
        "    t.value AS target_value,",
        "    CASE",
        "      WHEN s.value = 0 AND t.value = 0 THEN 0",
        "      WHEN s.value = 0 OR t.value = 0 THEN 1",
        "      ELSE ABS(s.value - t.value) / ABS(s.value)",
        "    END AS rel_diff",
        "  FROM source_metrics AS s",
        "  JOIN target_metrics AS t ON s.metric = t.metric",
        "  WHERE s.value IS NOT NULL AND t.value IS NOT NULL",
        ")",
        "SELECT",
        "  @check_id,",
        "  @check_name,",
        "  'CONSISTENCY',",
        "  CASE WHEN COUNTIF(rel_diff > @threshold_ratio) > 0 THEN 'KO' ELSE 'OK' END,",
        "  COALESCE(",
        "    JSON_OBJECT(",
        "      ARRAY_AGG(metric ORDER BY metric),",
        "      ARRAY_AGG(STRUCT(source_value, target_value, rel_diff) ORDER BY metric)",
        "    ),",
        "    JSON '{}'",
        "  ),",
        "  @run_time",
        "FROM diffs",
    )
    return _valid(definition, CheckType.CONSISTENCY, statement, params)


# =============================================================================
# UNSUPPORTED
# =============================================================================

def compile_unsupported(definition: CheckDefinition, results_table: str) -> CompileOutcome:
    """Any declared type outside the supported set."""
    return _invalid(
        definition,
        InvalidReason.UNSUPPORTED_CHECK_TYPE,
        f"Check {definition.check_id}: check type '{definition.check_type}' is not supported; "
        f"existing job left untouched",
    )


# =============================================================================
# Entry point
# =============================================================================

def compile_check(
    definition: CheckDefinition,
    *,
    results_table: str = DEFAULT_RESULTS_TABLE,
) -> CompileOutcome:
    """
    Compile a definition into a CompileOutcome.

    Args:
        definition: The declared check
        results_table: "table", "dataset.table" or "project.dataset.table"
            receiving result rows

    Returns:
        CompileOutcome with either `compiled` or `reason` set

    Raises:
        IdentifierError: If results_table itself is not a valid path
            (configuration problem, not a definition problem)
    """
    from dqsync.dispatch import compiler_for

    results_path = qualify_path(results_table)

    if not definition.schedule or not definition.schedule.strip():
        if definition.kind != CheckType.UNSUPPORTED:
            return _invalid(
                definition,
                InvalidReason.INVALID_PARAMETER,
                f"Check {definition.check_id}: schedule is required",
            )

    compiler = compiler_for(definition.kind)
    try:
        return compiler(definition, results_path)
    except IdentifierError as e:
        return _invalid(
            definition,
            InvalidReason.INVALID_IDENTIFIER,
            f"Check {definition.check_id}: {e}",
        )
    except FilterError as e:
        return _invalid(
            definition,
            InvalidReason.INVALID_PARAMETER,
            f"Check {definition.check_id}: {e}",
        )
