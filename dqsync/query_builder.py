"""
Query Builder - Safe BQ SQL fragments from declared check definitions.

Used by the check compiler. User-declared identifiers (schemas, tables,
columns) are checked against an allow-list pattern and back-quoted; user
values are never interpolated, they become bound QueryParams.

Supports:
- Identifier validation (column, dataset/table, project parts)
- Row filters in dict format ({column: value}, equality only)
- Row filters in list format ([{column, op, value}], with operators)
- NULL filters (value None with = / != -> IS NULL / IS NOT NULL)
"""

import re
from typing import Any

from dqsync.schemas import QueryParam


# Allowed comparison operators (SQL-safe)
ALLOWED_OPS = {"=", "!=", "<", ">", "<=", ">="}

COLUMN_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# GCP project ids may contain hyphens
PROJECT_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")


class IdentifierError(ValueError):
    """A declared identifier is not on the allow-list."""
    pass


class FilterError(ValueError):
    """A declared row filter is malformed."""
    pass


def validate_column(name: str) -> str:
    """Validate a column name and return it back-quoted.

    Raises:
        IdentifierError: If the name does not match COLUMN_PATTERN.
    """
    if not isinstance(name, str) or not COLUMN_PATTERN.match(name):
        raise IdentifierError(f"Invalid column name: {name!r}")
    return f"`{name}`"


def qualify_path(path: str) -> str:
    """Validate a "table", "dataset.table" or "project.dataset.table" path.

    Returns:
        Back-quoted path, e.g. "`analytics.orders`"

    Raises:
        IdentifierError: If any part is not on the allow-list.
    """
    parts = path.split(".") if path else []
    if not 1 <= len(parts) <= 3:
        raise IdentifierError(f"Invalid table path: {path!r}")
    if len(parts) == 3 and not PROJECT_PATTERN.match(parts[0]):
        raise IdentifierError(f"Invalid project id: {parts[0]!r}")
    for part in parts[-2:]:
        if not COLUMN_PATTERN.match(part):
            raise IdentifierError(f"Invalid dataset or table name: {part!r}")
    return f"`{path}`"


def qualify_table(schema: str | None, table: str | None) -> str:
    """Validate a target location and return it as a back-quoted BQ path.

    Args:
        schema: "dataset" or "project.dataset"
        table: Table name

    Raises:
        IdentifierError: If any part is missing or not on the allow-list.
    """
    if not schema or not table:
        raise IdentifierError("Target schema and table are required")
    if schema.count(".") > 1:
        raise IdentifierError(f"Invalid target schema: {schema!r}")
    if not COLUMN_PATTERN.match(table):
        raise IdentifierError(f"Invalid dataset or table name: {table!r}")
    return qualify_path(f"{schema}.{table}")


def param_type(value: Any) -> str:
    """BQ scalar type for a Python value."""
    # bool first: bool is a subclass of int
    if isinstance(value, bool):
        return "BOOL"
    if isinstance(value, int):
        return "INT64"
    if isinstance(value, float):
        return "FLOAT64"
    return "STRING"


def normalize_filters(filters: Any) -> list[dict[str, Any]]:
    """Normalize both filter formats to [{column, op, value}].

    Raises:
        FilterError: If the filter is neither a dict nor a list of specs,
            or uses an operator outside ALLOWED_OPS.
    """
    if not filters:
        return []

    if isinstance(filters, dict):
        # Legacy dict format: {column: value}
        return [{"column": col, "op": "=", "value": val} for col, val in filters.items()]

    if isinstance(filters, str):
        raise FilterError(
            f"Row filter must be JSON ({{column: value}} or [{{column, op, value}}]); "
            f"free-text conditions are not supported: {filters[:80]!r}"
        )
    if not isinstance(filters, list):
        raise FilterError(f"Row filter must be a dict or a list, got {type(filters).__name__}")

    normalized = []
    for f in filters:
        if not isinstance(f, dict) or "column" not in f:
            raise FilterError(f"Invalid filter entry: {f!r}")
        op = f.get("op", "=")
        if op not in ALLOWED_OPS:
            raise FilterError(f"Invalid operator '{op}'. Allowed: {sorted(ALLOWED_OPS)}")
        normalized.append({"column": f["column"], "op": op, "value": f.get("value")})
    return normalized


def build_where_clause(filters: Any, query_params: list[QueryParam]) -> str:
    """Build a WHERE clause from a declared row filter.

    Args:
        filters: Dict or list filter spec (may be None/empty).
        query_params: List to append QueryParam objects to.

    Returns:
        "WHERE ..." or "" when there is no filter.

    Raises:
        FilterError: Malformed filter.
        IdentifierError: Filter column not on the allow-list.
    """
    where_clauses: list[str] = []

    for i, f in enumerate(normalize_filters(filters)):
        col = validate_column(f["column"])
        op = f["op"]
        val = f["value"]

        if val is None:
            if op == "=":
                where_clauses.append(f"{col} IS NULL")
            elif op == "!=":
                where_clauses.append(f"{col} IS NOT NULL")
            else:
                raise FilterError(f"Operator '{op}' cannot compare against NULL")
            continue

        # Indexed param name avoids collisions between filters on one column
        param_name = f"f_{i}"
        where_clauses.append(f"{col} {op} @{param_name}")
        query_params.append(QueryParam(name=param_name, type=param_type(val), value=val))

    if not where_clauses:
        return ""
    return "WHERE " + " AND ".join(where_clauses)
