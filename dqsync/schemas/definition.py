"""
CheckDefinition schema - the declarative data-quality control.

A CheckDefinition is one row of the check_definitions table. Operators
insert, update and delete these rows; dqsync materializes each active,
valid row as exactly one scheduled job.

Check types form a closed set. Any declared type text outside the
supported set parses to CheckType.UNSUPPORTED instead of raising, so a
typo or a not-yet-supported type never destroys an existing job.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class CheckType(str, Enum):
    """Closed set of check types."""
    FRESHNESS = "FRESHNESS"
    UNIQUENESS = "UNIQUENESS"
    CONSISTENCY = "CONSISTENCY"
    UNSUPPORTED = "UNSUPPORTED"

    @classmethod
    def parse(cls, declared: Optional[str]) -> "CheckType":
        """Map declared type text to a CheckType (unknown -> UNSUPPORTED)."""
        normalized = (declared or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNSUPPORTED


def parse_key_columns(value: Any) -> tuple[str, ...]:
    """Normalize the columns_key column (comma-separated text or list) to a tuple."""
    if value is None:
        return ()
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = list(value)
    return tuple(str(p).strip() for p in parts if p is not None and str(p).strip())


def parse_row_filter(value: Any) -> Any:
    """
    Normalize the row_filter column (JSON text, dict or list) to a Python value.

    Text that is not JSON (e.g. a free-text WHERE clause such as
    "status = 'active'") is returned unchanged; the compiler rejects it as
    an invalid parameter, so reading such a row never fails.
    """
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


@dataclass(frozen=True)
class CheckDefinition:
    """
    A declared data-quality control.

    Attributes:
        check_id: Unique, immutable identifier
        check_name: Human-readable name, copied into every result row
        check_type: Declared type text as stored (see CheckType.parse)
        target_schema: Dataset of the target table, optionally "project.dataset"
        target_table: Target table name
        key_columns: Date column (FRESHNESS) or key columns (UNIQUENESS)
        row_filter: Structured filter, {column: value} or [{column, op, value}]
        sla_minutes: FRESHNESS maximum age in minutes
        source_query: CONSISTENCY source side query
        target_query: CONSISTENCY target side query
        threshold_ratio: CONSISTENCY maximum relative difference
        schedule: Scheduler expression (e.g. "every 15 minutes")
        is_active: Inactive definitions keep their row but get no job
    """
    check_id: str
    check_name: str
    check_type: str
    schedule: str = ""
    target_schema: Optional[str] = None
    target_table: Optional[str] = None
    key_columns: tuple[str, ...] = field(default_factory=tuple)
    row_filter: Any = None
    sla_minutes: Optional[int] = None
    source_query: Optional[str] = None
    target_query: Optional[str] = None
    threshold_ratio: Optional[float] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    def __post_init__(self):
        if not self.check_id:
            raise ValueError("check_id is required")
        # Accept comma-separated text or lists; always store a tuple
        if not isinstance(self.key_columns, tuple):
            object.__setattr__(self, "key_columns", parse_key_columns(self.key_columns))

    @property
    def kind(self) -> CheckType:
        """The declared type resolved against the closed CheckType set."""
        return CheckType.parse(self.check_type)

    @property
    def target_location(self) -> str:
        """Dotted target location as declared."""
        parts = [p for p in (self.target_schema, self.target_table) if p]
        return ".".join(parts)

    def with_changes(self, **changes: Any) -> "CheckDefinition":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_row(self) -> dict[str, Any]:
        """Serialize to a check_definitions row (JSON-compatible values)."""
        return {
            "check_id": self.check_id,
            "check_name": self.check_name,
            "check_type": self.check_type,
            "target_schema": self.target_schema,
            "target_table": self.target_table,
            "columns_key": ",".join(self.key_columns) or None,
            "row_filter": json.dumps(self.row_filter) if self.row_filter is not None else None,
            "sla_minutes": self.sla_minutes,
            "source_query": self.source_query,
            "target_query": self.target_query,
            "threshold_ratio": self.threshold_ratio,
            "schedule": self.schedule,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CheckDefinition":
        """Deserialize from a check_definitions row or a YAML/JSON mapping."""
        key_columns = row.get("columns_key", row.get("key_columns"))
        sla = row.get("sla_minutes")
        threshold = row.get("threshold_ratio")
        is_active = row.get("is_active")
        return cls(
            check_id=str(row["check_id"]),
            check_name=row.get("check_name") or str(row["check_id"]),
            check_type=row.get("check_type") or "",
            schedule=row.get("schedule") or "",
            target_schema=row.get("target_schema"),
            target_table=row.get("target_table"),
            key_columns=parse_key_columns(key_columns),
            row_filter=parse_row_filter(row.get("row_filter")),
            sla_minutes=int(sla) if sla is not None else None,
            source_query=row.get("source_query"),
            target_query=row.get("target_query"),
            threshold_ratio=float(threshold) if threshold is not None else None,
            is_active=True if is_active is None else bool(is_active),
            created_at=_as_datetime(row.get("created_at")),
            updated_at=_as_datetime(row.get("updated_at")),
            created_by=row.get("created_by"),
            updated_by=row.get("updated_by"),
        )


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
