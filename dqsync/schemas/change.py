"""
Change feed schemas.

ChangeEvent is one row-level mutation of check_definitions as captured by
the change feed. Delivery is at-least-once; ordering is only meaningful
per id within one drained batch.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional


class ChangeAction(str, Enum):
    """Row-level mutation kind."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """
    A single captured change.

    Attributes:
        action: INSERT, UPDATE or DELETE
        check_id: Id of the changed definition
        seq: Feed sequence number, when the feed provides one
        changed_at: Capture time, informational only
    """
    action: ChangeAction
    check_id: str
    seq: Optional[int] = None
    changed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ChangeEvent":
        seq = row.get("seq")
        return cls(
            action=ChangeAction(str(row["action"]).upper()),
            check_id=str(row["check_id"]),
            seq=int(seq) if seq is not None else None,
            changed_at=row.get("changed_at"),
        )


@dataclass(frozen=True)
class ChangeBatch:
    """
    Events returned by one drain() call.

    positions holds, parallel to events, the feed-specific token that
    ChangeFeed.acknowledge() commits for each event. high_watermark is the
    largest of them and is informational only.
    """
    events: tuple[ChangeEvent, ...] = field(default_factory=tuple)
    high_watermark: Optional[int] = None
    positions: tuple[int, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.events)

    @property
    def is_empty(self) -> bool:
        return not self.events

    def excluding(self, check_ids: Iterable[str]) -> "ChangeBatch":
        """The sub-batch without any event for the given ids."""
        skip = set(check_ids)
        if not skip:
            return self
        keep = [i for i, e in enumerate(self.events) if e.check_id not in skip]
        positions = tuple(self.positions[i] for i in keep) if self.positions else ()
        seqs = positions or tuple(self.events[i].seq for i in keep if self.events[i].seq is not None)
        return ChangeBatch(
            events=tuple(self.events[i] for i in keep),
            high_watermark=max(seqs) if seqs else None,
            positions=positions,
        )
