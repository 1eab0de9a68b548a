"""Workflow lock as a single tagged value.

A ticket is either :data:`UNLOCKED` or :class:`LockedBy` a workflow run; there
is no representation for "locked without a holder".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Final, TypeAlias

from ticketforge.domain._fields import as_datetime, as_str


@dataclass(frozen=True, slots=True)
class Unlocked:
    @property
    def is_locked(self) -> bool:
        return False

    def is_held_by(self, run_id: str) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class LockedBy:
    owner_id: str
    since: datetime

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "owner_id", as_str(self.owner_id, "LockedBy.owner_id", max_len=256)
        )
        object.__setattr__(self, "since", as_datetime(self.since, "LockedBy.since"))

    @property
    def is_locked(self) -> bool:
        return True

    def is_held_by(self, run_id: str) -> bool:
        return self.owner_id == run_id

    def age_seconds(self, now: datetime) -> float:
        return (as_datetime(now, "now") - self.since).total_seconds()


TicketLock: TypeAlias = Unlocked | LockedBy

UNLOCKED: Final[Unlocked] = Unlocked()


def lock_from_fields(locked_by: object, locked_at: object) -> TicketLock:
    """Rebuild the lock from its flat persisted ``locked_by``/``locked_at`` pair."""

    if locked_by is None and locked_at is None:
        return UNLOCKED
    if locked_by is None or locked_at is None:
        raise ValueError("lock: locked_by and locked_at must both be null or both be set")
    return LockedBy(
        owner_id=as_str(locked_by, "locked_by", max_len=256),
        since=as_datetime(locked_at, "locked_at"),
    )


__all__ = ["UNLOCKED", "LockedBy", "TicketLock", "Unlocked", "lock_from_fields"]
