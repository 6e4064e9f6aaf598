"""Run record and lifecycle state machine."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from agent_orchestrator.errors import StateConflict


class RunStatus(str, Enum):
    """Run lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = {RunStatus.COMPLETED, RunStatus.FAILED}
_ALLOWED_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING}),
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True, frozen=True)
class Run:
    """Snapshot of one tracked unit of work."""

    id: str
    status: RunStatus
    created_at: datetime
    updated_at: datetime
    result: Any = None
    error: str | None = None

    @classmethod
    def new(cls, run_id: str, *, now: datetime | None = None) -> Run:
        """Fresh `pending` run."""

        timestamp = now or utc_now()
        return cls(id=run_id, status=RunStatus.PENDING, created_at=timestamp, updated_at=timestamp)

    def transition(
        self,
        status: RunStatus,
        *,
        result: Any = None,
        error: str | None = None,
        now: datetime | None = None,
    ) -> Run:
        """Return the next snapshot or raise `StateConflict` for a forbidden move."""

        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise StateConflict(
                f"Cannot move run {self.id!r} from {self.status.value} to {status.value}.",
                run_id=self.id,
                current=self.status.value,
                requested=status.value,
            )
        return replace(
            self,
            status=status,
            result=result if status == RunStatus.COMPLETED else None,
            error=error if status == RunStatus.FAILED else None,
            updated_at=now or utc_now(),
        )

    def to_record(self) -> dict[str, Any]:
        """Flat JSON-ready record; optional keys appear only when set."""

        record: dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.status == RunStatus.COMPLETED:
            record["result"] = self.result
        if self.status == RunStatus.FAILED:
            record["error"] = self.error
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Run:
        return cls(
            id=str(record["id"]),
            status=RunStatus(record["status"]),
            created_at=from_iso(record["createdAt"]),
            updated_at=from_iso(record["updatedAt"]),
            result=record.get("result"),
            error=record.get("error"),
        )

    def dumps(self) -> str:
        return json.dumps(self.to_record(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def loads(cls, raw: str) -> Run:
        return cls.from_record(json.loads(raw))


def describe_error(error: BaseException | str) -> str:
    """Message stored on a failed run."""

    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)
