"""In-memory representation of one sync attempt."""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


class SyncStatus(str, enum.Enum):
    STARTED = "started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CANCELLED})


class SyncKind(str, enum.Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncJob:
    """State machine: started -> running -> completed | failed | cancelled.

    Terminal states are final; transition calls on a finished job do nothing.
    Progress only moves forward and stays below 100 until ``complete()``.
    """

    store_id: uuid.UUID
    tenant_id: uuid.UUID
    kind: SyncKind
    trigger: str = "manual"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: SyncStatus = SyncStatus.STARTED
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    progress: int = 0
    total_items: int = 0
    processed_items: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_running(self) -> None:
        if self.status == SyncStatus.STARTED:
            self.status = SyncStatus.RUNNING

    def advance_progress(self, value: float) -> None:
        if self.is_terminal:
            return
        self.progress = max(self.progress, min(int(value), 99))

    def record_items(self, fetched: int, processed: int) -> None:
        if self.is_terminal:
            return
        self.total_items += fetched
        self.processed_items += processed

    def add_error(self, message: str) -> None:
        if not self.is_terminal:
            self.errors.append(message)

    def complete(self) -> None:
        if self.is_terminal:
            return
        self.status = SyncStatus.COMPLETED
        self.progress = 100
        self.completed_at = _utcnow()

    def fail(self, message: str | None = None) -> None:
        if self.is_terminal:
            return
        if message:
            self.errors.append(message)
        self.status = SyncStatus.FAILED
        self.completed_at = _utcnow()

    def cancel(self) -> bool:
        if self.is_terminal:
            return False
        self.status = SyncStatus.CANCELLED
        self.completed_at = _utcnow()
        return True

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "store_id": str(self.store_id),
            "tenant_id": str(self.tenant_id),
            "kind": self.kind.value,
            "trigger": self.trigger,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "progress": self.progress,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "errors": list(self.errors),
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> "SyncJob":
        completed_at = data.get("completed_at")
        return cls(
            id=data["id"],
            store_id=uuid.UUID(data["store_id"]),
            tenant_id=uuid.UUID(data["tenant_id"]),
            kind=SyncKind(data["kind"]),
            trigger=data.get("trigger", "manual"),
            status=SyncStatus(data["status"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            progress=data.get("progress", 0),
            total_items=data.get("total_items", 0),
            processed_items=data.get("processed_items", 0),
            errors=list(data.get("errors", [])),
        )
