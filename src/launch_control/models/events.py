from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class OperationRecord:
    """Audit trail entry for a lifecycle operation that reached the supervisor."""

    workload_id: str
    operation: str  # start, stop, restart
    actor: str | None
    success: bool
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workload_id": self.workload_id,
            "operation": self.operation,
            "user": self.actor,
            "success": self.success,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }
