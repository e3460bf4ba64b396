from datetime import datetime

from launch_control.config.schema import WorkloadConfig
from launch_control.db.connection import Database
from launch_control.models.events import OperationRecord
from launch_control.models.workload import WorkloadRecord, WorkloadSpec, WorkloadStatus


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class WorkloadRepo:
    """Catalog of workload descriptors and their last persisted status."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def upsert(self, spec: WorkloadSpec) -> None:
        """Insert or replace a descriptor. Status and ordering of existing rows are kept."""
        now = datetime.now().isoformat()
        config = WorkloadConfig.from_spec(spec).model_dump_json()
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO workloads (id, name, kind, config, status, position, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, (SELECT COUNT(*) FROM workloads), ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name,
                       kind = excluded.kind,
                       config = excluded.config,
                       updated_at = CASE WHEN workloads.config = excluded.config
                                         THEN workloads.updated_at ELSE excluded.updated_at END""",
                (spec.id, spec.name, spec.kind.value, config, WorkloadStatus.STOPPED.value, now, now),
            )

    async def sync(self, specs: list[WorkloadSpec]) -> dict[str, list[str]]:
        """Make the catalog match ``specs``. Returns {added, removed, kept} id lists."""
        existing = {record.spec.id for record in await self.list_all()}
        wanted = {spec.id for spec in specs}
        for spec in specs:
            await self.upsert(spec)
        removed = sorted(existing - wanted)
        for workload_id in removed:
            await self.delete(workload_id)
        return {
            "added": sorted(wanted - existing),
            "removed": removed,
            "kept": sorted(wanted & existing),
        }

    async def get(self, workload_id: str) -> WorkloadRecord | None:
        row = await self._db.fetchone("SELECT * FROM workloads WHERE id = ?", (workload_id,))
        return self._to_record(row) if row else None

    async def list_all(self) -> list[WorkloadRecord]:
        rows = await self._db.fetchall("SELECT * FROM workloads ORDER BY position, id")
        return [self._to_record(row) for row in rows]

    async def set_status(self, workload_id: str, status: WorkloadStatus) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE workloads SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, datetime.now().isoformat(), workload_id),
            )
            return cursor.rowcount > 0

    async def delete(self, workload_id: str) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM workloads WHERE id = ?", (workload_id,))
            return cursor.rowcount > 0

    @staticmethod
    def _to_record(row) -> WorkloadRecord:
        spec = WorkloadConfig.model_validate_json(row["config"]).to_spec()
        return WorkloadRecord(
            spec=spec,
            status=WorkloadStatus(row["status"]),
            position=row["position"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )


class OperationRepo:
    """Append-only audit trail of lifecycle operations."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def record(self, op: OperationRecord) -> int:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """INSERT INTO operations (workload_id, operation, actor, success, error, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    op.workload_id,
                    op.operation,
                    op.actor,
                    int(op.success),
                    op.error,
                    op.timestamp.isoformat(),
                ),
            )
            return cursor.lastrowid

    async def recent(self, limit: int = 50, workload_id: str | None = None) -> list[OperationRecord]:
        if workload_id:
            rows = await self._db.fetchall(
                "SELECT * FROM operations WHERE workload_id = ? ORDER BY id DESC LIMIT ?",
                (workload_id, limit),
            )
        else:
            rows = await self._db.fetchall(
                "SELECT * FROM operations ORDER BY id DESC LIMIT ?", (limit,)
            )
        return [
            OperationRecord(
                id=row["id"],
                workload_id=row["workload_id"],
                operation=row["operation"],
                actor=row["actor"],
                success=bool(row["success"]),
                error=row["error"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
            )
            for row in rows
        ]
