"""
File-backed backups and snapshots of store tables
"""

import asyncio
import json
import os
import tempfile
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import structlog

from agentgrid.coordination.models import utc_now
from agentgrid.core.exceptions import StoreError
from agentgrid.store.client import QueryOperation, TableStoreClient

logger = structlog.get_logger(__name__)


@runtime_checkable
class BackupCollaborator(Protocol):
    async def create_backup(self, options: Dict[str, Any]) -> str: ...

    async def create_snapshot(self, data: Dict[str, Any], metadata: Dict[str, Any]) -> str: ...

    async def restore(self, backup_id: str, reason: str) -> Dict[str, Any]: ...


class SnapshotBackupManager:
    """
    Full-table backups and per-operation snapshots stored as JSON files.

    Restore brings each backed-up table back to its saved contents through
    the store client: saved records are rewritten, records created since
    the backup are destroyed and missing ones are recreated.
    """

    def __init__(
        self,
        store: TableStoreClient,
        tables: Sequence[str],
        directory: str,
        clock: Callable = utc_now,
    ):
        self.store = store
        self.tables = list(tables)
        self.directory = directory
        self.clock = clock
        os.makedirs(directory, exist_ok=True)

        self.stats = {
            "backups_created": 0,
            "snapshots_created": 0,
            "restores": 0,
        }

    def _path(self, item_id: str) -> str:
        return os.path.join(self.directory, f"{item_id}.json")

    def _write_sync(self, item_id: str, document: Dict[str, Any]):
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, default=str)
            os.replace(tmp_path, self._path(item_id))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _read_sync(self, item_id: str) -> Optional[Dict[str, Any]]:
        try:
            with open(self._path(item_id), "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    @staticmethod
    def _new_id(prefix: str) -> str:
        return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"

    async def create_backup(self, options: Dict[str, Any]) -> str:
        options = dict(options or {})
        tables = list(options.get("tables") or self.tables)
        backup_id = self._new_id("backup")

        contents = {}
        for table in tables:
            contents[table] = await self.store.query(table, QueryOperation.SELECT, {})

        document = {
            "id": backup_id,
            "type": options.get("type", "full"),
            "created_at": self.clock().isoformat(),
            "options": options,
            "tables": contents,
        }
        await asyncio.to_thread(self._write_sync, backup_id, document)
        self.stats["backups_created"] += 1

        logger.info(
            "Backup created",
            backup_id=backup_id,
            backup_type=document["type"],
            tables=len(tables),
            records=sum(len(rows) for rows in contents.values()),
        )
        return backup_id

    async def create_snapshot(self, data: Dict[str, Any], metadata: Dict[str, Any]) -> str:
        snapshot_id = self._new_id("snapshot")
        document = {
            "id": snapshot_id,
            "created_at": self.clock().isoformat(),
            "metadata": dict(metadata or {}),
            "data": data,
        }
        await asyncio.to_thread(self._write_sync, snapshot_id, document)
        self.stats["snapshots_created"] += 1
        logger.debug("Snapshot created", snapshot_id=snapshot_id, metadata=document["metadata"])
        return snapshot_id

    async def load(self, item_id: str) -> Dict[str, Any]:
        document = await asyncio.to_thread(self._read_sync, item_id)
        if document is None:
            raise StoreError(f"Backup {item_id} not found")
        return document

    async def list_backups(self) -> List[str]:
        names = await asyncio.to_thread(os.listdir, self.directory)
        return sorted(n[:-5] for n in names if n.startswith("backup-") and n.endswith(".json"))

    async def restore(self, backup_id: str, reason: str) -> Dict[str, Any]:
        document = await self.load(backup_id)
        logger.warning("Restoring backup", backup_id=backup_id, reason=reason)

        restored: Dict[str, Dict[str, int]] = {}
        for table, saved_rows in document.get("tables", {}).items():
            restored[table] = await self._restore_table(table, saved_rows)

        self.stats["restores"] += 1
        logger.info("Backup restored", backup_id=backup_id, tables=restored)
        return {
            "backup_id": backup_id,
            "reason": reason,
            "restored_at": self.clock().isoformat(),
            "tables": restored,
        }

    async def _restore_table(self, table: str, saved_rows: List[Dict[str, Any]]) -> Dict[str, int]:
        saved = {row["id"]: row.get("fields", {}) for row in saved_rows}
        current = {
            row["id"]: row.get("fields", {})
            for row in await self.store.query(table, QueryOperation.SELECT, {})
        }

        updates = []
        for record_id, fields in saved.items():
            if record_id not in current or current[record_id] == fields:
                continue
            change = dict(fields)
            for name in current[record_id]:
                if name not in fields:
                    change[name] = None
            updates.append({"id": record_id, "fields": change})

        extra = [record_id for record_id in current if record_id not in saved]
        missing = [
            {"id": record_id, "fields": fields}
            for record_id, fields in saved.items()
            if record_id not in current
        ]

        if updates:
            await self.store.query(table, QueryOperation.UPDATE, {"records": updates})
        if extra:
            await self.store.query(table, QueryOperation.DESTROY, {"ids": extra})
        if missing:
            await self.store.query(table, QueryOperation.CREATE, {"records": missing})

        return {"updated": len(updates), "destroyed": len(extra), "recreated": len(missing)}
