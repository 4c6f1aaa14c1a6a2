"""
Test file-backed backups, snapshots and restore
"""

import json
import os

import pytest

from agentgrid.backup import BackupCollaborator, SnapshotBackupManager
from agentgrid.core.exceptions import StoreError
from agentgrid.store import QueryOperation


@pytest.fixture
def manager(table_store, tmp_path):
    return SnapshotBackupManager(table_store, ["Contacts", "Leads"], str(tmp_path / "backups"))


async def rows(store, table):
    return await store.query(table, QueryOperation.SELECT)


class TestCreate:
    """Test backup and snapshot files"""

    @pytest.mark.asyncio
    async def test_create_backup_writes_every_table(self, manager, tmp_path):
        """Test the backup document holds all configured tables"""
        backup_id = await manager.create_backup({"type": "pre-consolidation", "plan_id": "plan-1"})

        path = tmp_path / "backups" / f"{backup_id}.json"
        document = json.loads(path.read_text())
        assert backup_id.startswith("backup-")
        assert document["type"] == "pre-consolidation"
        assert document["options"]["plan_id"] == "plan-1"
        assert len(document["tables"]["Contacts"]) == 3
        assert len(document["tables"]["Leads"]) == 1
        assert manager.stats["backups_created"] == 1

    @pytest.mark.asyncio
    async def test_backup_table_override(self, manager):
        """Test options['tables'] limits the backup"""
        backup_id = await manager.create_backup({"tables": ["Leads"]})

        document = await manager.load(backup_id)
        assert list(document["tables"]) == ["Leads"]

    @pytest.mark.asyncio
    async def test_create_snapshot(self, manager):
        """Test snapshots keep data and metadata"""
        snapshot_id = await manager.create_snapshot(
            {"Contacts": [{"id": "rec1", "fields": {}}]}, {"plan_id": "plan-1"}
        )

        document = await manager.load(snapshot_id)
        assert snapshot_id.startswith("snapshot-")
        assert document["metadata"] == {"plan_id": "plan-1"}
        assert document["data"]["Contacts"][0]["id"] == "rec1"
        assert manager.stats["snapshots_created"] == 1

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, manager, tmp_path):
        """Test atomic writes leave only final files"""
        await manager.create_backup({})

        names = os.listdir(tmp_path / "backups")
        assert all(not name.startswith(".tmp-") for name in names)

    @pytest.mark.asyncio
    async def test_list_backups_excludes_snapshots(self, manager):
        """Test list_backups only returns backup ids"""
        backup_id = await manager.create_backup({})
        await manager.create_snapshot({}, {})

        assert await manager.list_backups() == [backup_id]

    @pytest.mark.asyncio
    async def test_load_missing(self, manager):
        """Test loading an unknown id raises StoreError"""
        with pytest.raises(StoreError, match="not found"):
            await manager.load("backup-0-deadbeef")

    def test_satisfies_protocol(self, manager):
        """Test the manager is a backup collaborator"""
        assert isinstance(manager, BackupCollaborator)


class TestRestore:
    """Test restoring table contents"""

    @pytest.mark.asyncio
    async def test_restore_reverts_changes(self, manager, table_store):
        """Test updated, added and deleted records return to their saved state"""
        before = await rows(table_store, "Contacts")
        backup_id = await manager.create_backup({})
        bob = before[1]["id"]
        cy = before[2]["id"]

        await table_store.query(
            "Contacts", QueryOperation.UPDATE,
            {"records": [{"id": bob, "fields": {"Email": "bob@example.com", "Email Address": None}}]},
        )
        await table_store.query("Contacts", QueryOperation.DESTROY, {"ids": [cy]})
        await table_store.query("Contacts", QueryOperation.CREATE, {"records": [{"fields": {"Name": "Dee"}}]})

        report = await manager.restore(backup_id, "test rollback")

        assert report["tables"]["Contacts"] == {"updated": 1, "destroyed": 1, "recreated": 1}
        assert report["tables"]["Leads"] == {"updated": 0, "destroyed": 0, "recreated": 0}
        assert report["reason"] == "test rollback"
        after = await rows(table_store, "Contacts")
        assert sorted(after, key=lambda r: r["id"]) == sorted(before, key=lambda r: r["id"])
        assert manager.stats["restores"] == 1

    @pytest.mark.asyncio
    async def test_restore_unknown_backup(self, manager):
        """Test restoring a missing backup raises StoreError"""
        with pytest.raises(StoreError):
            await manager.restore("backup-0-missing", "test")
